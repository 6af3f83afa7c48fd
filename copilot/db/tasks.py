"""
Task database operations backed by Supabase.
"""
from typing import Iterable, List, Optional

from postgrest.exceptions import APIError

from copilot.core.errors import DuplicateCorrelationKey, StaleTaskWrite
from copilot.core.logging import logger
from copilot.db.models import LIVE_STATUSES, Task, TaskStatus, utcnow
from copilot.db.repository import TaskRepository
from copilot.db.supabase import get_supabase_client


# Supabase table name
TASKS_TABLE = "tasks"

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


class SupabaseTaskRepository(TaskRepository):
    """Tasks stored in the `tasks` table."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        return self._client or get_supabase_client()

    async def insert(self, task: Task) -> Task:
        """
        Insert a new task.

        The partial unique index on (user_id, correlation_key) turns a concurrent
        duplicate into a unique violation, surfaced as DuplicateCorrelationKey.
        """
        task_data = task.model_dump(mode="json", exclude={"id"})
        try:
            response = self.client.table(TASKS_TABLE).insert(task_data).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise DuplicateCorrelationKey(task.correlation_key) from e
            logger.exception(f"Error creating task: {e}")
            raise

        if not response.data:
            raise RuntimeError(f"Failed to create task of kind {task.kind}")

        created = Task(**response.data[0])
        logger.info(f"Created task {created.id} ({created.kind}) for user {created.user_id}")
        return created

    async def get(self, task_id: int) -> Optional[Task]:
        response = self.client.table(TASKS_TABLE).select("*").eq("id", task_id).execute()

        if response.data:
            return Task(**response.data[0])
        logger.info(f"Task {task_id} not found")
        return None

    async def get_by_correlation_key(self, user_id: str, correlation_key: str) -> Optional[Task]:
        response = self.client.table(TASKS_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("correlation_key", correlation_key)\
            .in_("status", [s.value for s in LIVE_STATUSES])\
            .order("id", desc=True)\
            .limit(1)\
            .execute()

        if response.data:
            return Task(**response.data[0])
        return None

    async def update(self, task: Task, expected_status: Optional[TaskStatus] = None) -> Task:
        """
        Update a task, optionally only while its stored status is `expected_status`.

        The status filter makes the write a compare-and-set across workers: a
        row another worker moved on matches nothing and raises StaleTaskWrite.
        """
        update_data = task.model_dump(
            mode="json",
            include={"status", "state", "result", "error"},
        )
        update_data["updated_at"] = utcnow().isoformat()

        query = self.client.table(TASKS_TABLE).update(update_data).eq("id", task.id)
        if expected_status is not None:
            query = query.eq("status", TaskStatus(expected_status).value)
        response = query.execute()

        if response.data:
            return Task(**response.data[0])
        if expected_status is not None:
            message = f"Task {task.id} is no longer {TaskStatus(expected_status).value}"
            logger.warning(f"{message}; write skipped")
            raise StaleTaskWrite(message)
        raise RuntimeError(f"Failed to update task {task.id}")

    async def list_for_user(
        self,
        user_id: str,
        statuses: Optional[Iterable[TaskStatus]] = None,
        limit: int = 50,
    ) -> List[Task]:
        query = self.client.table(TASKS_TABLE).select("*").eq("user_id", user_id)
        if statuses is not None:
            query = query.in_("status", [TaskStatus(s).value for s in statuses])

        response = query.order("created_at", desc=True).limit(limit).execute()

        return [Task(**row) for row in response.data or []]
