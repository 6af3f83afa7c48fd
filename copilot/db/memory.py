"""
In-process storage backend. Default for development and used by the test-suite.
"""
import itertools
from typing import Dict, Iterable, List, Optional

from copilot.core.errors import DuplicateCorrelationKey, StaleTaskWrite
from copilot.db.models import LIVE_STATUSES, Instruction, Message, Task, TaskStatus, utcnow
from copilot.db.repository import InstructionRepository, MessageRepository, TaskRepository


def _creation_order(message: Message):
    return (message.created_at, message.id)


class InMemoryMessageRepository(MessageRepository):

    def __init__(self):
        self._rows: Dict[int, Message] = {}
        self._ids = itertools.count(1)

    async def insert(self, message: Message) -> Message:
        stored = message.model_copy(update={"id": next(self._ids)}, deep=True)
        self._rows[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get(self, user_id: str, message_id: int) -> Optional[Message]:
        message = self._rows.get(message_id)
        if message is None or message.user_id != user_id:
            return None
        return message.model_copy(deep=True)

    def _select(self, predicate) -> List[Message]:
        rows = [m for m in self._rows.values() if predicate(m)]
        rows.sort(key=_creation_order)
        return [m.model_copy(deep=True) for m in rows]

    async def list_for_user(self, user_id: str) -> List[Message]:
        return self._select(lambda m: m.user_id == user_id)

    async def list_by_thread(
        self, user_id: str, thread_id: str, limit: Optional[int] = None, latest: bool = False
    ) -> List[Message]:
        rows = self._select(lambda m: m.user_id == user_id and m.thread_id == thread_id)
        if limit is None:
            return rows
        return rows[-limit:] if latest else rows[:limit]

    async def list_by_task(self, user_id: str, task_id: int) -> List[Message]:
        return self._select(lambda m: m.user_id == user_id and m.task_id == task_id)


class InMemoryTaskRepository(TaskRepository):

    def __init__(self):
        self._rows: Dict[int, Task] = {}
        self._ids = itertools.count(1)

    async def insert(self, task: Task) -> Task:
        if task.correlation_key is not None:
            existing = await self.get_by_correlation_key(task.user_id, task.correlation_key)
            if existing is not None:
                raise DuplicateCorrelationKey(task.correlation_key)
        stored = task.model_copy(update={"id": next(self._ids)}, deep=True)
        self._rows[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get(self, task_id: int) -> Optional[Task]:
        task = self._rows.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def get_by_correlation_key(self, user_id: str, correlation_key: str) -> Optional[Task]:
        for task in sorted(self._rows.values(), key=lambda t: t.id, reverse=True):
            if (
                task.user_id == user_id
                and task.correlation_key == correlation_key
                and task.status in LIVE_STATUSES
            ):
                return task.model_copy(deep=True)
        return None

    async def update(self, task: Task, expected_status: Optional[TaskStatus] = None) -> Task:
        current = self._rows.get(task.id)
        if expected_status is not None and (current is None or current.status != expected_status):
            raise StaleTaskWrite(f"Task {task.id} is no longer {expected_status.value}")
        stored = task.model_copy(update={"updated_at": utcnow()}, deep=True)
        self._rows[stored.id] = stored
        return stored.model_copy(deep=True)

    async def list_for_user(
        self,
        user_id: str,
        statuses: Optional[Iterable[TaskStatus]] = None,
        limit: int = 50,
    ) -> List[Task]:
        wanted = set(statuses) if statuses is not None else None
        rows = [
            t for t in self._rows.values()
            if t.user_id == user_id and (wanted is None or t.status in wanted)
        ]
        rows.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return [t.model_copy(deep=True) for t in rows[:limit]]


class InMemoryInstructionRepository(InstructionRepository):

    def __init__(self):
        self._rows: Dict[int, Instruction] = {}
        self._ids = itertools.count(1)

    async def insert(self, instruction: Instruction) -> Instruction:
        stored = instruction.model_copy(update={"id": next(self._ids)})
        self._rows[stored.id] = stored
        return stored.model_copy()

    async def get(self, user_id: str, instruction_id: int) -> Optional[Instruction]:
        instruction = self._rows.get(instruction_id)
        if instruction is None or instruction.user_id != user_id:
            return None
        return instruction.model_copy()

    async def update(self, instruction: Instruction) -> Instruction:
        self._rows[instruction.id] = instruction.model_copy()
        return instruction.model_copy()

    async def list_for_user(self, user_id: str, enabled_only: bool = False) -> List[Instruction]:
        rows = [
            i for i in self._rows.values()
            if i.user_id == user_id and (i.enabled or not enabled_only)
        ]
        rows.sort(key=lambda i: (i.created_at, i.id), reverse=True)
        return [i.model_copy() for i in rows]
