"""
Message database operations backed by Supabase.
"""
from typing import List, Optional

from copilot.core.logging import logger
from copilot.db.models import Message
from copilot.db.repository import MessageRepository
from copilot.db.supabase import get_supabase_client


MESSAGES_TABLE = "messages"


class SupabaseMessageRepository(MessageRepository):
    """Messages stored in the `messages` table. Rows are never updated."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        return self._client or get_supabase_client()

    async def insert(self, message: Message) -> Message:
        message_data = message.model_dump(mode="json", exclude={"id"})
        response = self.client.table(MESSAGES_TABLE).insert(message_data).execute()

        if not response.data:
            logger.error(f"Failed to insert {message.role.value} message for user {message.user_id}")
            raise RuntimeError("Failed to insert message")
        return Message(**response.data[0])

    async def get(self, user_id: str, message_id: int) -> Optional[Message]:
        response = self.client.table(MESSAGES_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("id", message_id)\
            .execute()

        if response.data:
            return Message(**response.data[0])
        return None

    async def list_for_user(self, user_id: str) -> List[Message]:
        response = self.client.table(MESSAGES_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .order("created_at")\
            .order("id")\
            .execute()

        return [Message(**row) for row in response.data or []]

    async def list_by_thread(
        self, user_id: str, thread_id: str, limit: Optional[int] = None, latest: bool = False
    ) -> List[Message]:
        query = self.client.table(MESSAGES_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("thread_id", thread_id)\
            .order("created_at", desc=latest)\
            .order("id", desc=latest)
        if limit is not None:
            query = query.limit(limit)

        rows = [Message(**row) for row in query.execute().data or []]
        if latest:
            rows.reverse()
        return rows

    async def list_by_task(self, user_id: str, task_id: int) -> List[Message]:
        response = self.client.table(MESSAGES_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("task_id", task_id)\
            .order("created_at")\
            .order("id")\
            .execute()

        return [Message(**row) for row in response.data or []]
