"""
Agent instruction database operations backed by Supabase.
"""
from typing import List, Optional

from copilot.db.models import Instruction
from copilot.db.repository import InstructionRepository
from copilot.db.supabase import get_supabase_client


INSTRUCTIONS_TABLE = "agent_instructions"


class SupabaseInstructionRepository(InstructionRepository):

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        return self._client or get_supabase_client()

    async def insert(self, instruction: Instruction) -> Instruction:
        data = instruction.model_dump(mode="json", exclude={"id"})
        response = self.client.table(INSTRUCTIONS_TABLE).insert(data).execute()
        if not response.data:
            raise RuntimeError("Failed to create instruction")
        return Instruction(**response.data[0])

    async def get(self, user_id: str, instruction_id: int) -> Optional[Instruction]:
        response = self.client.table(INSTRUCTIONS_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("id", instruction_id)\
            .execute()
        if response.data:
            return Instruction(**response.data[0])
        return None

    async def update(self, instruction: Instruction) -> Instruction:
        data = instruction.model_dump(mode="json", include={"title", "content", "enabled"})
        response = self.client.table(INSTRUCTIONS_TABLE)\
            .update(data)\
            .eq("id", instruction.id)\
            .execute()
        if not response.data:
            raise RuntimeError(f"Failed to update instruction {instruction.id}")
        return Instruction(**response.data[0])

    async def list_for_user(self, user_id: str, enabled_only: bool = False) -> List[Instruction]:
        query = self.client.table(INSTRUCTIONS_TABLE).select("*").eq("user_id", user_id)
        if enabled_only:
            query = query.eq("enabled", True)
        response = query.order("created_at", desc=True).execute()
        return [Instruction(**row) for row in response.data or []]
