"""
Storage backend selection.
"""
from typing import NamedTuple

from copilot.core.config import settings
from copilot.core.logging import logger
from copilot.db.repository import InstructionRepository, MessageRepository, TaskRepository


class Repositories(NamedTuple):
    messages: MessageRepository
    tasks: TaskRepository
    instructions: InstructionRepository


def get_repositories(backend: str = None) -> Repositories:
    """Build the repositories for `backend` (defaults to settings.STORAGE_BACKEND)."""
    backend = backend or settings.STORAGE_BACKEND
    logger.info(f"Using {backend} storage backend")

    if backend == "supabase":
        from copilot.db.instructions import SupabaseInstructionRepository
        from copilot.db.messages import SupabaseMessageRepository
        from copilot.db.tasks import SupabaseTaskRepository

        return Repositories(
            messages=SupabaseMessageRepository(),
            tasks=SupabaseTaskRepository(),
            instructions=SupabaseInstructionRepository(),
        )

    if backend == "memory":
        from copilot.db.memory import (
            InMemoryInstructionRepository,
            InMemoryMessageRepository,
            InMemoryTaskRepository,
        )

        return Repositories(
            messages=InMemoryMessageRepository(),
            tasks=InMemoryTaskRepository(),
            instructions=InMemoryInstructionRepository(),
        )

    raise ValueError(f"Unsupported storage backend: {backend}")
