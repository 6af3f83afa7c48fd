"""
Storage interfaces shared by the in-memory and Supabase backends.
"""
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from copilot.db.models import Instruction, Message, Task, TaskStatus


class MessageRepository(ABC):
    """Append-only message log."""

    @abstractmethod
    async def insert(self, message: Message) -> Message:
        """Persist a new message and return it with its id assigned."""

    @abstractmethod
    async def get(self, user_id: str, message_id: int) -> Optional[Message]:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[Message]:
        """All messages owned by the user, in creation order."""

    @abstractmethod
    async def list_by_thread(
        self, user_id: str, thread_id: str, limit: Optional[int] = None, latest: bool = False
    ) -> List[Message]:
        """
        Messages of a thread in creation order.

        With `latest=True` the *last* `limit` messages are returned (still ascending),
        otherwise the first `limit`.
        """

    @abstractmethod
    async def list_by_task(self, user_id: str, task_id: int) -> List[Message]:
        ...


class TaskRepository(ABC):
    """Durable workflow records."""

    @abstractmethod
    async def insert(self, task: Task) -> Task:
        """
        Persist a new task.

        Raises DuplicateCorrelationKey when a live task of the same user already
        owns `task.correlation_key`.
        """

    @abstractmethod
    async def get(self, task_id: int) -> Optional[Task]:
        ...

    @abstractmethod
    async def get_by_correlation_key(self, user_id: str, correlation_key: str) -> Optional[Task]:
        """The live (queued/running/waiting/done) task owning the key, if any."""

    @abstractmethod
    async def update(self, task: Task, expected_status: Optional[TaskStatus] = None) -> Task:
        """
        Write the mutable fields of `task`.

        With `expected_status` the write only lands while the stored task is
        still in that status; otherwise StaleTaskWrite is raised.
        """

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        statuses: Optional[Iterable[TaskStatus]] = None,
        limit: int = 50,
    ) -> List[Task]:
        """Most recent first."""


class InstructionRepository(ABC):
    """User-authored standing instructions."""

    @abstractmethod
    async def insert(self, instruction: Instruction) -> Instruction:
        ...

    @abstractmethod
    async def get(self, user_id: str, instruction_id: int) -> Optional[Instruction]:
        ...

    @abstractmethod
    async def update(self, instruction: Instruction) -> Instruction:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str, enabled_only: bool = False) -> List[Instruction]:
        """Most recent first."""
