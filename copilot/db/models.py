"""
Database models for the application.
"""
from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field, model_validator

from copilot.core.errors import InvalidTaskTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Message role enum."""
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class Message(BaseModel):
    """One entry in a conversation."""
    id: Optional[int] = None
    user_id: str
    role: MessageRole
    content: Optional[str] = None
    tool_name: Optional[str] = None
    tool_args: Optional[Any] = None
    tool_result: Optional[Dict[str, Any]] = None
    thread_id: Optional[str] = None
    task_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_role_payload(self) -> "Message":
        if self.role == MessageRole.TOOL:
            if not self.tool_name or self.tool_result is None:
                raise ValueError("tool messages require tool_name and tool_result")
        elif self.role in (MessageRole.USER, MessageRole.ASSISTANT):
            if self.content is None:
                raise ValueError(f"{self.role.value} messages require content")
        return self


class ConversationScope(str, Enum):
    """How the messages of a conversation are grouped."""
    THREAD = "thread"
    TASK = "task"
    ORPHAN = "orphan"


class Conversation(BaseModel):
    """Read-only summary derived from a group of messages."""
    id: str
    scope: ConversationScope
    thread_id: Optional[str] = None
    task_id: Optional[int] = None
    title: str
    preview: str
    last_message_at: datetime
    last_role: MessageRole
    messages_count: int
    participants: List[str] = Field(default_factory=list)

    @computed_field
    @property
    def composer_enabled(self) -> bool:
        """Only ongoing threads accept new free-text input."""
        return self.scope == ConversationScope.THREAD


class TaskStatus(str, Enum):
    """Task status enum."""
    QUEUED = "queued"
    RUNNING = "running"
    WAITING = "waiting"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "TaskStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


TERMINAL_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.FAILED, TaskStatus.CANCELLED})

# Statuses that still own their correlation key
LIVE_STATUSES = frozenset({
    TaskStatus.QUEUED,
    TaskStatus.RUNNING,
    TaskStatus.WAITING,
    TaskStatus.DONE,
})

ALLOWED_TRANSITIONS = {
    TaskStatus.QUEUED: frozenset({TaskStatus.RUNNING, TaskStatus.CANCELLED}),
    TaskStatus.RUNNING: frozenset({
        TaskStatus.RUNNING,
        TaskStatus.WAITING,
        TaskStatus.DONE,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    }),
    TaskStatus.WAITING: frozenset({TaskStatus.RUNNING, TaskStatus.CANCELLED}),
    TaskStatus.DONE: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


class TaskError(BaseModel):
    """Structured failure detail stored on failed tasks."""
    reason: str
    summary: str
    detail: Optional[Dict[str, Any]] = None


class Task(BaseModel):
    """Durable record of one multi-step workflow instance."""
    id: Optional[int] = None
    user_id: str
    kind: str
    status: TaskStatus = TaskStatus.QUEUED
    input: Dict[str, Any] = Field(default_factory=dict)
    state: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[TaskError] = None
    correlation_key: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def transition(self, target: TaskStatus) -> "Task":
        """Move to `target`, refusing anything the state machine does not allow."""
        if not self.status.can_transition_to(target):
            raise InvalidTaskTransition(self.status.value, target.value)
        self.status = target
        self.updated_at = utcnow()
        return self


class Instruction(BaseModel):
    """User-authored standing policy injected as guidance text."""
    id: Optional[int] = None
    user_id: str
    title: str
    content: str
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)
