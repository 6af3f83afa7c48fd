"""
Error taxonomy for the orchestration core.
"""
from typing import Any, Dict, Optional


class CopilotError(Exception):
    """Base class for all domain errors."""


class ToolError(CopilotError):
    """A capability invocation failed."""

    kind = "permanent"

    def __init__(self, detail: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(detail)
        self.detail = detail
        self.data = data or {}


class TransientToolError(ToolError):
    """Network or rate-limit class failure; safe to retry."""

    kind = "transient"


class PermanentToolError(ToolError):
    """Business failure such as an invalid recipient; never retried."""

    kind = "permanent"


class TaskNotFound(CopilotError):
    pass


class InvalidTaskTransition(CopilotError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move task from {current} to {target}")
        self.current = current
        self.target = target


class TaskNotResumable(CopilotError):
    pass


class TaskBusy(CopilotError):
    """Another step of the same task is already in flight."""


class StepInputError(CopilotError):
    """A workflow step could not build its arguments from the task input/state."""


class DuplicateCorrelationKey(CopilotError):
    """Raised by repositories when a live task already owns the key."""


class ConversationNotFound(CopilotError):
    pass


class InvalidConversationId(CopilotError):
    pass


class LanguageModelError(CopilotError):
    """The language-model capability could not produce a reply."""


class StaleTaskWrite(CopilotError):
    """The stored task left the status a guarded write expected."""
