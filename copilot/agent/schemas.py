"""
Data exchanged between the orchestrator, the language model and the task engine.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from copilot.db.models import Message, Task
from copilot.services.retrieval import Snippet
from copilot.tools.dispatcher import ToolOutcome


class FinalAnswer(BaseModel):
    """The model is done and replies to the user."""
    type: Literal["final"] = "final"
    content: str


class ToolCallRequest(BaseModel):
    """The model asks for one tool to be executed."""
    type: Literal["tool_call"] = "tool_call"
    name: str
    args: Any = Field(default_factory=dict)
    call_id: Optional[str] = None


ModelReply = Union[FinalAnswer, ToolCallRequest]


class ToolExchange(BaseModel):
    """A tool call made during the current turn and what came back."""
    call: ToolCallRequest
    result: Dict[str, Any]


class ModelContext(BaseModel):
    """Everything the language model sees for one call."""
    system_prompt: str
    history: List[Message] = Field(default_factory=list)
    exchanges: List[ToolExchange] = Field(default_factory=list)
    snippets: List[Snippet] = Field(default_factory=list)


class StepReport(BaseModel):
    """Result of running one model-chosen tool against a task."""
    task: Task
    outcome: ToolOutcome
    step_index: Optional[int] = None
    # The task was cancelled or finished while the tool was running
    discarded: bool = False

    @property
    def auxiliary(self) -> bool:
        return self.step_index is None


class TurnResult(BaseModel):
    ok: Literal[True] = True
    thread_id: str
    message: Message
    tool_messages: List[Message] = Field(default_factory=list)
    task_id: Optional[int] = None
    steps_used: int = 0
    budget_exhausted: bool = False


class TurnFailed(BaseModel):
    ok: Literal[False] = False
    thread_id: str
    reason: str
    user_message_id: Optional[int] = None
