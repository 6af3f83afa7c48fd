"""
Capability dispatcher.

Routes a validated tool call to the async target registered for it and
normalizes whatever happens into a ToolOutcome.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Union

import httpx
from pydantic import BaseModel, Field

from copilot.core.errors import PermanentToolError, TransientToolError
from copilot.core.logging import logger


# Raised by targets on network trouble; always worth another attempt
TRANSIENT_EXCEPTIONS = (ConnectionError, TimeoutError, asyncio.TimeoutError, httpx.TransportError)

# HTTP statuses from upstream APIs that are retried
TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class ToolOutcome(BaseModel):
    """Normalized result of one capability invocation."""
    ok: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    error_kind: Optional[Literal["transient", "permanent"]] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, data: Optional[Dict[str, Any]] = None) -> "ToolOutcome":
        return cls(ok=True, data=data or {})

    @classmethod
    def failure(
        cls,
        kind: str,
        detail: str,
        error: str = "capability_error",
        data: Optional[Dict[str, Any]] = None,
    ) -> "ToolOutcome":
        return cls(ok=False, error=error, error_kind=kind, detail=detail, data=data or {})

    @property
    def is_transient(self) -> bool:
        return not self.ok and self.error_kind == "transient"

    def as_result(self) -> Dict[str, Any]:
        """The payload recorded on tool messages and fed back to the model."""
        if self.ok:
            return self.data
        return {"error": self.error, "kind": self.error_kind, "detail": self.detail}


Target = Callable[[str, Dict[str, Any]], Awaitable[Union[Dict[str, Any], ToolOutcome]]]


def classify_exception(e: Exception) -> str:
    """Return "transient" or "permanent" for an exception raised by a target."""
    if isinstance(e, TransientToolError):
        return "transient"
    if isinstance(e, PermanentToolError):
        return "permanent"
    if isinstance(e, TRANSIENT_EXCEPTIONS):
        return "transient"
    if isinstance(e, httpx.HTTPStatusError) and e.response.status_code in TRANSIENT_STATUS_CODES:
        return "transient"
    return "permanent"


class CapabilityDispatcher:
    """Registry of capability targets keyed by tool name."""

    def __init__(self, targets: Optional[Dict[str, Target]] = None):
        self._targets: Dict[str, Target] = {}
        for name, target in (targets or {}).items():
            self.register(name, target)

    def register(self, name: str, target: Target) -> None:
        if name in self._targets:
            logger.warning(f"Replacing capability target for {name}")
        self._targets[name] = target

    def is_registered(self, name: str) -> bool:
        return name in self._targets

    async def dispatch(self, user_id: str, tool_name: str, args: Dict[str, Any]) -> ToolOutcome:
        """
        Invoke the target registered for `tool_name`.

        Never raises for target failures: exceptions are classified as
        transient or permanent and returned as a failed ToolOutcome.
        """
        target = self._targets.get(tool_name)
        if target is None:
            logger.warning(f"No capability registered for tool {tool_name}")
            return ToolOutcome.failure(
                "permanent", f"Tool {tool_name} is not available", error="not_registered"
            )

        try:
            result = await target(user_id, args)
        except Exception as e:
            kind = classify_exception(e)
            data = e.data if isinstance(e, (TransientToolError, PermanentToolError)) else None
            if kind == "transient":
                logger.warning(f"Transient failure in {tool_name}: {e}")
            else:
                logger.exception(f"Error executing {tool_name}: {e}")
            return ToolOutcome.failure(kind, str(e) or type(e).__name__, data=data)

        if isinstance(result, ToolOutcome):
            return result
        if result is None:
            return ToolOutcome.success()
        if not isinstance(result, dict):
            return ToolOutcome.success({"value": result})
        return ToolOutcome.success(result)
