import asyncio
from typing import Any, Dict, List, Optional

import pytest

from copilot.agent.context import ContextBuilder
from copilot.agent.conversations import ConversationStore
from copilot.agent.engine import TaskEngine
from copilot.agent.orchestrator import Orchestrator
from copilot.agent.schemas import FinalAnswer, ModelContext, ModelReply, ToolCallRequest
from copilot.core.config import RetryPolicy, TurnPolicy
from copilot.db.backends import get_repositories
from copilot.services.llm import LanguageModel
from copilot.services.retrieval import KeywordRetriever
from copilot.tools.dispatcher import CapabilityDispatcher
from copilot.tools.rag_tools import make_search_rag
from copilot.tools.registry import ToolSchema


USER_ID = "user-1"

SLOTS = [
    {"start": "2025-01-07T10:00:00Z", "end": "2025-01-07T10:30:00Z"},
    {"start": "2025-01-08T14:00:00Z", "end": "2025-01-08T14:30:00Z"},
    {"start": "2025-01-09T09:00:00Z", "end": "2025-01-09T09:30:00Z"},
]

MEETING_INPUT = {
    "contact_email": "ann@example.com",
    "contact_name": "Ann Lee",
    "duration_minutes": 30,
    "window_start": "2025-01-06T09:00:00Z",
    "window_end": "2025-01-10T17:00:00Z",
    "timezone": "UTC",
    "title": "Portfolio review",
}


class FakeTarget:
    """Capability target that records calls and replays scripted failures."""

    def __init__(self, result=None, errors=None):
        self.result = result
        self.errors = list(errors or [])
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, user_id: str, args: Dict[str, Any]):
        self.calls.append(args)
        await asyncio.sleep(0)
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        if callable(self.result):
            return self.result(args)
        return self.result


class BlockingTarget(FakeTarget):
    """Target that does not return until `release` is set."""

    def __init__(self, result=None):
        super().__init__(result)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, user_id: str, args: Dict[str, Any]):
        self.calls.append(args)
        self.started.set()
        await self.release.wait()
        return self.result


class ScriptedModel(LanguageModel):
    """Language model that replays queued replies and records every context it sees."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.contexts: List[ModelContext] = []

    async def complete(self, context: ModelContext, tools: List[ToolSchema]) -> ModelReply:
        self.contexts.append(context.model_copy(deep=True))
        if not self.replies:
            return FinalAnswer(content="Done.")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def call(tool_name: str, /, **args) -> ToolCallRequest:
    return ToolCallRequest(name=tool_name, args=args)


def final(content: str) -> FinalAnswer:
    return FinalAnswer(content=content)


def make_targets() -> Dict[str, FakeTarget]:
    return {
        "hubspot_find_or_create_contact": FakeTarget(
            lambda args: {"contact_id": 101, "email": args["email"], "summary": f"Contact {args['email']} ready"}
        ),
        "propose_calendar_times": FakeTarget({"slots": SLOTS, "summary": "3 slots available"}),
        "send_email_via_gmail": FakeTarget({"message_id": "msg-1", "status": "sent"}),
        "create_calendar_event": FakeTarget({"event_id": "evt-1", "status": "confirmed"}),
        "hubspot_add_note": FakeTarget({"note_id": 7, "status": "created"}),
    }


@pytest.fixture
def fast_retry():
    return RetryPolicy(attempts=3, multiplier=0, min_wait=0, max_wait=0)


@pytest.fixture
def repositories():
    return get_repositories("memory")


@pytest.fixture
def retriever():
    return KeywordRetriever()


@pytest.fixture
def targets():
    return make_targets()


@pytest.fixture
def dispatcher(targets, retriever):
    dispatcher = CapabilityDispatcher(dict(targets))
    dispatcher.register("search_rag", make_search_rag(retriever))
    return dispatcher


@pytest.fixture
def engine(repositories, dispatcher, fast_retry):
    return TaskEngine(repositories.tasks, dispatcher, fast_retry)


@pytest.fixture
def conversations(repositories):
    return ConversationStore(repositories.messages)


@pytest.fixture
def make_orchestrator(repositories, conversations, engine, retriever):
    """Factory building an orchestrator around a ScriptedModel."""

    def _make(replies=None, policy: Optional[TurnPolicy] = None, model: Optional[LanguageModel] = None):
        policy = policy or TurnPolicy()
        context_builder = ContextBuilder(
            conversations,
            repositories.instructions,
            repositories.tasks,
            retriever=retriever,
            policy=policy,
        )
        return Orchestrator(
            model=model or ScriptedModel(replies),
            conversations=conversations,
            engine=engine,
            context_builder=context_builder,
            policy=policy,
        )

    return _make
