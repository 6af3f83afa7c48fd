"""
Orchestrator: runs one conversational turn as a bounded loop of model
calls and validated tool executions.
"""
import asyncio
import uuid
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple, Union
from weakref import WeakValueDictionary

from copilot.agent.context import ContextBuilder
from copilot.agent.conversations import ConversationStore
from copilot.agent.engine import TaskEngine
from copilot.agent.schemas import FinalAnswer, ToolCallRequest, ToolExchange, TurnFailed, TurnResult
from copilot.agent.workflows import get_workflow, infer_kind
from copilot.core.config import RetryPolicy, TurnPolicy, settings
from copilot.core.errors import InvalidTaskTransition, LanguageModelError, TaskBusy, TaskNotResumable
from copilot.core.logging import logger
from copilot.db.backends import get_repositories
from copilot.db.models import Message, MessageRole, Task, TaskStatus
from copilot.services.llm import LangChainLanguageModel, LanguageModel
from copilot.services.retrieval import KeywordRetriever, Retriever
from copilot.tools.dispatcher import CapabilityDispatcher
from copilot.tools.rag_tools import make_search_rag
from copilot.tools.registry import available_tools
from copilot.tools.validation import validate


BUDGET_EXHAUSTED_REPLY = (
    "I wasn't able to complete this request within the allowed number of steps. "
    "Here is where things stand; let me know how you'd like to continue."
)


class _Turn:
    """Mutable bookkeeping for one turn."""

    def __init__(self, user_message: Message):
        self.user_message = user_message
        self.task_id: Optional[int] = None
        self.tool_messages: List[Message] = []
        self.repairs = 0
        self.steps = 0


class Orchestrator:
    """Entry point for user messages and user-initiated task cancellation."""

    def __init__(
        self,
        model: LanguageModel,
        conversations: ConversationStore,
        engine: TaskEngine,
        context_builder: ContextBuilder,
        policy: Optional[TurnPolicy] = None,
    ):
        self.model = model
        self.conversations = conversations
        self.engine = engine
        self.context_builder = context_builder
        self.policy = policy or TurnPolicy()
        self._thread_locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()

    def _thread_lock(self, thread_id: str) -> asyncio.Lock:
        lock = self._thread_locks.get(thread_id)
        if lock is None:
            lock = asyncio.Lock()
            self._thread_locks[thread_id] = lock
        return lock

    async def process_message(
        self, user_id: str, text: str, thread_id: Optional[str] = None
    ) -> Union[TurnResult, TurnFailed]:
        """
        Handle one user message.

        Turns on the same thread run one at a time in arrival order; turns
        on different threads run concurrently.

        Args:
            user_id: The user sending the message
            text: The message text
            thread_id: Existing thread to continue; a new one is started when omitted

        Returns:
            TurnResult with the assistant reply and the tool messages of the
            turn, or TurnFailed when the language model is unavailable
        """
        thread_id = thread_id or uuid.uuid4().hex
        async with self._thread_lock(thread_id):
            return await self._run_turn(user_id, text, thread_id)

    async def _run_turn(self, user_id: str, text: str, thread_id: str) -> Union[TurnResult, TurnFailed]:
        user_message = await self.conversations.append(
            Message(user_id=user_id, role=MessageRole.USER, content=text, thread_id=thread_id)
        )
        logger.info(f"Processing message {user_message.id} on thread {thread_id} for user {user_id}")

        turn = _Turn(user_message)
        context = await self.context_builder.build(user_id, thread_id, text)
        tools = available_tools()

        while turn.steps < self.policy.max_tool_steps:
            turn.steps += 1
            try:
                reply = await self.model.complete(context, tools)
            except LanguageModelError as e:
                logger.error(f"Turn on thread {thread_id} failed: {e}")
                return TurnFailed(thread_id=thread_id, reason=str(e), user_message_id=user_message.id)

            if isinstance(reply, FinalAnswer):
                message = await self._reply(user_id, thread_id, reply.content, turn.task_id)
                return self._result(thread_id, message, turn)

            checked = validate(reply.name, reply.args)
            if not checked.ok:
                turn.repairs += 1
                feedback = {"error": "invalid_arguments", "message": checked.message}
                context.exchanges.append(ToolExchange(call=reply, result=feedback))
                if turn.repairs > self.policy.max_repair_attempts:
                    logger.warning(f"Giving up on {reply.name} after {turn.repairs} invalid attempts")
                    break
                continue

            result, task_id = await self._execute_tool(user_id, thread_id, text, reply.name, checked.args, turn)
            tool_message = await self.conversations.append(Message(
                user_id=user_id,
                role=MessageRole.TOOL,
                tool_name=reply.name,
                tool_args=checked.args,
                tool_result=result,
                thread_id=thread_id,
                task_id=task_id,
            ))
            turn.tool_messages.append(tool_message)
            context.exchanges.append(ToolExchange(
                call=ToolCallRequest(name=reply.name, args=checked.args, call_id=reply.call_id),
                result=result,
            ))

        logger.warning(f"Turn on thread {thread_id} stopped after {turn.steps} steps")
        message = await self._reply(user_id, thread_id, BUDGET_EXHAUSTED_REPLY, turn.task_id)
        return self._result(thread_id, message, turn, budget_exhausted=True)

    def _result(self, thread_id: str, message: Message, turn: _Turn, budget_exhausted: bool = False) -> TurnResult:
        return TurnResult(
            thread_id=thread_id,
            message=message,
            tool_messages=turn.tool_messages,
            task_id=turn.task_id,
            steps_used=turn.steps,
            budget_exhausted=budget_exhausted,
        )

    async def _reply(self, user_id: str, thread_id: str, content: str, task_id: Optional[int]) -> Message:
        return await self.conversations.append(Message(
            user_id=user_id,
            role=MessageRole.ASSISTANT,
            content=content,
            thread_id=thread_id,
            task_id=task_id,
        ))

    async def _thread_task(self, user_id: str, thread_id: str) -> Optional[Task]:
        """Most recent unfinished task bound to the thread."""
        unfinished = await self.engine.list_tasks(
            user_id, status=[TaskStatus.QUEUED, TaskStatus.RUNNING, TaskStatus.WAITING]
        )
        for task in unfinished:
            if task.input.get("thread_id") == thread_id:
                return task
        return None

    async def _resolve_task(
        self, user_id: str, thread_id: str, text: str, tool_name: str, turn: _Turn
    ) -> Optional[Task]:
        """
        Find the task a tool call should run under, creating one if needed.

        A task left unfinished by an earlier turn on the thread is advanced
        when the tool is one of its remaining steps; a waiting task is
        resumed first. Returns None when the call should be dispatched
        without a task.
        """
        if turn.task_id is not None:
            current = await self.engine.get_task(turn.task_id)
            if current.status in (TaskStatus.QUEUED, TaskStatus.RUNNING):
                return current
            if current.status != TaskStatus.WAITING:
                return None
        else:
            current = await self._thread_task(user_id, thread_id)

        remaining = current is not None and get_workflow(current.kind).step_index(
            tool_name, current.state.get("cursor", 0)
        ) is not None

        if remaining and current.status in (TaskStatus.QUEUED, TaskStatus.RUNNING):
            logger.info(f"Continuing task {current.id} on thread {thread_id} with {tool_name}")
            turn.task_id = current.id
            return current

        if remaining and current.status == TaskStatus.WAITING:
            event = {
                "type": current.state.get("next_wait"),
                "source": "conversation",
                "thread_id": thread_id,
                "message_id": turn.user_message.id,
            }
            try:
                task = await self.engine.resume(current.id, event)
            except (TaskNotResumable, TaskBusy) as e:
                logger.warning(f"Could not resume task {current.id}: {e}")
                return None
            turn.task_id = task.id
            return task if task.status == TaskStatus.RUNNING else None

        if turn.task_id is not None:
            return None

        kind = infer_kind(tool_name, text)
        if kind is None:
            return None

        task, created = await self.engine.create_task(
            user_id,
            kind,
            {"request": text, "thread_id": thread_id},
            correlation_key=f"turn:{turn.user_message.id}:{kind}",
        )
        turn.task_id = task.id
        return task if task.status in (TaskStatus.QUEUED, TaskStatus.RUNNING) else None

    async def _execute_tool(
        self, user_id: str, thread_id: str, text: str, tool_name: str, args: Dict[str, Any], turn: _Turn
    ) -> Tuple[Dict[str, Any], Optional[int]]:
        task = await self._resolve_task(user_id, thread_id, text, tool_name, turn)

        if task is None:
            outcome = await self.engine.execute(user_id, tool_name, args)
            return outcome.as_result(), turn.task_id

        try:
            report = await self.engine.run_tool_step(task.id, tool_name, args)
        except (TaskBusy, InvalidTaskTransition) as e:
            logger.warning(f"Task {task.id} unavailable for {tool_name}: {e}")
            return {"error": "task_unavailable", "kind": "permanent", "detail": str(e)}, task.id

        result = report.outcome.as_result()
        if report.discarded:
            result = {**result, "task_status": report.task.status.value}
        return result, task.id

    async def cancel_task(self, user_id: str, task_id: int) -> Task:
        """Cancel a task on the user's behalf and note it in the task's thread."""
        task = await self.engine.cancel(task_id, user_id)

        thread_id = task.input.get("thread_id")
        await self.conversations.append(Message(
            user_id=user_id,
            role=MessageRole.SYSTEM,
            content=f"Task #{task.id} ({task.kind}) was cancelled.",
            thread_id=thread_id,
            task_id=task.id,
        ))
        return task


def build_orchestrator(
    model: Optional[LanguageModel] = None,
    retriever: Optional[Retriever] = None,
    dispatcher: Optional[CapabilityDispatcher] = None,
    backend: Optional[str] = None,
) -> Orchestrator:
    """Wire an orchestrator from settings, overriding any collaborator given."""
    repositories = get_repositories(backend)
    retriever = retriever or KeywordRetriever()

    if dispatcher is None:
        dispatcher = CapabilityDispatcher()
    if not dispatcher.is_registered("search_rag"):
        dispatcher.register("search_rag", make_search_rag(retriever))

    turn_policy = TurnPolicy.from_settings(settings)
    conversations = ConversationStore(repositories.messages, page_size=settings.CONVERSATION_PAGE_SIZE)
    engine = TaskEngine(repositories.tasks, dispatcher, RetryPolicy.from_settings(settings))
    context_builder = ContextBuilder(
        conversations,
        repositories.instructions,
        repositories.tasks,
        retriever=retriever,
        policy=turn_policy,
    )

    return Orchestrator(
        model=model or LangChainLanguageModel(),
        conversations=conversations,
        engine=engine,
        context_builder=context_builder,
        policy=turn_policy,
    )


@lru_cache()
def get_orchestrator() -> Orchestrator:
    """Process-wide orchestrator. Uses lru_cache to build it only once."""
    logger.info("Building orchestrator")
    return build_orchestrator()
