"""
Task engine: the state machine behind multi-step workflows.

Tasks advance either engine-driven (`run`, which builds each step's
arguments from the task input and state) or model-driven (`run_tool_step`,
where the orchestrator supplies the tool and its arguments). Both paths
share claiming, retrying and outcome application.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from weakref import WeakValueDictionary

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from copilot.agent.schemas import StepReport
from copilot.agent.workflows import Workflow, get_workflow
from copilot.core.config import RetryPolicy
from copilot.core.errors import (
    DuplicateCorrelationKey,
    InvalidTaskTransition,
    StaleTaskWrite,
    StepInputError,
    TaskBusy,
    TaskNotFound,
    TaskNotResumable,
    TransientToolError,
)
from copilot.core.logging import logger
from copilot.db.models import Task, TaskError, TaskStatus, utcnow
from copilot.db.repository import TaskRepository
from copilot.tools.dispatcher import CapabilityDispatcher, ToolOutcome
from copilot.tools.validation import validate


# State keys owned by the engine; resume events cannot overwrite them
RESERVED_STATE_KEYS = frozenset({"cursor", "results", "next_wait", "wait_started_at"})


class TaskEngine:
    """Creates, advances, pauses, resumes and cancels workflow tasks."""

    def __init__(
        self,
        tasks: TaskRepository,
        dispatcher: CapabilityDispatcher,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.tasks = tasks
        self.dispatcher = dispatcher
        self.retry_policy = retry_policy or RetryPolicy()
        self._claim_lock = asyncio.Lock()
        self._in_flight: Set[int] = set()
        self._record_locks: "WeakValueDictionary[Any, asyncio.Lock]" = WeakValueDictionary()

    def _lock_for(self, key: Any) -> asyncio.Lock:
        lock = self._record_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._record_locks[key] = lock
        return lock

    @asynccontextmanager
    async def _claim(self, task_id: int):
        """Mark a task as owned by the caller; a second claim gets TaskBusy."""
        async with self._claim_lock:
            if task_id in self._in_flight:
                raise TaskBusy(f"Task {task_id} already has a step in flight")
            self._in_flight.add(task_id)
        try:
            yield
        finally:
            self._in_flight.discard(task_id)

    async def _require(self, task_id: int, user_id: Optional[str] = None) -> Task:
        task = await self.tasks.get(task_id)
        if task is None or (user_id is not None and task.user_id != user_id):
            raise TaskNotFound(f"Task {task_id} not found")
        return task

    def _workflow(self, task: Task) -> Workflow:
        workflow = get_workflow(task.kind)
        if workflow is None:
            raise ValueError(f"Unknown task kind: {task.kind}")
        return workflow

    async def create_task(
        self,
        user_id: str,
        kind: str,
        input: Dict[str, Any],
        correlation_key: Optional[str] = None,
    ) -> Tuple[Task, bool]:
        """
        Create a queued task, or return the live task already owning the key.

        Args:
            user_id: Owner of the task
            kind: Workflow kind
            input: Immutable task input
            correlation_key: Optional idempotency token

        Returns:
            The task and whether it was created by this call
        """
        if get_workflow(kind) is None:
            raise ValueError(f"Unknown task kind: {kind}")

        task = Task(
            user_id=user_id,
            kind=kind,
            input=dict(input or {}),
            state={"cursor": 0, "results": {}},
            correlation_key=correlation_key,
        )

        if correlation_key is None:
            created = await self.tasks.insert(task)
            logger.info(f"Created task {created.id} ({kind}) for user {user_id}")
            return created, True

        async with self._lock_for((user_id, correlation_key)):
            existing = await self.tasks.get_by_correlation_key(user_id, correlation_key)
            if existing is not None:
                logger.info(f"Reusing task {existing.id} for correlation key {correlation_key}")
                return existing, False

            try:
                created = await self.tasks.insert(task)
            except DuplicateCorrelationKey:
                # Lost a race with another process writing the same key
                existing = await self.tasks.get_by_correlation_key(user_id, correlation_key)
                if existing is None:
                    raise
                logger.info(f"Reusing task {existing.id} for correlation key {correlation_key}")
                return existing, False

        logger.info(f"Created task {created.id} ({kind}) for user {user_id} with key {correlation_key}")
        return created, True

    async def get_task(self, task_id: int, user_id: Optional[str] = None) -> Task:
        return await self._require(task_id, user_id)

    async def list_tasks(
        self,
        user_id: str,
        status: Optional[Iterable[TaskStatus]] = None,
        limit: int = 50,
    ) -> List[Task]:
        return await self.tasks.list_for_user(user_id, statuses=status, limit=limit)

    async def execute(self, user_id: str, tool_name: str, args: Dict[str, Any]) -> ToolOutcome:
        """Dispatch with bounded exponential backoff on transient failures."""
        policy = self.retry_policy
        outcome = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(policy.attempts),
                wait=wait_exponential(multiplier=policy.multiplier, min=policy.min_wait, max=policy.max_wait),
                retry=retry_if_exception_type(TransientToolError),
                reraise=True,
            ):
                with attempt:
                    outcome = await self.dispatcher.dispatch(user_id, tool_name, args)
                    if outcome.is_transient:
                        logger.warning(
                            f"Attempt {attempt.retry_state.attempt_number} of {tool_name} failed: {outcome.detail}"
                        )
                        raise TransientToolError(outcome.detail or "transient failure", outcome.data)
        except TransientToolError as e:
            logger.error(f"Giving up on {tool_name} after {policy.attempts} attempts: {e.detail}")
            return ToolOutcome.failure("transient", e.detail, error="retries_exhausted", data=e.data)
        return outcome

    async def _fail(self, task: Task, reason: str, summary: str, detail: Optional[Dict[str, Any]] = None) -> Task:
        task.transition(TaskStatus.FAILED)
        task.error = TaskError(reason=reason, summary=summary, detail=detail)
        task = await self.tasks.update(task, expected_status=TaskStatus.RUNNING)
        logger.warning(f"Task {task.id} failed ({reason}): {summary}")
        return task

    async def _fail_running(self, task_id: int, reason: str, summary: str) -> Task:
        async with self._lock_for(task_id):
            task = await self._require(task_id)
            if task.status != TaskStatus.RUNNING:
                return task
            try:
                return await self._fail(task, reason, summary)
            except StaleTaskWrite:
                return await self._require(task_id)

    async def _apply(
        self, task_id: int, step_index: Optional[int], tool_name: str, outcome: ToolOutcome
    ) -> Tuple[Task, bool]:
        """
        Apply a capability outcome to the stored task.

        Returns the updated task and whether the outcome was discarded
        because the task left `running` while the tool was executing. Every
        write is guarded on `running`, so a cancel from another worker wins.
        """
        async with self._lock_for(task_id):
            task = await self._require(task_id)
            if task.status == TaskStatus.RUNNING:
                try:
                    return await self._record(task, step_index, tool_name, outcome), False
                except StaleTaskWrite:
                    task = await self._require(task_id)

            logger.info(f"Discarding {tool_name} result for task {task_id} ({task.status.value})")
            return task, True

    async def _record(
        self, task: Task, step_index: Optional[int], tool_name: str, outcome: ToolOutcome
    ) -> Task:
        state = dict(task.state)
        results = dict(state.get("results") or {})

        if step_index is None:
            if outcome.ok:
                results[tool_name] = outcome.data
                state["results"] = results
                task.state = state
                task = await self.tasks.update(task, expected_status=TaskStatus.RUNNING)
            else:
                logger.warning(f"Auxiliary tool {tool_name} failed for task {task.id}: {outcome.detail}")
            return task

        if not outcome.ok:
            reason = "retries_exhausted" if outcome.error == "retries_exhausted" else "capability_error"
            summary = f"{tool_name} failed: {outcome.detail}"
            return await self._fail(task, reason, summary, outcome.as_result())

        workflow = self._workflow(task)
        step = workflow.steps[step_index]
        results[tool_name] = outcome.data
        state["results"] = results
        state["cursor"] = step_index + 1

        if step.pause_for:
            task.transition(TaskStatus.WAITING)
            state["next_wait"] = step.pause_for
            state["wait_started_at"] = utcnow().isoformat()
        elif state["cursor"] >= len(workflow.steps):
            task.transition(TaskStatus.DONE)
            task.result = results
        else:
            task.transition(TaskStatus.RUNNING)

        task.state = state
        task = await self.tasks.update(task, expected_status=TaskStatus.RUNNING)
        logger.info(f"Task {task.id} completed step {tool_name}; now {task.status.value}")
        return task

    async def _start(self, task_id: int) -> Task:
        async with self._lock_for(task_id):
            task = await self._require(task_id)
            if task.status == TaskStatus.QUEUED:
                try:
                    task = await self.tasks.update(
                        task.transition(TaskStatus.RUNNING), expected_status=TaskStatus.QUEUED
                    )
                except StaleTaskWrite:
                    return await self._require(task_id)
                logger.info(f"Task {task_id} started")
            return task

    async def run(self, task_id: int) -> Task:
        """
        Drive a task through its workflow until it waits, finishes or fails.

        Tasks that are already waiting or terminal are returned unchanged.
        """
        async with self._claim(task_id):
            task = await self._start(task_id)

            while task.status == TaskStatus.RUNNING:
                workflow = self._workflow(task)
                cursor = task.state.get("cursor", 0)

                if cursor >= len(workflow.steps):
                    async with self._lock_for(task_id):
                        task = await self._require(task_id)
                        if task.status == TaskStatus.RUNNING:
                            task.transition(TaskStatus.DONE)
                            task.result = dict(task.state.get("results") or {})
                            try:
                                task = await self.tasks.update(task, expected_status=TaskStatus.RUNNING)
                            except StaleTaskWrite:
                                task = await self._require(task_id)
                    break

                step = workflow.steps[cursor]
                try:
                    raw_args = step.build_args(task.input, task.state)
                except (StepInputError, KeyError) as e:
                    return await self._fail_running(task_id, "invalid_input", f"{step.tool}: {e}")

                checked = validate(step.tool, raw_args)
                if not checked.ok:
                    return await self._fail_running(task_id, "invalid_arguments", f"{step.tool}: {checked.message}")

                outcome = await self.execute(task.user_id, step.tool, checked.args)
                task, _ = await self._apply(task_id, cursor, step.tool, outcome)

            return task

    async def run_tool_step(self, task_id: int, tool_name: str, args: Dict[str, Any]) -> StepReport:
        """
        Execute one tool chosen by the language model on behalf of a task.

        The tool advances the task when it matches one of the remaining
        steps (earlier remaining steps are skipped); any other tool is
        recorded as auxiliary without moving the cursor.
        """
        async with self._claim(task_id):
            task = await self._start(task_id)
            if task.status != TaskStatus.RUNNING:
                raise InvalidTaskTransition(task.status.value, TaskStatus.RUNNING.value)

            workflow = self._workflow(task)
            step_index = workflow.step_index(tool_name, task.state.get("cursor", 0))

            outcome = await self.execute(task.user_id, tool_name, args)
            task, discarded = await self._apply(task_id, step_index, tool_name, outcome)

            return StepReport(task=task, outcome=outcome, step_index=step_index, discarded=discarded)

    async def resume(self, task_id: int, event: Dict[str, Any]) -> Task:
        """
        Resume a waiting task with an external event.

        The event's `type` must match the condition the task is waiting for.
        The remaining event fields are merged into the task state.
        """
        async with self._claim(task_id):
            async with self._lock_for(task_id):
                task = await self._require(task_id)
                if task.status != TaskStatus.WAITING:
                    raise TaskNotResumable(f"Task {task_id} is {task.status.value}, not waiting")

                expected = task.state.get("next_wait")
                if event.get("type") != expected:
                    raise TaskNotResumable(
                        f"Task {task_id} is waiting for {expected}, got {event.get('type')}"
                    )

                state = dict(task.state)
                state.update({k: v for k, v in event.items() if k not in RESERVED_STATE_KEYS and k != "type"})
                state.pop("next_wait", None)
                state.pop("wait_started_at", None)
                task.state = state
                task.transition(TaskStatus.RUNNING)

                if state.get("cursor", 0) >= len(self._workflow(task).steps):
                    task.transition(TaskStatus.DONE)
                    task.result = dict(state.get("results") or {})

                try:
                    task = await self.tasks.update(task, expected_status=TaskStatus.WAITING)
                except StaleTaskWrite as e:
                    raise TaskNotResumable(str(e)) from e
                logger.info(f"Task {task_id} resumed by {expected}; now {task.status.value}")
                return task

    async def resume_by_key(self, user_id: str, correlation_key: str, event: Dict[str, Any]) -> Task:
        task = await self.tasks.get_by_correlation_key(user_id, correlation_key)
        if task is None:
            raise TaskNotFound(f"No task for correlation key {correlation_key}")
        return await self.resume(task.id, event)

    async def cancel(self, task_id: int, user_id: Optional[str] = None) -> Task:
        """
        Cancel a queued, running or waiting task.

        Does not wait for an in-flight step; its result is discarded when it
        arrives. A task another worker finishes first is not cancelled.
        """
        async with self._lock_for(task_id):
            while True:
                task = await self._require(task_id, user_id)
                read_status = task.status
                task.transition(TaskStatus.CANCELLED)
                try:
                    task = await self.tasks.update(task, expected_status=read_status)
                    break
                except StaleTaskWrite:
                    # Re-read; a task that reached a terminal state refuses the transition
                    continue
            logger.info(f"Task {task_id} cancelled")
            return task
