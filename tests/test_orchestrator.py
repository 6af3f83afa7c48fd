import asyncio

import pytest

from copilot.agent.orchestrator import BUDGET_EXHAUSTED_REPLY
from copilot.agent.schemas import FinalAnswer, TurnFailed, TurnResult
from copilot.core.config import TurnPolicy
from copilot.core.errors import LanguageModelError, PermanentToolError
from copilot.db.models import Instruction, MessageRole, TaskStatus
from copilot.services.llm import LanguageModel
from copilot.services.retrieval import Snippet

from conftest import SLOTS, USER_ID, ScriptedModel, call, final


CONTACT_CALL = dict(email="ann@example.com", name="Ann Lee")
PROPOSE_CALL = dict(
    duration_minutes=30,
    window_start="2025-01-06T09:00:00Z",
    window_end="2025-01-10T17:00:00Z",
    timezone="UTC",
)
EMAIL_CALL = dict(to=["ann@example.com"], subject="Meeting times", html_body="<p>Do any of these work?</p>")


def meeting_turn():
    return [
        call("hubspot_find_or_create_contact", **CONTACT_CALL),
        call("propose_calendar_times", **PROPOSE_CALL),
        call("send_email_via_gmail", **EMAIL_CALL),
        final("I've emailed Ann three possible times."),
    ]


@pytest.mark.asyncio
async def test_meeting_request_runs_as_one_task(make_orchestrator, conversations, engine):
    orchestrator = make_orchestrator(meeting_turn())

    result = await orchestrator.process_message(USER_ID, "Schedule a meeting with Ann next week", "t1")

    assert isinstance(result, TurnResult)
    assert result.ok is True
    assert result.budget_exhausted is False
    assert result.steps_used == 4
    assert [m.tool_name for m in result.tool_messages] == [
        "hubspot_find_or_create_contact",
        "propose_calendar_times",
        "send_email_via_gmail",
    ]
    assert {m.task_id for m in result.tool_messages} == {result.task_id}
    assert result.message.role == MessageRole.ASSISTANT
    assert result.message.task_id == result.task_id

    messages = await conversations.messages_for(USER_ID, "thread:t1")
    assert [m.role for m in messages] == [
        MessageRole.USER,
        MessageRole.TOOL,
        MessageRole.TOOL,
        MessageRole.TOOL,
        MessageRole.ASSISTANT,
    ]

    task = await engine.get_task(result.task_id)
    assert task.kind == "schedule_meeting"
    assert task.status == TaskStatus.WAITING
    assert task.input["thread_id"] == "t1"
    assert task.state["next_wait"] == "meeting_confirmation"
    assert len(await engine.list_tasks(USER_ID)) == 1


@pytest.mark.asyncio
async def test_follow_up_turn_resumes_the_waiting_task(make_orchestrator, engine, targets):
    first = await make_orchestrator(meeting_turn()).process_message(USER_ID, "Schedule a meeting with Ann", "t1")

    second = await make_orchestrator([
        call("create_calendar_event", start=SLOTS[0]["start"], end=SLOTS[0]["end"], summary="Review"),
        call("hubspot_add_note", contact_id=101, text="Meeting booked"),
        final("Booked and noted."),
    ]).process_message(USER_ID, "Ann picked Tuesday at 10, please book it", "t1")

    assert second.task_id == first.task_id
    assert {m.task_id for m in second.tool_messages} == {first.task_id}

    task = await engine.get_task(first.task_id)
    assert task.status == TaskStatus.DONE
    assert task.state["message_id"] == second.message.id - 3
    assert len(targets["create_calendar_event"].calls) == 1


@pytest.mark.asyncio
async def test_next_turn_continues_a_running_task(make_orchestrator, engine):
    first = await make_orchestrator([
        call("hubspot_find_or_create_contact", **CONTACT_CALL),
        final("Found Ann."),
    ]).process_message(USER_ID, "Schedule a meeting with Ann", "t1")

    second = await make_orchestrator([
        call("propose_calendar_times", **PROPOSE_CALL),
        final("Here are three times."),
    ]).process_message(USER_ID, "Now find some times", "t1")

    assert second.task_id == first.task_id
    assert second.tool_messages[0].task_id == first.task_id

    task = await engine.get_task(first.task_id)
    assert task.status == TaskStatus.RUNNING
    assert task.state["cursor"] == 2
    assert len(await engine.list_tasks(USER_ID)) == 1


@pytest.mark.asyncio
async def test_running_task_on_another_thread_is_left_alone(make_orchestrator, engine):
    first = await make_orchestrator([
        call("hubspot_find_or_create_contact", **CONTACT_CALL),
        final("Found Ann."),
    ]).process_message(USER_ID, "Schedule a meeting with Ann", "t1")

    second = await make_orchestrator([
        call("propose_calendar_times", **PROPOSE_CALL),
        final("Here are three times."),
    ]).process_message(USER_ID, "Schedule a meeting with Bob", "t2")

    assert second.task_id != first.task_id
    assert (await engine.get_task(first.task_id)).state["cursor"] == 1


@pytest.mark.asyncio
async def test_repeating_a_finished_step_does_not_resume_the_waiting_task(make_orchestrator, engine):
    first = await make_orchestrator(meeting_turn()).process_message(USER_ID, "Schedule a meeting with Ann", "t1")

    await make_orchestrator([
        call("hubspot_find_or_create_contact", **CONTACT_CALL),
        final("Ann's contact is up to date."),
    ]).process_message(USER_ID, "Check Ann's details", "t1")

    task = await engine.get_task(first.task_id)
    assert task.status == TaskStatus.WAITING
    assert task.state["next_wait"] == "meeting_confirmation"
    assert task.state["cursor"] == 3


@pytest.mark.asyncio
async def test_invalid_arguments_are_fed_back_to_the_model(make_orchestrator, targets):
    model = ScriptedModel([
        call("propose_calendar_times", **{**PROPOSE_CALL, "duration_minutes": 10}),
        call("propose_calendar_times", **PROPOSE_CALL),
        final("Here are some times."),
    ])
    orchestrator = make_orchestrator(model=model)

    result = await orchestrator.process_message(USER_ID, "Find a meeting slot", "t1")

    assert result.ok is True
    assert len(result.tool_messages) == 1
    assert len(targets["propose_calendar_times"].calls) == 1

    feedback = model.contexts[1].exchanges[0]
    assert feedback.call.args["duration_minutes"] == 10
    assert feedback.result == {
        "error": "invalid_arguments",
        "message": "Value for 'duration_minutes' is out of range: 10 (minimum 15)",
    }


@pytest.mark.asyncio
async def test_repeated_invalid_calls_end_the_turn(make_orchestrator, targets):
    bad = call("send_email_via_gmail", to=["ann@example.com"])
    orchestrator = make_orchestrator([bad, bad, bad, bad], policy=TurnPolicy(max_repair_attempts=1))

    result = await orchestrator.process_message(USER_ID, "Email Ann", "t1")

    assert result.budget_exhausted is True
    assert result.steps_used == 2
    assert result.tool_messages == []
    assert result.message.content == BUDGET_EXHAUSTED_REPLY
    assert targets["send_email_via_gmail"].calls == []


@pytest.mark.asyncio
async def test_step_budget_is_enforced(make_orchestrator, conversations):
    orchestrator = make_orchestrator(
        [call("search_rag", query="ann")] * 5,
        policy=TurnPolicy(max_tool_steps=2),
    )

    result = await orchestrator.process_message(USER_ID, "Who is Ann?", "t1")

    assert result.budget_exhausted is True
    assert len(result.tool_messages) == 2
    assert result.message.content.startswith("I wasn't able to complete")

    messages = await conversations.messages_for(USER_ID, "thread:t1")
    assert messages[-1].role == MessageRole.ASSISTANT


@pytest.mark.asyncio
async def test_model_failure_fails_the_turn(make_orchestrator, conversations):
    orchestrator = make_orchestrator([LanguageModelError("quota exceeded")])

    result = await orchestrator.process_message(USER_ID, "Hello", "t1")

    assert isinstance(result, TurnFailed)
    assert result.ok is False
    assert result.reason == "quota exceeded"

    messages = await conversations.messages_for(USER_ID, "thread:t1")
    assert [m.role for m in messages] == [MessageRole.USER]
    assert messages[0].id == result.user_message_id


@pytest.mark.asyncio
async def test_new_thread_is_started_when_none_given(make_orchestrator):
    result = await make_orchestrator([final("Hi!")]).process_message(USER_ID, "Hello")

    assert result.thread_id
    assert result.message.thread_id == result.thread_id
    assert result.steps_used == 1


@pytest.mark.asyncio
async def test_tools_outside_workflows_run_without_a_task(make_orchestrator, engine, retriever):
    retriever.index(USER_ID, Snippet(text="Ann Lee prefers morning meetings", source="gmail", source_id="g-1"))
    orchestrator = make_orchestrator([call("search_rag", query="Ann mornings"), final("Ann likes mornings.")])

    result = await orchestrator.process_message(USER_ID, "What does Ann prefer?", "t1")

    assert result.task_id is None
    assert result.tool_messages[0].task_id is None
    assert result.tool_messages[0].tool_result["count"] == 1
    assert await engine.list_tasks(USER_ID) == []


@pytest.mark.asyncio
async def test_unregistered_capability_reports_an_error(make_orchestrator, dispatcher):
    orchestrator = make_orchestrator([call("list_calendar_events", date="2025-01-07"), final("Calendar is offline.")])

    result = await orchestrator.process_message(USER_ID, "What's on tomorrow?", "t1")

    assert result.tool_messages[0].tool_result["error"] == "not_registered"


@pytest.mark.asyncio
async def test_failed_step_is_reported_and_fails_the_task(make_orchestrator, engine, targets):
    targets["hubspot_find_or_create_contact"].errors = [PermanentToolError("portal locked")]
    orchestrator = make_orchestrator([
        call("hubspot_find_or_create_contact", **CONTACT_CALL),
        final("HubSpot refused the contact."),
    ])

    result = await orchestrator.process_message(USER_ID, "Add Ann as a new client contact", "t1")

    assert result.tool_messages[0].tool_result == {
        "error": "capability_error",
        "kind": "permanent",
        "detail": "portal locked",
    }
    task = await engine.get_task(result.task_id)
    assert task.kind == "create_contact"
    assert task.status == TaskStatus.FAILED


class SlowEchoModel(LanguageModel):
    """Replies to the last user message after a short pause."""

    async def complete(self, context, tools):
        await asyncio.sleep(0.01)
        last = [m for m in context.history if m.role == MessageRole.USER][-1]
        return FinalAnswer(content=f"reply to {last.content}")


@pytest.mark.asyncio
async def test_turns_on_one_thread_are_serialized(make_orchestrator, conversations):
    orchestrator = make_orchestrator(model=SlowEchoModel())

    await asyncio.gather(
        orchestrator.process_message(USER_ID, "first", "t1"),
        orchestrator.process_message(USER_ID, "second", "t1"),
    )

    messages = await conversations.messages_for(USER_ID, "thread:t1")
    assert [m.content for m in messages] == ["first", "reply to first", "second", "reply to second"]


@pytest.mark.asyncio
async def test_enabled_instructions_reach_the_prompt(make_orchestrator, repositories):
    await repositories.instructions.insert(Instruction(user_id=USER_ID, title="Tone", content="Be formal"))
    await repositories.instructions.insert(
        Instruction(user_id=USER_ID, title="Legacy", content="Sign as Bob", enabled=False)
    )
    model = ScriptedModel([final("Understood.")])

    await make_orchestrator(model=model).process_message(USER_ID, "Draft a note", "t1")

    prompt = model.contexts[0].system_prompt
    assert "- Tone: Be formal" in prompt
    assert "Legacy" not in prompt


class BrokenRetriever:
    async def search(self, user_id, query, filters):
        raise RuntimeError("index offline")


@pytest.mark.asyncio
async def test_retrieval_failure_does_not_fail_the_turn(make_orchestrator):
    orchestrator = make_orchestrator([final("Hello!")])
    orchestrator.context_builder.retriever = BrokenRetriever()

    result = await orchestrator.process_message(USER_ID, "Hi there", "t1")

    assert result.ok is True
    assert result.message.content == "Hello!"


@pytest.mark.asyncio
async def test_cancel_task_notes_it_in_the_thread(make_orchestrator, conversations):
    orchestrator = make_orchestrator(meeting_turn())
    result = await orchestrator.process_message(USER_ID, "Schedule a meeting with Ann", "t1")

    task = await orchestrator.cancel_task(USER_ID, result.task_id)

    assert task.status == TaskStatus.CANCELLED
    messages = await conversations.messages_for(USER_ID, "thread:t1")
    assert messages[-1].role == MessageRole.SYSTEM
    assert messages[-1].content == f"Task #{task.id} (schedule_meeting) was cancelled."
    assert messages[-1].task_id == task.id
