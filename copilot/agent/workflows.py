"""
Workflow definitions: the ordered tool steps each task kind runs through.
"""
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from copilot.core.errors import StepInputError
from copilot.tools.registry import schema_for


StepArgs = Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]


class WorkflowStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool: str
    build_args: StepArgs
    # When set the task waits for an event of this type after the step
    pause_for: Optional[str] = None


class Workflow(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    steps: Tuple[WorkflowStep, ...]
    keywords: Tuple[str, ...] = ()

    @property
    def tools(self) -> List[str]:
        return [step.tool for step in self.steps]

    def step_index(self, tool: str, start: int = 0) -> Optional[int]:
        """Index of the first step at or after `start` that runs `tool`."""
        for index in range(start, len(self.steps)):
            if self.steps[index].tool == tool:
                return index
        return None


def _require(source: Dict[str, Any], key: str) -> Any:
    value = source.get(key)
    if value in (None, "", []):
        raise StepInputError(f"Missing '{key}'")
    return value


def _compact(args: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in args.items() if v is not None}


def _result(state: Dict[str, Any], tool: str) -> Dict[str, Any]:
    return (state.get("results") or {}).get(tool) or {}


def _contact_id(state: Dict[str, Any]) -> Any:
    contact = _result(state, "hubspot_find_or_create_contact")
    contact_id = contact.get("contact_id") or contact.get("id") or state.get("contact_id")
    if contact_id is None:
        raise StepInputError("No contact id available from the contact step")
    return contact_id


def _selected_slot(state: Dict[str, Any]) -> Dict[str, Any]:
    slot = state.get("selected_slot") or {}
    if not slot.get("start") or not slot.get("end"):
        raise StepInputError("No confirmed time slot")
    return slot


# schedule_meeting

def _meeting_contact(input: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    return _compact({"email": _require(input, "contact_email"), "name": input.get("contact_name")})


def _meeting_proposal(input: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "duration_minutes": input.get("duration_minutes", 30),
        "window_start": _require(input, "window_start"),
        "window_end": _require(input, "window_end"),
        "timezone": input.get("timezone", "UTC"),
        "attendees": [_require(input, "contact_email")],
    }


def _meeting_email(input: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    slots = _result(state, "propose_calendar_times").get("slots") or []
    if not slots:
        raise StepInputError("No proposed time slots to offer")

    items = "".join(f"<li>{slot['start']} - {slot['end']}</li>" for slot in slots)
    greeting = input.get("contact_name") or "there"
    return {
        "to": [_require(input, "contact_email")],
        "subject": input.get("subject") or f"Meeting request: {input.get('title', 'Meeting')}",
        "html_body": f"<p>Hi {greeting},</p><p>Would any of these times work for you?</p><ul>{items}</ul>",
    }


def _meeting_event(input: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    slot = _selected_slot(state)
    return _compact({
        "start": slot["start"],
        "end": slot["end"],
        "summary": input.get("title", "Meeting"),
        "attendees": [_require(input, "contact_email")],
        "description": input.get("description"),
        "conference": input.get("conference"),
    })


def _meeting_note(input: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    slot = _selected_slot(state)
    return {
        "contact_id": _contact_id(state),
        "text": f"Meeting scheduled: {input.get('title', 'Meeting')} on {slot['start']}",
    }


# send_email

def _plain_email(input: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    to = _require(input, "to")
    return _compact({
        "to": to if isinstance(to, list) else [to],
        "subject": _require(input, "subject"),
        "html_body": input.get("html_body") or _require(input, "body"),
        "text_body": input.get("text_body"),
        "reply_to_message_id": input.get("reply_to_message_id"),
    })


# create_contact

def _new_contact(input: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    return _compact({
        "email": _require(input, "email"),
        "name": input.get("name"),
        "properties": input.get("properties"),
    })


def _contact_note(input: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "contact_id": _contact_id(state),
        "text": input.get("note") or f"Contact {input.get('name') or input.get('email')} added by the assistant",
    }


WORKFLOWS = {
    workflow.kind: workflow
    for workflow in [
        Workflow(
            kind="schedule_meeting",
            steps=(
                WorkflowStep(tool="hubspot_find_or_create_contact", build_args=_meeting_contact),
                WorkflowStep(tool="propose_calendar_times", build_args=_meeting_proposal),
                WorkflowStep(
                    tool="send_email_via_gmail",
                    build_args=_meeting_email,
                    pause_for="meeting_confirmation",
                ),
                WorkflowStep(tool="create_calendar_event", build_args=_meeting_event),
                WorkflowStep(tool="hubspot_add_note", build_args=_meeting_note),
            ),
            keywords=("meeting", "schedule", "calendar", "appointment"),
        ),
        Workflow(
            kind="send_email",
            steps=(
                WorkflowStep(tool="send_email_via_gmail", build_args=_plain_email, pause_for="gmail_reply"),
            ),
            keywords=("email", "send", "reply", "message"),
        ),
        Workflow(
            kind="create_contact",
            steps=(
                WorkflowStep(tool="hubspot_find_or_create_contact", build_args=_new_contact),
                WorkflowStep(tool="hubspot_add_note", build_args=_contact_note),
            ),
            keywords=("contact", "person", "client", "customer"),
        ),
    ]
}


def get_workflow(kind: str) -> Optional[Workflow]:
    return WORKFLOWS.get(kind)


def _keyword_hits(workflow: Workflow, text: str) -> int:
    return sum(1 for keyword in workflow.keywords if re.search(rf"\b{keyword}", text))


def infer_kind(tool_name: str, text: str = "") -> Optional[str]:
    """
    Pick the workflow kind a tool call belongs to.

    Tools outside every workflow return None. Among the workflows that use
    the tool, the one whose keywords best match `text` wins; ties go to the
    first declared.
    """
    schema = schema_for(tool_name)
    candidates = [WORKFLOWS[k] for k in (schema.workflows if schema else ()) if k in WORKFLOWS]
    if not candidates:
        return None

    text = (text or "").lower()
    best = max(candidates, key=lambda w: (_keyword_hits(w, text), -candidates.index(w)))
    return best.kind
