"""
Tool schema registry.

Every capability the orchestrator may invoke is declared here once, as a
pydantic parameter model plus the workflow kinds the tool takes part in.
"""
from datetime import datetime
from types import MappingProxyType
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, StringConstraints


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
TIMEZONE_PATTERN = r"^(UTC|[A-Za-z_]+/[A-Za-z_]+(/[A-Za-z_]+)?)$"

# Stripped and lower-cased before the pattern is checked
EmailAddress = Annotated[
    str,
    StringConstraints(strip_whitespace=True, to_lower=True, pattern=EMAIL_PATTERN),
]


class SendEmailInput(BaseModel):
    """Input for sending an email through Gmail."""
    to: List[EmailAddress] = Field(..., min_length=1, max_length=50, description="Recipient email addresses")
    subject: str = Field(..., min_length=1, max_length=200, description="Email subject")
    html_body: str = Field(..., min_length=1, description="HTML body of the email")
    text_body: Optional[str] = Field(None, description="Plain-text alternative body")
    reply_to_message_id: Optional[str] = Field(None, description="Gmail message id being replied to")
    references: Optional[List[str]] = Field(None, description="Message-ID references for threading")


class ProposeTimesInput(BaseModel):
    """Input for proposing free calendar slots."""
    duration_minutes: int = Field(..., ge=15, le=480, description="Meeting length in minutes")
    window_start: datetime = Field(..., description="Start of the search window (ISO-8601)")
    window_end: datetime = Field(..., description="End of the search window (ISO-8601)")
    timezone: str = Field(..., pattern=TIMEZONE_PATTERN, description="IANA timezone, e.g. America/New_York")
    min_slots: Optional[int] = Field(3, ge=1, le=10, description="Minimum number of slots to propose")
    attendees: Optional[List[EmailAddress]] = Field(None, max_length=20, description="Attendee email addresses")


class CreateEventInput(BaseModel):
    """Input for creating a calendar event."""
    start: datetime = Field(..., description="Event start (ISO-8601)")
    end: datetime = Field(..., description="Event end (ISO-8601)")
    summary: str = Field(..., min_length=1, max_length=200, description="Event title")
    attendees: Optional[List[EmailAddress]] = Field(None, max_length=50, description="Attendee email addresses")
    description: Optional[str] = Field(None, max_length=2000, description="Event description")
    location: Optional[str] = Field(None, max_length=500, description="Event location")
    conference: Optional[bool] = Field(False, description="Attach a video conference link")


class ListEventsInput(BaseModel):
    """Input for listing calendar events."""
    date: Optional[str] = Field(None, description="Single day to list (YYYY-MM-DD)")
    start_date: Optional[str] = Field(None, description="Range start (YYYY-MM-DD)")
    end_date: Optional[str] = Field(None, description="Range end (YYYY-MM-DD)")
    timezone: Optional[str] = Field(None, pattern=TIMEZONE_PATTERN, description="IANA timezone")
    calendar_id: Optional[str] = Field("primary", description="Calendar to read")
    max_results: Optional[int] = Field(50, ge=1, le=250, description="Maximum number of events")


class FindOrCreateContactInput(BaseModel):
    """Input for finding or creating a HubSpot contact."""
    email: EmailAddress = Field(..., description="Contact email address")
    name: Optional[str] = Field(None, max_length=100, description="Contact full name")
    properties: Optional[Dict[str, str]] = Field(None, description="Additional HubSpot contact properties")


class AddNoteInput(BaseModel):
    """Input for adding a note to a HubSpot contact."""
    contact_id: int = Field(..., ge=1, description="HubSpot contact id")
    text: str = Field(..., min_length=1, max_length=2000, description="Note body")
    timestamp: Optional[datetime] = Field(None, description="Note timestamp (ISO-8601)")


class SearchRagInput(BaseModel):
    """Input for semantic search over the user's data."""
    query: str = Field(..., min_length=1, max_length=500, description="The search query")
    search_type: Optional[Literal["general", "person", "temporal", "contact", "scheduling"]] = Field(
        "general", description="Kind of search to run"
    )
    max_results: Optional[int] = Field(10, ge=1, le=20, description="Maximum number of results to return")
    time_range: Optional[Literal["recent", "this_week", "this_month", "this_year"]] = Field(
        "recent", description="Restrict results to a time range"
    )


class ToolSchema(BaseModel):
    """Declared contract for one capability."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    args_schema: Type[BaseModel]
    workflows: Tuple[str, ...] = ()

    def to_function(self) -> Dict[str, Any]:
        """Render the function declaration advertised to the language model."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.args_schema.model_json_schema(),
        }


_SCHEMAS = [
    ToolSchema(
        name="send_email_via_gmail",
        description="Send an email from the user's Gmail account",
        args_schema=SendEmailInput,
        workflows=("schedule_meeting", "send_email"),
    ),
    ToolSchema(
        name="propose_calendar_times",
        description="Find free slots in the user's calendar within a time window",
        args_schema=ProposeTimesInput,
        workflows=("schedule_meeting",),
    ),
    ToolSchema(
        name="create_calendar_event",
        description="Create an event in the user's Google Calendar",
        args_schema=CreateEventInput,
        workflows=("schedule_meeting",),
    ),
    ToolSchema(
        name="list_calendar_events",
        description="List events from the user's Google Calendar",
        args_schema=ListEventsInput,
    ),
    ToolSchema(
        name="hubspot_find_or_create_contact",
        description="Find a HubSpot contact by email, creating it when missing",
        args_schema=FindOrCreateContactInput,
        workflows=("schedule_meeting", "create_contact"),
    ),
    ToolSchema(
        name="hubspot_add_note",
        description="Add a note to a HubSpot contact",
        args_schema=AddNoteInput,
        workflows=("schedule_meeting", "create_contact"),
    ),
    ToolSchema(
        name="search_rag",
        description="Search the user's emails, calendar and CRM data by meaning",
        args_schema=SearchRagInput,
    ),
]

TOOL_SCHEMAS = MappingProxyType({schema.name: schema for schema in _SCHEMAS})


def schema_for(name: str) -> Optional[ToolSchema]:
    """Return the schema registered under `name`, or None."""
    return TOOL_SCHEMAS.get(name)


def available_tools() -> List[ToolSchema]:
    """All registered schemas, in declaration order."""
    return list(TOOL_SCHEMAS.values())
