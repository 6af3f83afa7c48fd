import pytest
from pydantic import ValidationError

from copilot.tools.registry import TOOL_SCHEMAS, available_tools, schema_for


def test_all_capabilities_are_registered():
    assert set(TOOL_SCHEMAS) == {
        "send_email_via_gmail",
        "propose_calendar_times",
        "create_calendar_event",
        "list_calendar_events",
        "hubspot_find_or_create_contact",
        "hubspot_add_note",
        "search_rag",
    }
    assert [schema.name for schema in available_tools()][0] == "send_email_via_gmail"


def test_function_declaration_lists_required_fields():
    declaration = schema_for("send_email_via_gmail").to_function()

    assert declaration["name"] == "send_email_via_gmail"
    assert declaration["description"]
    assert set(declaration["parameters"]["required"]) == {"to", "subject", "html_body"}
    assert "reply_to_message_id" in declaration["parameters"]["properties"]


def test_schema_for_unknown_tool():
    assert schema_for("delete_everything") is None


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        TOOL_SCHEMAS["send_email_via_gmail"] = None


def test_schemas_are_frozen():
    schema = schema_for("search_rag")

    with pytest.raises(ValidationError):
        schema.name = "other"


def test_workflow_membership():
    assert schema_for("create_calendar_event").workflows == ("schedule_meeting",)
    assert "create_contact" in schema_for("hubspot_add_note").workflows
    assert schema_for("search_rag").workflows == ()
