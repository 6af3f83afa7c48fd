import pytest

from copilot.tools.registry import ProposeTimesInput, SendEmailInput
from copilot.tools.validation import ArgsInvalid, ArgsValid, repair_args, validate


def test_missing_required_field_is_reported_by_name():
    """An email with recipients but no subject or body is rejected."""
    result = validate("send_email_via_gmail", {"to": ["a@x.com"]})

    assert isinstance(result, ArgsInvalid)
    assert result.ok is False
    assert result.message == "Missing required field 'subject'"


def test_out_of_range_value_names_the_bound():
    result = validate("propose_calendar_times", {
        "duration_minutes": 10,
        "window_start": "2025-01-06T09:00:00Z",
        "window_end": "2025-01-10T17:00:00Z",
        "timezone": "UTC",
    })

    assert result.ok is False
    assert result.message == "Value for 'duration_minutes' is out of range: 10 (minimum 15)"


def test_maximum_bound_is_reported():
    result = validate("search_rag", {"query": "ann", "max_results": 50})

    assert result.ok is False
    assert result.message == "Value for 'max_results' is out of range: 50 (maximum 20)"


def test_enum_violation_lists_allowed_values():
    result = validate("search_rag", {"query": "ann", "search_type": "bogus"})

    assert result.ok is False
    assert result.message.startswith("Invalid value for 'search_type': 'bogus'")
    assert "scheduling" in result.message


def test_string_length_violation():
    result = validate("send_email_via_gmail", {"to": ["a@x.com"], "subject": "", "html_body": "<p>x</p>"})

    assert result.ok is False
    assert result.message == "Length of 'subject' is out of range: 0 (minimum 1)"


def test_bad_email_format():
    result = validate("hubspot_find_or_create_contact", {"email": "not-an-email"})

    assert result.ok is False
    assert result.message.startswith("Invalid format for 'email'")


def test_valid_arguments_are_normalized():
    result = validate("send_email_via_gmail", {
        "to": ["  Ann@Example.COM "],
        "subject": "Hello",
        "html_body": "<p>Hi</p>",
    })

    assert isinstance(result, ArgsValid)
    assert result.args == {"to": ["ann@example.com"], "subject": "Hello", "html_body": "<p>Hi</p>"}


def test_unknown_fields_are_dropped():
    result = validate("hubspot_find_or_create_contact", {"email": "ann@example.com", "favourite_colour": "blue"})

    assert result.ok is True
    assert result.args == {"email": "ann@example.com"}


def test_unknown_tool_passes_arguments_through():
    result = validate("mystery_tool", {"anything": 1})

    assert result.ok is True
    assert result.args == {"anything": 1}


def test_unknown_tool_keeps_non_object_arguments():
    assert validate("mystery_tool", ["a", "b"]).args == ["a", "b"]
    assert validate("mystery_tool", "raw text").args == "raw text"


def test_non_object_arguments_are_rejected():
    result = validate("search_rag", ["ann"])

    assert result.ok is False
    assert result.message == "Arguments must be a JSON object"


def test_json_string_arguments_are_decoded():
    result = validate("search_rag", '{"query": "portfolio review"}')

    assert result.ok is True
    assert result.args == {"query": "portfolio review"}


def test_numeral_strings_are_repaired():
    result = validate("propose_calendar_times", {
        "duration_minutes": "45",
        "window_start": "2025-01-06T09:00:00Z",
        "window_end": "2025-01-10T17:00:00Z",
        "timezone": "America/New_York",
        "min_slots": "2",
    })

    assert result.ok is True
    assert result.args["duration_minutes"] == 45
    assert result.args["min_slots"] == 2
    assert result.args["window_start"].startswith("2025-01-06T09:00:00")


def test_comma_separated_recipients_become_a_list():
    result = validate("send_email_via_gmail", {
        "to": "ann@example.com, Bob@Example.com",
        "subject": "Hello",
        "html_body": "<p>Hi</p>",
    })

    assert result.ok is True
    assert result.args["to"] == ["ann@example.com", "bob@example.com"]


@pytest.mark.parametrize("raw,expected", [("yes", True), ("false", False), ("TRUE", True)])
def test_boolean_strings_are_repaired(raw, expected):
    result = validate("create_calendar_event", {
        "start": "2025-01-07T10:00:00Z",
        "end": "2025-01-07T10:30:00Z",
        "summary": "Review",
        "conference": raw,
    })

    assert result.ok is True
    assert result.args["conference"] is expected


def test_repair_args_reports_changed_fields():
    repaired, changed = repair_args(ProposeTimesInput, {"duration_minutes": "30", "timezone": "UTC"})

    assert repaired == {"duration_minutes": 30, "timezone": "UTC"}
    assert changed == ["duration_minutes"]


def test_repair_args_leaves_non_numeric_strings_alone():
    repaired, changed = repair_args(SendEmailInput, {"subject": "42 reasons"})

    assert repaired == {"subject": "42 reasons"}
    assert changed == []


def test_validation_is_deterministic():
    args = {"to": "a@x.com", "subject": "Hi"}

    first = validate("send_email_via_gmail", args)
    second = validate("send_email_via_gmail", args)

    assert first == second
    assert args == {"to": "a@x.com", "subject": "Hi"}
