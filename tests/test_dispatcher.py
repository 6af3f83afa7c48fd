import httpx
import pytest

from copilot.core.errors import PermanentToolError, TransientToolError
from copilot.tools.dispatcher import CapabilityDispatcher, ToolOutcome, classify_exception

from conftest import FakeTarget, USER_ID


@pytest.mark.asyncio
async def test_dispatch_returns_target_result():
    target = FakeTarget({"message_id": "m-1"})
    dispatcher = CapabilityDispatcher({"send_email_via_gmail": target})

    outcome = await dispatcher.dispatch(USER_ID, "send_email_via_gmail", {"to": ["a@x.com"]})

    assert outcome.ok is True
    assert outcome.data == {"message_id": "m-1"}
    assert target.calls == [{"to": ["a@x.com"]}]


@pytest.mark.asyncio
async def test_dispatch_normalizes_empty_and_scalar_results():
    dispatcher = CapabilityDispatcher({
        "nothing": FakeTarget(None),
        "scalar": FakeTarget("ok"),
    })

    assert (await dispatcher.dispatch(USER_ID, "nothing", {})).data == {}
    assert (await dispatcher.dispatch(USER_ID, "scalar", {})).data == {"value": "ok"}


@pytest.mark.asyncio
async def test_dispatch_passes_outcomes_through():
    failure = ToolOutcome.failure("permanent", "mailbox full")
    dispatcher = CapabilityDispatcher({"send_email_via_gmail": FakeTarget(failure)})

    outcome = await dispatcher.dispatch(USER_ID, "send_email_via_gmail", {})

    assert outcome == failure


@pytest.mark.asyncio
async def test_unregistered_tool_is_a_permanent_failure():
    outcome = await CapabilityDispatcher().dispatch(USER_ID, "hubspot_add_note", {})

    assert outcome.ok is False
    assert outcome.error == "not_registered"
    assert outcome.error_kind == "permanent"
    assert outcome.is_transient is False


@pytest.mark.asyncio
@pytest.mark.parametrize("error,kind", [
    (ConnectionError("reset by peer"), "transient"),
    (TransientToolError("rate limited"), "transient"),
    (PermanentToolError("invalid recipient"), "permanent"),
    (ValueError("bad"), "permanent"),
])
async def test_target_exceptions_are_classified(error, kind):
    dispatcher = CapabilityDispatcher({"send_email_via_gmail": FakeTarget(errors=[error])})

    outcome = await dispatcher.dispatch(USER_ID, "send_email_via_gmail", {})

    assert outcome.ok is False
    assert outcome.error == "capability_error"
    assert outcome.error_kind == kind


def test_http_status_classification():
    request = httpx.Request("POST", "https://api.hubapi.com/crm/v3/objects/notes")

    unavailable = httpx.HTTPStatusError("unavailable", request=request, response=httpx.Response(503, request=request))
    not_found = httpx.HTTPStatusError("not found", request=request, response=httpx.Response(404, request=request))

    assert classify_exception(unavailable) == "transient"
    assert classify_exception(not_found) == "permanent"
    assert classify_exception(httpx.ConnectError("refused")) == "transient"


def test_failed_outcome_result_shape():
    outcome = ToolOutcome.failure("permanent", "invalid recipient")

    assert outcome.as_result() == {"error": "capability_error", "kind": "permanent", "detail": "invalid recipient"}
    assert ToolOutcome.success({"id": 1}).as_result() == {"id": 1}


@pytest.mark.asyncio
async def test_error_data_is_kept_on_the_outcome():
    error = PermanentToolError("contact locked", data={"contact_id": 9})
    dispatcher = CapabilityDispatcher({"hubspot_add_note": FakeTarget(errors=[error])})

    outcome = await dispatcher.dispatch(USER_ID, "hubspot_add_note", {})

    assert outcome.detail == "contact locked"
    assert outcome.data == {"contact_id": 9}
