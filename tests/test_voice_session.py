"""
Tests for the conversation session controller.

Covers the lifecycle (idle -> connecting -> connected -> idle), the single
event channel shared by history snapshots and direct tool calls, and the
submission flow through the sink.
"""
import asyncio

import pytest

from conftest import BlockingCredentials, FakeCredentials, FakeSink, events_of, say, update_call
from voice_agent.errors import (
    CredentialError,
    ErrorCategory,
    ErrorHandler,
    SessionStateError,
    TransportOpenError,
)
from voice_agent.forms_client import SubmitResult
from voice_agent.session import SessionState
from voice_agent.tools import SUBMISSION_SUCCESS
from voice_agent.transport import AnswerProposed, TransportClosed, TransportFailed


async def settle(controller, state=SessionState.IDLE):
    """Let scheduled teardown tasks run."""
    for _ in range(50):
        if controller.state == state:
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_connect_opens_transport_with_compiled_instructions(make_controller, transports, credentials):
    controller = make_controller()

    assert await controller.connect() is True

    assert controller.state == SessionState.CONNECTED
    assert controller.is_connected
    assert credentials.calls == 1
    transport = transports[0]
    assert transport.opened
    assert transport.credential == "ek_test_credential"
    assert "Key: feedback" in transport.instructions
    assert transport.options.vad_threshold == 0.5
    assert transport.options.vad_prefix_padding_ms == 300
    assert transport.options.vad_silence_duration_ms == 500

    await controller.disconnect()


@pytest.mark.asyncio
async def test_connect_emits_state_changes(make_controller, capsys):
    controller = make_controller()
    await controller.connect()
    await controller.disconnect()

    changes = events_of(capsys.readouterr().out, "voice.session.state_changed")
    assert [(e["from_state"], e["to_state"]) for e in changes] == [
        ("idle", "connecting"),
        ("connecting", "connected"),
        ("connected", "idle"),
    ]
    assert all(e["correlation_id"] == "form_1" for e in changes)


@pytest.mark.asyncio
async def test_connect_requires_idle(make_controller):
    controller = make_controller()
    await controller.connect()

    with pytest.raises(SessionStateError):
        await controller.connect()

    await controller.disconnect()


@pytest.mark.asyncio
async def test_credential_failure_returns_to_idle(make_controller, transports):
    controller = make_controller(credentials=FakeCredentials(error=CredentialError("HTTP 500")))

    assert await controller.connect() is False

    assert controller.state == SessionState.IDLE
    assert transports == []
    assert controller.last_error.startswith(
        ErrorHandler.user_message(ErrorCategory.CREDENTIAL_FAILED)
    )
    assert "HTTP 500" in controller.last_error


@pytest.mark.asyncio
async def test_transport_failure_releases_resources(make_controller, transports):
    controller = make_controller(transport_error=TransportOpenError("handshake refused"))

    assert await controller.connect() is False

    assert controller.state == SessionState.IDLE
    assert transports[0].close_calls == 1
    assert controller.last_error.startswith(
        ErrorHandler.user_message(ErrorCategory.TRANSPORT_FAILED)
    )

    # No automatic retry; a new connect starts from scratch
    assert len(transports) == 1


@pytest.mark.asyncio
async def test_connect_clears_previous_error(make_controller, credentials):
    credentials.error = CredentialError("HTTP 500")
    controller = make_controller()
    await controller.connect()
    assert controller.last_error

    credentials.error = None
    assert await controller.connect() is True
    assert controller.last_error is None

    await controller.disconnect()


@pytest.mark.asyncio
async def test_end_to_end_feedback_and_rating(make_controller, transports, sink):
    controller = make_controller()
    await controller.connect()
    transport = transports[0]

    transport.history(
        say("assistant", "Hi! Ready to get started?"),
        say("user", "Yes"),
        say("assistant", "Any feedback?"),
        say("user", "The team is great"),
        update_call("feedback", "The team is great"),
        say("assistant", "Got it! How would you rate us from 1 to 5?"),
        say("user", "Four"),
        update_call("rating", "4"),
    )
    await controller.drain()

    assert controller.current_submission() == {"feedback": "The team is great", "rating": 4}
    assert [m.role for m in controller.messages][:2] == ["assistant", "user"]

    result = await transport.tools.submit_form()

    assert result == SUBMISSION_SUCCESS
    assert sink.calls == [{
        "form_id": "form_1",
        "token": "abc12345",
        "data": {"feedback": "The team is great", "rating": 4},
        "idempotency_key": controller.instance_id,
    }]

    await settle(controller)
    assert controller.state == SessionState.IDLE
    assert transport.close_calls == 1


@pytest.mark.asyncio
async def test_history_snapshot_replaces_transcript(make_controller, transports):
    controller = make_controller()
    await controller.connect()
    transport = transports[0]

    transport.history(say("assistant", "Hi"), say("user", "Hello"))
    await controller.drain()
    transport.history(say("assistant", "Hi"))
    await controller.drain()

    assert [m.content for m in controller.messages] == ["Hi"]

    await controller.disconnect()


@pytest.mark.asyncio
async def test_replayed_history_applies_each_answer_once(make_controller, transports, capsys):
    controller = make_controller()
    await controller.connect()
    transport = transports[0]

    first = (update_call("feedback", "Great"),)
    transport.history(*first)
    transport.history(*first, say("assistant", "Thanks!"))
    transport.history(*first, say("assistant", "Thanks!"), update_call("rating", "5"))
    await controller.drain()

    assert controller.current_submission() == {"feedback": "Great", "rating": 5}
    recorded = events_of(capsys.readouterr().out, "voice.answer.recorded")
    assert [e["key"] for e in recorded] == ["feedback", "rating"]

    await controller.disconnect()


@pytest.mark.asyncio
async def test_tool_and_history_paths_converge(make_controller, transports, capsys):
    controller = make_controller()
    await controller.connect()
    transport = transports[0]

    assert await transport.tools.update_submission("rating", "4") == ""
    transport.history(update_call("rating", "4"))
    await controller.drain()

    assert controller.current_submission() == {"rating": 4}
    recorded = events_of(capsys.readouterr().out, "voice.answer.recorded")
    assert len(recorded) == 1
    assert recorded[0]["source"] == "tool"

    await controller.disconnect()


@pytest.mark.asyncio
async def test_corrected_answer_wins(make_controller, transports):
    controller = make_controller()
    await controller.connect()
    transport = transports[0]

    transport.history(update_call("rating", "4"))
    transport.history(update_call("rating", "4"), update_call("rating", "2"))
    await controller.drain()

    assert controller.current_submission() == {"rating": 2}

    await controller.disconnect()


@pytest.mark.asyncio
async def test_unknown_key_rejected(make_controller, transports, capsys):
    controller = make_controller()
    await controller.connect()

    controller.post(AnswerProposed(key="favourite_colour", value="blue"))
    await controller.drain()

    assert controller.current_submission() == {}
    assert events_of(capsys.readouterr().out, "voice.answer.rejected")

    await controller.disconnect()


@pytest.mark.asyncio
async def test_malformed_history_call_dropped(make_controller, transports, capsys):
    controller = make_controller()
    await controller.connect()

    transports[0].history(
        {"type": "function_call", "name": "update_submission", "arguments": "{oops", "call_id": "x"},
        update_call("feedback", "Fine"),
    )
    await controller.drain()

    assert controller.current_submission() == {"feedback": "Fine"}
    assert events_of(capsys.readouterr().out, "voice.tool.arguments_invalid")

    await controller.disconnect()


@pytest.mark.asyncio
async def test_replayed_malformed_call_reported_once(make_controller, transports, capsys):
    controller = make_controller()
    await controller.connect()
    broken = {"type": "function_call", "name": "update_submission", "arguments": "{oops", "call_id": "x"}

    transports[0].history(broken)
    transports[0].history(broken, say("user", "It was fine"))
    transports[0].history(broken, say("user", "It was fine"), update_call("feedback", "Fine"))
    await controller.drain()

    assert controller.current_submission() == {"feedback": "Fine"}
    assert len(events_of(capsys.readouterr().out, "voice.tool.arguments_invalid")) == 1

    await controller.disconnect()


@pytest.mark.asyncio
async def test_replayed_unknown_key_reported_once(make_controller, transports, capsys):
    controller = make_controller()
    await controller.connect()
    stray = update_call("favourite_colour", "blue")

    controller.post(AnswerProposed(key="favourite_colour", value="blue"))
    transports[0].history(stray)
    transports[0].history(stray, say("user", "Blue"))
    await controller.drain()

    assert controller.current_submission() == {}
    assert len(events_of(capsys.readouterr().out, "voice.answer.rejected")) == 1

    await controller.disconnect()


@pytest.mark.asyncio
async def test_submit_failure_keeps_session_connected(make_controller, transports):
    sink = FakeSink(result=SubmitResult(success=False, error="Database unavailable"))
    controller = make_controller(sink=sink)
    await controller.connect()
    transport = transports[0]
    transport.history(update_call("feedback", "Great"), update_call("rating", "3"))
    await controller.drain()

    result = await transport.tools.submit_form()

    assert result == (
        "SUBMISSION_FAILED: Database unavailable. Please ask user to use the manual form."
    )
    assert controller.state == SessionState.CONNECTED
    assert controller.current_submission() == {"feedback": "Great", "rating": 3}
    assert len(sink.calls) == 1

    await asyncio.sleep(0.02)
    assert controller.state == SessionState.CONNECTED

    await controller.disconnect()


@pytest.mark.asyncio
async def test_sink_exception_reported_as_submission_failure(make_controller, transports, capsys):
    controller = make_controller(sink=FakeSink(error=ConnectionError("connection reset")))
    await controller.connect()

    result = await transports[0].tools.submit_form()

    assert result.startswith("SUBMISSION_FAILED: connection reset")
    assert controller.is_connected
    assert events_of(capsys.readouterr().out, "voice.submission.failed")

    await controller.disconnect()


@pytest.mark.asyncio
async def test_validate_policy_blocks_incomplete_submission(make_controller, transports, sink):
    controller = make_controller(validate_on_submit=True)
    await controller.connect()
    tools = transports[0].tools
    await tools.update_submission("rating", "4")

    validation = await tools.validate_submission()
    result = await tools.submit_form()

    expected = 'VALIDATION_FAILED: Missing required questions: "Any feedback?". Please ask for these answers.'
    assert validation == expected
    assert result == expected
    assert sink.calls == []
    assert controller.is_connected
    assert "validate_submission" in transports[0].instructions

    await controller.disconnect()


@pytest.mark.asyncio
async def test_validation_skipped_by_default(make_controller, transports, sink):
    controller = make_controller()
    await controller.connect()

    assert await transports[0].tools.validate_submission() == (
        "VALIDATION_SUCCESS: Proceeding without validation."
    )

    # Incomplete submissions still go to the sink, which decides
    await transports[0].tools.submit_form()
    assert sink.calls[0]["data"] == {}

    await settle(controller)


@pytest.mark.asyncio
async def test_transport_error_keeps_state(make_controller, transports, capsys):
    controller = make_controller()
    await controller.connect()
    errors = []
    controller.observe_errors(errors.append)

    transports[0].emit(TransportFailed(message="rate limited"))
    await controller.drain()

    assert controller.state == SessionState.CONNECTED
    assert controller.last_error == "rate limited"
    assert errors == ["rate limited"]
    assert events_of(capsys.readouterr().out, "voice.transport.error")

    await controller.disconnect()


@pytest.mark.asyncio
async def test_transport_close_tears_session_down(make_controller, transports):
    controller = make_controller()
    await controller.connect()
    transports[0].history(update_call("feedback", "Great"))

    transports[0].emit(TransportClosed(reason="participant_left"))
    await settle(controller)

    assert controller.state == SessionState.IDLE
    assert transports[0].close_calls == 1
    assert controller.messages == []
    assert controller.current_submission() == {"feedback": "Great"}


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(make_controller, transports, capsys):
    controller = make_controller()
    await controller.disconnect()
    assert controller.state == SessionState.IDLE
    assert events_of(capsys.readouterr().out, "voice.session.state_changed") == []

    await controller.connect()
    await controller.disconnect()
    await controller.disconnect()

    assert controller.state == SessionState.IDLE
    assert transports[0].close_calls == 1


@pytest.mark.asyncio
async def test_disconnect_clears_ledger_but_keeps_submission(make_controller, transports, capsys):
    controller = make_controller()
    await controller.connect()
    transports[0].history(update_call("feedback", "Great"))
    await controller.drain()
    assert controller.submission.ledger_size == 1

    await controller.disconnect()

    assert controller.submission.ledger_size == 0
    assert controller.current_submission() == {"feedback": "Great"}

    # The next session starts with a fresh ledger: a replayed call applies again
    await controller.connect()
    transports[1].history(update_call("feedback", "Great"))
    await controller.drain()

    assert controller.submission.ledger_size == 1
    recorded = events_of(capsys.readouterr().out, "voice.answer.recorded")
    assert len(recorded) == 2
    assert recorded[0]["session_id"] != recorded[1]["session_id"]

    await controller.disconnect()


@pytest.mark.asyncio
async def test_disconnect_while_connecting(make_controller, transports):
    credentials = BlockingCredentials()
    controller = make_controller(credentials=credentials)

    connecting = asyncio.create_task(controller.connect())
    await asyncio.sleep(0)
    assert controller.state == SessionState.CONNECTING

    await controller.disconnect()
    credentials.release.set()

    assert await connecting is False
    assert controller.state == SessionState.IDLE
    assert transports == []


@pytest.mark.asyncio
async def test_post_without_session_is_dropped(make_controller):
    controller = make_controller()

    controller.post(AnswerProposed(key="feedback", value="Great"))
    await controller.drain()

    assert controller.current_submission() == {}


@pytest.mark.asyncio
async def test_observers_see_every_state(make_controller):
    controller = make_controller()
    seen = []
    unsubscribe = controller.observe(seen.append)

    await controller.connect()
    await controller.disconnect()
    unsubscribe()
    await controller.connect()

    assert seen == [SessionState.CONNECTING, SessionState.CONNECTED, SessionState.IDLE]

    await controller.disconnect()
