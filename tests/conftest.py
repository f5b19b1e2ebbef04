"""
Shared fakes for voice session tests.

FakeTransport stands in for the realtime connection: tests push history
snapshots and transport events through the same callback the controller
registers on open().
"""
import asyncio
import json

import pytest

from survey_forms.schema import FieldType, FormField, FormSchema
from voice_agent.forms_client import SubmitResult
from voice_agent.session import SessionController
from voice_agent.transport import HistoryUpdated, RealtimeTransport


class FakeTransport(RealtimeTransport):
    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.opened = False
        self.close_calls = 0
        self.credential = None
        self.instructions = None
        self.tools = None
        self.options = None
        self.on_event = None

    async def open(self, *, credential, instructions, tools, options, on_event):
        self.credential = credential
        self.instructions = instructions
        self.tools = tools
        self.options = options
        self.on_event = on_event
        if self.fail_with is not None:
            raise self.fail_with
        self.opened = True

    async def aclose(self):
        self.close_calls += 1

    def emit(self, event):
        self.on_event(event)

    def history(self, *items):
        self.emit(HistoryUpdated(items=tuple(items)))


class FakeSink:
    def __init__(self, result=None, error=None):
        self.result = result or SubmitResult(success=True, submission_id="sub_1")
        self.error = error
        self.calls = []

    async def submit(self, form_id, token, data, *, idempotency_key=None):
        self.calls.append({
            "form_id": form_id,
            "token": token,
            "data": dict(data),
            "idempotency_key": idempotency_key,
        })
        if self.error is not None:
            raise self.error
        return self.result


class FakeCredentials:
    def __init__(self, value="ek_test_credential", error=None):
        self.value = value
        self.error = error
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


class BlockingCredentials(FakeCredentials):
    """Holds connect() in CONNECTING until release is set."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def fetch(self):
        await self.release.wait()
        return await super().fetch()


def say(role, text):
    return {"type": "message", "role": role, "content": [{"transcript": text}]}


def update_call(key, value, call_id=None):
    return {
        "type": "function_call",
        "name": "update_submission",
        "arguments": json.dumps({"key": key, "value": value}),
        "call_id": call_id or f"call_{key}_{value}",
    }


def events_of(output, event_type):
    events = []
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        event = json.loads(line)
        if event.get("event_type") == event_type:
            events.append(event)
    return events


@pytest.fixture
def schema():
    return FormSchema.from_fields([
        FormField(key="feedback", title="Any feedback?", required=True),
        FormField(key="rating", title="Rate us", type=FieldType.LIKERT, required=True),
    ])


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def credentials():
    return FakeCredentials()


@pytest.fixture
def transports():
    return []


@pytest.fixture
def make_controller(schema, sink, credentials, transports):
    """Factory for controllers wired to the fakes; transports lists every transport created."""

    def factory(transport_error=None, **kwargs):
        def transport_factory():
            transport = FakeTransport(fail_with=transport_error)
            transports.append(transport)
            return transport

        kwargs.setdefault("sink", sink)
        kwargs.setdefault("credentials", credentials)
        kwargs.setdefault("disconnect_delay", 0)
        return SessionController(
            schema,
            form_id="form_1",
            token="abc12345",
            transport_factory=transport_factory,
            **kwargs,
        )

    return factory
