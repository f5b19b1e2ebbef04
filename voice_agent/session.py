"""
Conversation session controller.

Owns the lifecycle of one realtime voice session for one form-filling
instance:

    IDLE -> CONNECTING -> CONNECTED -> IDLE

All session-scoped state (transport, event queue, dispatcher task, live
transcript) lives on a VoiceSession created by connect() and released by
disconnect(); nothing is module-level, so several form-filling instances can
run side by side in one worker.

Event handling is a single ordered channel: the transport's history snapshots,
errors and close notifications, and the update_submission tool's proposals are
all queued and applied by one dispatcher task. Answers from both routes go
through SubmissionState.apply_answer and its ledger (first writer wins).
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Protocol

from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter, Severity
from survey_forms.schema import FormSchema
from survey_forms.validation import validate_form

from .errors import (
    ErrorHandler,
    IncompleteSubmissionError,
    SessionStateError,
    SubmissionError,
    ToolArgumentsError,
    redact,
)
from .history import ConversationMessage, extract_update_calls, project_messages
from .instructions import compile_instructions, get_prompt_version
from .submission import Submission, SubmissionState
from .tools import SurveyTools
from .transport import (
    AnswerProposed,
    HistoryUpdated,
    RealtimeModelOptions,
    RealtimeTransport,
    SessionEvent,
    TransportClosed,
    TransportFailed,
)

if TYPE_CHECKING:
    from .forms_client import SubmitResult


logger = get_logger(Component.SESSION_CONTROLLER)


class SessionState(str, Enum):
    """Voice session states."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SubmissionSink(Protocol):
    async def submit(
        self,
        form_id: str,
        token: str,
        data: Mapping[str, Any],
        *,
        idempotency_key: Optional[str] = None,
    ) -> "SubmitResult": ...


class CredentialProvider(Protocol):
    async def fetch(self) -> str: ...


StateObserver = Callable[[SessionState], Any]
ErrorObserver = Callable[[Optional[str]], Any]


@dataclass
class VoiceSession:
    """One connected realtime session and everything scoped to it."""

    session_id: str
    transport: Optional[RealtimeTransport] = None
    events: asyncio.Queue = field(default_factory=asyncio.Queue)
    messages: list[ConversationMessage] = field(default_factory=list)
    dispatcher: Optional[asyncio.Task] = None
    connected_at: Optional[datetime] = None
    # invalid or rejected calls already reported; history replays them
    reported: set = field(default_factory=set)


def _new_session_id() -> str:
    return f"vs_{uuid.uuid4().hex[:16]}"


class SessionController:
    """Drives one realtime voice session for one form."""

    def __init__(
        self,
        schema: FormSchema,
        *,
        form_id: str,
        token: str,
        sink: SubmissionSink,
        credentials: CredentialProvider,
        transport_factory: Callable[[], RealtimeTransport],
        options: Optional[RealtimeModelOptions] = None,
        validate_on_submit: bool = False,
        disconnect_delay: float = 2.0,
        prompt_name: Optional[str] = None,
        submission: Optional[SubmissionState] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        self.schema = schema
        self.form_id = form_id
        self._token = token
        self._sink = sink
        self._credentials = credentials
        self._transport_factory = transport_factory
        self._options = options or RealtimeModelOptions()
        self._validate_on_submit = validate_on_submit
        self._disconnect_delay = disconnect_delay
        self._prompt_name = prompt_name

        # Stable across reconnects; doubles as the sink idempotency key
        self.instance_id = f"vf_{uuid.uuid4().hex[:16]}"
        self.submission = submission or SubmissionState(session_id=self.instance_id)
        self.emitter = emitter or EventEmitter(ObsComponent.VOICE_AGENT)

        self._state = SessionState.IDLE
        self._session: Optional[VoiceSession] = None
        self._last_error: Optional[str] = None
        self._disconnect_task: Optional[asyncio.Task] = None
        self._observers: list[StateObserver] = []
        self._error_observers: list[ErrorObserver] = []

    # --- Read projection ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == SessionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self._state == SessionState.CONNECTING

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def session_id(self) -> str:
        """Active session id, or the instance id while idle."""
        return self._session.session_id if self._session else self.instance_id

    @property
    def messages(self) -> list[ConversationMessage]:
        return list(self._session.messages) if self._session else []

    def current_submission(self) -> Submission:
        return self.submission.current_submission()

    def observe(self, observer: StateObserver) -> Callable[[], None]:
        """Register a callback for state changes."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def observe_errors(self, observer: ErrorObserver) -> Callable[[], None]:
        """Register a callback for last_error changes while the state stays the same."""
        self._error_observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._error_observers:
                self._error_observers.remove(observer)

        return unsubscribe

    # --- Lifecycle ---

    async def connect(self) -> bool:
        """
        Open a realtime session.

        Only valid from IDLE; callers gate the connect action while a session
        is connecting or connected. Returns False (with last_error set) when
        the credential fetch or the transport handshake fails. No retries.
        """
        if self._state != SessionState.IDLE:
            raise SessionStateError(
                f"connect() requires state idle, current state is {self._state.value}"
            )

        session = VoiceSession(session_id=_new_session_id())
        self._session = session
        self._last_error = None
        self.submission.clear_ledger()
        self._set_state(SessionState.CONNECTING)
        log = logger.with_session(session.session_id)

        try:
            log.debug("Fetching realtime credential")
            credential = await self._credentials.fetch()
            if self._session is not session:
                await self._release(session)
                return False

            instructions = compile_instructions(
                self.schema,
                prompt_name=self._prompt_name,
                validate_before_submit=self._validate_on_submit,
            )
            tools = SurveyTools(
                self,
                validate_on_submit=self._validate_on_submit,
                disconnect_delay=self._disconnect_delay,
            )
            log.info(
                "Opening realtime transport",
                form_id=self.form_id,
                fields=len(self.schema),
                model=self._options.model,
                prompt_version=get_prompt_version(self._prompt_name),
            )
            session.transport = self._transport_factory()
            session.dispatcher = asyncio.create_task(self._dispatch_loop(session))
            await session.transport.open(
                credential=credential,
                instructions=instructions,
                tools=tools,
                options=self._options,
                on_event=session.events.put_nowait,
            )
        except Exception as e:
            await self._release(session)
            if self._session is not session:
                # disconnect() ran while connecting and already went idle
                return False
            _, message = ErrorHandler.describe(e, session_id=session.session_id)
            self._session = None
            self._last_error = message
            self._set_state(SessionState.IDLE)
            return False

        if self._session is not session:
            await self._release(session)
            return False

        session.connected_at = datetime.now(timezone.utc)
        self._set_state(SessionState.CONNECTED)
        return True

    async def disconnect(self) -> None:
        """
        Tear the session down and return to IDLE.

        Safe to call repeatedly and with no active transport. Clears the
        transcript and the ledger; the submission itself is kept so the
        respondent can finish the form manually.
        """
        session = self._session
        self._session = None
        self._cancel_pending_disconnect()
        self.submission.clear_ledger()

        if session is not None:
            await self._release(session)
            logger.with_session(session.session_id).info("Voice session disconnected")

        if self._state != SessionState.IDLE:
            self._set_state(SessionState.IDLE)

    def schedule_disconnect(self, delay: float) -> None:
        """Disconnect after delay seconds (lets a final spoken reply finish)."""
        self._cancel_pending_disconnect()
        self._disconnect_task = asyncio.create_task(self._disconnect_later(delay))

    async def _disconnect_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.disconnect()

    def _cancel_pending_disconnect(self) -> None:
        task = self._disconnect_task
        self._disconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _release(self, session: VoiceSession) -> None:
        """Stop the dispatcher and close the transport of one session."""
        dispatcher = session.dispatcher
        session.dispatcher = None
        if dispatcher is not None and dispatcher is not asyncio.current_task():
            dispatcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await dispatcher

        # Release anyone waiting in drain()
        while not session.events.empty():
            session.events.get_nowait()
            session.events.task_done()

        transport = session.transport
        session.transport = None
        if transport is not None:
            try:
                await transport.aclose()
            except Exception as e:
                logger.with_session(session.session_id).warning(
                    "Error while closing realtime transport",
                    error=str(e),
                    error_type=type(e).__name__,
                )
        session.messages = []

    def _set_state(self, new_state: SessionState) -> None:
        old_state = self._state
        self._state = new_state
        logger.with_session(self.session_id).info(
            "Session state changed",
            from_state=old_state.value,
            to_state=new_state.value,
        )
        self.emitter.session_state_changed(
            self.session_id,
            from_state=old_state.value,
            to_state=new_state.value,
            correlation_id=self.form_id,
        )
        for observer in list(self._observers):
            try:
                observer(new_state)
            except Exception as e:
                logger.warning(
                    "State observer failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def _notify_error(self) -> None:
        for observer in list(self._error_observers):
            try:
                observer(self._last_error)
            except Exception as e:
                logger.warning(
                    "Error observer failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

    # --- Event channel ---

    def post(self, event: SessionEvent) -> None:
        """Queue an event for the active session's dispatcher."""
        session = self._session
        if session is None:
            logger.debug("Event dropped, no active session", event_type=type(event).__name__)
            return
        session.events.put_nowait(event)

    async def drain(self) -> None:
        """Wait until every queued event of the active session is dispatched."""
        session = self._session
        if session is not None:
            await session.events.join()

    async def _dispatch_loop(self, session: VoiceSession) -> None:
        log = logger.with_session(session.session_id)
        while True:
            event = await session.events.get()
            try:
                self._dispatch(session, event)
            except Exception:
                # One bad event must not stop the session
                log.exception("Failed to dispatch session event", event_type=type(event).__name__)
            finally:
                session.events.task_done()

    def _dispatch(self, session: VoiceSession, event: SessionEvent) -> None:
        log = logger.with_session(session.session_id)

        if isinstance(event, HistoryUpdated):
            session.messages = project_messages(event.items)
            if session.messages:
                last = session.messages[-1]
                log.debug_pii("Transcript updated", role=last.role, content=last.content)

            def on_invalid(item: Mapping[str, Any], error: ToolArgumentsError) -> None:
                marker = ("invalid", item.get("call_id"), str(item.get("arguments")))
                if marker in session.reported:
                    return
                session.reported.add(marker)
                log.warning(
                    "Dropping update_submission call with invalid arguments",
                    call_id=item.get("call_id"),
                    error=str(error),
                )
                self.emitter.emit(
                    "voice.tool.arguments_invalid",
                    session.session_id,
                    severity=Severity.WARN,
                    correlation_id=self.form_id,
                    tool=item.get("name"),
                    error=str(error),
                )

            for call in extract_update_calls(event.items, on_invalid=on_invalid):
                self._record_answer(session, call.key, call.value, source="history")

        elif isinstance(event, AnswerProposed):
            self._record_answer(session, event.key, event.value, source=event.source)

        elif isinstance(event, TransportFailed):
            self._last_error = event.message
            self._notify_error()
            log.warning("Realtime transport error", error=redact(event.message))
            self.emitter.emit(
                "voice.transport.error",
                session.session_id,
                severity=Severity.WARN,
                correlation_id=self.form_id,
                error=redact(event.message),
            )

        elif isinstance(event, TransportClosed):
            log.info("Realtime transport closed", reason=event.reason)
            if self._session is session:
                self.schedule_disconnect(0)

    def _record_answer(self, session: VoiceSession, key: str, value: Any, *, source: str) -> None:
        log = logger.with_session(session.session_id)
        if self.schema.get(key) is None:
            marker = ("rejected", key, repr(value))
            if marker in session.reported:
                log.debug("Unknown question already reported", key=key, source=source)
                return
            session.reported.add(marker)
            log.warning("Answer for unknown question rejected", key=key, source=source)
            self.emitter.emit(
                "voice.answer.rejected",
                session.session_id,
                severity=Severity.WARN,
                correlation_id=self.form_id,
                key=key,
                source=source,
            )
            return

        if self.submission.apply_answer(key, value):
            self.emitter.answer_recorded(
                session.session_id,
                key=key,
                value=self.submission.current_submission()[key],
                source=source,
                correlation_id=self.form_id,
            )
        else:
            log.debug("Answer already recorded", key=key, source=source)

    # --- Submission ---

    async def submit(self, *, validate: bool = False) -> "SubmitResult":
        """
        Send the current submission to the sink exactly once per call.

        Pending answers are dispatched first so the snapshot is consistent.
        Raises SubmissionError (IncompleteSubmissionError under the validate
        policy) without touching the submission or the transcript.
        """
        await self.drain()
        data = self.current_submission()
        session_id = self.session_id
        log = logger.with_session(session_id)

        if validate:
            errors = validate_form(self.schema, data)
            if errors:
                log.info("Submission incomplete", missing=[e.key for e in errors])
                raise IncompleteSubmissionError(errors)

        try:
            result = await self._sink.submit(
                self.form_id,
                self._token,
                data,
                idempotency_key=self.instance_id,
            )
        except Exception as e:
            detail = redact(str(e) or type(e).__name__)
            self._submission_failed(session_id, detail)
            raise SubmissionError(detail) from e

        if not result.success:
            detail = redact(result.error or "Submission was rejected")
            self._submission_failed(session_id, detail)
            raise SubmissionError(detail)

        log.info("Submission sent", submission_id=result.submission_id, answers=len(data))
        self.emitter.emit(
            "voice.submission.sent",
            session_id,
            correlation_id=self.form_id,
            submission_id=result.submission_id,
            answers=len(data),
        )
        return result

    def _submission_failed(self, session_id: str, detail: str) -> None:
        logger.with_session(session_id).warning("Submission failed", error=detail)
        self.emitter.emit(
            "voice.submission.failed",
            session_id,
            severity=Severity.ERROR,
            correlation_id=self.form_id,
            error=detail,
        )
