"""
Survey voice agent worker.

LiveKit dispatches one job per voice session requested through the survey
API. The job reads the form id and access token from the dispatch metadata,
loads the form schema, and runs one SessionController against the room until
the session returns to idle (submitted, cancelled, or failed to connect).

The live view (state, transcript tail, submission) is published on the agent's
participant attributes so the web form can mirror the answers while the
respondent talks.
"""
import asyncio
import json
from pathlib import Path

from dotenv import load_dotenv
from livekit.agents import (
    AutoSubscribe,
    JobContext,
    WorkerOptions,
    cli,
)

from logging_setup import get_logger, Component, setup_logging
from .config import get_config
from .context import DispatchContextError, build_dispatch_context
from .credentials import RealtimeCredentialProvider
from .forms_client import FormsApiClient, FormsApiError
from .instructions import get_greeting_instructions
from .livekit_transport import LiveKitRealtimeTransport
from .presenter import VoiceAgentPresenter
from .session import SessionController, SessionState
from .transport import RealtimeModelOptions

# Load environment variables from .env_local / .env.local (local dev convenience).
# Does not override variables already exported by the start scripts.
root = Path(__file__).parent.parent
for name in (".env_local", ".env.local"):
    p = root / name
    if p.exists():
        load_dotenv(p, override=False)

logger = get_logger(Component.VOICE_AGENT)

SUBMISSION_ATTRIBUTE = "survey.submission"
STATE_ATTRIBUTE = "survey.state"
TRANSCRIPT_ATTRIBUTE = "survey.transcript"
ERROR_ATTRIBUTE = "survey.error"
CONNECTING_ATTRIBUTE = "survey.connecting"


def view_attributes(presenter: VoiceAgentPresenter) -> dict[str, str]:
    """Participant attributes (string values only) for the current view."""
    view = presenter.snapshot().to_dict()
    return {
        STATE_ATTRIBUTE: view["state"],
        CONNECTING_ATTRIBUTE: "true" if view["is_connecting"] else "false",
        ERROR_ATTRIBUTE: view["error"] or "",
        SUBMISSION_ATTRIBUTE: json.dumps(view["submission"], ensure_ascii=False),
        TRANSCRIPT_ATTRIBUTE: json.dumps(view["transcript"], ensure_ascii=False),
    }


async def entrypoint(ctx: JobContext):
    """
    Agent entrypoint for one survey voice session.

    Called by the LiveKit Agents framework when the survey API's room token
    dispatches this agent into a new room.
    """
    await ctx.connect(auto_subscribe=AutoSubscribe.AUDIO_ONLY)
    participant = await ctx.wait_for_participant()

    try:
        dispatch_ctx = build_dispatch_context(
            room_name=ctx.room.name or "unknown",
            job_metadata=getattr(ctx.job, "metadata", None),
            participant_attributes=getattr(participant, "attributes", None),
        )
    except DispatchContextError as e:
        logger.error("Voice job rejected", room=ctx.room.name, error=str(e))
        ctx.shutdown(reason="missing_dispatch_metadata")
        return

    session_id = dispatch_ctx.session_id
    session_logger = logger.with_session(session_id)
    ctx.log_context_fields = {
        "room_name": ctx.room.name,
        "session_id": session_id,
        "form_id": dispatch_ctx.form_id,
    }
    session_logger.debug(
        "Voice agent starting",
        room=ctx.room.name,
        job_id=ctx.job.id,
        participant_identity=participant.identity,
    )

    config = get_config()
    forms = FormsApiClient(config.survey_api_url)
    try:
        schema = await forms.fetch_schema(dispatch_ctx.form_id, dispatch_ctx.token)
    except FormsApiError as e:
        session_logger.warning("Form unavailable", form_id=dispatch_ctx.form_id, error=str(e))
        ctx.shutdown(reason="form_unavailable")
        return

    greeting = get_greeting_instructions(config.prompt_name)
    controller = SessionController(
        schema,
        form_id=dispatch_ctx.form_id,
        token=dispatch_ctx.token,
        sink=forms,
        credentials=RealtimeCredentialProvider(config.credential_url),
        transport_factory=lambda: LiveKitRealtimeTransport(
            ctx.room, greeting_instructions=greeting
        ),
        options=RealtimeModelOptions.from_config(config),
        validate_on_submit=config.validate_on_submit,
        disconnect_delay=config.submit_disconnect_delay_seconds,
        prompt_name=config.prompt_name,
    )
    presenter = VoiceAgentPresenter(controller, transcript_window=config.transcript_window)

    pending: set[asyncio.Task] = set()

    async def publish_view() -> None:
        try:
            await ctx.room.local_participant.set_attributes(view_attributes(presenter))
        except Exception as e:
            # Room may already be gone while the session tears down
            session_logger.warning(
                "Publishing session view failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    def schedule_publish(*_args) -> None:
        task = asyncio.create_task(publish_view())
        pending.add(task)
        task.add_done_callback(pending.discard)

    def on_state(state: SessionState) -> None:
        schedule_publish()
        if state == SessionState.IDLE:
            ctx.shutdown(reason="voice_session_ended")

    controller.submission.subscribe(schedule_publish)
    controller.observe(on_state)
    controller.observe_errors(schedule_publish)
    ctx.add_shutdown_callback(presenter.disconnect)

    if not await presenter.connect():
        session_logger.error("Voice session failed to connect", error=presenter.snapshot().error)
        return

    session_logger.debug("Voice session connected", fields=len(schema))


if __name__ == "__main__":
    config = get_config()
    setup_logging(use_json=True)

    cli.run_app(
        WorkerOptions(
            entrypoint_fnc=entrypoint,
            # Must match the agent name the survey API puts in room tokens
            agent_name=config.agent_name,
        )
    )
