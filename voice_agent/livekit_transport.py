"""
LiveKit realtime transport.

Runs the survey conversation as a LiveKit AgentSession backed by the OpenAI
realtime model: respondent audio comes from the room, agent audio is published
back to it, and the session's conversation history, errors and close
notifications are forwarded to the session controller as SessionEvents.
"""

from __future__ import annotations

from typing import Any, Optional

from livekit import rtc
from livekit.agents import Agent, AgentSession, ToolError, function_tool
from livekit.plugins import openai as lk_openai
from livekit.plugins.openai.realtime.realtime_model import TurnDetection
from openai.types.beta.realtime.session import InputAudioTranscription

from logging_setup import get_logger, Component

from .errors import ToolArgumentsError, TransportOpenError
from .tools import TOOL_DECLARATIONS, SurveyTools
from .transport import (
    EventSink,
    HistoryUpdated,
    RealtimeModelOptions,
    RealtimeTransport,
    TransportClosed,
    TransportFailed,
)

logger = get_logger(Component.REALTIME_TRANSPORT)


def snapshot_history(session: AgentSession) -> list[dict[str, Any]]:
    """Normalize the session's chat history into plain item mappings."""
    items = []
    for item in session.history.items:
        item_type = getattr(item, "type", None)
        if item_type == "message":
            items.append({
                "type": "message",
                "role": item.role,
                "content": [{"transcript": item.text_content or ""}],
            })
        elif item_type == "function_call":
            items.append({
                "type": "function_call",
                "name": item.name,
                "arguments": item.arguments,
                "call_id": item.call_id,
            })
    return items


def _make_tool(tools: SurveyTools, declaration: dict[str, Any]):
    name = declaration["name"]

    async def invoke(raw_arguments: dict[str, object]) -> str:
        try:
            return await tools.invoke(name, raw_arguments)
        except ToolArgumentsError as e:
            raise ToolError(str(e)) from e

    # LiveKit builds the strict variant itself; pass the bare function schema
    return function_tool(
        invoke,
        raw_schema={
            "name": name,
            "description": declaration["description"],
            "parameters": declaration["parameters"],
        },
    )


def build_function_tools(tools: SurveyTools) -> list:
    """LiveKit function tools for every declared survey tool."""
    return [_make_tool(tools, declaration) for declaration in TOOL_DECLARATIONS]


class LiveKitRealtimeTransport(RealtimeTransport):
    """AgentSession in a LiveKit room, driven by the OpenAI realtime model."""

    def __init__(self, room: rtc.Room, *, greeting_instructions: Optional[str] = None):
        self._room = room
        self._greeting_instructions = greeting_instructions
        self._session: Optional[AgentSession] = None
        self._closing = False

    async def open(
        self,
        *,
        credential: str,
        instructions: str,
        tools: SurveyTools,
        options: RealtimeModelOptions,
        on_event: EventSink,
    ) -> None:
        logger.debug(
            "Realtime model configured",
            model=options.model,
            voice=options.voice,
            transcription_model=options.transcription_model,
            vad_threshold=options.vad_threshold,
        )
        model = lk_openai.realtime.RealtimeModel(
            model=options.model,
            voice=options.voice,
            api_key=credential,
            input_audio_transcription=InputAudioTranscription(model=options.transcription_model),
            turn_detection=TurnDetection(
                type="server_vad",
                threshold=options.vad_threshold,
                prefix_padding_ms=options.vad_prefix_padding_ms,
                silence_duration_ms=options.vad_silence_duration_ms,
            ),
        )
        agent = Agent(instructions=instructions, tools=build_function_tools(tools))
        session = AgentSession(llm=model)
        self._attach(session, on_event)

        try:
            await session.start(agent=agent, room=self._room)
        except Exception as e:
            raise TransportOpenError(f"Realtime session failed to start: {e}") from e

        if self._closing:
            # aclose() ran while the session was starting
            await session.aclose()
            raise TransportOpenError("Transport closed while opening")

        self._session = session
        logger.info("Realtime session started", room=self._room.name)

        if self._greeting_instructions:
            session.generate_reply(instructions=self._greeting_instructions)

    def _attach(self, session: AgentSession, on_event: EventSink) -> None:
        def on_history_changed(_event: Any) -> None:
            on_event(HistoryUpdated(items=tuple(snapshot_history(session))))

        def on_error(event: Any) -> None:
            error = getattr(event, "error", event)
            on_event(TransportFailed(message=str(error)))

        def on_close(event: Any) -> None:
            if self._closing:
                return
            reason = getattr(event, "reason", None)
            on_event(TransportClosed(reason=str(reason) if reason is not None else None))

        session.on("conversation_item_added", on_history_changed)
        session.on("function_tools_executed", on_history_changed)
        session.on("error", on_error)
        session.on("close", on_close)

    async def aclose(self) -> None:
        if self._closing:
            return
        self._closing = True
        session = self._session
        self._session = None
        if session is not None:
            await session.aclose()
            logger.info("Realtime session closed", room=self._room.name)
