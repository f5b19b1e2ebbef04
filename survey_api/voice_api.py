"""
Voice API: realtime credentials and voice session rooms.

- POST /realtime/token mints an ephemeral realtime client secret so the
  long-lived OpenAI key never leaves this service.
- POST /voice-sessions admits a respondent to a fresh LiveKit room whose
  token dispatches the survey voice agent with the form id and access token.
- POST /voice-sessions/{room_name}/end cancels a session by deleting its room
  (ends it for every participant, the agent included).

Commands emit auditable control.command_received / control.command_applied
events.
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any

import aiohttp
from fastapi import APIRouter, HTTPException
from livekit import api

from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter, Severity

from .config import ApiConfig, get_config
from .schemas import (
    EndVoiceSessionResponse,
    RealtimeTokenResponse,
    VoiceSessionRequest,
    VoiceSessionResponse,
)
from .store import form_store


router = APIRouter(tags=["voice"])
logger = get_logger(Component.SURVEY_API)
emitter = EventEmitter(ObsComponent.SURVEY_API)


class RealtimeTokenError(Exception):
    """The realtime provider refused to mint a client secret."""


def _new_correlation_id() -> str:
    return f"cmd_{int(time.time() * 1000)}"


async def _mint_client_secret(config: ApiConfig) -> dict[str, Any]:
    """POST /realtime/client_secrets for a realtime session of the configured model."""
    async with aiohttp.ClientSession() as s:
        async with s.post(
            f"{config.openai_base_url}/realtime/client_secrets",
            headers={"Authorization": f"Bearer {config.openai_api_key}"},
            json={"session": {"type": "realtime", "model": config.realtime_model}},
            timeout=aiohttp.ClientTimeout(total=10),
        ) as resp:
            data = await resp.json(content_type=None)
            if resp.status >= 400:
                error = data.get("error") if isinstance(data, dict) else None
                message = error.get("message") if isinstance(error, dict) else None
                raise RealtimeTokenError(f"OpenAI API error: {message or resp.reason}")
            return data


def _issue_room_token(config: ApiConfig, *, room_name: str, identity: str, metadata: str) -> str:
    """Participant JWT that also dispatches the survey agent into the room."""
    return (
        api.AccessToken(config.livekit_api_key, config.livekit_api_secret)
        .with_identity(identity)
        .with_grants(api.VideoGrants(room_join=True, room=room_name))
        .with_room_config(
            api.RoomConfiguration(
                agents=[api.RoomAgentDispatch(agent_name=config.agent_name, metadata=metadata)]
            )
        )
        .to_jwt()
    )


async def _delete_room(room_name: str) -> None:
    """End the session for all participants by deleting the LiveKit room."""
    config = get_config()
    lk = api.LiveKitAPI(
        url=config.livekit_url,
        api_key=config.livekit_api_key,
        api_secret=config.livekit_api_secret,
    )
    try:
        await lk.room.delete_room(api.DeleteRoomRequest(room=room_name))
    finally:
        await lk.aclose()


@router.post("/realtime/token", response_model=RealtimeTokenResponse)
async def realtime_token() -> RealtimeTokenResponse:
    config = get_config()
    if not config.openai_api_key:
        raise HTTPException(status_code=503, detail="realtime_not_configured")

    start_ts = time.time()
    try:
        data = await _mint_client_secret(config)
    except Exception as e:
        logger.warning(
            "Realtime token mint failed",
            error_type=type(e).__name__,
            latency_ms=int((time.time() - start_ts) * 1000),
        )
        raise HTTPException(status_code=502, detail="token_mint_failed")

    value = data.get("value") if isinstance(data, dict) else None
    if not isinstance(value, str) or not value:
        logger.warning("Realtime token response without value")
        raise HTTPException(status_code=502, detail="token_mint_failed")

    logger.info(
        "Realtime token minted",
        model=config.realtime_model,
        latency_ms=int((time.time() - start_ts) * 1000),
    )
    return RealtimeTokenResponse(value=value, expires_at=data.get("expires_at"))


@router.post("/voice-sessions", response_model=VoiceSessionResponse)
async def create_voice_session(req: VoiceSessionRequest) -> VoiceSessionResponse:
    form = form_store.get_form_by_token(req.form_id, req.token)
    if form is None:
        raise HTTPException(status_code=403, detail="invalid_or_expired_token")

    config = get_config()
    if not config.livekit_configured:
        raise HTTPException(status_code=503, detail="voice_not_configured")

    room_name = f"survey-{uuid.uuid4().hex[:12]}"
    session_id = room_name
    identity = req.identity or f"respondent-{uuid.uuid4().hex[:8]}"
    metadata = json.dumps({"form_id": form.form_id, "token": req.token, "session_id": session_id})

    participant_token = _issue_room_token(
        config, room_name=room_name, identity=identity, metadata=metadata
    )
    emitter.emit(
        "survey.voice_session.created",
        session_id=session_id,
        correlation_id=form.form_id,
        room_name=room_name,
        agent_name=config.agent_name,
    )
    return VoiceSessionResponse(
        server_url=config.livekit_url,
        room_name=room_name,
        participant_token=participant_token,
        session_id=session_id,
    )


@router.post("/voice-sessions/{room_name}/end", response_model=EndVoiceSessionResponse)
async def end_voice_session(room_name: str) -> EndVoiceSessionResponse:
    """Cancel a voice session; the session id is the room name."""
    correlation_id = _new_correlation_id()

    emitter.emit(
        "control.command_received",
        session_id=room_name,
        severity=Severity.INFO,
        correlation_id=correlation_id,
        command="voice_session.end",
    )

    try:
        await _delete_room(room_name)
    except Exception as e:
        emitter.emit(
            "control.command_applied",
            session_id=room_name,
            severity=Severity.ERROR,
            correlation_id=correlation_id,
            command="voice_session.end",
            result="error",
            error_class=type(e).__name__,
        )
        raise HTTPException(status_code=502, detail="end_failed")

    emitter.emit(
        "control.command_applied",
        session_id=room_name,
        severity=Severity.INFO,
        correlation_id=correlation_id,
        command="voice_session.end",
        result="ok",
    )
    return EndVoiceSessionResponse(status="ok")
