"""
Voice agent configuration.

Loads provider and session policy configuration from environment variables.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _clean_env(key: str) -> Optional[str]:
    """
    Read an environment variable, stripping inline comments and whitespace.

    "500  # ms" -> "500", "" -> None
    """
    value = os.environ.get(key)
    if not value:
        return None
    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()
    return value or None


def _parse_int_env(key: str, default: int) -> int:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_bool_env(key: str, default: bool) -> bool:
    value = _clean_env(key)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


@dataclass
class VoiceConfig:
    """Voice agent configuration."""

    # LiveKit
    livekit_url: str
    livekit_api_key: str
    livekit_api_secret: str

    # Survey API (schema store, submission sink, credential endpoint)
    survey_api_url: str = "http://127.0.0.1:8000"
    realtime_token_url: Optional[str] = None

    # Realtime model
    realtime_model: str = "gpt-4o-mini-realtime-preview"
    realtime_voice: str = "alloy"
    transcription_model: str = "gpt-4o-mini-transcribe"

    # Server-side turn detection
    vad_threshold: float = 0.5
    vad_prefix_padding_ms: int = 300
    vad_silence_duration_ms: int = 500

    # Session policy
    validate_on_submit: bool = False
    submit_disconnect_delay_seconds: float = 2.0
    transcript_window: int = 10
    prompt_name: Optional[str] = None

    # Worker dispatch; must match the agent name used when issuing room tokens
    agent_name: str = "survey-voice-agent"

    @property
    def credential_url(self) -> str:
        """Endpoint that mints ephemeral realtime credentials."""
        return self.realtime_token_url or f"{self.survey_api_url.rstrip('/')}/realtime/token"

    @classmethod
    def from_env(cls) -> "VoiceConfig":
        """Load configuration from environment variables."""
        return cls(
            livekit_url=os.environ["LIVEKIT_URL"],
            livekit_api_key=os.environ["LIVEKIT_API_KEY"],
            livekit_api_secret=os.environ["LIVEKIT_API_SECRET"],
            survey_api_url=os.environ.get("SURVEY_API_URL", "http://127.0.0.1:8000"),
            realtime_token_url=os.environ.get("REALTIME_TOKEN_URL") or None,
            realtime_model=os.environ.get("REALTIME_MODEL", "gpt-4o-mini-realtime-preview"),
            realtime_voice=os.environ.get("REALTIME_VOICE", "alloy"),
            transcription_model=os.environ.get("TRANSCRIPTION_MODEL", "gpt-4o-mini-transcribe"),
            vad_threshold=_parse_float_env("VAD_THRESHOLD", default=0.5),
            vad_prefix_padding_ms=_parse_int_env("VAD_PREFIX_PADDING_MS", default=300),
            vad_silence_duration_ms=_parse_int_env("VAD_SILENCE_DURATION_MS", default=500),
            validate_on_submit=_parse_bool_env("VOICE_VALIDATE_ON_SUBMIT", default=False),
            submit_disconnect_delay_seconds=_parse_float_env(
                "VOICE_SUBMIT_DISCONNECT_DELAY_SECONDS", default=2.0
            ),
            transcript_window=_parse_int_env("VOICE_TRANSCRIPT_WINDOW", default=10),
            prompt_name=os.environ.get("VOICE_PROMPT") or None,
            agent_name=os.environ.get("LIVEKIT_AGENT_NAME", "survey-voice-agent"),
        )


def get_config() -> VoiceConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = VoiceConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[VoiceConfig] = None
