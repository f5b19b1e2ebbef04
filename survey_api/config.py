"""
Configuration for the survey API.

Loads from environment variables (.env_local / .env.local are read first for
local development). LiveKit and OpenAI credentials are only required by the
endpoints that use them, so the API can serve forms without them.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _load_env_files() -> None:
    root = Path(__file__).parent.parent
    for name in (".env_local", ".env.local"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)


def _parse_int_env(key: str, default: int) -> int:
    value = (os.environ.get(key) or "").split("#")[0].strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class ApiConfig:
    """Survey API configuration."""

    # LiveKit (voice session rooms)
    livekit_url: str = ""
    livekit_api_key: str = ""
    livekit_api_secret: str = ""
    agent_name: str = "survey-voice-agent"

    # OpenAI realtime credential minting
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    realtime_model: str = "gpt-4o-mini-realtime-preview"

    # Form access tokens
    token_ttl_days: int = 30

    @property
    def livekit_configured(self) -> bool:
        return bool(self.livekit_url and self.livekit_api_key and self.livekit_api_secret)

    @classmethod
    def from_env(cls) -> "ApiConfig":
        """Load configuration from environment variables."""
        _load_env_files()
        return cls(
            livekit_url=os.getenv("LIVEKIT_URL", ""),
            livekit_api_key=os.getenv("LIVEKIT_API_KEY", ""),
            livekit_api_secret=os.getenv("LIVEKIT_API_SECRET", ""),
            agent_name=os.getenv("LIVEKIT_AGENT_NAME", "survey-voice-agent"),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            realtime_model=os.getenv("REALTIME_MODEL", "gpt-4o-mini-realtime-preview"),
            token_ttl_days=_parse_int_env("FORM_TOKEN_TTL_DAYS", default=30),
        )


def get_config() -> ApiConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = ApiConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[ApiConfig] = None
