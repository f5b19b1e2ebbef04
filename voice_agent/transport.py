"""
Realtime transport contract and session events.

A transport is one bidirectional audio/event channel to the realtime speech
model. It reports what happens through a single callback; the session
controller puts every report on one ordered queue consumed by one dispatcher.
The update_submission tool posts to the same queue, so both routes by which an
answer can arrive are applied in order by the same code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Sequence, Union

if TYPE_CHECKING:
    from .tools import SurveyTools


@dataclass(frozen=True)
class HistoryUpdated:
    """Full conversation history snapshot (replaces any previous snapshot)."""

    items: Sequence[Mapping[str, Any]] = field(default_factory=tuple)


@dataclass(frozen=True)
class AnswerProposed:
    """An answer requested through a direct update_submission invocation."""

    key: str
    value: Any
    source: str = "tool"


@dataclass(frozen=True)
class TransportFailed:
    """Runtime error reported by the transport; the session stays connected."""

    message: str


@dataclass(frozen=True)
class TransportClosed:
    """The transport closed on its own (remote hangup, network loss)."""

    reason: Optional[str] = None


SessionEvent = Union[HistoryUpdated, AnswerProposed, TransportFailed, TransportClosed]
EventSink = Callable[[SessionEvent], None]


@dataclass(frozen=True)
class RealtimeModelOptions:
    """Fixed model configuration for one realtime session."""

    model: str = "gpt-4o-mini-realtime-preview"
    voice: str = "alloy"
    transcription_model: str = "gpt-4o-mini-transcribe"
    vad_threshold: float = 0.5
    vad_prefix_padding_ms: int = 300
    vad_silence_duration_ms: int = 500

    @classmethod
    def from_config(cls, config) -> "RealtimeModelOptions":
        return cls(
            model=config.realtime_model,
            voice=config.realtime_voice,
            transcription_model=config.transcription_model,
            vad_threshold=config.vad_threshold,
            vad_prefix_padding_ms=config.vad_prefix_padding_ms,
            vad_silence_duration_ms=config.vad_silence_duration_ms,
        )


class RealtimeTransport(ABC):
    """One connection to the realtime conversational model."""

    @abstractmethod
    async def open(
        self,
        *,
        credential: str,
        instructions: str,
        tools: "SurveyTools",
        options: RealtimeModelOptions,
        on_event: EventSink,
    ) -> None:
        """
        Open the connection.

        The credential is opaque and passed through unmodified. Raise on
        handshake failure; after a successful open, report everything through
        on_event.
        """

    @abstractmethod
    async def aclose(self) -> None:
        """Tear the connection down. Must be safe to call more than once."""
