"""
Presentation adapter.

Exposes the session controller's observable state as one immutable view for
whatever renders the voice panel, plus connect/disconnect pass-throughs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .history import ConversationMessage
from .session import SessionController, SessionState
from .submission import Submission


@dataclass(frozen=True)
class SessionView:
    """Snapshot of what the respondent sees."""

    state: SessionState
    is_connected: bool
    is_connecting: bool
    error: Optional[str]
    transcript: tuple[ConversationMessage, ...]
    submission: Submission

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "is_connected": self.is_connected,
            "is_connecting": self.is_connecting,
            "error": self.error,
            "transcript": [m.to_dict() for m in self.transcript],
            "submission": dict(self.submission),
        }


class VoiceAgentPresenter:
    """Read projection over a SessionController."""

    def __init__(self, controller: SessionController, *, transcript_window: int = 10):
        self.controller = controller
        self.transcript_window = transcript_window

    def snapshot(self) -> SessionView:
        messages = self.controller.messages
        if self.transcript_window > 0:
            messages = messages[-self.transcript_window:]
        return SessionView(
            state=self.controller.state,
            is_connected=self.controller.is_connected,
            is_connecting=self.controller.is_connecting,
            error=self.controller.last_error,
            transcript=tuple(messages),
            submission=self.controller.current_submission(),
        )

    async def connect(self) -> bool:
        return await self.controller.connect()

    async def disconnect(self) -> None:
        await self.controller.disconnect()
