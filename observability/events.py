"""
Structured JSON event emission (shared).

Used by both the survey API and the voice agent worker. Every event is a
single JSON line on stdout with a fixed envelope so that a log aggregator can
reconstruct one voice session end-to-end from session_id / correlation_id.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Component(str, Enum):
    """Event source components."""

    SURVEY_API = "survey_api"
    VOICE_AGENT = "voice_agent"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


def pii_fields(*fields: str) -> Dict[str, Any]:
    """PII marker for events carrying respondent content."""
    return {"contains_pii": True, "fields": list(fields), "handling": "none"}


class EventEmitter:
    """Emits structured JSON events."""

    def __init__(self, component: Component):
        self.component = component

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Emit one event and return it.

        Args:
            event_type: Stable event type string (e.g. "voice.answer.recorded")
            session_id: Opaque session identifier
            severity: Event severity level
            correlation_id: Optional id tying related events (form id, command id)
            pii: PII marker, see pii_fields()
            **kwargs: Event-specific fields
        """
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }
        event.update(kwargs)

        sys.stdout.write(json.dumps(event, ensure_ascii=False, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()
        return event

    def session_state_changed(
        self,
        session_id: str,
        from_state: str,
        to_state: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Emit voice.session.state_changed."""
        self.emit(
            "voice.session.state_changed",
            session_id,
            correlation_id=correlation_id,
            from_state=from_state,
            to_state=to_state,
        )

    def answer_recorded(
        self,
        session_id: str,
        key: str,
        value: Any,
        source: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Emit voice.answer.recorded (value is respondent content)."""
        self.emit(
            "voice.answer.recorded",
            session_id,
            correlation_id=correlation_id,
            pii=pii_fields("value"),
            key=key,
            value=value,
            source=source,
        )

    def tool_invoked(
        self,
        session_id: str,
        tool: str,
        result: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Emit voice.tool.invoked with the status prefix of the tool result."""
        self.emit(
            "voice.tool.invoked",
            session_id,
            correlation_id=correlation_id,
            tool=tool,
            result=result,
        )
