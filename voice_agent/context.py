"""
Voice agent dispatch context.

The survey API issues the room token with an agent dispatch whose metadata is
a JSON object:

    {"form_id": "...", "token": "...", "session_id": "..."}

LiveKit hands that string to the worker as JobContext.job.metadata. The
participant attributes of the respondent are used as a fallback source.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional


class DispatchContextError(ValueError):
    """Required dispatch fields are missing."""


@dataclass(frozen=True)
class DispatchContext:
    """Parsed context derived from LiveKit dispatch / participant."""

    form_id: str
    token: str
    session_id: str
    metadata_raw: Optional[str] = None


def parse_job_metadata(metadata: Optional[str]) -> dict[str, Any]:
    """
    Parse JobContext.job.metadata.

    Returns {} if metadata is missing or not a JSON object.
    """
    if not metadata:
        return {}
    try:
        parsed = json.loads(metadata)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def _lookup(
    name: str,
    metadata: Mapping[str, Any],
    participant_attributes: Optional[Mapping[str, str]],
) -> Optional[str]:
    value = metadata.get(name)
    if isinstance(value, str) and value.strip():
        return value.strip()
    if participant_attributes:
        value = participant_attributes.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def build_dispatch_context(
    *,
    room_name: str,
    job_metadata: Optional[str],
    participant_attributes: Optional[Mapping[str, str]] = None,
) -> DispatchContext:
    """
    Build the context for one survey voice job.

    form_id and token are required (job metadata first, then participant
    attributes). session_id falls back to the room name.
    """
    md = parse_job_metadata(job_metadata)
    form_id = _lookup("form_id", md, participant_attributes)
    token = _lookup("token", md, participant_attributes)
    if not form_id or not token:
        missing = [name for name, value in (("form_id", form_id), ("token", token)) if not value]
        raise DispatchContextError(f"Dispatch metadata missing: {', '.join(missing)}")

    session_id = _lookup("session_id", md, participant_attributes) or room_name or "unknown"
    return DispatchContext(
        form_id=form_id,
        token=token,
        session_id=session_id,
        metadata_raw=job_metadata,
    )
