"""
Conversation history projection.

The realtime transport delivers the full conversation history on every
update. Items are plain mappings:

    {"type": "message", "role": "user", "content": [{"transcript": "..."}]}
    {"type": "function_call", "name": "update_submission", "arguments": "{...}"}

This module projects a snapshot into the displayed transcript and extracts
the answer updates it contains. Both functions are pure; callers replace (not
append to) their previous view with the result.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional

from logging_setup import get_logger, Component

from .errors import ToolArgumentsError
from .submission import UPDATE_SUBMISSION

logger = get_logger(Component.HISTORY)

TRANSCRIPT_ROLES = ("user", "assistant")
UPDATE_ARGUMENT_NAMES = frozenset({"key", "value"})


@dataclass(frozen=True)
class ConversationMessage:
    """One completed turn of the conversation."""

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class UpdateCall:
    """A parsed update_submission call found in the history."""

    key: str
    value: Any
    call_id: Optional[str] = None


def _message_text(content: Any) -> str:
    """First transcript or text part of a message's content."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    for part in content:
        if isinstance(part, str):
            if part:
                return part
            continue
        if not isinstance(part, Mapping):
            continue
        if part.get("transcript"):
            return str(part["transcript"])
        if part.get("text"):
            return str(part["text"])
    return ""


def project_messages(items: Iterable[Mapping[str, Any]]) -> list[ConversationMessage]:
    """Rebuild the transcript from a full history snapshot."""
    messages = []
    for item in items:
        if item.get("type") != "message" or item.get("role") not in TRANSCRIPT_ROLES:
            continue
        text = _message_text(item.get("content"))
        if text:
            messages.append(ConversationMessage(role=item["role"], content=text))
    return messages


def parse_update_arguments(arguments: Any) -> tuple[str, Any]:
    """
    Parse update_submission arguments into (key, value).

    Accepts the serialized JSON string sent by the model or an already decoded
    mapping. The declared schema is closed, so anything other than exactly a
    string key and a string/number value is rejected.
    """
    if isinstance(arguments, (str, bytes)):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise ToolArgumentsError(f"Arguments are not valid JSON: {e.msg}") from e
    if not isinstance(arguments, Mapping):
        raise ToolArgumentsError("Arguments must be a JSON object")

    names = set(arguments)
    if names != UPDATE_ARGUMENT_NAMES:
        raise ToolArgumentsError(
            f"Expected properties key and value, got {sorted(names)}"
        )

    key = arguments["key"]
    value = arguments["value"]
    if not isinstance(key, str) or not key:
        raise ToolArgumentsError("'key' must be a non-empty string")
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ToolArgumentsError("'value' must be a string or a number")
    return key, value


def extract_update_calls(
    items: Iterable[Mapping[str, Any]],
    on_invalid: Optional[Callable[[Mapping[str, Any], ToolArgumentsError], None]] = None,
) -> list[UpdateCall]:
    """
    Collect update_submission calls in history order.

    Calls with malformed arguments are dropped and handed to on_invalid
    (logged here when no callback is given); the rest of the snapshot is
    still processed.
    """
    calls = []
    for item in items:
        if item.get("type") != "function_call" or item.get("name") != UPDATE_SUBMISSION:
            continue
        arguments = item.get("arguments")
        if not arguments:
            continue
        try:
            key, value = parse_update_arguments(arguments)
        except ToolArgumentsError as e:
            if on_invalid is not None:
                on_invalid(item, e)
            else:
                logger.warning(
                    "Dropping update_submission call with invalid arguments",
                    call_id=item.get("call_id"),
                    error=str(e),
                )
            continue
        calls.append(UpdateCall(key=key, value=value, call_id=item.get("call_id")))
    return calls
