"""
Answer extraction and submission state.

Holds the authoritative in-memory submission for one form-filling instance and
applies answer updates requested by the model. Updates can reach this module
twice for the same logical answer (direct tool invocation and history replay);
the ledger makes the second application a no-op.

Dedupe identifiers are built from content, (tool, key, raw value), never from
transport call ids: a retried turn can resend the same answer under a new id.
Known limitation: re-answering with exactly the same value after correcting a
different field is absorbed as a duplicate, which is harmless here.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Union

from logging_setup import get_logger, Component
from survey_forms.validation import parse_number

AnswerValue = Union[str, int, float]
Submission = Dict[str, AnswerValue]
SubmissionObserver = Callable[[Submission], Any]

UPDATE_SUBMISSION = "update_submission"

logger = get_logger(Component.SUBMISSION_STATE)


def coerce_value(raw_value: Any) -> AnswerValue:
    """
    Normalize an answer value.

    A string that parses entirely as a number becomes that number ("4" -> 4,
    "4.0" -> 4); anything else stays the original string. This turns likert
    answers, which the model sends as numeric strings, into numbers without
    knowing the field type. Only plain decimal notation counts, so prefixed
    literals such as "0x1F" or "0b101" and "Infinity" stay text.
    """
    if isinstance(raw_value, bool):
        return str(raw_value).lower()
    if isinstance(raw_value, (int, float)):
        parsed = parse_number(repr(raw_value))
        return parsed if parsed is not None else str(raw_value)
    text = str(raw_value)
    parsed = parse_number(text)
    return parsed if parsed is not None else text


class SubmissionState:
    """Submission plus the processed-call ledger of the current session."""

    def __init__(self, initial: Optional[Submission] = None, session_id: Optional[str] = None):
        self._submission: Submission = dict(initial or {})
        self._ledger: set[tuple[str, str, Any]] = set()
        self._observers: list[SubmissionObserver] = []
        self.logger = logger.with_session(session_id) if session_id else logger

    def apply_answer(
        self,
        key: str,
        raw_value: Any,
        *,
        tool_name: str = UPDATE_SUBMISSION,
    ) -> bool:
        """
        Apply one answer at most once per session.

        Returns True if the answer was applied, False if the
        (tool, key, value) identifier was already processed.
        """
        identifier = (tool_name, key, raw_value)
        if identifier in self._ledger:
            self.logger.debug("Duplicate answer ignored", key=key, tool=tool_name)
            return False

        value = coerce_value(raw_value)
        self._ledger.add(identifier)
        self._submission = {**self._submission, key: value}
        self.logger.debug_pii("Answer applied", key=key, value=value)
        self._notify()
        return True

    def has_processed(self, key: str, raw_value: Any, *, tool_name: str = UPDATE_SUBMISSION) -> bool:
        return (tool_name, key, raw_value) in self._ledger

    def current_submission(self) -> Submission:
        """Snapshot by value; later updates never mutate a returned snapshot."""
        return dict(self._submission)

    def clear_ledger(self) -> None:
        self._ledger.clear()

    @property
    def ledger_size(self) -> int:
        return len(self._ledger)

    def subscribe(self, observer: SubmissionObserver) -> Callable[[], None]:
        """Register an observer called with a snapshot after each applied answer."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self.current_submission())
            except Exception as e:
                # Display observers must not block answer recording
                self.logger.warning(
                    "Submission observer failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
