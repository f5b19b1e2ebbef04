"""
Voice agent error handling.

Maps failures to stable categories and user-facing messages. Nothing here is
fatal to the worker process: every failure is scoped to one voice session and
recoverable by disconnecting and reconnecting.
"""
import re
from typing import Optional

from logging_setup import get_logger, Component

logger = get_logger(Component.ERROR_HANDLER)


class VoiceAgentError(Exception):
    """Base class for voice agent errors."""


class CredentialError(VoiceAgentError):
    """The ephemeral realtime credential could not be obtained."""


class TransportOpenError(VoiceAgentError):
    """The realtime transport handshake failed."""


class SessionStateError(VoiceAgentError):
    """An operation was called in a session state that does not allow it."""


class ToolArgumentsError(VoiceAgentError):
    """Serialized tool arguments from the model could not be parsed."""


class SubmissionError(VoiceAgentError):
    """The submission sink rejected the submission or could not be reached."""


class IncompleteSubmissionError(SubmissionError):
    """Required answers are missing and the validate-on-submit policy is on."""

    def __init__(self, errors):
        self.errors = list(errors)
        keys = ", ".join(e.key for e in self.errors)
        super().__init__(f"Missing required answers: {keys}")


class ErrorCategory:
    """Stable error categories."""

    # Connection establishment
    CREDENTIAL_FAILED = "connect.credential_failed"
    TRANSPORT_FAILED = "connect.transport_failed"

    # While connected
    TRANSPORT_RUNTIME = "transport.runtime_error"
    TOOL_ARGUMENTS = "tool.arguments_invalid"
    SUBMISSION_FAILED = "submission.failed"

    # Not an error: a replayed answer absorbed by the ledger
    DUPLICATE_ANSWER = "answer.duplicate"

    UNKNOWN_ERROR = "unknown_error"


_SECRET_PATTERN = re.compile(r"(secret|password|api[_ ]?key|bearer|\bek_[A-Za-z0-9])", re.IGNORECASE)

_USER_MESSAGES = {
    ErrorCategory.CREDENTIAL_FAILED: "Could not start the voice session. Please try again or use the form below.",
    ErrorCategory.TRANSPORT_FAILED: "Could not connect to the voice assistant. Please try again or use the form below.",
    ErrorCategory.TRANSPORT_RUNTIME: "The voice connection reported a problem.",
    ErrorCategory.SUBMISSION_FAILED: "Your answers could not be submitted. Please use the form below.",
}


def redact(detail: str) -> str:
    """Replace details that may contain credentials."""
    if _SECRET_PATTERN.search(detail):
        return "[redacted: potential secret]"
    return detail


class ErrorHandler:
    """Classifies voice agent errors."""

    @staticmethod
    def classify(error: BaseException) -> str:
        """Return the error category for an exception."""
        if isinstance(error, CredentialError):
            return ErrorCategory.CREDENTIAL_FAILED
        if isinstance(error, TransportOpenError):
            return ErrorCategory.TRANSPORT_FAILED
        if isinstance(error, ToolArgumentsError):
            return ErrorCategory.TOOL_ARGUMENTS
        if isinstance(error, SubmissionError):
            return ErrorCategory.SUBMISSION_FAILED

        error_str = str(error).lower()
        if "token" in error_str or "unauthorized" in error_str or "401" in error_str:
            return ErrorCategory.CREDENTIAL_FAILED
        if "connect" in error_str or "timeout" in error_str or "network" in error_str:
            return ErrorCategory.TRANSPORT_FAILED
        return ErrorCategory.UNKNOWN_ERROR

    @staticmethod
    def describe(error: BaseException, session_id: Optional[str] = None) -> tuple[str, str]:
        """
        Classify and log an error.

        Returns (category, user_message). The user message embeds the redacted
        error detail so the respondent sees more than a generic failure.
        """
        category = ErrorHandler.classify(error)
        detail = redact(str(error) or type(error).__name__)
        log = logger.with_session(session_id) if session_id else logger
        log.warning(
            "Voice session error",
            category=category,
            error_type=type(error).__name__,
            detail=detail,
        )
        return category, f"{ErrorHandler.user_message(category)} ({detail})"

    @staticmethod
    def user_message(category: str) -> str:
        """User-facing message for a category."""
        return _USER_MESSAGES.get(category, "Something went wrong with the voice session.")
