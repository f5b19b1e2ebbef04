"""
Voice agent error handling tests.
"""
import pytest

from survey_forms.validation import FieldError
from voice_agent.errors import (
    CredentialError,
    ErrorCategory,
    ErrorHandler,
    IncompleteSubmissionError,
    SubmissionError,
    ToolArgumentsError,
    TransportOpenError,
    VoiceAgentError,
    redact,
)


class TestErrorClassification:
    """Test error classification."""

    def test_typed_errors(self):
        assert ErrorHandler.classify(CredentialError("x")) == ErrorCategory.CREDENTIAL_FAILED
        assert ErrorHandler.classify(TransportOpenError("x")) == ErrorCategory.TRANSPORT_FAILED
        assert ErrorHandler.classify(ToolArgumentsError("x")) == ErrorCategory.TOOL_ARGUMENTS
        assert ErrorHandler.classify(SubmissionError("x")) == ErrorCategory.SUBMISSION_FAILED

    def test_untyped_credential_error(self):
        assert ErrorHandler.classify(Exception("Unauthorized: 401")) == ErrorCategory.CREDENTIAL_FAILED

    def test_untyped_network_error(self):
        assert ErrorHandler.classify(Exception("Network timeout")) == ErrorCategory.TRANSPORT_FAILED

    def test_unknown_error(self):
        assert ErrorHandler.classify(Exception("Something weird")) == ErrorCategory.UNKNOWN_ERROR

    def test_incomplete_submission_is_a_submission_error(self):
        error = IncompleteSubmissionError([FieldError("feedback", "This question is required")])

        assert isinstance(error, SubmissionError)
        assert isinstance(error, VoiceAgentError)
        assert error.errors[0].key == "feedback"
        assert "feedback" in str(error)
        assert ErrorHandler.classify(error) == ErrorCategory.SUBMISSION_FAILED


class TestUserMessages:
    """Test user-facing messages."""

    def test_describe_embeds_detail(self):
        category, message = ErrorHandler.describe(CredentialError("HTTP 500"))

        assert category == ErrorCategory.CREDENTIAL_FAILED
        assert message.startswith(ErrorHandler.user_message(ErrorCategory.CREDENTIAL_FAILED))
        assert "(HTTP 500)" in message

    def test_describe_redacts_secrets(self):
        _, message = ErrorHandler.describe(Exception("Bearer ek_abc123 rejected"))

        assert "ek_abc123" not in message
        assert "[redacted: potential secret]" in message

    def test_unknown_category_has_fallback_message(self):
        assert ErrorHandler.user_message("nope") == "Something went wrong with the voice session."


@pytest.mark.parametrize(
    "detail",
    ["invalid api key", "API_KEY missing", "client secret expired", "token ek_12345", "ek_abc123"],
)
def test_redact_hides_potential_secrets(detail):
    assert redact(detail) == "[redacted: potential secret]"


def test_redact_keeps_plain_details():
    assert redact("HTTP 502") == "HTTP 502"


@pytest.mark.parametrize("detail", ["Unknown question week_rating", "field peek_score missing"])
def test_redact_ignores_words_ending_in_ek(detail):
    assert redact(detail) == detail
