"""Tests for the error hierarchy and its helpers."""

import pytest

from support_rag.errors import (
    ErrorSeverity,
    InvalidQueryError,
    LLMAuthError,
    LLMFailure,
    LLMQuotaExceededError,
    LLMRateLimitError,
    LLMTransientError,
    RequestCancelledError,
    StoreUnavailableError,
    format_error_for_logging,
    get_error_severity,
    is_user_retryable,
    needs_attention,
)


class TestTaxonomy:
    """Error codes and class relationships."""

    @pytest.mark.parametrize("error,code", [
        (InvalidQueryError(), "INVALID_QUERY"),
        (LLMAuthError("x"), "LLM_AUTH_ERROR"),
        (LLMRateLimitError("x"), "LLM_RATE_LIMIT"),
        (LLMQuotaExceededError("x"), "LLM_QUOTA_EXCEEDED"),
        (LLMTransientError("x"), "LLM_TRANSIENT_ERROR"),
        (LLMFailure("x"), "LLM_ERROR"),
        (RequestCancelledError(), "REQUEST_CANCELLED"),
        (StoreUnavailableError("x", store="FAQ"), "STORE_UNAVAILABLE"),
    ])
    def test_error_codes(self, error, code):
        assert error.error_code == code
        assert error.to_dict()["error_code"] == code

    def test_llm_errors_share_a_base(self):
        for cls in (LLMAuthError, LLMRateLimitError, LLMQuotaExceededError, LLMTransientError):
            assert issubclass(cls, LLMFailure)

    def test_invalid_query_message(self):
        assert str(InvalidQueryError()) == "Message content is required"


class TestHelpers:
    """Retry and severity helpers used by the HTTP layer."""

    def test_user_retryable(self):
        assert is_user_retryable(LLMRateLimitError("x"))
        assert is_user_retryable(LLMTransientError("x"))
        assert is_user_retryable(StoreUnavailableError("x"))
        assert not is_user_retryable(LLMAuthError("x"))
        assert not is_user_retryable(InvalidQueryError())

    def test_needs_attention(self):
        assert needs_attention(LLMAuthError("x"))
        assert needs_attention(LLMFailure("x"))
        assert needs_attention(ValueError("unexpected"))
        assert not needs_attention(InvalidQueryError())
        assert not needs_attention(RequestCancelledError())

    def test_severity(self):
        assert get_error_severity(LLMAuthError("x")) is ErrorSeverity.CRITICAL
        assert get_error_severity(InvalidQueryError()) is ErrorSeverity.LOW

    def test_format_for_logging(self):
        cause = ConnectionError("refused")
        error = LLMTransientError("LLM request failed", status_code=503, cause=cause)
        fields = format_error_for_logging(error, request_id="req-9")
        assert fields["error_type"] == "LLMTransientError"
        assert fields["request_id"] == "req-9"
        assert fields["error_code"] == "LLM_TRANSIENT_ERROR"
        assert fields["status_code"] == 503
        assert fields["caused_by"] == {"type": "ConnectionError", "message": "refused"}
