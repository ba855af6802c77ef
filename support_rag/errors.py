"""
Structured Error Handling for the support assistant

Provides a hierarchy of exceptions for the retrieval pipeline and the
LLM collaborator, with clear semantics for who may retry and what the
user gets to see.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for monitoring and alerting"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class SupportRAGError(Exception):
    """
    Base exception for the support assistant.

    All service-specific errors should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "SUPPORT_RAG_ERROR",
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        """
        Initialize error.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code for API responses
            severity: Error severity level
            context: Additional context for debugging
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses"""
        return {
            "error": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.error_code}: {self.message})"


class RetriableError(SupportRAGError):
    """
    Error that may succeed if tried again later.

    Typically temporary issues like timeouts, rate limits, unreachable stores.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "RETRIABLE_ERROR",
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        **kwargs,
    ):
        super().__init__(message, error_code, severity=severity, **kwargs)


class NonRetriableError(SupportRAGError):
    """
    Error that should NOT be retried.

    Typically permanent issues like invalid credentials, bad configuration, malformed input.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "NON_RETRIABLE_ERROR",
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        **kwargs,
    ):
        super().__init__(message, error_code, severity=severity, **kwargs)


# ============================================================================
# Specific Error Types
# ============================================================================


class ConfigurationError(NonRetriableError):
    """Invalid or missing configuration"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIG_ERROR", **kwargs)


class InvalidQueryError(NonRetriableError):
    """Empty or whitespace-only query"""

    def __init__(self, message: str = "Message content is required", **kwargs):
        super().__init__(message, error_code="INVALID_QUERY", severity=ErrorSeverity.LOW, **kwargs)


class StoreUnavailableError(RetriableError):
    """A knowledge store search failed or timed out"""

    def __init__(self, message: str, store: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="STORE_UNAVAILABLE", **kwargs)
        self.store = store


class UsageFeedbackError(SupportRAGError):
    """Recording usage counters failed; never surfaced to the caller"""

    def __init__(self, message: str, origin_id: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="USAGE_FEEDBACK_ERROR", severity=ErrorSeverity.LOW, **kwargs)
        self.origin_id = origin_id


class RequestCancelledError(SupportRAGError):
    """The caller went away before the answer could be delivered"""

    def __init__(self, message: str = "Request cancelled by client", **kwargs):
        super().__init__(message, error_code="REQUEST_CANCELLED", severity=ErrorSeverity.INFO, **kwargs)


# ============================================================================
# LLM Errors
# ============================================================================


class LLMFailure(SupportRAGError):
    """LLM completion failed"""

    def __init__(
        self,
        message: str,
        error_code: str = "LLM_ERROR",
        status_code: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code=error_code, **kwargs)
        self.status_code = status_code
        self.model = model


class LLMAuthError(LLMFailure):
    """LLM authentication failed (invalid API key, etc)"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="LLM_AUTH_ERROR", severity=ErrorSeverity.CRITICAL, **kwargs)


class LLMRateLimitError(LLMFailure):
    """LLM rate limit exceeded"""

    def __init__(
        self,
        message: str,
        retry_after_seconds: Optional[float] = None,
        error_code: str = "LLM_RATE_LIMIT",
        **kwargs,
    ):
        super().__init__(message, error_code=error_code, severity=ErrorSeverity.MEDIUM, **kwargs)
        self.retry_after_seconds = retry_after_seconds


class LLMQuotaExceededError(LLMRateLimitError):
    """LLM account quota exhausted"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="LLM_QUOTA_EXCEEDED", **kwargs)


class LLMTransientError(LLMFailure):
    """Timeout, connection error or 5xx from the LLM service"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="LLM_TRANSIENT_ERROR", severity=ErrorSeverity.MEDIUM, **kwargs)


# ============================================================================
# Error Utilities
# ============================================================================


def is_user_retryable(error: Exception) -> bool:
    """True when the same message may succeed if the user sends it again later"""
    return isinstance(error, (LLMRateLimitError, LLMTransientError, RetriableError))


def get_error_severity(error: Exception) -> ErrorSeverity:
    if isinstance(error, SupportRAGError):
        return error.severity
    return ErrorSeverity.HIGH


def needs_attention(error: Exception) -> bool:
    """Operator-facing errors (bad credentials, broken config, LLM outages)"""
    return get_error_severity(error) in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH)


def format_error_for_logging(error: Exception, request_id: Optional[str] = None) -> Dict[str, Any]:
    """Flatten an error (and its cause) into log fields"""
    fields: Dict[str, Any] = {"error_type": type(error).__name__}
    if request_id:
        fields["request_id"] = request_id

    if isinstance(error, SupportRAGError):
        fields.update(error_code=error.error_code, severity=error.severity.value, context=error.context)
        status_code = getattr(error, "status_code", None)
        if status_code is not None:
            fields["status_code"] = status_code

    cause = error.__cause__ or getattr(error, "cause", None)
    if cause is not None:
        fields["caused_by"] = {"type": type(cause).__name__, "message": str(cause)}

    return fields
