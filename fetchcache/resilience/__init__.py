"""
Retry, cancellation, error classification and graceful degradation.
"""
from .errors import (
    ErrorCategory,
    ErrorSeverity,
    FetchError,
    NetworkError,
    AuthenticationError,
    ServerError,
    RateLimitError,
    ValidationError,
    FetchCancelled,
    RetryExhaustedError,
    classify_error,
    is_retryable,
    error_for_status,
)
from .cancellation import CancellationToken
from .retry import RetryAttempt, RetryPolicy, RetryState, fetch_with_retry
from .degradation import DegradationContext, decide, describe_error

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorSeverity",
    "FetchError",
    "NetworkError",
    "AuthenticationError",
    "ServerError",
    "RateLimitError",
    "ValidationError",
    "FetchCancelled",
    "RetryExhaustedError",
    "classify_error",
    "is_retryable",
    "error_for_status",
    # Cancellation
    "CancellationToken",
    # Retry
    "RetryAttempt",
    "RetryPolicy",
    "RetryState",
    "fetch_with_retry",
    # Degradation
    "DegradationContext",
    "decide",
    "describe_error",
]
