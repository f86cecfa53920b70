"""
Resilient data-fetch-and-cache layer for the wallet, pending-bills and
promotional-messages views.
"""
from .resilience import (
    CancellationToken,
    DegradationContext,
    ErrorCategory,
    FetchCancelled,
    FetchError,
    RetryExhaustedError,
    RetryPolicy,
    classify_error,
    decide,
    describe_error,
    fetch_with_retry,
)
from .cache import (
    MISS,
    CacheManager,
    FetchResult,
    RequestDeduplicator,
    TTLCacheStore,
    generate_key,
)
from .schemas import DegradationDecision, DegradationStrategy, ErrorDisplay
from .transport import HttpTransport

__all__ = [
    "CancellationToken",
    "DegradationContext",
    "ErrorCategory",
    "FetchCancelled",
    "FetchError",
    "RetryExhaustedError",
    "RetryPolicy",
    "classify_error",
    "decide",
    "describe_error",
    "fetch_with_retry",
    "MISS",
    "CacheManager",
    "FetchResult",
    "RequestDeduplicator",
    "TTLCacheStore",
    "generate_key",
    "DegradationDecision",
    "DegradationStrategy",
    "ErrorDisplay",
    "HttpTransport",
]
