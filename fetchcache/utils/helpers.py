"""
Utility helper functions for safe data handling.
"""
import json
from typing import Any, Mapping

# Substrings that mark a field as sensitive in logged context
SENSITIVE_FIELDS = (
    "password", "token", "authorization", "auth", "secret", "key",
    "customer_id", "customerid", "user_id", "userid", "email",
    "phone", "address", "ssn", "credit_card", "payment",
)

REDACTED = "[REDACTED]"


def safe_str(value: Any, default: str = "") -> str:
    """
    Safely convert value to string, handling None.

    Args:
        value: Any value to convert
        default: Default string if value is None

    Returns:
        String representation or default
    """
    if value is None:
        return default
    return str(value)


def estimate_size(value: Any) -> int:
    """
    Estimate the in-memory footprint of a cached value in bytes.

    Uses the JSON length as a rough proxy (two bytes per character).
    Values that cannot be serialized fall back to their repr.

    Args:
        value: Any value to measure

    Returns:
        Approximate size in bytes
    """
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    return len(text) * 2


def sanitize_for_logging(data: Any) -> Any:
    """
    Remove sensitive information from data before it is logged.

    Mapping keys containing any of SENSITIVE_FIELDS are replaced with
    "[REDACTED]". Nested mappings and lists are sanitized recursively.

    Args:
        data: Context to sanitize

    Returns:
        A sanitized copy safe for logging
    """
    if isinstance(data, Mapping):
        sanitized = {}
        for key, value in data.items():
            lowered = safe_str(key).lower()
            if any(field in lowered for field in SENSITIVE_FIELDS):
                sanitized[key] = REDACTED
            else:
                sanitized[key] = sanitize_for_logging(value)
        return sanitized
    if isinstance(data, (list, tuple)):
        return [sanitize_for_logging(item) for item in data]
    return data
