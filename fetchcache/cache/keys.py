"""
Deterministic cache key generation.

generate_key() serializes a parameter mapping into a canonical string:
keys are always sorted explicitly, nested mappings too, and strings are
JSON-quoted so separators inside values cannot produce collisions.
"""
import dataclasses
import json
import re
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

PAIR_SEPARATOR = "&"
NAMESPACE_SEPARATOR = "?"

# Top-level parameter names that can appear unquoted
_PLAIN_NAME = re.compile(r"^[A-Za-z0-9_.\-]+$")


def _serialize(value: Any) -> str:
    """Stable serialization of a single parameter value."""
    if value is None:
        return "null"
    # bool before int: True is an int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return _serialize(value.value)
    if isinstance(value, (int, float)):
        return json.dumps(value)
    if isinstance(value, Decimal):
        return f"d{value.normalize()}"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (datetime, date, time)):
        return f"{type(value).__name__}({json.dumps(value.isoformat())})"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return type(value).__qualname__ + _serialize(fields)
    if isinstance(value, Mapping):
        items = sorted((str(k), type(k).__name__, v) for k, v in value.items())
        return "{" + ",".join(
            f"{json.dumps(k, ensure_ascii=False)}:{_serialize(v)}"
            if type_name == "str" else
            f"{type_name}({json.dumps(k, ensure_ascii=False)}):{_serialize(v)}"
            for k, type_name, v in items
        ) + "}"
    if isinstance(value, list):
        return "[" + ",".join(_serialize(v) for v in value) + "]"
    if isinstance(value, tuple):
        return "(" + ",".join(_serialize(v) for v in value) + ")"
    if isinstance(value, (set, frozenset)):
        return "set[" + ",".join(sorted(_serialize(v) for v in value)) + "]"
    raise TypeError(f"Cannot build a cache key from {type(value).__name__}: {value!r}")


def _name(key: str) -> str:
    return key if _PLAIN_NAME.match(key) else json.dumps(key, ensure_ascii=False)


def generate_key(params: Optional[Mapping[str, Any]] = None, namespace: Optional[str] = None) -> str:
    """
    Generate a canonical cache key from parameters.

    Args:
        params: Parameter mapping (string keys)
        namespace: Optional prefix such as an endpoint path

    Returns:
        Key of the form "namespace?a=1&b=\"x\"" (or just the pairs)

    Raises:
        TypeError: For non-string keys or unserializable values
    """
    params = params or {}
    for key in params:
        if not isinstance(key, str):
            raise TypeError(f"Cache key parameters must be strings, got {type(key).__name__}")

    body = PAIR_SEPARATOR.join(
        f"{_name(key)}={_serialize(params[key])}" for key in sorted(params)
    )
    if namespace is None:
        return body
    return f"{namespace}{NAMESPACE_SEPARATOR}{body}"


def namespace_pattern(namespace: str) -> "re.Pattern[str]":
    """Regex matching every key generated under namespace."""
    return re.compile(f"^{re.escape(namespace)}{re.escape(NAMESPACE_SEPARATOR)}")
