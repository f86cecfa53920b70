"""
TTL cache store with canonical keys, request deduplication and fetch orchestration.
"""
from .core import MISS, CacheEntry, CacheMeta, CacheSource, CacheStats
from .keys import generate_key, namespace_pattern
from .coalescer import InFlightRequest, RequestDeduplicator
from .store import TTLCacheStore
from .ttl_policies import (
    TTL_CONFIG,
    ResourceCategory,
    get_ttl_for_category,
    get_category_for_endpoint,
)
from .manager import CacheManager, FetchResult

__all__ = [
    # Core types
    "MISS",
    "CacheEntry",
    "CacheMeta",
    "CacheSource",
    "CacheStats",
    # Keys
    "generate_key",
    "namespace_pattern",
    # Deduplication
    "InFlightRequest",
    "RequestDeduplicator",
    # Store
    "TTLCacheStore",
    # TTL policies
    "TTL_CONFIG",
    "ResourceCategory",
    "get_ttl_for_category",
    "get_category_for_endpoint",
    # Manager
    "CacheManager",
    "FetchResult",
]
