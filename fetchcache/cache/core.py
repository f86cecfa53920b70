"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class _Miss:
    """Sentinel returned by the store for an absent or expired key."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


class CacheSource(Enum):
    """Where data handed to a consumer came from."""
    FRESH = "fresh"         # Valid cache entry
    UPSTREAM = "upstream"   # Fetched from the API
    FALLBACK = "fallback"   # Degraded: static fallback dataset
    NONE = "none"           # Nothing to show (error or cancelled)


@dataclass(frozen=True)
class CacheEntry:
    """
    Represents a cached item with metadata for TTL tracking.

    Entries are never mutated; a new set() replaces the entry.
    Times come from the owning store's monotonic clock.
    """
    value: Any
    created_at: float
    ttl: float
    approx_size: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_valid(self, now: float) -> bool:
        """Check if the entry is within its TTL."""
        return now < self.expires_at

    def age(self, now: float) -> float:
        """Seconds since the entry was stored."""
        return now - self.created_at


@dataclass(frozen=True)
class CacheStats:
    """
    Read-only snapshot of store contents and running counters.
    """
    total_entries: int
    valid_entries: int
    expired_entries: int
    hit_count: int
    miss_count: int
    deduped_count: int
    request_count: int
    set_count: int = 0
    delete_count: int = 0
    eviction_count: int = 0
    total_size: int = 0
    in_flight: int = 0
    oldest_entry_age: Optional[float] = None
    newest_entry_age: Optional[float] = None

    @property
    def hit_rate(self) -> float:
        """Fraction of get() calls that were hits (0.0 when none yet)."""
        lookups = self.hit_count + self.miss_count
        return self.hit_count / lookups if lookups else 0.0

    @property
    def dedup_rate(self) -> float:
        """Fraction of loader requests that joined an in-flight call."""
        return self.deduped_count / self.request_count if self.request_count else 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "totalEntries": self.total_entries,
            "validEntries": self.valid_entries,
            "expiredEntries": self.expired_entries,
            "hitCount": self.hit_count,
            "missCount": self.miss_count,
            "hitRate": round(self.hit_rate, 4),
            "dedupedCount": self.deduped_count,
            "dedupRate": round(self.dedup_rate, 4),
            "sets": self.set_count,
            "deletes": self.delete_count,
            "evictions": self.eviction_count,
            "totalSize": self.total_size,
            "inFlight": self.in_flight,
        }


@dataclass
class CacheMeta:
    """
    Metadata about a cache access, included in fetch results.
    """
    last_updated: str  # ISO timestamp
    cache_source: str  # "fresh", "upstream", "fallback" or "none"
    endpoint: Optional[str] = None
    ttl_seconds: Optional[float] = None
    age_seconds: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        result = {
            "lastUpdated": self.last_updated,
            "cacheSource": self.cache_source,
        }
        # Include debug info if available
        if self.endpoint:
            result["_debug"] = {
                "endpoint": self.endpoint,
                "ttl": self.ttl_seconds,
                "age": round(self.age_seconds, 1) if self.age_seconds else None,
            }
        return result
