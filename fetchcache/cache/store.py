"""
In-memory TTL cache store.

Lifecycle: create one store at application start (TTLCacheStore.from_settings)
and inject it into whatever needs it; call clear() or shutdown() on the
owning manager when the application stops. There is no module-level instance,
so tests build isolated stores.

The store is used from a single event loop and never suspends inside its
synchronous operations, so it needs no locking.
"""
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from fetchcache.utils.helpers import estimate_size
from .core import MISS, CacheEntry, CacheStats
from .coalescer import RequestDeduplicator

logger = logging.getLogger("cache.store")

DEFAULT_TTL_SECONDS = 300.0  # 5 minutes

KeyMatcher = Union[str, "re.Pattern[str]", Callable[[str], bool]]


def _compile_matcher(matcher: KeyMatcher) -> Callable[[str], bool]:
    if isinstance(matcher, str):
        return re.compile(matcher).search
    if isinstance(matcher, re.Pattern):
        return matcher.search
    if callable(matcher):
        return matcher
    raise TypeError(f"Unsupported key matcher: {matcher!r}")


class TTLCacheStore:
    """
    Key/value store where every entry expires after its TTL.

    - Expired entries are logically absent; they are removed lazily on
      get()/has(), by sweep_expired(), or when capacity is exceeded
    - Hit/miss counters persist across clear(); use reset_stats() to zero them
    - preload() shares one loader call among concurrent callers
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: Optional[int] = None,
        eviction_fraction: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
        deduplicator: Optional[RequestDeduplicator] = None,
    ):
        """
        Initialize the store.

        Args:
            default_ttl: TTL in seconds used when set() gets none
            max_entries: Capacity bound, None for unbounded
            eviction_fraction: Share of entries evicted (oldest first)
                               when capacity is exceeded
            clock: Monotonic time source in seconds
            deduplicator: Shared deduplicator for preload()
        """
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if not 0 < eviction_fraction <= 1:
            raise ValueError("eviction_fraction must be in (0, 1]")

        self._entries: Dict[str, CacheEntry] = {}
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._eviction_fraction = eviction_fraction
        self._clock = clock
        self._deduplicator = deduplicator or RequestDeduplicator()
        self._stats = self._empty_stats()

    @classmethod
    def from_settings(cls, settings=None, **kwargs) -> "TTLCacheStore":
        """Create a store configured from application settings."""
        if settings is None:
            from config.settings import settings
        return cls(
            default_ttl=settings.cache_default_ttl_seconds,
            max_entries=settings.cache_max_entries,
            eviction_fraction=settings.cache_eviction_fraction,
            **kwargs,
        )

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "evictions": 0,
        }

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    def now(self) -> float:
        """Current time on the store's clock."""
        return self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    # ========================================================================
    # Basic Operations
    # ========================================================================

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Store value under key, replacing any existing entry.

        Args:
            key: Cache key
            value: Value to store
            ttl: Seconds until expiry (default TTL if None)
            metadata: Extra information kept with the entry
        """
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        self._entries[key] = CacheEntry(
            value=value,
            created_at=self._clock(),
            ttl=ttl,
            approx_size=estimate_size(value),
            metadata=dict(metadata or {}),
        )
        self._stats["sets"] += 1
        logger.debug(f"CACHE SET: {key} (TTL: {ttl}s)")

        if self._max_entries is not None and len(self._entries) > self._max_entries:
            self._enforce_capacity()

    def get(self, key: str, default: Any = MISS) -> Any:
        """
        Return the value for key, or default (MISS) if absent or expired.

        Expired entries are removed. Counts one hit or one miss.
        """
        entry = self._valid_entry(key)
        if entry is None:
            self._stats["misses"] += 1
            return default
        self._stats["hits"] += 1
        logger.debug(f"CACHE HIT: {key}")
        return entry.value

    def has(self, key: str) -> bool:
        """True if key holds a valid entry. Does not touch counters."""
        return self._valid_entry(key) is not None

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the valid entry for key without counting or evicting."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        return entry

    def delete(self, key: str) -> bool:
        """
        Remove key. Idempotent.

        Returns:
            True if an entry was present
        """
        if self._entries.pop(key, None) is None:
            return False
        self._stats["deletes"] += 1
        logger.debug(f"CACHE DELETE: {key}")
        return True

    def clear(self) -> int:
        """
        Remove all entries. Counters are kept.

        Returns:
            Number of entries cleared
        """
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def _valid_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            # Lazy eviction
            del self._entries[key]
            self._stats["evictions"] += 1
            logger.debug(f"CACHE EXPIRED: {key}")
            return None
        return entry

    # ========================================================================
    # Bulk Invalidation
    # ========================================================================

    def invalidate_pattern(self, matcher: KeyMatcher) -> int:
        """
        Remove all entries whose key matches.

        Args:
            matcher: Regex string, compiled pattern (matched with search)
                     or predicate on the key

        Returns:
            Number of entries invalidated
        """
        matches = _compile_matcher(matcher)
        to_delete = [key for key in self._entries if matches(key)]
        for key in to_delete:
            del self._entries[key]
        self._stats["deletes"] += len(to_delete)
        if to_delete:
            logger.info(f"Invalidated {len(to_delete)} entries matching {matcher!r}")
        return len(to_delete)

    def sweep_expired(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired:
            del self._entries[key]
        self._stats["evictions"] += len(expired)
        if expired:
            logger.debug(f"Swept {len(expired)} expired entries")
        return len(expired)

    def _enforce_capacity(self) -> None:
        self.sweep_expired()
        if len(self._entries) <= self._max_entries:
            return

        # Oldest first; at least enough to get back under the limit
        count = max(
            int(self._max_entries * self._eviction_fraction),
            len(self._entries) - self._max_entries,
        )
        oldest = sorted(self._entries.items(), key=lambda item: item[1].created_at)[:count]
        for key, _ in oldest:
            del self._entries[key]
        self._stats["evictions"] += len(oldest)
        logger.info(f"Capacity reached, evicted {len(oldest)} oldest entries")

    # ========================================================================
    # Loading
    # ========================================================================

    async def preload(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value for key, loading and storing it on a miss.

        Concurrent calls for the same key while the loader runs share one
        loader call. A loader failure reaches every waiting caller and
        leaves nothing cached.

        Args:
            key: Cache key
            loader: Coroutine function producing the value
            ttl: TTL for the stored value (default TTL if None)

        Returns:
            The cached or freshly loaded value
        """
        cached = self.get(key)
        if cached is not MISS:
            return cached

        async def load_and_store() -> Any:
            value = await loader()
            self.set(key, value, ttl)
            return value

        return await self._deduplicator.run_deduped(key, load_and_store)

    # ========================================================================
    # Statistics
    # ========================================================================

    def reset_stats(self) -> None:
        """Zero the hit/miss/set/delete/eviction and dedup counters."""
        self._stats = self._empty_stats()
        self._deduplicator.reset_stats()

    def get_stats(self) -> CacheStats:
        """Compute statistics without evicting anything."""
        now = self._clock()
        entries = list(self._entries.values())
        valid = sum(1 for entry in entries if entry.is_valid(now))
        dedup = self._deduplicator.get_stats()

        return CacheStats(
            total_entries=len(entries),
            valid_entries=valid,
            expired_entries=len(entries) - valid,
            hit_count=self._stats["hits"],
            miss_count=self._stats["misses"],
            deduped_count=dedup["deduplicated_requests"],
            request_count=dedup["total_requests"],
            set_count=self._stats["sets"],
            delete_count=self._stats["deletes"],
            eviction_count=self._stats["evictions"],
            total_size=sum(len(key) * 2 + entry.approx_size for key, entry in self._entries.items()),
            in_flight=dedup["active_requests"],
            oldest_entry_age=max((entry.age(now) for entry in entries), default=None),
            newest_entry_age=min((entry.age(now) for entry in entries), default=None),
        )
