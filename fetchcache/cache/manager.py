"""
Main fetch orchestration: cache, deduplication, retries and degradation.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from fetchcache.resilience.cancellation import CancellationToken
from fetchcache.resilience.degradation import DegradationContext, decide
from fetchcache.resilience.errors import FetchCancelled, classify_error
from fetchcache.resilience.retry import RetryPolicy, fetch_with_retry
from fetchcache.schemas import DegradationDecision
from fetchcache.utils.helpers import sanitize_for_logging
from .core import MISS, CacheMeta, CacheSource
from .keys import generate_key, namespace_pattern
from .store import TTLCacheStore
from .ttl_policies import (
    customer_scope_pattern,
    get_category_for_endpoint,
    get_ttl_for_category,
)

logger = logging.getLogger("cache.manager")

# (endpoint, params, token) -> payload
RequestFn = Callable[[str, Dict[str, Any], CancellationToken], Awaitable[Any]]


@dataclass
class FetchResult:
    """What a consumer view gets back from CacheManager.fetch()."""
    data: Any
    meta: CacheMeta
    decision: Optional[DegradationDecision] = None
    error: Optional[BaseException] = None
    cancelled: bool = False

    @property
    def from_cache(self) -> bool:
        return self.meta.cache_source == CacheSource.FRESH.value

    @property
    def is_degraded(self) -> bool:
        return self.decision is not None and not self.cancelled


class CacheManager:
    """
    Main fetch orchestration with:
    - Endpoint-based TTLs
    - Request deduplication for concurrent duplicate requests
    - Retries with backoff and cooperative cancellation
    - Graceful degradation on terminal failure
    """

    def __init__(
        self,
        store: TTLCacheStore,
        request_fn: RequestFn,
        retry_policy: Optional[RetryPolicy] = None,
        fallback_ttl: float = 30.0,
    ):
        """
        Initialize the cache manager.

        Args:
            store: Cache store (its deduplicator is shared)
            request_fn: Network collaborator raising tagged FetchErrors
            retry_policy: Backoff configuration for upstream calls
            fallback_ttl: TTL for fallback data written after a failure
        """
        self._store = store
        self._request_fn = request_fn
        self._retry_policy = retry_policy or RetryPolicy()
        self._fallback_ttl = fallback_ttl

    @classmethod
    def from_settings(cls, request_fn: RequestFn, settings=None) -> "CacheManager":
        """Create a manager and its store from application settings."""
        if settings is None:
            from config.settings import settings
        return cls(
            store=TTLCacheStore.from_settings(settings),
            request_fn=request_fn,
            retry_policy=RetryPolicy.from_settings(settings),
            fallback_ttl=settings.cache_fallback_ttl_seconds,
        )

    @property
    def store(self) -> TTLCacheStore:
        return self._store

    async def fetch(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        token: Optional[CancellationToken] = None,
        force_refresh: bool = False,
        use_cache: bool = True,
        ttl: Optional[float] = None,
        fallback_data: Any = None,
        context: Optional[DegradationContext] = None,
    ) -> FetchResult:
        """
        Get data from cache or fetch from upstream.

        Args:
            endpoint: API endpoint path
            params: Query parameters
            token: Cancellation token for this caller
            force_refresh: Bypass cached data (still deduplicated)
            use_cache: Read and write the cache at all
            ttl: Override the endpoint's TTL
            fallback_data: Static payload offered to the degradation policy
            context: State of the calling view for the degradation policy

        Returns:
            FetchResult; never raises for fetch failures or cancellation
        """
        params = dict(params or {})
        cache_key = generate_key(params, namespace=endpoint)
        ttl = ttl or get_ttl_for_category(get_category_for_endpoint(endpoint))
        token = token or CancellationToken()

        if use_cache and not force_refresh:
            cached = self._store.get(cache_key)
            if cached is not MISS:
                entry = self._store.peek(cache_key)
                is_fallback = entry is not None and entry.metadata.get("fallback", False)
                logger.debug(f"CACHE HIT: {cache_key}")
                source = CacheSource.FALLBACK if is_fallback else CacheSource.FRESH
                return FetchResult(
                    data=cached,
                    meta=self._make_meta(
                        source, endpoint, entry.ttl if entry else ttl,
                        entry.age(self._store.now()) if entry else 0,
                    ),
                )
            logger.info(f"CACHE MISS: {cache_key}")
        elif force_refresh:
            logger.info(f"FORCE REFRESH: {cache_key}")

        async def fetch_upstream() -> Any:
            data = await fetch_with_retry(
                lambda: self._request_fn(endpoint, params, token),
                token=token,
                policy=self._retry_policy,
                description=endpoint,
            )
            if use_cache:
                self._store.set(cache_key, data, ttl, metadata={"endpoint": endpoint})
            return data

        # Caching callers only join fetches that store their result
        dedup_key = cache_key if use_cache else f"{cache_key}#uncached"
        try:
            data = await self._store.deduplicator.run_deduped(dedup_key, fetch_upstream, token=token)
        except FetchCancelled:
            logger.debug(f"Fetch cancelled: {cache_key}")
            return FetchResult(
                data=None,
                meta=self._make_meta(CacheSource.NONE, endpoint, ttl, 0),
                cancelled=True,
            )
        except Exception as exc:
            return self._degrade(cache_key, endpoint, params, exc, fallback_data, context, use_cache)

        return FetchResult(data=data, meta=self._make_meta(CacheSource.UPSTREAM, endpoint, ttl, 0))

    def _degrade(
        self,
        cache_key: str,
        endpoint: str,
        params: Dict[str, Any],
        error: Exception,
        fallback_data: Any,
        context: Optional[DegradationContext],
        use_cache: bool,
    ) -> FetchResult:
        """Apply the degradation policy to a terminal failure."""
        context = context or DegradationContext(feature=endpoint)
        decision = decide(context, error, fallback_data)
        logger.warning(
            f"Fetch failed for {endpoint} [{classify_error(error).value}] "
            f"params={sanitize_for_logging(params)} -> {decision.strategy.value}: {error}"
        )

        if decision.use_fallback:
            if use_cache:
                self._store.set(
                    cache_key,
                    decision.fallback_data,
                    self._fallback_ttl,
                    metadata={"endpoint": endpoint, "fallback": True},
                )
            source = CacheSource.FALLBACK
        else:
            source = CacheSource.NONE

        return FetchResult(
            data=decision.fallback_data,
            meta=self._make_meta(source, endpoint, self._fallback_ttl, 0),
            decision=decision,
            error=error,
        )

    async def preload(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Warm the cache ahead of navigation with the longer preload TTL.

        Unlike fetch(), errors propagate to the caller.
        """
        params = dict(params or {})
        cache_key = generate_key(params, namespace=endpoint)
        ttl = get_ttl_for_category(get_category_for_endpoint(endpoint), preload=True)
        token = CancellationToken()

        return await self._store.preload(
            cache_key,
            lambda: fetch_with_retry(
                lambda: self._request_fn(endpoint, params, token),
                token=token,
                policy=self._retry_policy,
                description=endpoint,
            ),
            ttl=ttl,
        )

    def _make_meta(
        self,
        source: CacheSource,
        endpoint: str,
        ttl: float,
        age: float,
    ) -> CacheMeta:
        """Create cache metadata for a result."""
        return CacheMeta(
            last_updated=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            cache_source=source.value,
            endpoint=endpoint,
            ttl_seconds=ttl,
            age_seconds=age,
        )

    # ========================================================================
    # Invalidation
    # ========================================================================

    def invalidate(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> bool:
        """
        Invalidate a specific cache entry.

        Returns:
            True if entry was found and removed
        """
        removed = self._store.delete(generate_key(dict(params or {}), namespace=endpoint))
        if removed:
            logger.info(f"Invalidated cache: {endpoint}")
        return removed

    def invalidate_endpoint(self, endpoint: str) -> int:
        """Invalidate every cached parameter variant of an endpoint."""
        return self._store.invalidate_pattern(namespace_pattern(endpoint))

    def invalidate_customer(self, customer_id: Any) -> int:
        """Invalidate all cached data scoped to one customer."""
        if customer_id is None or customer_id == "":
            return 0
        return self._store.invalidate_pattern(customer_scope_pattern(customer_id))

    def get_stats(self) -> Dict[str, Any]:
        """Get cache and deduplication statistics."""
        return {
            **self._store.get_stats().to_dict(),
            "coalescer": self._store.deduplicator.get_stats(),
        }

    def shutdown(self) -> int:
        """Cancel in-flight requests and drop all cached entries."""
        cancelled = self._store.deduplicator.cancel_all()
        self._store.clear()
        return cancelled
