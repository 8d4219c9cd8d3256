# ==== CACHE-ASIDE HELPER ==== #

"""
Read-through / write-invalidate helper shared by cached repositories.

The cache is never authoritative: a failed cache read falls back to the
loader, a failed cache write or invalidation is logged and counted, and
neither ever fails the caller.
"""

from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from umkm_licensing.errors import CacheError
from umkm_licensing.observability.logging import get_logger
from umkm_licensing.observability.metrics import (
    cache_errors_total,
    cache_hits_total,
    cache_invalidations_total,
    cache_misses_total,
)
from umkm_licensing.storage.cache import CachePort


logger = get_logger(__name__)

T = TypeVar("T")


class CacheAside:
    """Wraps a ``CachePort`` with the cache-aside read and invalidation rules."""

    def __init__(self, cache: CachePort):
        self.cache = cache

    async def read_through(
        self,
        operation: str,
        key: str,
        schema: Any,
        ttl_seconds: int,
        loader: Callable[[], Awaitable[T]],
        cache_none: bool = False,
    ) -> T:
        """
        Return the cached value for ``key`` or load, cache and return it.

        Args:
            operation: Metric label for the read (e.g. ``get_by_id``)
            key: Cache key
            schema: Type the cached JSON is validated against
            ttl_seconds: TTL applied when populating the cache
            loader: Store call producing the authoritative value
            cache_none: Whether a ``None`` result is worth caching

        Returns:
            The cached or freshly loaded value
        """
        cached = await self._get(operation, key, schema)
        if cached is not None:
            cache_hits_total.labels(operation=operation).inc()
            return cached

        cache_misses_total.labels(operation=operation).inc()
        logger.debug("Cache miss", operation=operation, key=key)

        value = await loader()
        if value is not None or cache_none:
            await self._set(operation, key, value, ttl_seconds)
        return value

    async def _get(self, operation: str, key: str, schema: Any) -> Optional[Any]:
        try:
            return await self.cache.get(key, schema)
        except CacheError as e:
            self._record_failure(operation, e)
            return None

    async def _set(self, operation: str, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.cache.set(key, value, ttl_seconds)
        except CacheError as e:
            self._record_failure(operation, e)

    async def invalidate(self, keys: Iterable[str] = (), patterns: Iterable[str] = ()) -> None:
        """Delete every key and pattern, continuing past individual failures."""
        for key in keys:
            cache_invalidations_total.labels(kind="key").inc()
            try:
                await self.cache.delete(key)
            except CacheError as e:
                self._record_failure("invalidate", e)

        for pattern in patterns:
            cache_invalidations_total.labels(kind="pattern").inc()
            try:
                await self.cache.delete_pattern(pattern)
            except CacheError as e:
                self._record_failure("invalidate_pattern", e)

    @staticmethod
    def _record_failure(operation: str, error: CacheError) -> None:
        cache_errors_total.labels(operation=operation).inc()
        logger.warning(
            "Cache operation failed, continuing without cache",
            operation=operation,
            cache_operation=error.operation,
            key=error.key,
            error=str(error.cause),
        )
