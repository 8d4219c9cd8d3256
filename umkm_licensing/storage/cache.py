# ==== CACHE PORT AND BACKENDS ==== #

"""
Cache backends for the cache-aside repository.

Values are stored as JSON strings produced by pydantic, and decoded back into
the schema the caller asks for, so domain records round-trip without
hand-written codecs. Every backend failure is reported as ``CacheError``;
deciding to ignore it is the repository's job.
"""

import fnmatch
import time
from functools import lru_cache
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_json

from umkm_licensing.errors import CacheError
from umkm_licensing.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerError,
    get_circuit_breaker,
)


@lru_cache(maxsize=64)
def _adapter(schema: Any) -> TypeAdapter:
    return TypeAdapter(schema)


def encode_value(value: Any) -> str:
    """Serialize a pydantic model, list of models or plain value to JSON."""
    return to_json(value).decode("utf-8")


def decode_value(raw: str, schema: Any) -> Any:
    """Validate a cached JSON payload against ``schema``."""
    return _adapter(schema).validate_json(raw)


# ==== CACHE PORT ==== #


class CachePort(Protocol):
    """Key/value cache with TTLs and glob-pattern deletion."""

    async def get(self, key: str, schema: Any) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def delete_pattern(self, pattern: str) -> int:
        ...


# ==== REDIS BACKEND ==== #


REDIS_BREAKER_CONFIG = CircuitBreakerConfig(
    failure_threshold=3,
    recovery_timeout=5.0,
    expected_exception=redis.RedisError,
    success_threshold=2,
)


class RedisCache:
    """
    Redis-backed cache.

    Calls go through a circuit breaker so a dead Redis fails fast. Pattern
    deletion walks the keyspace with ``SCAN MATCH`` and deletes in batches;
    ``KEYS`` is never used.
    """

    def __init__(
        self,
        client: redis.Redis,
        breaker: CircuitBreaker | None = None,
        scan_batch_size: int = 500,
    ):
        self._client = client
        self._breaker = breaker or get_circuit_breaker("redis", REDIS_BREAKER_CONFIG)
        self._scan_batch_size = scan_batch_size

    async def _guarded(self, operation: str, key: str, func: Callable, *args: Any) -> Any:
        try:
            return await self._breaker.call(func, *args)
        except (redis.RedisError, OSError, CircuitBreakerError) as e:
            raise CacheError(operation, key, e) from e

    async def get(self, key: str, schema: Any) -> Optional[Any]:
        raw = await self._guarded("get", key, self._client.get, key)
        if raw is None:
            return None
        try:
            return decode_value(raw, schema)
        except PydanticValidationError as e:
            raise CacheError("decode", key, e) from e

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = encode_value(value)
        await self._guarded("set", key, self._set, key, payload, ttl_seconds)

    async def _set(self, key: str, payload: str, ttl_seconds: int) -> None:
        await self._client.set(key, payload, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._guarded("delete", key, self._client.delete, key)

    async def delete_pattern(self, pattern: str) -> int:
        return await self._guarded("delete_pattern", pattern, self._scan_delete, pattern)

    async def _scan_delete(self, pattern: str) -> int:
        deleted = 0
        batch: list[str] = []
        async for key in self._client.scan_iter(match=pattern, count=self._scan_batch_size):
            batch.append(key)
            if len(batch) >= self._scan_batch_size:
                deleted += await self._client.delete(*batch)
                batch = []
        if batch:
            deleted += await self._client.delete(*batch)
        return deleted


# ==== IN-PROCESS BACKENDS ==== #


class InMemoryCache:
    """
    Process-local cache with the same semantics as ``RedisCache``.

    Entries hold the JSON payload and an absolute expiry taken from an
    injectable monotonic clock. Pattern deletion uses ``fnmatch`` over the
    live keys.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return payload

    async def get(self, key: str, schema: Any) -> Optional[Any]:
        raw = self._live(key)
        if raw is None:
            return None
        try:
            return decode_value(raw, schema)
        except PydanticValidationError as e:
            raise CacheError("decode", key, e) from e

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (encode_value(value), self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        matched = [
            key for key in list(self._entries)
            if self._live(key) is not None and fnmatch.fnmatchcase(key, pattern)
        ]
        for key in matched:
            del self._entries[key]
        return len(matched)

    def keys(self) -> list[str]:
        """Live keys, for diagnostics and tests."""
        return [key for key in list(self._entries) if self._live(key) is not None]


class NullCache:
    """Cache that stores nothing; used when caching is disabled."""

    async def get(self, key: str, schema: Any) -> Optional[Any]:
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        return None

    async def delete(self, key: str) -> None:
        return None

    async def delete_pattern(self, pattern: str) -> int:
        return 0
