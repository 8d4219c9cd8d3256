# ==== REDIS CLIENT FOR CACHING ==== #

"""
Redis client for the cache-aside layer.

The client is created lazily from ``settings.REDIS_URL`` and shared across
the process. It is created without a ping so that an unavailable Redis only
degrades caching instead of blocking startup.
"""

from typing import Any, Dict, Optional

import redis.asyncio as redis

from umkm_licensing.observability.logging import get_logger
from umkm_licensing.settings import settings

logger = get_logger(__name__)


# ==== GLOBAL CLIENT INSTANCE ==== #

_redis_client: Optional[redis.Redis] = None


def ssl_options(redis_url: str, verify: bool = True) -> Dict[str, Any]:
    """
    Extra client options for TLS connections.

    Certificates are verified with redis-py defaults unless ``verify`` is
    off, which some managed Redis offerings with self-signed certificates
    need. Plain ``redis://`` URLs never get TLS options.
    """
    if not redis_url.startswith("rediss://") or verify:
        return {}
    return {
        "ssl_cert_reqs": None,
        "ssl_check_hostname": False,
    }


def get_redis_client(url: str | None = None, verify_ssl: bool | None = None) -> redis.Redis:
    """
    Get the shared Redis client instance.

    Args:
        url: Override for ``settings.REDIS_URL``
        verify_ssl: Override for ``settings.REDIS_SSL_VERIFY``

    Returns:
        redis.Redis: Client decoding responses to ``str``
    """
    global _redis_client

    if _redis_client is None:
        redis_url = url or settings.REDIS_URL
        verify = settings.REDIS_SSL_VERIFY if verify_ssl is None else verify_ssl

        # --► SSL CONFIGURATION FOR MANAGED REDIS
        ssl_config = ssl_options(redis_url, verify)
        if ssl_config:
            logger.warning("Redis TLS certificate verification is disabled")

        _redis_client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
            **ssl_config
        )

    return _redis_client


async def close_redis_client() -> None:
    """Close Redis client connection and reset the shared instance."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
