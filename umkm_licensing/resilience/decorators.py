"""Decorators for applying resilience patterns to store calls."""

import functools
import time
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from umkm_licensing.errors import StoreError
from umkm_licensing.observability.logging import get_logger
from umkm_licensing.observability.metrics import (
    store_errors_total,
    store_operation_duration_seconds,
)
from umkm_licensing.observability.tracing import get_tracer
from .retry_policies import ExponentialBackoffPolicy, create_database_retry_policy

tracer = get_tracer(__name__)
logger = get_logger(__name__)

T = TypeVar('T')


def database_resilient(
    operation_name: Optional[str] = None,
    policy: Optional[ExponentialBackoffPolicy] = None,
):
    """Decorator for async database operations.

    Retries transient disconnects with the database retry policy, records the
    call duration and translates persistence failures into ``StoreError``.
    Domain errors raised by the wrapped function pass through untouched.

    Args:
        operation_name: Operation name for metrics and spans
        policy: Retry policy (defaults to ``create_database_retry_policy()``)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        op_name = operation_name or func.__name__
        retry_policy = policy or create_database_retry_policy()
        retrying = retry_policy.decorator(op_name)(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.perf_counter()
            with tracer.start_as_current_span(f"store.{op_name}"):
                try:
                    return await retrying(*args, **kwargs)
                except (SQLAlchemyError, ConnectionError, OSError) as e:
                    store_errors_total.labels(operation=op_name).inc()
                    logger.error(
                        "Store operation failed",
                        operation=op_name,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    raise StoreError(f"{op_name} failed: {e}") from e
                finally:
                    store_operation_duration_seconds.labels(operation=op_name).observe(
                        time.perf_counter() - start
                    )

        return wrapper

    return decorator
