"""Tenacity retry policy for transient application store failures.

Only connection-level errors are retried. Integrity errors, conditional-update
conflicts and every domain error surface on the first attempt, and the last
exception is re-raised unchanged so ``database_resilient`` can translate it.
"""

from dataclasses import dataclass
from typing import Tuple, Type

from prometheus_client import Counter
from sqlalchemy.exc import DisconnectionError, TimeoutError as SQLTimeoutError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

from umkm_licensing.observability.logging import get_logger

logger = get_logger(__name__)

retry_attempts_total = Counter(
    "umkm_retry_attempts_total",
    "Store calls retried after a transient failure",
    ["operation"]
)

retry_exhausted_total = Counter(
    "umkm_retry_exhausted_total",
    "Store calls that still failed after the last attempt",
    ["operation", "error_type"]
)

TRANSIENT_STORE_ERRORS: Tuple[Type[BaseException], ...] = (
    DisconnectionError,
    SQLTimeoutError,
    ConnectionError,
    OSError,
)


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0
    jitter: bool = True


class ExponentialBackoffPolicy:
    """Builds tenacity decorators for one class of retryable errors."""

    def __init__(
        self,
        config: RetryConfig = RetryConfig(),
        retryable: Tuple[Type[BaseException], ...] = TRANSIENT_STORE_ERRORS,
    ):
        self.config = config
        self.retryable = retryable

    def decorator(self, operation: str):
        if self.config.jitter:
            wait = wait_random_exponential(multiplier=self.config.base_delay, max=self.config.max_delay)
        else:
            wait = wait_exponential(multiplier=self.config.base_delay, max=self.config.max_delay)

        def before_sleep(state: RetryCallState) -> None:
            retry_attempts_total.labels(operation=operation).inc()
            logger.warning(
                "Retrying store call",
                operation=operation,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()),
            )

        def after(state: RetryCallState) -> None:
            if state.attempt_number < self.config.max_attempts:
                return
            if state.outcome is not None and state.outcome.failed:
                retry_exhausted_total.labels(
                    operation=operation,
                    error_type=type(state.outcome.exception()).__name__,
                ).inc()

        return retry(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait,
            retry=retry_if_exception_type(self.retryable),
            before_sleep=before_sleep,
            after=after,
            reraise=True,
        )


def create_database_retry_policy(config: RetryConfig | None = None) -> ExponentialBackoffPolicy:
    return ExponentialBackoffPolicy(config=config or RetryConfig())
