"""
Backend circuit breaker.

The cache sits in front of the application store and is never authoritative,
so a dead Redis should cost one fast ``CircuitBreakerError`` per call rather
than a socket timeout per request. Breakers are named and kept in a process
registry so ``/readyz`` can report them.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from umkm_licensing.observability.logging import get_logger
from umkm_licensing.observability.metrics import (
    breaker_rejections_total,
    breaker_state_changes_total,
)

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """Raised instead of calling a backend whose breaker is open."""

    def __init__(self, name: str, retry_in: float):
        self.name = name
        self.retry_in = retry_in
        super().__init__(f"Circuit '{name}' is open, retrying in {retry_in:.1f}s")


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    expected_exception: type = Exception
    success_threshold: int = 3


class CircuitBreaker:
    """
    Count consecutive backend failures and short-circuit once they pile up.

    Closed: calls pass, ``failure_threshold`` consecutive failures of
    ``expected_exception`` open the breaker. Open: calls are refused until
    ``recovery_timeout`` seconds have passed. Half open: trial calls pass,
    ``success_threshold`` successes close the breaker, one failure reopens it.
    Exceptions outside ``expected_exception`` are bugs, not outages, and
    leave the counters alone.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exception: type = Exception,
        success_threshold: int = 3,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.success_threshold = success_threshold
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, name: str, config: CircuitBreakerConfig) -> "CircuitBreaker":
        return cls(
            failure_threshold=config.failure_threshold,
            recovery_timeout=config.recovery_timeout,
            expected_exception=config.expected_exception,
            success_threshold=config.success_threshold,
            name=name,
        )

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Run ``func`` unless the breaker is open."""
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            await self._record(success=False)
            raise
        await self._record(success=True)
        return result

    def reset(self) -> None:
        self._move_to(CircuitState.CLOSED)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }

    # --► STATE MACHINE

    async def _admit(self) -> None:
        async with self._lock:
            if self.state != CircuitState.OPEN:
                return
            elapsed = self._clock() - (self.opened_at or 0.0)
            if elapsed < self.recovery_timeout:
                breaker_rejections_total.labels(breaker=self.name).inc()
                raise CircuitBreakerError(self.name, self.recovery_timeout - elapsed)
            self._move_to(CircuitState.HALF_OPEN)

    async def _record(self, success: bool) -> None:
        async with self._lock:
            match (self.state, success):
                case (CircuitState.CLOSED, True):
                    self.failure_count = 0
                case (CircuitState.CLOSED, False):
                    self.failure_count += 1
                    if self.failure_count >= self.failure_threshold:
                        self._move_to(CircuitState.OPEN)
                case (CircuitState.HALF_OPEN, True):
                    self.success_count += 1
                    if self.success_count >= self.success_threshold:
                        self._move_to(CircuitState.CLOSED)
                case (CircuitState.HALF_OPEN, False):
                    self._move_to(CircuitState.OPEN)
                case _:
                    # A call admitted before another task opened the breaker.
                    pass

    def _move_to(self, state: CircuitState) -> None:
        previous = self.state
        self.state = state
        self.success_count = 0
        if state == CircuitState.OPEN:
            self.opened_at = self._clock()
        elif state == CircuitState.CLOSED:
            self.failure_count = 0
            self.opened_at = None

        if previous != state:
            breaker_state_changes_total.labels(breaker=self.name, state=state.value).inc()
            log = logger.warning if state == CircuitState.OPEN else logger.info
            log(
                "Circuit breaker state changed",
                breaker=self.name,
                from_state=previous.value,
                to_state=state.value,
                failure_count=self.failure_count,
            )


# ==== REGISTRY ==== #

_circuit_breakers: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
    """Get the named breaker, creating it from ``config`` on first use."""
    if name not in _circuit_breakers:
        _circuit_breakers[name] = CircuitBreaker.from_config(name, config or CircuitBreakerConfig())
    return _circuit_breakers[name]


def reset_circuit_breaker(name: str) -> bool:
    breaker = _circuit_breakers.get(name)
    if breaker is None:
        return False
    breaker.reset()
    return True


def get_circuit_breaker_stats() -> Dict[str, Dict[str, Any]]:
    return {name: breaker.get_stats() for name, breaker in _circuit_breakers.items()}
