"""
Resilience patterns for the licensing core.

- Circuit Breaker: keeps a failing cache backend from slowing every request
- Retry: tenacity exponential backoff for transient database disconnects
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
    CircuitBreakerConfig,
    get_circuit_breaker,
    reset_circuit_breaker,
    get_circuit_breaker_stats
)
from .decorators import database_resilient

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerError",
    "CircuitState",
    "CircuitBreakerConfig",
    "get_circuit_breaker",
    "reset_circuit_breaker",
    "get_circuit_breaker_stats",
    "database_resilient",
]
