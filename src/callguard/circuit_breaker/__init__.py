"""Async circuit breaker with bounded-time execution.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - State is refreshed lazily on each call. An ``OPEN`` circuit moves to
    ``HALF_OPEN`` on the first call made ``reset_timeout`` seconds after the
    last failure, and that call is executed rather than rejected.
  - ``HALF_OPEN`` reopens on the same ``failure_threshold`` as ``CLOSED``.
    Counters restart on entry, so a single failed probe does not reopen the
    circuit unless ``failure_threshold`` is 1.
  - Every call runs under ``operation_timeout``. A timeout counts as a failure
    and is also counted separately as a timeout.
  - A fallback replaces the caller-visible outcome only. Metrics and state
    transitions always follow the original outcome.
"""

from callguard.circuit_breaker.breaker import (
    BreakerLogger,
    CircuitBreaker,
    CircuitBreakerConfig,
)
from callguard.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
    ExecutionHarnessError,
    OperationError,
    OperationTimeoutError,
)
from callguard.circuit_breaker.executor import BoundedExecutor, Isolation
from callguard.circuit_breaker.metrics import MetricsCounter, MetricsSnapshot
from callguard.circuit_breaker.state import BreakerSnapshot, CircuitState

__all__ = [
    "BoundedExecutor",
    "BreakerLogger",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "ExecutionHarnessError",
    "Isolation",
    "MetricsCounter",
    "MetricsSnapshot",
    "OperationError",
    "OperationTimeoutError",
]
