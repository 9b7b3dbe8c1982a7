"""Core circuit breaker implementation."""

import threading
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol, TypeVar

from callguard.circuit_breaker.exceptions import (
    CircuitOpenError,
    ExecutionHarnessError,
    OperationTimeoutError,
)
from callguard.circuit_breaker.executor import BoundedExecutor, Isolation, resolve
from callguard.circuit_breaker.metrics import MetricsCounter, MetricsSnapshot
from callguard.circuit_breaker.state import BreakerSnapshot, CircuitState

T = TypeVar("T")

_Transition = tuple[CircuitState, CircuitState] | None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BreakerLogger(Protocol):
    """Sink for human-readable breaker messages.

    Implementations must be safe to call from several threads. Anything they
    raise is dropped by the breaker.
    """

    def log(self, message: str, context: Mapping[str, object] | None = None) -> None:
        """Record one message with optional structured context."""


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit. Applies
            to ``CLOSED`` and ``HALF_OPEN`` alike.
        success_threshold: Consecutive ``HALF_OPEN`` successes that close it.
        reset_timeout: Seconds after the last failure before an ``OPEN``
            circuit lets a probe through.
        operation_timeout: Seconds each call may run. ``<= 0`` disables the
            bound.
        isolation: Worker kind used for plain callables.
    """

    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout: float = 30.0
    operation_timeout: float = 5.0
    isolation: Isolation = Isolation.THREAD

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0")
        object.__setattr__(self, "isolation", Isolation(self.isolation))


class CircuitBreaker:
    """Stateful proxy around a dangerous operation.

    State is re-evaluated lazily at call time; there is no background timer.
    The refresh-and-admit step and the record-outcome step each run under one
    per-breaker lock. The operation itself runs outside the lock, so callers
    admitted at the same instant may all execute.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        executor: BoundedExecutor | None = None,
        logger: BreakerLogger | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            name: Breaker name used in log context and errors.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            executor: Bounded executor. Defaults to one using
                ``config.isolation``.
            logger: Optional shared message sink.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._executor = (
            BoundedExecutor(self.config.isolation) if executor is None else executor
        )
        self._logger = logger
        self._metrics = MetricsCounter()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_at: datetime | None = None
        self._last_state_change = _utcnow()

    @property
    def state(self) -> CircuitState:
        """Last evaluated state. Reading it never triggers a refresh."""
        return self._state

    def get_metrics(self) -> MetricsSnapshot:
        """Return an immutable copy of the call counters."""
        return self._metrics.snapshot()

    def snapshot(self) -> BreakerSnapshot:
        """Return a consistent copy of the breaker internals."""
        with self._lock:
            return BreakerSnapshot(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_failure_at=self._last_failure_at,
                last_state_change=self._last_state_change,
            )

    def _log(self, message: str, **context: object) -> None:
        if self._logger is None:
            return
        try:
            self._logger.log(message, {"breaker": self.name, **context})
        except Exception:
            return

    def _log_transition(self, transition: _Transition) -> None:
        if transition is None:
            return
        old, new = transition
        self._log(
            f"circuit breaker state changed from {old} to {new}",
            old_state=str(old),
            new_state=str(new),
        )

    def _transition_to(self, new_state: CircuitState, now: datetime) -> _Transition:
        old_state = self._state
        if old_state == new_state:
            return None
        self._state = new_state
        self._last_state_change = now
        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
        return old_state, new_state

    def _refresh_state(self, now: datetime) -> _Transition:
        if self._state != CircuitState.OPEN or self._last_failure_at is None:
            return None
        elapsed = (now - self._last_failure_at).total_seconds()
        if elapsed < self.config.reset_timeout:
            return None
        transition = self._transition_to(CircuitState.HALF_OPEN, now)
        self._failure_count = 0
        return transition

    def _retry_after(self, now: datetime) -> float:
        last_failure_at = now if self._last_failure_at is None else self._last_failure_at
        elapsed = (now - last_failure_at).total_seconds()
        return max(self.config.reset_timeout - elapsed, 0.0)

    def _admit(self) -> tuple[_Transition, float | None]:
        """Refresh state and decide admission; ``retry_after`` is set on reject."""
        with self._lock:
            now = _utcnow()
            transition = self._refresh_state(now)
            if self._state != CircuitState.OPEN:
                return transition, None
            self._metrics.increment_rejections()
            return transition, self._retry_after(now)

    def _record_success(self) -> _Transition:
        with self._lock:
            self._failure_count = 0
            self._metrics.increment_successes()
            if self._state != CircuitState.HALF_OPEN:
                return None
            self._success_count += 1
            if self._success_count < self.config.success_threshold:
                return None
            return self._transition_to(CircuitState.CLOSED, _utcnow())

    def _record_failure(self, *, timed_out: bool) -> _Transition:
        with self._lock:
            now = _utcnow()
            self._failure_count += 1
            self._success_count = 0
            if self._last_failure_at is None or now > self._last_failure_at:
                self._last_failure_at = now
            self._metrics.increment_failures()
            if timed_out:
                self._metrics.increment_timeouts()
            if self._failure_count < self.config.failure_threshold:
                return None
            return self._transition_to(CircuitState.OPEN, now)

    async def call(
        self,
        operation: Callable[[], T] | Callable[[], Awaitable[T]],
        fallback: Callable[[], T] | Callable[[], Awaitable[T]] | None = None,
    ) -> T:
        """Invoke an operation under circuit breaker protection.

        Args:
            operation: Zero-argument callable or coroutine function.
            fallback: Optional zero-argument replacement used when the call is
                rejected or fails. Its own outcome is never counted.

        Returns:
            The result of ``operation``, or of ``fallback`` when the call is
            rejected or fails.

        Raises:
            CircuitOpenError: The circuit is open and no fallback was given.
            OperationTimeoutError: The operation exceeded
                ``config.operation_timeout`` and no fallback was given.
            ExecutionHarnessError: The worker could not be started or read.
                Not counted and not masked by ``fallback``.
            Exception: The original exception from ``operation`` when no
                fallback was given, or whatever ``fallback`` raises.
        """
        transition, retry_after = self._admit()
        self._log_transition(transition)

        if retry_after is not None:
            self._log("circuit is open, request rejected", retry_after=retry_after)
            if fallback is not None:
                return await resolve(fallback())
            raise CircuitOpenError(self.name, retry_after=retry_after)

        try:
            result = await self._executor.execute(
                operation, self.config.operation_timeout
            )
        except ExecutionHarnessError:
            raise
        except Exception as exc:
            timed_out = isinstance(exc, OperationTimeoutError)
            self._log_transition(self._record_failure(timed_out=timed_out))
            self._log(
                f"circuit breaker failure: {exc}",
                error=type(exc).__qualname__,
                timed_out=timed_out,
            )
            if fallback is not None:
                return await resolve(fallback())
            raise

        self._log_transition(self._record_success())
        return result
