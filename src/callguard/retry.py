"""Caller-side retries around a circuit breaker.

The breaker never retries on its own. This helper re-invokes
``CircuitBreaker.call`` with exponential jitter backoff, so every attempt still
goes through admission, and an open circuit stretches the wait to its
``retry_after``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    stop_never,
    wait_exponential_jitter,
)
from tenacity.retry import retry_if_exception_type

from callguard.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    OperationTimeoutError,
)
from callguard.logging import StructuredLogger, log_warning

T = TypeVar("T")

DEFAULT_RETRY_ON: tuple[type[BaseException], ...] = (
    CircuitOpenError,
    OperationTimeoutError,
)


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Configuration for retry attempt count and backoff boundaries."""

    attempts: int | None
    min_seconds: float
    max_seconds: float

    def __post_init__(self) -> None:
        if self.attempts is not None and self.attempts < 1:
            raise ValueError("attempts must be >= 1 when provided")
        if self.min_seconds < 0:
            raise ValueError("min_seconds must be >= 0")
        if self.max_seconds < 0:
            raise ValueError("max_seconds must be >= 0")
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")


def wait_for_open_circuit(
    policy: RetryBackoffPolicy,
) -> Callable[[RetryCallState], float]:
    """Exponential jitter wait that never undercuts a circuit's ``retry_after``."""
    backoff = wait_exponential_jitter(
        initial=policy.min_seconds,
        max=policy.max_seconds,
    )

    def _wait(state: RetryCallState) -> float:
        delay = backoff(state)
        outcome = state.outcome
        if outcome is None or not outcome.failed:
            return delay
        error = outcome.exception()
        if isinstance(error, CircuitOpenError):
            return max(delay, error.retry_after)
        return delay

    return _wait


def _build_before_sleep(
    logger: StructuredLogger,
    breaker_name: str,
) -> Callable[[RetryCallState], None]:
    def _before_sleep(state: RetryCallState) -> None:
        outcome = state.outcome
        error = None if outcome is None else outcome.exception()
        next_action = state.next_action
        log_warning(
            logger,
            "guarded_call_retry",
            breaker=breaker_name,
            attempt=state.attempt_number,
            wait_seconds=0.0 if next_action is None else next_action.sleep,
            error=None if error is None else type(error).__qualname__,
        )

    return _before_sleep


def build_breaker_retrying(
    *,
    breaker_name: str,
    policy: RetryBackoffPolicy,
    retry_on: tuple[type[BaseException], ...] = DEFAULT_RETRY_ON,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    logger: StructuredLogger | None = None,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` for re-invoking one breaker."""
    options: dict[str, Any] = {
        "retry": retry_if_exception_type(retry_on),
        "wait": wait_for_open_circuit(policy),
        "stop": (
            stop_never
            if policy.attempts is None
            else stop_after_attempt(policy.attempts)
        ),
        "reraise": True,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if logger is not None:
        options["before_sleep"] = _build_before_sleep(logger, breaker_name)
    return AsyncRetrying(**options)


async def call_with_retry(
    breaker: CircuitBreaker,
    operation: Callable[[], T] | Callable[[], Awaitable[T]],
    *,
    policy: RetryBackoffPolicy,
    retry_on: tuple[type[BaseException], ...] = DEFAULT_RETRY_ON,
    fallback: Callable[[], T] | Callable[[], Awaitable[T]] | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    logger: StructuredLogger | None = None,
) -> T:
    """Call ``operation`` through ``breaker``, retrying selected failures.

    Args:
        breaker: Breaker guarding the dependency.
        operation: Zero-argument callable or coroutine function.
        policy: Attempt count and backoff bounds. ``attempts=None`` retries
            forever.
        retry_on: Exception types that trigger another attempt.
        fallback: Passed to the breaker on the final attempt only. Ignored
            when ``policy.attempts`` is ``None``.
        sleep: Optional async sleep override.
        logger: Optional logger receiving one warning per retry.

    Returns:
        The first successful result, or the fallback's result on the final
        attempt.
    """
    retrying = build_breaker_retrying(
        breaker_name=breaker.name,
        policy=policy,
        retry_on=retry_on,
        sleep=sleep,
        logger=logger,
    )
    async for attempt in retrying:
        with attempt:
            is_last = (
                policy.attempts is not None
                and attempt.retry_state.attempt_number >= policy.attempts
            )
            result = await breaker.call(operation, fallback if is_last else None)
    return result
