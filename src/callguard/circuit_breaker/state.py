"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state, as last evaluated by a call.
        failure_count: Consecutive failures since the last success.
        success_count: Consecutive successes since entering ``HALF_OPEN``.
        last_failure_at: Timestamp of the last failure, if any.
        last_state_change: Timestamp of the last transition (or creation).
    """

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_at: datetime | None
    last_state_change: datetime
