"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open.
  - A call that ran past its time budget.
  - A worker that could not be started or supervised at all.

An operation that fails on its own is re-raised unchanged. ``OperationError``
only stands in for it when the original exception cannot cross a process
boundary.
"""


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        retry_after: Seconds until a half-open probe may be attempted.
    """

    def __init__(self, breaker_name: str, retry_after: float) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            breaker_name: Breaker rejecting the call.
            retry_after: Seconds until the next probe window opens.
        """
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        super().__init__(f"circuit_open: {breaker_name} retry_after={retry_after:g}s")


class OperationError(CircuitBreakerError):
    """Operation failure reported by an isolated worker.

    Attributes:
        error_type: Qualified name of the original exception type.
    """

    def __init__(self, message: str, *, error_type: str = "") -> None:
        self.error_type = error_type
        super().__init__(message)


class OperationTimeoutError(CircuitBreakerError, TimeoutError):
    """Raised when an operation does not finish within its budget.

    Attributes:
        timeout: Budget in seconds that was exceeded.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"operation timed out after {timeout:g} seconds")


class ExecutionHarnessError(CircuitBreakerError):
    """Raised when the bounded-execution worker cannot be started or watched."""
