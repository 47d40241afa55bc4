"""
Resilience utilities for calls to external services.

- backoff_delay: exponential backoff schedule shared by every retry loop
- retry_with_backoff: decorator retrying a coroutine on selected exceptions
- CircuitBreaker: stops calling a service that keeps failing
"""

import asyncio
import logging
import time
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # calls pass through
    OPEN = "open"  # calls rejected
    HALF_OPEN = "half_open"  # probing for recovery


class CircuitBreakerOpenError(Exception):
    """Raised when a call is rejected by an open circuit."""
    pass


def backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
) -> float:
    """Seconds to wait after failed attempt number `attempt` (0-based)."""
    return min(base_delay * (exponential_base ** attempt), max_delay)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: tuple = (Exception,),
):
    """
    Decorator for retrying coroutines with exponential backoff.

    Args:
        max_retries: Maximum number of attempts (default: 3)
        base_delay: Delay in seconds after the first failure (default: 1.0)
        max_delay: Upper bound for any single delay (default: 60.0)
        exponential_base: Growth factor between delays (default: 2.0)
        exceptions: Exception types that trigger a retry; anything else
            propagates immediately

    Example:
        @retry_with_backoff(max_retries=5, exceptions=(RedisConnectionError,))
        async def initialize(self):
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    if attempt + 1 >= max_retries:
                        logger.error(f"{func.__name__} gave up after {attempt + 1} attempt(s): {e}")
                        raise

                    delay = backoff_delay(attempt, base_delay, max_delay, exponential_base)
                    logger.warning(
                        f"{func.__name__} attempt {attempt + 1}/{max_retries} failed: {e}. "
                        f"Next attempt in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt > 0:
                    logger.info(f"{func.__name__} recovered on attempt {attempt + 1}/{max_retries}")
                return result

        return wrapper

    return decorator


class CircuitBreaker:
    """
    Circuit breaker guarding one external service.

    After `failure_threshold` consecutive failures the circuit opens and
    calls are rejected with CircuitBreakerOpenError. Once `timeout` seconds
    have passed, up to `half_open_max_calls` probe calls are let through;
    that many successes close the circuit, a single failure reopens it.
    """

    def __init__(
        self,
        name: str = "service",
        failure_threshold: int = 5,
        timeout: int = 60,
        half_open_max_calls: int = 3,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.half_open_max_calls = half_open_max_calls

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.probe_calls = 0
        self.probe_successes = 0
        self.opened_at: Optional[float] = None

    def _transition(self, state: CircuitState, reason: str) -> None:
        if state == self.state:
            return
        log = logger.warning if state == CircuitState.OPEN else logger.info
        log(f"Circuit '{self.name}' {self.state.value} -> {state.value} ({reason})")

        self.state = state
        self.probe_calls = 0
        self.probe_successes = 0
        if state == CircuitState.OPEN:
            self.opened_at = time.time()
        elif state == CircuitState.CLOSED:
            self.failure_count = 0
            self.opened_at = None

    def _admit(self) -> None:
        """Reject the call unless the current state allows it."""
        if self.state == CircuitState.OPEN:
            if self.opened_at is not None and time.time() - self.opened_at >= self.timeout:
                self._transition(CircuitState.HALF_OPEN, "timeout elapsed")
            else:
                raise CircuitBreakerOpenError(
                    f"Circuit '{self.name}' is OPEN; calls rejected for {self.timeout}s"
                )

        if self.state == CircuitState.HALF_OPEN:
            if self.probe_calls >= self.half_open_max_calls:
                raise CircuitBreakerOpenError(f"Circuit '{self.name}' is HALF_OPEN; probe limit reached")
            self.probe_calls += 1

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Run `func` if the circuit admits it.

        Raises:
            CircuitBreakerOpenError: If the circuit rejects the call
            Exception: Whatever `func` raises (counted as a failure)
        """
        self._admit()

        try:
            result = await func()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.probe_successes += 1
            if self.probe_successes >= self.half_open_max_calls:
                self._transition(CircuitState.CLOSED, "service recovered")
        else:
            self.failure_count = 0

    def _on_failure(self) -> None:
        self.failure_count += 1

        if self.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN, "probe failed")
        elif self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN, f"{self.failure_count} consecutive failures")

    def get_state(self) -> CircuitState:
        return self.state

    def reset(self) -> None:
        """Force the circuit closed."""
        self._transition(CircuitState.CLOSED, "manual reset")
        self.failure_count = 0


def create_azure_devops_circuit_breaker() -> CircuitBreaker:
    """Circuit breaker used by the work item client."""
    return CircuitBreaker(name="azure_devops", failure_threshold=5, timeout=60, half_open_max_calls=3)
