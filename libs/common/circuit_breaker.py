"""Circuit breaker for calls to external collaborators.

Used around the embedding and reranking HTTP clients so a dead dependency is
skipped quickly instead of burning the request deadline on every call.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, Union

import structlog

logger = structlog.get_logger("circuit_breaker")


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreakerError(Exception):
    """Circuit breaker is open."""
    pass


class CircuitBreaker:
    """Circuit breaker for a single external dependency."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exception: Union[Type[BaseException], Tuple[Type[BaseException], ...]] = Exception,
    ):
        """Configure a circuit breaker.

        Parameters
        - name: Identifier for logs
        - failure_threshold: Consecutive failures before opening the breaker
        - recovery_timeout: Seconds to wait before a HALF_OPEN probe
        - expected_exception: Exception type(s) treated as failures
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitBreakerState.CLOSED
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    async def call(self, func: Callable[[], Awaitable[Any]]) -> Any:
        """Await ``func()`` with circuit breaker protection.

        A call cancelled by its caller's timeout counts as a failure, so a hung
        dependency opens the breaker like one that errors. While HALF_OPEN only
        one trial call is let through; the rest are rejected until it settles.
        """
        async with self._lock:
            if self.state == CircuitBreakerState.OPEN:
                if self._should_attempt_reset():
                    self.state = CircuitBreakerState.HALF_OPEN
                    logger.info("Circuit breaker transitioning to HALF_OPEN", name=self.name)
                else:
                    logger.warning("Circuit breaker is OPEN, rejecting call", name=self.name)
                    raise CircuitBreakerError(f"Circuit breaker {self.name} is open")

            trial = self.state == CircuitBreakerState.HALF_OPEN
            if trial:
                if self._trial_in_flight:
                    raise CircuitBreakerError(f"Circuit breaker {self.name} is half-open, trial call in flight")
                self._trial_in_flight = True

        try:
            result = await func()
        except asyncio.CancelledError:
            self._on_failure()
            raise
        except self.expected_exception:
            self._on_failure()
            raise
        finally:
            if trial:
                self._trial_in_flight = False

        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        return (time.monotonic() - self.last_failure_time) >= self.recovery_timeout

    def _on_success(self) -> None:
        if self.state == CircuitBreakerState.HALF_OPEN:
            self.state = CircuitBreakerState.CLOSED
            logger.info("Circuit breaker reset to CLOSED", name=self.name)
        self.failure_count = 0

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == CircuitBreakerState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.state = CircuitBreakerState.OPEN
            logger.warning(
                "Circuit breaker opened due to failures",
                name=self.name,
                failure_count=self.failure_count,
                threshold=self.failure_threshold
            )

    def get_stats(self) -> dict:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "last_failure_time": self.last_failure_time,
            "recovery_timeout": self.recovery_timeout
        }
