"""Circuit breaker guarding calls to the user/tenant directory."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from auditgate.utils.time import utc_now

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Calls pass through
    OPEN = "open"  # Calls fail fast
    HALF_OPEN = "half_open"  # Probing for recovery


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int = 5
    timeout_seconds: int = 60
    half_open_max_calls: int = 3
    success_threshold: int = 2


class CircuitBreakerOpen(Exception):
    """Raised when the circuit is open and no fallback was given."""

    def __init__(self, service_name: str, retry_after: int):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker open for {service_name}, retry after {retry_after}s"
        )


class CircuitBreaker:
    """
    Async circuit breaker.

    State transitions:
    - CLOSED -> OPEN: after failure_threshold consecutive failures
    - OPEN -> HALF_OPEN: once timeout_seconds have elapsed
    - HALF_OPEN -> CLOSED: after success_threshold consecutive successes
    - HALF_OPEN -> OPEN: on any failure
    """

    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._half_open_calls = 0
        self._opened_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    async def call(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        fallback: Optional[Callable[..., Awaitable[Any]]] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Run ``func`` through the breaker.

        Raises:
            CircuitBreakerOpen: circuit open and no fallback provided
            Exception: whatever ``func`` raised (after it is recorded)
        """
        async with self._lock:
            if self._state == CircuitState.OPEN and self._should_attempt_reset():
                self._transition(CircuitState.HALF_OPEN)

            rejected = self._state == CircuitState.OPEN or (
                self._state == CircuitState.HALF_OPEN
                and self._half_open_calls >= self.config.half_open_max_calls
            )
            if not rejected and self._state == CircuitState.HALF_OPEN:
                self._half_open_calls += 1

        if rejected:
            if fallback is not None:
                logger.debug(f"Circuit {self.name} open, using fallback")
                return await fallback(*args, **kwargs)
            raise CircuitBreakerOpen(self.name, self._seconds_until_half_open())

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._on_failure(e)
            raise
        await self._on_success()
        return result

    async def _on_success(self) -> None:
        async with self._lock:
            self._failures = 0
            self._successes += 1
            if self._state == CircuitState.HALF_OPEN and self._successes >= self.config.success_threshold:
                self._transition(CircuitState.CLOSED)

    async def _on_failure(self, error: Exception) -> None:
        async with self._lock:
            self._failures += 1
            self._successes = 0
            logger.warning(
                f"Circuit {self.name} failure ({self._failures}/"
                f"{self.config.failure_threshold}): {error}"
            )
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED
                and self._failures >= self.config.failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        self._state = new_state
        self._half_open_calls = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = utc_now()
            logger.error(f"Circuit {self.name} opened after {self._failures} failures")
        elif new_state == CircuitState.HALF_OPEN:
            self._failures = 0
            self._successes = 0
            logger.info(f"Circuit {self.name} entering half-open state")
        else:
            self._failures = 0
            self._successes = 0
            self._opened_at = None
            logger.info(f"Circuit {self.name} closed")

    def _should_attempt_reset(self) -> bool:
        if not self._opened_at:
            return False
        elapsed = (utc_now() - self._opened_at).total_seconds()
        return elapsed >= self.config.timeout_seconds

    def _seconds_until_half_open(self) -> int:
        if not self._opened_at:
            return self.config.timeout_seconds
        elapsed = (utc_now() - self._opened_at).total_seconds()
        return int(max(0, self.config.timeout_seconds - elapsed))

    async def reset(self) -> None:
        """Manually reset circuit to CLOSED state."""
        async with self._lock:
            self._transition(CircuitState.CLOSED)
