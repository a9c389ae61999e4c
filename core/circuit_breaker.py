"""
Circuit breaker for the upstream data source APIs.

A source that keeps failing is skipped for a cool-down period instead of
being called again on every /metrics request, so one broken upstream does
not spend the stream timeout on each connection. After the cool-down a
single trial call decides whether the source is back.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import AppError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    timeout: float = 60.0


class CircuitBreakerOpen(AppError):
    """The breaker rejected a call without attempting it."""

    def __init__(self, service_name: str, retry_after: float):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            503,
            f"{service_name} is temporarily unavailable. Retry after {retry_after:.1f} seconds.",
        )


class CircuitBreaker:
    """
    Guards calls to one upstream.

    `failure_threshold` consecutive failures (exceptions or timeouts) open
    the breaker. While open, calls fail fast with CircuitBreakerOpen.
    Once `recovery_timeout` has passed, one trial call is let through: success
    closes the breaker, failure opens it for another full period.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.reset()

    @property
    def state(self) -> CircuitState:
        return self._state

    def retry_after(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(self.config.recovery_timeout - (self._clock() - self._opened_at), 0.0)

    def _set_state(self, state: CircuitState):
        if state is self._state:
            return
        logger.info(f"[{self.service_name}] breaker {self._state.value} -> {state.value}")
        self._state = state
        self._opened_at = self._clock() if state is CircuitState.OPEN else None

    def _admit(self):
        self._calls += 1
        if self._state is CircuitState.OPEN:
            if self.retry_after() > 0:
                raise CircuitBreakerOpen(self.service_name, self.retry_after())
            self._set_state(CircuitState.HALF_OPEN)
            self._trial_running = False

        if self._state is CircuitState.HALF_OPEN:
            if self._trial_running:
                raise CircuitBreakerOpen(self.service_name, self.config.recovery_timeout)
            self._trial_running = True

    def record_success(self):
        self._consecutive_failures = 0
        self._trial_running = False
        self._set_state(CircuitState.CLOSED)

    def record_failure(self, error: BaseException):
        self._consecutive_failures += 1
        self._failures += 1
        self._trial_running = False
        logger.warning(
            f"[{self.service_name}] call failed ({self._consecutive_failures}/"
            f"{self.config.failure_threshold}): {error!r}"
        )
        if (
            self._state is CircuitState.HALF_OPEN
            or self._consecutive_failures >= self.config.failure_threshold
        ):
            self._set_state(CircuitState.OPEN)

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await `func(*args, **kwargs)` under the breaker and `config.timeout`.

        Raises:
            CircuitBreakerOpen: the call was not attempted
            asyncio.TimeoutError: the call took longer than `config.timeout`
        """
        self._admit()
        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.timeout)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def reset(self):
        self._state = CircuitState.CLOSED
        self._opened_at: Optional[float] = None
        self._trial_running = False
        self._consecutive_failures = 0
        self._calls = 0
        self._failures = 0

    def get_status(self) -> dict:
        return {
            "service": self.service_name,
            "state": self._state.value,
            "failure_count": self._consecutive_failures,
            "total_calls": self._calls,
            "total_failures": self._failures,
            "retry_after": round(self.retry_after(), 1),
        }


# GitHub pages one GraphQL request at a time, each possibly slow on large
# repositories. The spreadsheet is a single small read.
SOURCE_BREAKERS = {
    "github": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60.0, timeout=30.0),
    "sheets": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=30.0, timeout=15.0),
}


def get_source_breaker(provider: str) -> CircuitBreaker:
    """A new breaker for `provider` ("github" or "sheets"), defaults otherwise."""
    config = SOURCE_BREAKERS.get(provider, CircuitBreakerConfig())
    return CircuitBreaker(provider, CircuitBreakerConfig(**vars(config)))
