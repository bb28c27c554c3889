"""Circuit breaker with bounded retry for database operations.

States:

- CLOSED: calls run; failures are counted and reaching ``failure_threshold``
  opens the circuit.
- OPEN: calls are rejected without running until ``reset_timeout`` has passed
  since the last failure, then the circuit moves to HALF_OPEN.
- HALF_OPEN: calls run; ``success_threshold`` consecutive successes close the
  circuit, any failure opens it again.

Each ``execute`` retries a failing operation up to ``max_retries`` times with
exponential backoff. Only the outcome of the whole call is counted.

The failure window is coarse: once the most recent failure is older than
``monitoring_window`` the whole failure count resets, rather than expiring
failures one by one.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, replace
from typing import Any, Optional, TypeVar

from ..core import BreakerConfig, BreakerResult, BreakerStats, CircuitState

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRY_DELAY = 30.0  # seconds


class CircuitBreaker:
    """Protects callers from a consistently failing dependency."""

    def __init__(
        self,
        config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or BreakerConfig()
        self._clock = clock
        self._sleep = sleep

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.consecutive_successes = 0
        self.last_failure_time: Optional[float] = None
        self.last_success_time: Optional[float] = None
        self.total_calls = 0
        self.total_failures = 0
        self.total_successes = 0
        self.start_time = clock()
        self.last_state_change = self.start_time

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "database_operation",
    ) -> BreakerResult[T]:
        """Run ``operation`` under breaker protection; never raises."""
        self.total_calls += 1

        if self.state is CircuitState.OPEN:
            if self._should_attempt_reset():
                self._set_state(CircuitState.HALF_OPEN)
            else:
                return BreakerResult(
                    success=False,
                    state=self.state,
                    error=f"Circuit breaker is OPEN for {operation_name}. Blocking operation.",
                    rejected=True,
                )

        return await self._execute_with_retries(operation, operation_name)

    def calculate_retry_delay(self, attempt: int) -> float:
        """Backoff before retry ``attempt + 1``: exponential, 10% jitter, 30s cap."""
        exponential = self.config.retry_delay * (2 ** attempt)
        jitter = random.random() * 0.1 * exponential
        return min(exponential + jitter, MAX_RETRY_DELAY)

    def reset(self) -> None:
        """Force CLOSED and clear counters."""
        self._set_state(CircuitState.CLOSED)
        self.failure_count = 0
        self.success_count = 0
        self.consecutive_successes = 0
        self.last_failure_time = None
        self.last_success_time = None

    def open(self) -> None:
        """Force OPEN as if a failure had just happened."""
        self._set_state(CircuitState.OPEN)
        self.last_failure_time = self._clock()

    def get_stats(self) -> BreakerStats:
        return BreakerStats(
            state=self.state,
            failure_count=self.failure_count,
            success_count=self.success_count,
            last_failure_time=self.last_failure_time,
            last_success_time=self.last_success_time,
            total_calls=self.total_calls,
            total_failures=self.total_failures,
            total_successes=self.total_successes,
            uptime=self._clock() - self.start_time,
            last_state_change=self.last_state_change,
        )

    def get_health(self) -> dict:
        stats = self.get_stats()
        now = self._clock()
        success_rate = (
            stats.total_successes / stats.total_calls * 100 if stats.total_calls else 0.0
        )
        return {
            "healthy": self.state is CircuitState.CLOSED,
            "state": self.state.value,
            "success_rate": round(success_rate, 2),
            "recent_failures": self.failure_count,
            "time_since_last_failure": (
                now - stats.last_failure_time if stats.last_failure_time is not None else None
            ),
            "time_since_last_success": (
                now - stats.last_success_time if stats.last_success_time is not None else None
            ),
            "uptime": stats.uptime,
            "config": asdict(self.config),
        }

    def is_healthy(self) -> bool:
        """True while the circuit accepts operations."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def get_status_description(self) -> str:
        if self.state is CircuitState.CLOSED:
            return (
                f"Circuit is CLOSED. {self.total_successes} successes, "
                f"{self.total_failures} failures total."
            )
        if self.state is CircuitState.OPEN:
            remaining = 0.0
            if self.last_failure_time is not None:
                elapsed = self._clock() - self.last_failure_time
                remaining = max(0.0, self.config.reset_timeout - elapsed)
            return (
                f"Circuit is OPEN due to {self.failure_count} recent failures. "
                f"Will attempt reset in {round(remaining)}s."
            )
        return (
            f"Circuit is HALF_OPEN. Testing recovery with "
            f"{self.consecutive_successes}/{self.config.success_threshold} successful attempts."
        )

    def update_config(self, **changes) -> None:
        self.config = replace(self.config, **changes)

    def get_config(self) -> BreakerConfig:
        return replace(self.config)

    # ── Private helpers ──────────────────────────────────────────────

    async def _execute_with_retries(
        self, operation: Callable[[], Awaitable[T]], operation_name: str
    ) -> BreakerResult[T]:
        last_error: Optional[BaseException] = None
        max_retries = self.config.max_retries

        for attempt in range(max_retries + 1):
            try:
                result = await operation()
            except Exception as e:
                last_error = e
                if attempt < max_retries:
                    delay = self.calculate_retry_delay(attempt)
                    logger.warning(
                        "Retry %d/%d for %s (%s, backoff: %.2fs)",
                        attempt + 1,
                        max_retries,
                        operation_name,
                        e,
                        delay,
                    )
                    await self._sleep(delay)
                continue

            self._on_success()
            return BreakerResult(
                success=True, state=self.state, data=result, retry_attempt=attempt
            )

        self._on_failure()
        logger.error(
            "%s failed after %d attempts: %s", operation_name, max_retries + 1, last_error
        )
        return BreakerResult(
            success=False,
            state=self.state,
            error=f"{operation_name} failed after {max_retries + 1} attempts: {last_error}",
            retry_attempt=max_retries,
        )

    def _on_success(self) -> None:
        self.success_count += 1
        self.total_successes += 1
        self.consecutive_successes += 1
        self.last_success_time = self._clock()
        self._cleanup_old_failures()

        if self.state is CircuitState.HALF_OPEN:
            if self.consecutive_successes >= self.config.success_threshold:
                self._set_state(CircuitState.CLOSED)
                self.failure_count = 0
                self.consecutive_successes = 0
        elif self.state is CircuitState.CLOSED:
            self.failure_count = 0

    def _on_failure(self) -> None:
        # Age out a stale count before adding this failure to it.
        self._cleanup_old_failures()
        self.failure_count += 1
        self.total_failures += 1
        self.consecutive_successes = 0
        self.last_failure_time = self._clock()

        if self.state is CircuitState.HALF_OPEN:
            self._set_state(CircuitState.OPEN)
        elif self.state is CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
            self._set_state(CircuitState.OPEN)

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        return self._clock() - self.last_failure_time >= self.config.reset_timeout

    def _cleanup_old_failures(self) -> None:
        if self.last_failure_time is None:
            return
        if self.last_failure_time < self._clock() - self.config.monitoring_window:
            self.failure_count = 0

    def _set_state(self, new_state: CircuitState) -> None:
        if self.state is not new_state:
            logger.info("Circuit breaker %s -> %s", self.state.value, new_state.value)
            self.state = new_state
            self.last_state_change = self._clock()
