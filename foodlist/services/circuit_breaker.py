"""
CircuitBreaker - Stops calls to a failing backend and lazily tests for recovery.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Backend is failing, requests are blocked
- HALF_OPEN: Testing if backend has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold consecutive failures are recorded
- OPEN → HALF_OPEN: On the first check at or after reset_timeout
- HALF_OPEN → CLOSED: On successful request
- HALF_OPEN → OPEN: When failures re-reach failure_threshold

There is no background timer; recovery is only checked when a caller asks.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from loguru import logger


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    reset_timeout: timedelta = timedelta(seconds=30)  # Time before half-open


class CircuitBreaker:
    """
    Circuit breaker guarding one backend.

    Usage:
        cb = CircuitBreaker("record_store")

        if not cb.allow_request():
            raise CircuitOpenError(...)

        try:
            result = await make_request()
            cb.record_success()
            return result
        except Exception:
            cb.record_failure()
            raise
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_ms: int | None = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def _reset_timeout_ms(self) -> int:
        return int(self.config.reset_timeout.total_seconds() * 1000)

    @property
    def state(self) -> CircuitState:
        """Current state, without triggering the lazy OPEN → HALF_OPEN move."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def allow_request(self) -> bool:
        """Check if a request is allowed, moving OPEN → HALF_OPEN once cooled down."""
        if self._state == CircuitState.OPEN:
            if (
                self._last_failure_ms is not None
                and self._now_ms() - self._last_failure_ms >= self._reset_timeout_ms
            ):
                self._state = CircuitState.HALF_OPEN
                self._failure_count = 0
                logger.info(
                    f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN"
                )
                return True
            return False

        return True

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state == CircuitState.HALF_OPEN:
            self._close()
        elif self._state == CircuitState.CLOSED:
            # Only consecutive failures count
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed request."""
        self._failure_count += 1
        self._last_failure_ms = self._now_ms()

        if self._state != CircuitState.OPEN and (
            self._failure_count >= self.config.failure_threshold
        ):
            self._open()

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        self._last_failure_ms = self._now_ms()
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after {self._failure_count} failures"
        )

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_ms = None
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until the next check would be let through as a trial request."""
        if self._state != CircuitState.OPEN or self._last_failure_ms is None:
            return None

        remaining_ms = self._last_failure_ms + self._reset_timeout_ms - self._now_ms()
        return max(0, remaining_ms / 1000)

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "last_failure": (
                datetime.fromtimestamp(self._last_failure_ms / 1000).isoformat()
                if self._last_failure_ms is not None
                else None
            ),
            "time_until_reset": self.get_time_until_reset(),
        }
