"""
Circuit breaker shared by every analysis request.

All methods are synchronous and never await, so on the event loop each call
is atomic; this object is the single place the failure counter lives.
"""

import logging
import time
from enum import Enum
from typing import Callable

from coco.errors import CircuitOpenError

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        threshold: int,
        cooldown: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold
        self.cooldown = cooldown
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_running = False

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def retry_in(self) -> float:
        if self._state != BreakerState.OPEN:
            return 0.0
        return max(0.0, self.cooldown - (self._clock() - self._opened_at))

    def is_open(self) -> bool:
        """Peek without claiming the half-open trial slot."""
        if self._state == BreakerState.OPEN:
            return self.retry_in() > 0
        return self._state == BreakerState.HALF_OPEN and self._trial_running

    def before_call(self) -> None:
        """Raise CircuitOpenError, or admit the caller to the network."""
        if self._state == BreakerState.OPEN:
            remaining = self.retry_in()
            if remaining > 0:
                raise CircuitOpenError(remaining)
            self._state = BreakerState.HALF_OPEN
            logger.info("Circuit half-open, allowing a trial request")

        if self._state == BreakerState.HALF_OPEN:
            if self._trial_running:
                raise CircuitOpenError(0.0)
            self._trial_running = True

    def record_success(self) -> None:
        if self._state != BreakerState.CLOSED:
            logger.info("Circuit closed after successful trial")
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._trial_running = False

    def record_failure(self) -> None:
        self._failures += 1
        self._trial_running = False
        if self._state == BreakerState.HALF_OPEN or self._failures >= self.threshold:
            self._state = BreakerState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "Circuit opened after %d consecutive failures, cooling down %.1fs",
                self._failures, self.cooldown,
            )
