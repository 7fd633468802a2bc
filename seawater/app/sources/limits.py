"""
Per-provider resource limits.

RequestBudget
    Sliding-window cap on outbound calls (the provider's published quota).
    A call over budget is refused locally and reported as a rate-limited
    reading; nothing is sent.

RateLimitBreaker
    Simple circuit breaker driven by provider 429 responses.

        CLOSED ──(threshold consecutive 429s)──▶ OPEN
        OPEN   ──(cooldown elapsed)───────────▶ HALF_OPEN  (one probe allowed)
        HALF_OPEN ──success──▶ CLOSED
        HALF_OPEN ──429──────▶ OPEN (cooldown restarts)

    While OPEN the adapter skips the provider entirely for the rest of the
    cooldown.  Other failures (timeouts, 5xx) do not trip the breaker.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class RequestBudget:
    """At most `max_requests` acquisitions per `window_seconds`."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._calls: Deque[float] = deque()
        self._lock = threading.Lock()

    def _trim(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    def try_acquire(self) -> bool:
        with self._lock:
            now = self._clock()
            self._trim(now)
            if len(self._calls) >= self.max_requests:
                return False
            self._calls.append(now)
            return True

    def retry_after(self) -> float:
        """Seconds until the oldest call leaves the window."""
        with self._lock:
            now = self._clock()
            self._trim(now)
            if len(self._calls) < self.max_requests:
                return 0.0
            return max(0.0, self.window_seconds - (now - self._calls[0]))

    @property
    def remaining(self) -> int:
        with self._lock:
            self._trim(self._clock())
            return self.max_requests - len(self._calls)


class RateLimitBreaker:
    def __init__(
        self,
        name: str,
        threshold: int = 3,
        cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if threshold <= 0:
            raise ValueError("threshold must be positive")
        self.name = name
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._consecutive = 0
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> BreakerState:
        with self._lock:
            self._refresh()
            return self._state

    def _refresh(self) -> None:
        if (
            self._state is BreakerState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.cooldown_seconds
        ):
            self._state = BreakerState.HALF_OPEN
            self._probe_in_flight = False
            logger.info("Rate-limit breaker for %s moved to HALF_OPEN", self.name)

    def allow(self) -> bool:
        """True if a call may be sent now."""
        with self._lock:
            self._refresh()
            if self._state is BreakerState.CLOSED:
                return True
            if self._state is BreakerState.HALF_OPEN and not self._probe_in_flight:
                self._probe_in_flight = True
                return True
            return False

    def retry_after(self) -> float:
        with self._lock:
            if self._state is not BreakerState.OPEN or self._opened_at is None:
                return 0.0
            return max(0.0, self.cooldown_seconds - (self._clock() - self._opened_at))

    def record_success(self) -> None:
        with self._lock:
            if self._state is not BreakerState.CLOSED:
                logger.info("Rate-limit breaker for %s CLOSED", self.name)
            self._state = BreakerState.CLOSED
            self._consecutive = 0
            self._opened_at = None
            self._probe_in_flight = False

    def record_rate_limited(self) -> None:
        with self._lock:
            self._consecutive += 1
            if self._state is BreakerState.HALF_OPEN or self._consecutive >= self.threshold:
                self._state = BreakerState.OPEN
                self._opened_at = self._clock()
                self._probe_in_flight = False
                logger.warning(
                    "Rate-limit breaker OPENED for %s after %d consecutive 429s "
                    "(cooldown %.0fs)",
                    self.name, self._consecutive, self.cooldown_seconds,
                )

    def record_other_failure(self) -> None:
        """Non rate-limit failure: a half-open probe slot is released."""
        with self._lock:
            self._probe_in_flight = False

    def snapshot(self) -> Dict[str, object]:
        return {
            "state": self.state.value,
            "consecutive_rate_limits": self._consecutive,
            "retry_after_seconds": round(self.retry_after(), 1),
        }
