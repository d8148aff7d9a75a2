"""
Token-bucket rate limiter for reasoning-service calls.

The bucket holds up to ``requests_per_minute`` tokens and refills
continuously. ``acquire`` blocks until a token is available and can be
interrupted by a cancellation event.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_REQUESTS_PER_MINUTE = 50


class RateLimiter:
    def __init__(
        self,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_minute <= 0:
            raise ValueError(f"requests_per_minute must be > 0, got {requests_per_minute!r}")
        self.capacity = float(requests_per_minute)
        self.refill_rate = requests_per_minute / 60.0
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = self.capacity
        self._last_refill = clock()
        self.total_acquired = 0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._last_refill, 0.0)
        self._tokens = min(self._tokens + elapsed * self.refill_rate, self.capacity)
        self._last_refill = now

    def time_until_available(self) -> float:
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                return 0.0
            return (1.0 - self._tokens) / self.refill_rate

    def try_acquire(self) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                self.total_acquired += 1
                return True
            return False

    def acquire(self, cancelled: Optional[threading.Event] = None) -> bool:
        """Block until a token is taken. Returns ``False`` if cancelled first."""
        while True:
            if cancelled is not None and cancelled.is_set():
                return False
            if self.try_acquire():
                return True
            delay = self.time_until_available()
            logger.debug("Rate limited, waiting %.2fs", delay)
            if cancelled is not None:
                cancelled.wait(delay)
            else:
                self._sleep(delay)


__all__ = ["DEFAULT_REQUESTS_PER_MINUTE", "RateLimiter"]
