"""Client-side request pacing.

Keeps one client instance under the service's request budget with a
sliding window, and lets the client pause all outgoing calls after the
service reported that the budget is exhausted.
"""

import time
import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 600  # SendGrid allows 600 requests...
DEFAULT_TIME_WINDOW_SECONDS = 60  # ...per minute on most endpoints


class RateLimiter:
    """Simple sliding window rate limiter."""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        time_window: float = DEFAULT_TIME_WINDOW_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initializes the rate limiter.

        Args:
            max_requests: Maximum number of requests allowed in the time window.
            time_window: The time window in seconds.
            clock: Monotonic clock, overridable in tests.
        """
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.time_window = time_window
        self.timestamps: Deque[float] = deque()
        self._paused_until = 0.0
        self._clock = clock or time.monotonic
        self._lock = asyncio.Lock()
        logger.info(f"RateLimiter initialized: {max_requests} requests / {time_window} seconds")

    def _cleanup_timestamps(self, now: float) -> None:
        """Removes timestamps older than the time window."""
        while self.timestamps and now - self.timestamps[0] >= self.time_window:
            self.timestamps.popleft()

    def _wait_time(self, now: float) -> float:
        self._cleanup_timestamps(now)
        pause = max(0.0, self._paused_until - now)
        if len(self.timestamps) < self.max_requests:
            return pause
        window_wait = self.timestamps[0] + self.time_window - now
        return max(pause, window_wait, 0.0)

    async def wait_for_permission(self) -> None:
        """Waits until a request is permitted, then records it."""
        while True:
            async with self._lock:
                now = self._clock()
                wait_time = self._wait_time(now)
                if wait_time <= 0:
                    self.timestamps.append(now)
                    logger.debug("Rate limit permission granted.")
                    return

            logger.debug(f"Rate limit reached. Waiting for {wait_time:.2f} seconds.")
            await asyncio.sleep(wait_time)

    async def get_wait_time(self) -> float:
        """Estimates the time needed before the next request can be made."""
        async with self._lock:
            return self._wait_time(self._clock())

    def pause_for(self, seconds: float) -> None:
        """Holds back every request for the given duration (e.g., after a 429)."""
        until = self._clock() + max(0.0, seconds)
        if until > self._paused_until:
            self._paused_until = until
            logger.info(f"Outgoing requests paused for {seconds:.2f}s")
