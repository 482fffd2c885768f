"""Minimum-interval rate limiting shared by every upstream call."""

import logging
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Grant permits no closer together than ``1 / requests_per_second``.

    All callers go through a single lock, so concurrent callers are served one
    after another on the same timeline. The delay is spent while holding the
    lock, which is what keeps the i-th grant at least ``min_interval`` after
    the (i-1)-th one.
    """

    def __init__(self, requests_per_second: float) -> None:
        self._lock = threading.Lock()
        self._last_grant: Optional[float] = None
        self._previous_grant: Optional[float] = None
        self._min_interval = self._interval_for(requests_per_second)

    @staticmethod
    def _interval_for(requests_per_second: float) -> float:
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        return 1.0 / requests_per_second

    @property
    def min_interval(self) -> float:
        return self._min_interval

    def update_rate(self, requests_per_second: float) -> None:
        """Change the interval; applies from the next grant onwards."""
        interval = self._interval_for(requests_per_second)
        # acquire() may hold self._lock for a whole interval; rebind without it.
        self._min_interval = interval
        logger.debug("Rate limiter interval set to %.3fs", interval)

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """Block until the next permit is due.

        Returns ``False`` without consuming a permit when ``cancel_event`` is
        set before or during the wait.
        """
        with self._lock:
            if cancel_event is not None and cancel_event.is_set():
                return False

            delay = 0.0
            if self._last_grant is not None:
                elapsed = time.monotonic() - self._last_grant
                delay = max(0.0, self._min_interval - elapsed)

            if delay > 0:
                if cancel_event is not None:
                    if cancel_event.wait(delay):
                        return False
                else:
                    time.sleep(delay)

            self._previous_grant = self._last_grant
            self._last_grant = time.monotonic()
            return True

    def refund(self) -> None:
        """Hand back the most recent grant when it did not lead to a request."""
        with self._lock:
            self._last_grant = self._previous_grant
