"""Process-wide request budget for the archive.

The archive's fair-access policy caps clients at N requests per second,
counted across every job and filing type in the process. The limiter keeps
a log of the last N grant times: a new grant is allowed once the oldest of
those is at least `period` old, so no window of length `period` ever holds
more than N grants. In steady state this drains at N/period, the same rate
as a token bucket refilled continuously, without the bucket's 2N burst
across a window boundary.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Optional

from .errors import OperationCancelled

logger = logging.getLogger("edgar_ingest")


class RateLimiter:
    def __init__(self, max_requests: int, period: float = 1.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if max_requests < 1 or period <= 0:
            raise ValueError("max_requests must be >= 1 and period > 0")
        self.max_requests = max_requests
        self.period = period
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._grants: deque = deque()
        logger.info(f"Rate limiter: {max_requests} requests per {period}s")

    def _prune(self, now: float):
        while self._grants and now - self._grants[0] >= self.period:
            self._grants.popleft()

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> float:
        """Block until a request unit is available, consume it, return the grant time.

        Raises OperationCancelled if `cancel_event` is (or becomes) set while waiting.
        """
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled("Rate limiter wait cancelled")
            with self._lock:
                now = self._clock()
                self._prune(now)
                if len(self._grants) < self.max_requests:
                    self._grants.append(now)
                    return now
                wait = self._grants[0] + self.period - now

            logger.debug(f"Rate limit reached, waiting {wait:.3f}s")
            if cancel_event is not None:
                if cancel_event.wait(wait):
                    raise OperationCancelled("Rate limiter wait cancelled")
            else:
                self._sleep(wait)

    def try_acquire(self) -> bool:
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._grants) < self.max_requests:
                self._grants.append(now)
                return True
            return False

    def available(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return self.max_requests - len(self._grants)

    def reset(self):
        with self._lock:
            self._grants.clear()
        logger.debug(f"Rate limiter reset to {self.max_requests} units")
