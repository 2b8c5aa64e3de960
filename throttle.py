"""
Request throttling shared between worker threads.
"""

import threading
import time
from collections import deque
from typing import Callable


class ThrottlePool:
    """
    Sliding-window limiter: at most ``rate`` acquisitions in any ``period``
    seconds, across all threads using the pool.

    Usage:
        pool = ThrottlePool(20, 1.0)
        with pool:
            session.get(...)
    """

    def __init__(
        self,
        rate: int,
        period: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if period <= 0:
            raise ValueError("period must be positive")
        self.rate = rate
        self.period = period
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._grants = deque()

    def _reserve(self) -> float:
        """Take a slot if one is free; otherwise return how long to wait."""
        with self._lock:
            now = self._clock()
            window_start = now - self.period
            while self._grants and self._grants[0] <= window_start:
                self._grants.popleft()

            if len(self._grants) < self.rate:
                self._grants.append(now)
                return 0.0
            return self._grants[0] + self.period - now

    def acquire(self) -> None:
        """Block until a slot in the current window is available."""
        while True:
            wait = self._reserve()
            if wait <= 0:
                return
            self._sleep(wait)

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        return False
