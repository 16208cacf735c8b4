import math
import time

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter


class RateLimitExceeded(Exception):
    def __init__(self, retry_after: int):
        super().__init__("Too many requests. Please try again later.")
        self.retry_after = retry_after


class RateLimiter:
    """
    Fixed-window limit per key, backed by ``limits``.

    The in-memory storage expires finished windows on its own, so the key
    table does not grow with the number of distinct callers.
    """

    def __init__(self, max_requests: int, window_seconds: int, storage=None):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.item = RateLimitItemPerSecond(max_requests, window_seconds)
        self.storage = storage or MemoryStorage()
        self._limiter = FixedWindowRateLimiter(self.storage)

    def hit(self, key: str) -> None:
        if not self._limiter.hit(self.item, key):
            reset_at, _ = self._limiter.get_window_stats(self.item, key)
            raise RateLimitExceeded(max(1, math.ceil(reset_at - time.time())))

    def remaining(self, key: str) -> int:
        _, remaining = self._limiter.get_window_stats(self.item, key)
        return remaining

    def reset(self) -> None:
        self.storage.reset()
