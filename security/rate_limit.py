import math
from datetime import datetime, timedelta

from flask import current_app


class RateLimiter:
    """
    Fixed-window attempt counter keyed by string.

    Each key owns two cache entries that share the decay TTL: the hit counter and a
    `:timer` entry holding the moment the window resets. Keys never interfere.
    """

    def __init__(self, cache, clock):
        self.cache = cache
        self.clock = clock

    def hit(self, key: str, decay_seconds: int = 60) -> int:
        reset_at = self.clock.now() + timedelta(seconds=decay_seconds)
        self.cache.add(f"{key}:timer", reset_at.isoformat(), decay_seconds)

        added = self.cache.add(key, 0, decay_seconds)
        hits = self.cache.increment(key, 1, decay_seconds)

        # The counter expired between add() and increment(); restart the window
        if not added and hits == 1:
            self.cache.put(key, 1, decay_seconds)
        return hits

    def attempts(self, key: str) -> int:
        return int(self.cache.get(key, 0) or 0)

    def too_many_attempts(self, key: str, max_attempts: int) -> bool:
        if self.attempts(key) >= max_attempts:
            if self.cache.has(f"{key}:timer"):
                return True
            self.reset_attempts(key)
        return False

    def remaining(self, key: str, max_attempts: int) -> int:
        return max(0, max_attempts - self.attempts(key))

    def available_in(self, key: str) -> int:
        """Seconds until the window for `key` resets (0 when no window is open)."""
        raw = self.cache.get(f"{key}:timer")
        if not raw:
            return 0
        reset_at = datetime.fromisoformat(raw)
        return max(0, math.ceil((reset_at - self.clock.now()).total_seconds()))

    def reset_attempts(self, key: str) -> None:
        self.cache.forget(key)

    def clear(self, key: str) -> None:
        self.cache.forget(key)
        self.cache.forget(f"{key}:timer")


def get_rate_limiter() -> RateLimiter:
    return current_app.extensions["rate_limiter"]
