"""
Key/value stores with per-key TTL used for rate limits and request telemetry.

Both backends expose the same small surface (get, put, add, increment, forget, has).
MemoryCache is process-local; RedisCache is shared across workers and relies on
Redis' atomic INCRBY/SET NX for concurrent callers.
"""
import json
from datetime import timedelta
from threading import Lock

from redis import Redis


class MemoryCache:
    # expired keys that are never read again are dropped every N writes
    SWEEP_EVERY = 100

    def __init__(self, clock):
        self._clock = clock
        self._lock = Lock()
        # key -> (value, expires_at or None)
        self._items = {}
        self._writes = 0

    def __len__(self):
        with self._lock:
            return len(self._items)

    def _live(self, key, now):
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= now:
            self._items.pop(key, None)
            return None
        return item

    def _note_write(self, now):
        self._writes += 1
        if self._writes >= self.SWEEP_EVERY:
            self._writes = 0
            self._sweep(now)

    def _sweep(self, now):
        expired = [k for k, (_, exp) in self._items.items() if exp is not None and exp <= now]
        for key in expired:
            del self._items[key]

    def _expiry(self, ttl, now):
        if ttl is None:
            return None
        return now + timedelta(seconds=int(ttl))

    def get(self, key, default=None):
        with self._lock:
            item = self._live(key, self._clock.now())
            return default if item is None else item[0]

    def has(self, key) -> bool:
        with self._lock:
            return self._live(key, self._clock.now()) is not None

    def put(self, key, value, ttl=None) -> None:
        now = self._clock.now()
        with self._lock:
            self._items[key] = (value, self._expiry(ttl, now))
            self._note_write(now)

    def add(self, key, value, ttl=None) -> bool:
        """Store only when the key is absent. Returns True when stored."""
        now = self._clock.now()
        with self._lock:
            if self._live(key, now) is not None:
                return False
            self._items[key] = (value, self._expiry(ttl, now))
            self._note_write(now)
            return True

    def increment(self, key, amount: int = 1, ttl=None) -> int:
        """Add to a counter. A new counter gets `ttl`; an existing one keeps its expiry."""
        now = self._clock.now()
        with self._lock:
            item = self._live(key, now)
            if item is None:
                value, expires_at = 0, self._expiry(ttl, now)
            else:
                value, expires_at = item
            value = int(value) + amount
            self._items[key] = (value, expires_at)
            self._note_write(now)
            return value

    def forget(self, key) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class RedisCache:
    def __init__(self, redis_url: str, *, prefix: str = "storefront:", socket_timeout: float = 5.0):
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self.prefix = prefix

    def _k(self, key):
        return f"{self.prefix}{key}"

    def get(self, key, default=None):
        raw = self.client.get(self._k(key))
        if raw is None:
            return default
        return json.loads(raw)

    def has(self, key) -> bool:
        return bool(self.client.exists(self._k(key)))

    def put(self, key, value, ttl=None) -> None:
        self.client.set(self._k(key), json.dumps(value), ex=int(ttl) if ttl else None)

    def add(self, key, value, ttl=None) -> bool:
        return bool(self.client.set(self._k(key), json.dumps(value), ex=int(ttl) if ttl else None, nx=True))

    def increment(self, key, amount: int = 1, ttl=None) -> int:
        pipe = self.client.pipeline()
        pipe.incrby(self._k(key), amount)
        if ttl:
            # NX keeps the window fixed: only a fresh counter gets an expiry
            pipe.expire(self._k(key), int(ttl), nx=True)
        result = pipe.execute()
        return int(result[0])

    def forget(self, key) -> None:
        self.client.delete(self._k(key))
