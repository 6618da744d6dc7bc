from datetime import datetime, timedelta, timezone
from threading import Lock

from flask import current_app


class SystemClock:
    """Wall clock. Returns naive UTC datetimes to match the DateTime columns."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock:
    """Clock that only moves when told to. Used by tests and dry runs."""

    def __init__(self, start: datetime | None = None):
        self._now = start or SystemClock().now()
        self._lock = Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value

    def advance(self, **delta) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now


def get_clock():
    return current_app.extensions["clock"]


def utcnow() -> datetime:
    return get_clock().now()
