"""
Injectable time source. Services take a ``clock`` callable so tests can pin "now".
"""

from datetime import datetime, timedelta
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.utcnow()


class FrozenClock:
    """A clock that returns a fixed instant until moved."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now
