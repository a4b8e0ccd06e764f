import datetime as dt
from typing import Protocol


class Clock(Protocol):
    """Source of the current instant. Always returns a timezone-aware datetime."""

    def now(self) -> dt.datetime: ...


class SystemClock:
    def __init__(self, tz: dt.tzinfo = dt.timezone.utc) -> None:
        self._tz = tz

    def now(self) -> dt.datetime:
        return dt.datetime.now(self._tz)


class FixedClock:
    """A clock frozen at ``instant`` until moved with :meth:`advance` or :meth:`set`."""

    def __init__(self, instant: dt.datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._instant = instant

    def now(self) -> dt.datetime:
        return self._instant

    def advance(self, delta: dt.timedelta) -> None:
        self._instant += delta

    def set(self, instant: dt.datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._instant = instant
