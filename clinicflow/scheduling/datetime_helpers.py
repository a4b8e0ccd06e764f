import datetime as dt
import math
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger


def resolve_timezone(name: str) -> dt.tzinfo:
    """Resolve a timezone name, falling back to UTC if invalid."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Invalid clinic timezone '{}'; defaulting to UTC", name)
        return dt.timezone.utc


def time_to_hhmm(time: dt.time) -> str:
    """Convert ``time(9, 5)`` → ``09:05``."""
    return time.strftime("%H:%M")


def minutes_until(later: dt.datetime, now: dt.datetime) -> int:
    """Whole minutes from ``now`` to ``later``, rounded up so a pending wait never reads 0."""
    return max(0, math.ceil((later - now).total_seconds() / 60))


def day_bounds(date: dt.date, tz: dt.tzinfo) -> tuple[dt.datetime, dt.datetime]:
    """Return the ``[start, end)`` instants of ``date`` in the clinic timezone."""
    start = dt.datetime.combine(date, dt.time.min, tzinfo=tz)
    end = dt.datetime.combine(date + dt.timedelta(days=1), dt.time.min, tzinfo=tz)
    return start, end
