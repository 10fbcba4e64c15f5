"""UTC-everywhere time handling for token and OTP expiry checks."""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Every expiry comparison in the auth core goes through this function,
    which also makes it the single seam tests patch to move the clock.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def is_past(moment: datetime, now: datetime | None = None) -> bool:
    """True if `moment` is at or before `now` (expiry is exclusive)."""
    current = now or now_utc()
    return to_utc(moment) <= current

