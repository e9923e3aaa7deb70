from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_naive() -> datetime:
    """Naive UTC timestamp, the storage convention for DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_timezone(tz_name: str | None) -> tzinfo:
    """Return the named timezone, or UTC when the name is empty or unknown."""
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except Exception:
            pass
    return timezone.utc


def to_local(dt: datetime, tz_name: str | None) -> datetime:
    """Convert an aware (or naive UTC) datetime to the user's timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(resolve_timezone(tz_name))


def to_storage(dt: datetime) -> datetime:
    """Convert an aware datetime to naive UTC for storage."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def from_storage(dt: datetime | None, tz_name: str | None = None) -> datetime | None:
    if dt is None:
        return None
    return to_local(dt, tz_name)
