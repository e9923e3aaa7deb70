"""
Application-day arithmetic.

The application day does not turn over at midnight but at a configurable
reset time (02:00 by default). Every instant belongs to exactly one date key,
formatted ``YYYY-MM-DD``; instants before the reset time belong to the
previous calendar day.

All functions use the wall-clock fields of the instant they are given, so
callers convert to the user's local timezone first.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from engine.models import UserSettings

DEFAULT_RESET_HOUR = 2
DEFAULT_RESET_MINUTE = 0


def format_date_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def parse_date_key(key: str) -> date:
    return datetime.strptime(key, "%Y-%m-%d").date()


def application_day(
    instant: datetime,
    reset_hour: int = DEFAULT_RESET_HOUR,
    reset_minute: int = DEFAULT_RESET_MINUTE,
) -> date:
    current_minutes = instant.hour * 60 + instant.minute
    reset_minutes = reset_hour * 60 + reset_minute
    if current_minutes < reset_minutes:
        return instant.date() - timedelta(days=1)
    return instant.date()


def date_key(
    instant: datetime,
    reset_hour: int = DEFAULT_RESET_HOUR,
    reset_minute: int = DEFAULT_RESET_MINUTE,
) -> str:
    """Return the date key of the application day containing ``instant``."""
    return format_date_key(application_day(instant, reset_hour, reset_minute))


def boundary_on(day: date, reset_hour: int, reset_minute: int, tz: tzinfo | None = None) -> datetime:
    """Reset instant on the given calendar day."""
    return datetime.combine(day, time(reset_hour, reset_minute), tzinfo=tz)


def next_reset_boundary(
    instant: datetime,
    reset_hour: int = DEFAULT_RESET_HOUR,
    reset_minute: int = DEFAULT_RESET_MINUTE,
) -> datetime:
    """First reset instant strictly after ``instant``."""
    boundary = boundary_on(instant.date(), reset_hour, reset_minute, instant.tzinfo)
    if instant >= boundary:
        return boundary_on(instant.date() + timedelta(days=1), reset_hour, reset_minute, instant.tzinfo)
    return boundary


def previous_reset_boundary(
    instant: datetime,
    reset_hour: int = DEFAULT_RESET_HOUR,
    reset_minute: int = DEFAULT_RESET_MINUTE,
) -> datetime:
    """Last reset instant at or before ``instant`` (the start of its application day)."""
    boundary = boundary_on(instant.date(), reset_hour, reset_minute, instant.tzinfo)
    if instant >= boundary:
        return boundary
    return boundary_on(instant.date() - timedelta(days=1), reset_hour, reset_minute, instant.tzinfo)


@dataclass(frozen=True)
class DayBoundary:
    reset_hour: int = DEFAULT_RESET_HOUR
    reset_minute: int = DEFAULT_RESET_MINUTE

    @classmethod
    def from_settings(cls, settings: UserSettings) -> DayBoundary:
        return cls(reset_hour=settings.reset_hour, reset_minute=settings.reset_minute)

    def date_key(self, instant: datetime) -> str:
        return date_key(instant, self.reset_hour, self.reset_minute)

    def application_day(self, instant: datetime) -> date:
        return application_day(instant, self.reset_hour, self.reset_minute)

    def is_new_day(self, last_date_key: str, instant: datetime) -> bool:
        return self.date_key(instant) != last_date_key

    def next_reset(self, instant: datetime) -> datetime:
        return next_reset_boundary(instant, self.reset_hour, self.reset_minute)

    def previous_reset(self, instant: datetime) -> datetime:
        return previous_reset_boundary(instant, self.reset_hour, self.reset_minute)

    def day_start(self, day: date, tz: tzinfo | None = None) -> datetime:
        return boundary_on(day, self.reset_hour, self.reset_minute, tz)

    def day_end(self, day: date, tz: tzinfo | None = None) -> datetime:
        return boundary_on(day + timedelta(days=1), self.reset_hour, self.reset_minute, tz)
