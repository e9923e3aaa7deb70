"""
Phase-of-day computation.

A day is split into four contiguous, non-overlapping intervals in the order
morning, afternoon, evening, night; night always runs into the following
calendar day. In auto-solar mode with a known coordinate the boundaries follow
an approximate sunrise/sunset, otherwise they come from the manual overrides
(or the 06/12/18/22 defaults).
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, time, timedelta, tzinfo

from engine.day_boundary import boundary_on, format_date_key
from engine.models import (
    DEFAULT_PHASE_OVERRIDES,
    PHASE_ORDER,
    DayPhases,
    GeoCoordinate,
    PhaseInterval,
    PhaseMode,
    PhaseName,
    PhaseOverride,
    UserSettings,
)

logger = logging.getLogger(__name__)

EVENING_LENGTH = timedelta(hours=2)
DEFAULT_SUNRISE = time(6, 30)
DEFAULT_SUNSET = time(18, 30)


def _at(day: date, hour: int, minute: int, tz: tzinfo | None) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def _build_intervals(starts: list[datetime], night_end: datetime) -> tuple[PhaseInterval, ...]:
    ends = starts[1:] + [night_end]
    return tuple(
        PhaseInterval(phase=phase, start=start, end=end)
        for phase, start, end in zip(PHASE_ORDER, starts, ends)
    )


def default_phases(day: date, tz: tzinfo | None = None) -> DayPhases:
    """Hardcoded 06:00 / 12:00 / 18:00 / 22:00 boundaries."""
    starts = [
        _at(day, DEFAULT_PHASE_OVERRIDES[phase].start_hour, DEFAULT_PHASE_OVERRIDES[phase].start_minute, tz)
        for phase in PHASE_ORDER
    ]
    next_morning = starts[0] + timedelta(days=1)
    return DayPhases(date_key=format_date_key(day), intervals=_build_intervals(starts, next_morning))


def _manual_starts(day: date, overrides: dict[PhaseName, PhaseOverride], tz: tzinfo | None) -> list[datetime]:
    morning = overrides[PhaseName.MORNING]
    morning_start = _at(day, morning.start_hour, morning.start_minute, tz)
    starts = [morning_start]
    for phase in PHASE_ORDER[1:]:
        override = overrides[phase]
        start = _at(day, override.start_hour, override.start_minute, tz)
        if start < morning_start:
            # Times earlier than the morning start belong to the next calendar day.
            start = _at(day + timedelta(days=1), override.start_hour, override.start_minute, tz)
        starts.append(start)
    return starts


def manual_phases(day: date, settings: UserSettings, tz: tzinfo | None = None) -> DayPhases:
    overrides = {phase: settings.override_for(phase) for phase in PHASE_ORDER}
    try:
        starts = _manual_starts(day, overrides, tz)
    except (ValueError, OverflowError) as e:
        logger.warning(f"Invalid manual phase overrides for {day}, using defaults: {e}")
        return default_phases(day, tz)

    next_morning = _at(day + timedelta(days=1), starts[0].hour, starts[0].minute, tz)
    ordered = all(a < b for a, b in zip(starts, starts[1:])) and starts[-1] < next_morning
    if not ordered:
        logger.warning("Manual phase overrides for %s are not in day order, using defaults", day)
        return default_phases(day, tz)

    return DayPhases(date_key=format_date_key(day), intervals=_build_intervals(starts, next_morning))


def sunrise_sunset(day: date, latitude: float, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """
    Approximate sunrise and sunset around a fixed 12:00 solar noon.

    Uses the simple declination formula; precision is within tens of minutes,
    which is enough for phase boundaries. Near-polar latitudes, where the hour
    angle is undefined, fall back to 06:30 / 18:30.
    """
    day_of_year = day.timetuple().tm_yday
    declination = -23.45 * math.cos(2 * math.pi * (day_of_year + 10) / 365.0)
    lat_rad = math.radians(latitude)
    dec_rad = math.radians(declination)

    cos_hour_angle = -math.tan(lat_rad) * math.tan(dec_rad)
    if not math.isfinite(cos_hour_angle) or abs(cos_hour_angle) >= 1.0:
        return (
            datetime.combine(day, DEFAULT_SUNRISE, tzinfo=tz),
            datetime.combine(day, DEFAULT_SUNSET, tzinfo=tz),
        )

    hour_angle = math.degrees(math.acos(max(-1.0, min(1.0, cos_hour_angle))))
    daylight_hours = 2 * hour_angle / 15.0
    sunrise_minutes = round((12 - daylight_hours / 2) * 60)
    sunset_minutes = round((12 + daylight_hours / 2) * 60)

    midnight = datetime.combine(day, time(0, 0), tzinfo=tz)
    return midnight + timedelta(minutes=sunrise_minutes), midnight + timedelta(minutes=sunset_minutes)


def solar_phases(
    day: date,
    settings: UserSettings,
    location: GeoCoordinate,
    tz: tzinfo | None = None,
) -> DayPhases:
    try:
        sunrise, sunset = sunrise_sunset(day, location.latitude, tz)
        next_sunrise, _ = sunrise_sunset(day + timedelta(days=1), location.latitude, tz)
        noon = _at(day, 12, 0, tz)
        next_reset = boundary_on(day + timedelta(days=1), settings.reset_hour, settings.reset_minute, tz)
    except (ValueError, OverflowError) as e:
        logger.warning(f"Solar phase computation failed for {day}, using defaults: {e}")
        return default_phases(day, tz)

    evening_end = sunset + EVENING_LENGTH
    night_end = max(evening_end, min(next_reset, next_sunrise))
    starts = [sunrise, noon, sunset, evening_end]
    return DayPhases(date_key=format_date_key(day), intervals=_build_intervals(starts, night_end))


def compute_phases(
    day: date,
    settings: UserSettings,
    location: GeoCoordinate | None = None,
    tz: tzinfo | None = None,
) -> DayPhases:
    """
    Compute the four phase intervals for an application day.

    Auto-solar mode without a coordinate is not an error: it uses the manual
    boundaries.
    """
    if settings.phase_mode == PhaseMode.AUTO_SOLAR and location is not None:
        return solar_phases(day, settings, location, tz)
    return manual_phases(day, settings, tz)
