"""
Clock and location providers.

The engine never reads the system clock or a location service itself; API
handlers obtain "now" through :func:`get_clock` (overridable in tests) and the
coordinate through :func:`location_for`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from db.models import UserSettingsRecord
from engine.models import GeoCoordinate
from utils.datetime_utils import utcnow

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return utcnow()


def get_clock() -> Clock:
    return system_clock


def location_for(record: UserSettingsRecord | None) -> GeoCoordinate | None:
    """Stored coordinate, or None when location is disabled or was never supplied."""
    if record is None or not record.location_enabled:
        return None
    if record.latitude is None or record.longitude is None:
        return None
    if not -90.0 <= record.latitude <= 90.0 or not -180.0 <= record.longitude <= 180.0:
        return None
    return GeoCoordinate(latitude=float(record.latitude), longitude=float(record.longitude))
