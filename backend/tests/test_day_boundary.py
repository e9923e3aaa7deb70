from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engine.day_boundary import (  # noqa: E402
    DayBoundary,
    date_key,
    next_reset_boundary,
    parse_date_key,
    previous_reset_boundary,
)
from engine.models import UserSettings  # noqa: E402
from utils.datetime_utils import to_local  # noqa: E402

UTC = timezone.utc


def test_instants_before_reset_belong_to_previous_day():
    assert date_key(datetime(2025, 1, 5, 1, 30)) == "2025-01-04"
    assert date_key(datetime(2025, 1, 5, 1, 59, 59)) == "2025-01-04"


def test_instants_at_or_after_reset_belong_to_same_day():
    assert date_key(datetime(2025, 1, 5, 2, 0)) == "2025-01-05"
    assert date_key(datetime(2025, 1, 5, 23, 59)) == "2025-01-05"


def test_month_and_year_rollover():
    assert date_key(datetime(2025, 2, 1, 1, 0)) == "2025-01-31"
    assert date_key(datetime(2026, 1, 1, 1, 0)) == "2025-12-31"
    assert date_key(datetime(2024, 3, 1, 0, 15)) == "2024-02-29"


def test_custom_reset_time():
    assert date_key(datetime(2025, 1, 5, 2, 30), reset_hour=3) == "2025-01-04"
    assert date_key(datetime(2025, 1, 5, 3, 0), reset_hour=3) == "2025-01-05"

    boundary = DayBoundary(reset_hour=4, reset_minute=30)
    assert boundary.date_key(datetime(2025, 5, 10, 4, 29)) == "2025-05-09"
    assert boundary.date_key(datetime(2025, 5, 10, 4, 30)) == "2025-05-10"


def test_midnight_reset_matches_calendar_day():
    boundary = DayBoundary(reset_hour=0, reset_minute=0)
    assert boundary.date_key(datetime(2025, 1, 5, 0, 0)) == "2025-01-05"
    assert boundary.date_key(datetime(2025, 1, 4, 23, 59)) == "2025-01-04"


def test_date_key_uses_wall_clock_of_the_given_timezone():
    # 2024-03-10 is the spring-forward day in Edmonton (02:00 MST -> 03:00 MDT).
    before = to_local(datetime(2024, 3, 10, 8, 30, tzinfo=UTC), "America/Edmonton")
    after = to_local(datetime(2024, 3, 10, 9, 30, tzinfo=UTC), "America/Edmonton")
    assert (before.hour, before.minute) == (1, 30)
    assert date_key(before) == "2024-03-09"
    assert (after.hour, after.minute) == (3, 30)
    assert date_key(after) == "2024-03-10"


def test_next_reset_is_strictly_after_instant():
    tz = ZoneInfo("UTC")
    at_reset = datetime(2025, 1, 15, 2, 0, tzinfo=tz)
    assert next_reset_boundary(at_reset) == datetime(2025, 1, 16, 2, 0, tzinfo=tz)
    assert next_reset_boundary(datetime(2025, 1, 15, 1, 0, tzinfo=tz)) == at_reset


def test_previous_reset_is_at_or_before_instant():
    tz = ZoneInfo("UTC")
    at_reset = datetime(2025, 1, 15, 2, 0, tzinfo=tz)
    assert previous_reset_boundary(at_reset) == at_reset
    assert previous_reset_boundary(datetime(2025, 1, 15, 1, 0, tzinfo=tz)) == datetime(2025, 1, 14, 2, 0, tzinfo=tz)


def test_day_boundary_from_settings_and_new_day_detection():
    boundary = DayBoundary.from_settings(UserSettings(reset_hour=5, reset_minute=15))
    assert boundary == DayBoundary(5, 15)
    assert not boundary.is_new_day("2025-01-04", datetime(2025, 1, 5, 5, 14))
    assert boundary.is_new_day("2025-01-04", datetime(2025, 1, 5, 5, 15))


def test_day_start_and_end_span_one_application_day():
    boundary = DayBoundary()
    day = parse_date_key("2025-12-31")
    assert boundary.day_start(day, UTC) == datetime(2025, 12, 31, 2, 0, tzinfo=UTC)
    assert boundary.day_end(day, UTC) == datetime(2026, 1, 1, 2, 0, tzinfo=UTC)
