from __future__ import annotations

import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import ReminderRecord  # noqa: E402
from engine.day_boundary import DayBoundary  # noqa: E402
from engine.models import Reminder, ReminderState, can_transition  # noqa: E402
from services.errors import InvalidTransitionError  # noqa: E402
from services.reminder_service import (  # noqa: E402
    expire_overdue,
    notification_handle,
    snooze_reminder,
    transition_reminder,
)
from utils.datetime_utils import to_storage  # noqa: E402

UTC = timezone.utc
NOW = datetime(2025, 1, 5, 21, 0, tzinfo=UTC)
TERMINAL = [
    ReminderState.CANCELED,
    ReminderState.EXPIRED,
    ReminderState.COMPLETED,
    ReminderState.SKIPPED,
    ReminderState.SNOOZED,
]


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _record(db, fire_at=NOW, state=ReminderState.SCHEDULED):
    reminder_id = uuid.uuid4()
    record = ReminderRecord(
        id=str(reminder_id),
        habit_id=None,
        rule_id=None,
        date_key="2025-01-05",
        fire_at=to_storage(fire_at),
        expires_at=to_storage(fire_at + timedelta(hours=1)),
        notification_id=notification_handle(reminder_id),
        state=state.value,
        priority=2,
        template_id="supplements_reminder",
    )
    db.add(record)
    db.flush()
    return record


def test_scheduled_and_fired_transitions():
    assert can_transition(ReminderState.SCHEDULED, ReminderState.FIRED)
    assert can_transition(ReminderState.SCHEDULED, ReminderState.CANCELED)
    assert can_transition(ReminderState.FIRED, ReminderState.COMPLETED)
    assert not can_transition(ReminderState.FIRED, ReminderState.CANCELED)
    assert not can_transition(ReminderState.FIRED, ReminderState.SCHEDULED)


@pytest.mark.parametrize("state", TERMINAL)
def test_terminal_states_have_no_exits(state):
    assert not any(can_transition(state, target) for target in ReminderState)


def test_reminder_expiration_must_not_precede_fire_time():
    with pytest.raises(ValueError):
        Reminder(
            id=uuid.uuid4(),
            habit_id=None,
            rule_id=None,
            date_key="2025-01-05",
            fire_at=NOW,
            expires_at=NOW - timedelta(minutes=1),
            notification_id="n",
            template_id="x",
        )


def test_expiry_and_snooze_windows():
    reminder = Reminder(
        id=uuid.uuid4(),
        habit_id=None,
        rule_id=None,
        date_key="2025-01-05",
        fire_at=NOW,
        expires_at=NOW + timedelta(hours=1),
        notification_id="n",
        template_id="x",
    )
    assert not reminder.is_expired(NOW + timedelta(hours=1))
    assert reminder.is_expired(NOW + timedelta(hours=1, seconds=1))
    assert not reminder.can_snooze(NOW)

    fired = reminder.with_state(ReminderState.FIRED)
    assert fired.can_snooze(NOW + timedelta(minutes=30))
    assert not fired.can_snooze(NOW + timedelta(hours=2))
    with pytest.raises(ValueError):
        fired.with_state(ReminderState.SCHEDULED)


def test_snooze_creates_a_new_reminder():
    db = _new_db()
    original = _record(db)
    transition_reminder(original, ReminderState.FIRED)

    replacement = snooze_reminder(db, original, minutes=15, now=NOW, boundary=DayBoundary(), tz_name="UTC")
    db.commit()

    assert original.state == ReminderState.SNOOZED.value
    assert replacement.id != original.id
    assert replacement.state == ReminderState.SCHEDULED.value
    assert replacement.snoozed_from_id == original.id
    assert replacement.fire_at == datetime(2025, 1, 5, 21, 15)
    assert replacement.expires_at == datetime(2025, 1, 5, 22, 15)
    assert replacement.priority == 2
    assert replacement.template_id == "supplements_reminder"


def test_snooze_near_reset_lands_on_next_day():
    db = _new_db()
    late = datetime(2025, 1, 6, 1, 50, tzinfo=UTC)
    original = _record(db, fire_at=late, state=ReminderState.FIRED)
    replacement = snooze_reminder(db, original, minutes=15, now=late, boundary=DayBoundary(), tz_name="UTC")
    assert replacement.date_key == "2025-01-06"


def test_completed_reminders_cannot_be_snoozed():
    db = _new_db()
    record = _record(db, state=ReminderState.COMPLETED)
    with pytest.raises(InvalidTransitionError):
        snooze_reminder(db, record, minutes=5, now=NOW, boundary=DayBoundary(), tz_name="UTC")


def test_fired_reminder_past_expiration_cannot_be_snoozed():
    db = _new_db()
    record = _record(db, fire_at=NOW - timedelta(hours=3), state=ReminderState.FIRED)
    with pytest.raises(InvalidTransitionError):
        snooze_reminder(db, record, minutes=15, now=NOW, boundary=DayBoundary(), tz_name="UTC")
    assert record.state == ReminderState.FIRED.value
    assert db.query(ReminderRecord).count() == 1


def test_scheduled_reminder_must_fire_before_snooze():
    db = _new_db()
    record = _record(db, fire_at=NOW + timedelta(minutes=10))
    with pytest.raises(InvalidTransitionError):
        snooze_reminder(db, record, minutes=5, now=NOW, boundary=DayBoundary(), tz_name="UTC")
    assert record.state == ReminderState.SCHEDULED.value


def test_expire_overdue_only_touches_scheduled():
    db = _new_db()
    overdue = _record(db, fire_at=NOW - timedelta(hours=3))
    fired = _record(db, fire_at=NOW - timedelta(hours=3), state=ReminderState.FIRED)
    upcoming = _record(db, fire_at=NOW + timedelta(minutes=10))

    assert expire_overdue(db, NOW) == 1
    assert overdue.state == ReminderState.EXPIRED.value
    assert fired.state == ReminderState.FIRED.value
    assert upcoming.state == ReminderState.SCHEDULED.value
