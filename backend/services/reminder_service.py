from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from db.models import ReminderRecord
from engine.day_boundary import DayBoundary
from engine.models import ReminderState, can_transition
from services.errors import InvalidTransitionError, NotFoundError
from services.repository import reminder_from_record
from utils.datetime_utils import from_storage, to_local, to_storage

logger = logging.getLogger(__name__)

SNOOZE_EXPIRATION = timedelta(hours=1)
VALID_RESPONSES = {"done", "snooze", "skip", "fire", "expire", "cancel"}


def reminder_to_dict(record: ReminderRecord, tz_name: str | None = None) -> dict:
    return {
        "id": record.id,
        "habit_id": record.habit_id,
        "rule_id": record.rule_id,
        "date_key": record.date_key,
        "fire_at": from_storage(record.fire_at, tz_name).isoformat(),
        "expires_at": from_storage(record.expires_at, tz_name).isoformat(),
        "notification_id": record.notification_id,
        "state": record.state,
        "priority": record.priority,
        "template_id": record.template_id,
        "snoozed_from_id": record.snoozed_from_id,
    }


def notification_handle(reminder_id: uuid.UUID) -> str:
    return f"habit-reminder-{reminder_id.hex}"


def get_reminder(db: Session, reminder_id: str) -> ReminderRecord:
    record = db.get(ReminderRecord, reminder_id)
    if record is None:
        raise NotFoundError(f"Reminder {reminder_id} not found")
    return record


def transition_reminder(record: ReminderRecord, target: ReminderState) -> ReminderRecord:
    current = ReminderState(record.state)
    if not can_transition(current, target):
        raise InvalidTransitionError(f"Reminder {record.id} cannot move from {current.value} to {target.value}")
    record.state = target.value
    return record


def snooze_reminder(
    db: Session,
    record: ReminderRecord,
    *,
    minutes: int,
    now: datetime,
    boundary: DayBoundary,
    tz_name: str | None = None,
) -> ReminderRecord:
    """
    Mark a reminder snoozed and schedule its replacement.

    Only a fired reminder that has not passed its expiration can be snoozed.
    The original reminder is never resurrected; the replacement is a new
    reminder that fires ``minutes`` from now.
    """
    if minutes <= 0:
        raise InvalidTransitionError("Snooze minutes must be positive")
    reminder = reminder_from_record(record, tz_name)
    if not reminder.can_snooze(now):
        raise InvalidTransitionError(
            f"Reminder {record.id} cannot be snoozed: state {reminder.state.value}, "
            f"expires {reminder.expires_at.isoformat()}"
        )
    transition_reminder(record, ReminderState.SNOOZED)

    fire_at = now + timedelta(minutes=minutes)
    new_id = uuid.uuid4()
    replacement = ReminderRecord(
        id=str(new_id),
        habit_id=record.habit_id,
        rule_id=record.rule_id,
        date_key=boundary.date_key(to_local(fire_at, tz_name)),
        fire_at=to_storage(fire_at),
        expires_at=to_storage(fire_at + SNOOZE_EXPIRATION),
        notification_id=notification_handle(new_id),
        state=ReminderState.SCHEDULED.value,
        priority=record.priority,
        template_id=record.template_id,
        snoozed_from_id=record.id,
    )
    db.add(replacement)
    db.flush()
    logger.info("Snoozed reminder %s for %d min as %s", record.id, minutes, replacement.id)
    return replacement


def expire_overdue(db: Session, now: datetime) -> int:
    """Move scheduled reminders whose expiration has passed to expired."""
    rows = (
        db.query(ReminderRecord)
        .filter(
            ReminderRecord.state == ReminderState.SCHEDULED.value,
            ReminderRecord.expires_at < to_storage(now),
        )
        .all()
    )
    rows = [row for row in rows if reminder_from_record(row, None).is_expired(now)]
    for row in rows:
        transition_reminder(row, ReminderState.EXPIRED)
    if rows:
        db.flush()
        logger.info("Expired %d overdue reminder(s)", len(rows))
    return len(rows)
