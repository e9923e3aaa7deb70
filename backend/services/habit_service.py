from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from db.models import CompletionEventRecord, GoalRecord, HabitRecord
from engine.day_boundary import DayBoundary
from engine.models import GoalMeasurement, HabitCategory, PhaseName, UserSettings
from services.errors import NotFoundError
from utils.datetime_utils import from_storage, to_local, to_storage

logger = logging.getLogger(__name__)

VALID_CATEGORIES = {c.value for c in HabitCategory}
VALID_PHASES = {p.value for p in PhaseName}


def habit_to_dict(habit: HabitRecord, tz_name: str | None = None) -> dict:
    category = HabitCategory(habit.category)
    phase = PhaseName(habit.default_phase)
    return {
        "id": habit.id,
        "title": habit.title,
        "category": category.value,
        "category_label": category.display_name,
        "default_phase": phase.value,
        "default_phase_label": phase.display_name,
        "is_active": bool(habit.is_active),
        "goals": [goal_to_dict(g) for g in habit.goals],
        "created_at": from_storage(habit.created_at, tz_name).isoformat() if habit.created_at else None,
    }


def goal_to_dict(goal: GoalRecord) -> dict:
    by_phase = json.loads(goal.target_by_phase) if goal.target_by_phase else None
    return {
        "id": goal.id,
        "habit_id": goal.habit_id,
        "target_count_per_day": goal.target_count_per_day,
        "target_by_phase": by_phase,
        "measurement": goal.measurement,
    }


def completion_to_dict(completion: CompletionEventRecord, tz_name: str | None = None) -> dict:
    return {
        "id": completion.id,
        "habit_id": completion.habit_id,
        "timestamp": from_storage(completion.timestamp, tz_name).isoformat(),
        "date_key": completion.date_key,
        "metadata": json.loads(completion.metadata_json) if completion.metadata_json else {},
        "is_late_correction": bool(completion.is_late_correction),
    }


def _normalize_category(raw: str | None) -> str:
    value = (raw or "").strip().lower()
    return value if value in VALID_CATEGORIES else HabitCategory.GENERAL.value


def _normalize_phase(raw: str | None) -> str:
    value = (raw or "").strip().lower()
    if value not in VALID_PHASES:
        raise ValueError(f"default_phase must be one of {sorted(VALID_PHASES)}")
    return value


def get_habit(db: Session, habit_id: str) -> HabitRecord:
    habit = db.get(HabitRecord, habit_id)
    if habit is None:
        raise NotFoundError(f"Habit {habit_id} not found")
    return habit


def list_habits(db: Session, include_inactive: bool = False) -> list[HabitRecord]:
    query = db.query(HabitRecord)
    if not include_inactive:
        query = query.filter(HabitRecord.is_active.is_(True))
    return query.order_by(HabitRecord.created_at.asc(), HabitRecord.title.asc()).all()


def create_habit(
    db: Session,
    *,
    title: str,
    category: str | None,
    default_phase: str,
    target_count_per_day: int = 1,
    target_by_phase: dict[str, int] | None = None,
    created_at: datetime,
    habit_id: uuid.UUID | None = None,
) -> HabitRecord:
    if target_by_phase:
        unknown = set(target_by_phase) - VALID_PHASES
        if unknown:
            raise ValueError(f"target_by_phase has unknown phase(s): {sorted(unknown)}")
    habit = HabitRecord(
        id=str(habit_id or uuid.uuid4()),
        title=title.strip(),
        category=_normalize_category(category),
        default_phase=_normalize_phase(default_phase),
        is_active=True,
        created_at=to_storage(created_at),
    )
    target = max(1, int(target_count_per_day or 1))
    habit.goals.append(
        GoalRecord(
            id=str(uuid.uuid4()),
            target_count_per_day=target,
            target_by_phase=json.dumps(target_by_phase) if target_by_phase else None,
            measurement=(GoalMeasurement.BOOLEAN if target == 1 else GoalMeasurement.COUNT).value,
        )
    )
    db.add(habit)
    db.flush()
    return habit


def update_habit(
    db: Session,
    habit_id: str,
    *,
    title: str | None = None,
    category: str | None = None,
    default_phase: str | None = None,
    is_active: bool | None = None,
) -> HabitRecord:
    """Identity and creation time never change; everything else is explicit."""
    habit = get_habit(db, habit_id)
    if title is not None:
        habit.title = title.strip()
    if category is not None:
        habit.category = _normalize_category(category)
    if default_phase is not None:
        habit.default_phase = _normalize_phase(default_phase)
    if is_active is not None:
        habit.is_active = bool(is_active)
    db.flush()
    return habit


def record_completion(
    db: Session,
    habit_id: str,
    *,
    timestamp: datetime,
    user_settings: UserSettings,
    metadata: dict[str, Any] | None = None,
    is_late_correction: bool = False,
) -> CompletionEventRecord:
    """
    Store one completion event.

    The date key always comes from the timestamp in the user's timezone and
    the reset time in effect, never from the wall-clock date.
    """
    habit = get_habit(db, habit_id)
    local_ts = to_local(timestamp, user_settings.timezone)
    key = DayBoundary.from_settings(user_settings).date_key(local_ts)
    completion = CompletionEventRecord(
        id=str(uuid.uuid4()),
        habit_id=habit.id,
        timestamp=to_storage(local_ts),
        date_key=key,
        metadata_json=json.dumps(metadata, ensure_ascii=True) if metadata else None,
        is_late_correction=bool(is_late_correction),
    )
    db.add(completion)
    db.flush()
    logger.info("Recorded completion of %s for %s", habit.id, key)
    return completion


def delete_completion(db: Session, completion_id: str) -> None:
    completion = db.get(CompletionEventRecord, completion_id)
    if completion is None:
        raise NotFoundError(f"Completion {completion_id} not found")
    db.delete(completion)
    db.flush()
