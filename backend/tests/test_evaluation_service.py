"""Tests for loading the day's snapshot, running the engine and persisting decisions."""
from __future__ import annotations

import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import (  # noqa: E402
    ReminderRecord,
    ReturnHookRecord,
    RuleRecord,
    SalvagePlanRecord,
)
from engine.interpreter import RuleEngine  # noqa: E402
from engine.models import CompletionTriggerEvent, ReminderState  # noqa: E402
from services.evaluation_service import apply_decisions, load_context, result_to_dict, run_evaluation  # noqa: E402
from services.habit_service import create_habit, record_completion  # noqa: E402
from services.repository import get_or_create_settings, load_active_rules, settings_from_record  # noqa: E402
from services.rule_service import create_routine, create_rule, set_routine_active  # noqa: E402

UTC = timezone.utc
EVENING_START = datetime(2025, 1, 5, 18, 0, tzinfo=UTC)


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _setup(db):
    record = get_or_create_settings(db)
    record.timezone = "UTC"
    record.phase_mode = "manual"
    meal = create_habit(db, title="Meal", category="meal", default_phase="afternoon", created_at=EVENING_START)
    supplements = create_habit(
        db, title="Supplements", category="supplements", default_phase="evening", created_at=EVENING_START
    )
    routine = create_routine(db, name="Meals", habit_ids=[meal.id, supplements.id], created_at=EVENING_START)
    db.commit()
    return meal, supplements, routine


def _add_supplements_rule(db, routine, meal, supplements):
    return create_rule(
        db,
        routine_id=routine.id,
        trigger={"type": "phase_start", "phase": "evening"},
        conditions=[{"type": "completed_within_last", "habit_id": meal.id, "minutes": 120}],
        actions=[{"type": "notify", "template_id": "cascade_reminder", "habit_id": supplements.id, "priority": 2}],
        created_at=EVENING_START,
    )


def _complete(db, habit, at):
    user_settings = settings_from_record(get_or_create_settings(db))
    return record_completion(db, habit.id, timestamp=at, user_settings=user_settings)


def test_completion_date_key_follows_reset_time():
    db = _new_db()
    meal, _, _ = _setup(db)
    completion = _complete(db, meal, datetime(2025, 1, 6, 1, 30, tzinfo=UTC))
    assert completion.date_key == "2025-01-05"


def test_load_context_reads_the_application_day():
    db = _new_db()
    meal, _, _ = _setup(db)
    _complete(db, meal, EVENING_START - timedelta(minutes=30))
    _complete(db, meal, EVENING_START - timedelta(days=1))
    db.commit()

    context = load_context(db, EVENING_START)
    assert context.date_key == "2025-01-05"
    assert context.completion_count(uuid.UUID(meal.id)) == 1
    assert context.now.tzinfo is not None


def test_evening_cascade_schedules_one_reminder():
    db = _new_db()
    meal, supplements, routine = _setup(db)
    rule = _add_supplements_rule(db, routine, meal, supplements)
    _complete(db, meal, EVENING_START - timedelta(minutes=30))
    db.commit()

    result = run_evaluation(db, EVENING_START)
    db.commit()

    assert len(result.scheduled) == 1
    reminder = db.query(ReminderRecord).one()
    assert reminder.habit_id == supplements.id
    assert reminder.rule_id == rule.id
    assert reminder.state == ReminderState.SCHEDULED.value
    assert reminder.date_key == "2025-01-05"
    assert reminder.notification_id == f"habit-reminder-{uuid.UUID(reminder.id).hex}"
    assert reminder.expires_at - reminder.fire_at == timedelta(hours=1)

    body = result_to_dict(result, db)
    assert body["scheduled_count"] == 1
    assert body["decisions"][0]["notification"]["body"] == "Supplements so the next step can happen"


def test_reevaluating_the_same_instant_does_not_duplicate():
    db = _new_db()
    meal, supplements, routine = _setup(db)
    _add_supplements_rule(db, routine, meal, supplements)
    _complete(db, meal, EVENING_START - timedelta(minutes=30))
    db.commit()

    context = load_context(db, EVENING_START)
    decisions = RuleEngine().evaluate(load_active_rules(db), context)
    apply_decisions(db, decisions, context)
    second = apply_decisions(db, decisions, context)
    db.commit()

    assert second.scheduled == []
    assert db.query(ReminderRecord).count() == 1


def test_rules_of_inactive_routines_are_not_evaluated():
    db = _new_db()
    meal, supplements, routine = _setup(db)
    _add_supplements_rule(db, routine, meal, supplements)
    _complete(db, meal, EVENING_START - timedelta(minutes=30))
    set_routine_active(db, routine.id, False)
    db.commit()

    assert load_active_rules(db) == []
    assert run_evaluation(db, EVENING_START).decisions == []


def test_malformed_rule_rows_are_skipped():
    db = _new_db()
    meal, supplements, routine = _setup(db)
    good = _add_supplements_rule(db, routine, meal, supplements)
    db.add(
        RuleRecord(
            id=str(uuid.uuid4()),
            routine_id=routine.id,
            position=5,
            trigger_json='{"type": "sunrise_dance"}',
            conditions_json="[]",
            actions_json="[]",
        )
    )
    db.commit()

    rules = load_active_rules(db)
    assert [str(r.id) for r in rules] == [good.id]


def test_completion_event_cancels_pending_reminders():
    db = _new_db()
    meal, supplements, routine = _setup(db)
    _add_supplements_rule(db, routine, meal, supplements)
    create_rule(
        db,
        routine_id=routine.id,
        trigger={"type": "on_completion", "habit_id": supplements.id},
        actions=[{"type": "cancel_notifications", "tag": {"type": "by_habit", "habit_id": supplements.id}}],
        conditions=[],
        created_at=EVENING_START,
    )
    _complete(db, meal, EVENING_START - timedelta(minutes=30))
    db.commit()
    run_evaluation(db, EVENING_START)
    db.commit()

    later = EVENING_START + timedelta(minutes=20)
    completion = _complete(db, supplements, later)
    result = run_evaluation(db, later, CompletionTriggerEvent(habit_id=uuid.UUID(supplements.id), occurred_at=later))
    db.commit()

    assert completion.date_key == "2025-01-05"
    assert len(result.canceled) == 1
    assert db.query(ReminderRecord).one().state == ReminderState.CANCELED.value


def test_overdue_reminders_expire_before_evaluation():
    db = _new_db()
    meal, supplements, routine = _setup(db)
    _add_supplements_rule(db, routine, meal, supplements)
    _complete(db, meal, EVENING_START - timedelta(minutes=30))
    db.commit()
    run_evaluation(db, EVENING_START)
    db.commit()

    result = run_evaluation(db, EVENING_START + timedelta(hours=2))
    db.commit()
    assert result.expired_count == 1
    assert db.query(ReminderRecord).one().state == ReminderState.EXPIRED.value


def test_return_hooks_and_salvage_plans_are_not_duplicated():
    db = _new_db()
    meal, supplements, routine = _setup(db)
    create_rule(
        db,
        routine_id=routine.id,
        trigger={"type": "phase_start", "phase": "evening"},
        conditions=[{"type": "not_completed_today", "habit_id": supplements.id}],
        actions=[
            {"type": "create_return_hook", "prompt": "How did the evening go?"},
            {"type": "trigger_salvage", "plan_id": "evening"},
        ],
        created_at=EVENING_START,
    )
    db.commit()

    run_evaluation(db, EVENING_START)
    db.commit()
    hook = db.query(ReturnHookRecord).one()
    assert hook.prompt == "How did the evening go?"
    assert hook.date_key == "2025-01-05"

    run_evaluation(db, EVENING_START + timedelta(seconds=30))
    db.commit()
    plan = db.query(SalvagePlanRecord).one()
    assert plan.rebalanced_items == "[]"
    assert plan.date_key == "2025-01-05"
    assert db.query(ReturnHookRecord).count() == 1
