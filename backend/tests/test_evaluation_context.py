from __future__ import annotations

import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engine.context import build_context  # noqa: E402
from engine.models import (  # noqa: E402
    CompletionEvent,
    PhaseMode,
    PhaseName,
    Reminder,
    ReminderState,
    ReturnHook,
    UserSettings,
)

UTC = timezone.utc
NOW = datetime(2025, 1, 5, 18, 0, tzinfo=UTC)
MEAL = uuid.UUID(int=1)
WATER = uuid.UUID(int=2)


def _completion(habit_id, at):
    return CompletionEvent(id=uuid.uuid4(), habit_id=habit_id, timestamp=at, date_key="2025-01-05")


def _reminder(state=ReminderState.SCHEDULED, fire_at=NOW - timedelta(hours=2)):
    return Reminder(
        id=uuid.uuid4(),
        habit_id=MEAL,
        rule_id=None,
        date_key="2025-01-05",
        fire_at=fire_at,
        expires_at=fire_at + timedelta(hours=1),
        notification_id="n",
        template_id="generic_reminder",
        state=state,
    )


def _context(**kwargs):
    return build_context(NOW, UserSettings(phase_mode=PhaseMode.MANUAL), **kwargs)


def test_build_context_derives_date_key_and_phases():
    context = _context()
    assert context.date_key == "2025-01-05"
    assert context.phases.date_key == "2025-01-05"
    assert context.current_phase() == PhaseName.EVENING


def test_build_context_before_reset_uses_previous_day():
    context = build_context(datetime(2025, 1, 6, 1, 0, tzinfo=UTC), UserSettings(phase_mode=PhaseMode.MANUAL))
    assert context.date_key == "2025-01-05"
    assert context.current_phase() == PhaseName.NIGHT


def test_manual_day_has_no_phase_between_reset_and_morning():
    context = build_context(datetime(2025, 1, 6, 4, 0, tzinfo=UTC), UserSettings(phase_mode=PhaseMode.MANUAL))
    assert context.date_key == "2025-01-06"
    assert context.current_phase() is None
    assert context.phases.interval_for(PhaseName.MORNING).start == datetime(2025, 1, 6, 6, 0, tzinfo=UTC)
    assert context.phases.interval_for(PhaseName.NIGHT).start == datetime(2025, 1, 6, 22, 0, tzinfo=UTC)


def test_completed_within_last_boundary_is_inclusive():
    at_boundary = _context(completions=[_completion(MEAL, NOW - timedelta(minutes=120))])
    assert at_boundary.is_completed_within_last(MEAL, 120)

    too_old = _context(completions=[_completion(MEAL, NOW - timedelta(minutes=121))])
    assert not too_old.is_completed_within_last(MEAL, 120)
    assert not too_old.is_completed_within_last(WATER, 120)


def test_most_recent_completion_and_counts():
    early = _completion(MEAL, NOW - timedelta(hours=9))
    late = _completion(MEAL, NOW - timedelta(minutes=10))
    context = _context(completions=[late, early, _completion(WATER, NOW)])
    assert context.most_recent_completion(MEAL) == late
    assert context.completion_count(MEAL) == 2
    assert context.is_completed(WATER)
    assert context.most_recent_completion(uuid.UUID(int=99)) is None


def test_completed_in_phase_uses_phase_interval():
    context = _context(completions=[_completion(MEAL, datetime(2025, 1, 5, 8, 0, tzinfo=UTC))])
    assert context.is_completed_in_phase(MEAL, PhaseName.MORNING)
    assert not context.is_completed_in_phase(MEAL, PhaseName.EVENING)


def test_only_scheduled_reminders_are_counted():
    context = _context(
        reminders=[
            _reminder(),
            _reminder(ReminderState.FIRED),
            _reminder(ReminderState.CANCELED),
            _reminder(),
        ]
    )
    assert context.scheduled_reminder_count() == 2


def test_pending_return_hooks_exclude_answered():
    pending = ReturnHook(id=uuid.uuid4(), prompt="How did lunch go?", created_at=NOW)
    answered = ReturnHook(id=uuid.uuid4(), prompt="Sleep?", created_at=NOW, user_response="ok", responded_at=NOW)
    context = _context(return_hooks=[pending, answered])
    assert context.pending_return_hooks() == [pending]
