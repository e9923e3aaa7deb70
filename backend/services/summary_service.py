from collections import Counter
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from db.models import ReminderRecord, SalvagePlanRecord
from engine.context import EvaluationContext
from engine.models import PHASE_ORDER, CompletionEvent, DayPhases, PhaseName
from services.habit_service import habit_to_dict, list_habits
from services.reminder_service import reminder_to_dict
from services.repository import goal_from_record, load_pending_return_hooks


@dataclass
class DailySummary:
    date_key: str
    total_completions: int = 0
    by_phase: dict[PhaseName, int] = field(default_factory=dict)
    by_habit: dict[UUID, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "date_key": self.date_key,
            "total_completions": self.total_completions,
            "by_phase": {p.value: self.by_phase.get(p, 0) for p in PHASE_ORDER},
            "by_habit": {str(k): v for k, v in self.by_habit.items()},
        }


def daily_summary(date_key: str, completions: list[CompletionEvent], phases: DayPhases) -> DailySummary:
    """Completions counted per phase (by the interval containing the timestamp) and per habit."""
    by_phase: Counter = Counter()
    by_habit: Counter = Counter()
    for completion in completions:
        phase = phases.phase_at(completion.timestamp)
        if phase is not None:
            by_phase[phase] += 1
        by_habit[completion.habit_id] += 1
    return DailySummary(
        date_key=date_key,
        total_completions=len(completions),
        by_phase=dict(by_phase),
        by_habit=dict(by_habit),
    )


def phases_to_dict(phases: DayPhases) -> list[dict]:
    return [
        {
            "phase": i.phase.value,
            "label": i.phase.display_name,
            "start": i.start.isoformat(),
            "end": i.end.isoformat(),
        }
        for i in phases.intervals
    ]


def today_snapshot(db: Session, context: EvaluationContext) -> dict:
    tz_name = context.settings.timezone
    summary = daily_summary(context.date_key, list(context.completions), context.phases)
    current = context.current_phase()

    habits = []
    for habit in list_habits(db):
        entry = habit_to_dict(habit, tz_name)
        habit_uuid = UUID(habit.id)
        entry["completed_count"] = context.completion_count(habit_uuid)
        goal = goal_from_record(habit.goals[0]) if habit.goals else None
        target = goal.target_count_per_day if goal else 1
        entry["target_count_per_day"] = target
        entry["current_phase_target"] = goal.target_for(current) if goal and current else None
        entry["is_done"] = entry["completed_count"] >= target
        habits.append(entry)

    reminders = (
        db.query(ReminderRecord)
        .filter(ReminderRecord.date_key == context.date_key)
        .order_by(ReminderRecord.fire_at.asc())
        .all()
    )
    salvage_plans = (
        db.query(SalvagePlanRecord)
        .filter(SalvagePlanRecord.date_key == context.date_key)
        .order_by(SalvagePlanRecord.created_at.asc())
        .all()
    )
    return {
        "date_key": context.date_key,
        "now": context.now.isoformat(),
        "timezone": tz_name,
        "current_phase": current.value if current else None,
        "phases": phases_to_dict(context.phases),
        "habits": habits,
        "reminders": [reminder_to_dict(r, tz_name) for r in reminders],
        "pending_return_hooks": [
            {"id": str(h.id), "prompt": h.prompt, "created_at": h.created_at.isoformat()}
            for h in load_pending_return_hooks(db, tz_name)
        ],
        "salvage_plans": [
            {"id": p.id, "title": p.title, "message": p.message, "is_accepted": bool(p.is_accepted)}
            for p in salvage_plans
        ],
        "summary": summary.to_dict(),
    }
