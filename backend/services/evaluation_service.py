"""
Evaluation orchestration.

One pass: expire overdue reminders, load the day's snapshot, run the rule
engine, then persist the admitted decisions. Decision ids are deterministic,
so re-running a pass for the same instant does not duplicate reminders or
salvage plans.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from db.models import HabitRecord, ReminderRecord, ReturnHookRecord, SalvagePlanRecord
from engine.context import EvaluationContext, build_context
from engine.day_boundary import DayBoundary
from engine.interpreter import RuleEngine
from engine.models import (
    CancelReminder,
    CreateReturnHook,
    CreateSalvagePlan,
    ReminderState,
    ScheduleReminder,
    SchedulingDecision,
    TriggerEvent,
)
from services.notification_templates import render_template
from services.providers import location_for
from services.reminder_service import expire_overdue, notification_handle, transition_reminder
from services.repository import (
    get_or_create_settings,
    load_active_rules,
    load_completions,
    load_pending_return_hooks,
    load_reminders,
    settings_from_record,
)
from utils.datetime_utils import resolve_timezone, to_local, to_storage

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    context: EvaluationContext
    decisions: list[SchedulingDecision] = field(default_factory=list)
    scheduled: list[ReminderRecord] = field(default_factory=list)
    canceled: list[ReminderRecord] = field(default_factory=list)
    return_hooks: list[ReturnHookRecord] = field(default_factory=list)
    salvage_plans: list[SalvagePlanRecord] = field(default_factory=list)
    expired_count: int = 0


def load_context(db: Session, now: datetime) -> EvaluationContext:
    record = get_or_create_settings(db)
    user_settings = settings_from_record(record)
    tz_name = user_settings.timezone
    local_now = to_local(now, tz_name)
    key = DayBoundary.from_settings(user_settings).date_key(local_now)
    return build_context(
        local_now,
        user_settings,
        completions=load_completions(db, key, tz_name),
        reminders=load_reminders(db, key, tz_name),
        return_hooks=load_pending_return_hooks(db, tz_name),
        location=location_for(record),
        tz=resolve_timezone(tz_name),
    )


def _habit_titles(db: Session) -> dict[str, str]:
    return {h.id: h.title for h in db.query(HabitRecord.id, HabitRecord.title).all()}


def decision_to_dict(decision: SchedulingDecision, habit_titles: dict[str, str] | None = None) -> dict:
    habit_titles = habit_titles or {}
    if isinstance(decision, ScheduleReminder):
        habit_id = str(decision.habit_id) if decision.habit_id else None
        return {
            "kind": decision.kind,
            "id": str(decision.id),
            "habit_id": habit_id,
            "rule_id": str(decision.rule_id) if decision.rule_id else None,
            "fire_at": decision.fire_at.isoformat(),
            "expires_at": decision.expires_at.isoformat(),
            "template_id": decision.template_id,
            "priority": decision.priority,
            "notification": render_template(decision.template_id, habit_title=habit_titles.get(habit_id)),
        }
    if isinstance(decision, CancelReminder):
        return {"kind": decision.kind, "reminder_id": str(decision.reminder_id)}
    if isinstance(decision, CreateReturnHook):
        return {"kind": decision.kind, "prompt": decision.prompt}
    if isinstance(decision, CreateSalvagePlan):
        plan = decision.plan
        return {
            "kind": decision.kind,
            "plan": {
                "id": str(plan.id),
                "date_key": plan.date_key,
                "title": plan.title,
                "message": plan.message,
                "rebalanced_items": [
                    {
                        "id": str(item.id),
                        "habit_id": str(item.habit_id),
                        "suggested_phase": item.suggested_phase.value,
                        "reason": item.reason,
                    }
                    for item in plan.rebalanced_items
                ],
            },
        }
    raise TypeError(f"Unknown decision type: {type(decision).__name__}")


def apply_decisions(
    db: Session,
    decisions: list[SchedulingDecision],
    context: EvaluationContext,
) -> EvaluationResult:
    """Persist admitted decisions. Already-applied decisions are skipped."""
    result = EvaluationResult(context=context, decisions=list(decisions))
    boundary = context.day_boundary

    for decision in decisions:
        if isinstance(decision, ScheduleReminder):
            reminder_id = str(decision.id)
            if db.get(ReminderRecord, reminder_id) is not None:
                continue
            record = ReminderRecord(
                id=reminder_id,
                habit_id=str(decision.habit_id) if decision.habit_id else None,
                rule_id=str(decision.rule_id) if decision.rule_id else None,
                date_key=boundary.date_key(decision.fire_at.astimezone(context.now.tzinfo)),
                fire_at=to_storage(decision.fire_at),
                expires_at=to_storage(decision.expires_at),
                notification_id=notification_handle(decision.id),
                state=ReminderState.SCHEDULED.value,
                priority=decision.priority,
                template_id=decision.template_id,
            )
            db.add(record)
            result.scheduled.append(record)

        elif isinstance(decision, CancelReminder):
            record = db.get(ReminderRecord, str(decision.reminder_id))
            if record is None or record.state != ReminderState.SCHEDULED.value:
                continue
            transition_reminder(record, ReminderState.CANCELED)
            result.canceled.append(record)

        elif isinstance(decision, CreateReturnHook):
            pending = (
                db.query(ReturnHookRecord)
                .filter(
                    ReturnHookRecord.date_key == context.date_key,
                    ReturnHookRecord.prompt == decision.prompt,
                    ReturnHookRecord.user_response.is_(None),
                )
                .first()
            )
            if pending is not None:
                continue
            hook = ReturnHookRecord(
                id=str(uuid.uuid4()),
                date_key=context.date_key,
                prompt=decision.prompt,
                created_at=to_storage(context.now),
            )
            db.add(hook)
            result.return_hooks.append(hook)

        elif isinstance(decision, CreateSalvagePlan):
            plan = decision.plan
            if db.get(SalvagePlanRecord, str(plan.id)) is not None:
                continue
            record = SalvagePlanRecord(
                id=str(plan.id),
                date_key=plan.date_key,
                title=plan.title,
                message=plan.message,
                rebalanced_items=json.dumps(
                    [
                        {
                            "id": str(item.id),
                            "habit_id": str(item.habit_id),
                            "suggested_phase": item.suggested_phase.value,
                            "reason": item.reason,
                        }
                        for item in plan.rebalanced_items
                    ]
                ),
                created_at=to_storage(plan.created_at),
            )
            db.add(record)
            result.salvage_plans.append(record)

    db.flush()
    if decisions:
        logger.info(
            "Applied decisions for %s: %d scheduled, %d canceled, %d return hook(s), %d salvage plan(s)",
            context.date_key,
            len(result.scheduled),
            len(result.canceled),
            len(result.return_hooks),
            len(result.salvage_plans),
        )
    return result


def run_evaluation(
    db: Session,
    now: datetime,
    event: TriggerEvent | None = None,
    engine: RuleEngine | None = None,
) -> EvaluationResult:
    expired = expire_overdue(db, now)
    context = load_context(db, now)
    rules = load_active_rules(db)
    decisions = (engine or RuleEngine()).evaluate(rules, context, event)
    result = apply_decisions(db, decisions, context)
    result.expired_count = expired
    return result


def result_to_dict(result: EvaluationResult, db: Session) -> dict:
    titles = _habit_titles(db)
    return {
        "date_key": result.context.date_key,
        "evaluated_at": result.context.now.isoformat(),
        "decisions": [decision_to_dict(d, titles) for d in result.decisions],
        "scheduled_count": len(result.scheduled),
        "canceled_count": len(result.canceled),
        "expired_count": result.expired_count,
    }
