from __future__ import annotations

import logging
from datetime import timedelta

from engine.context import EvaluationContext
from engine.models import ScheduleReminder, SchedulingDecision

logger = logging.getLogger(__name__)


def _admission_order(decision: ScheduleReminder):
    # Higher priority first, then earlier fire time.
    return (-decision.priority, decision.fire_at)


def apply_cooldown(candidates: list[ScheduleReminder], context: EvaluationContext) -> list[ScheduleReminder]:
    scheduled = context.scheduled_reminders()
    if not scheduled:
        return candidates

    last_fire_at = max(r.fire_at for r in scheduled)
    cooldown = timedelta(minutes=context.settings.notification_cooldown_minutes)
    kept = [c for c in candidates if c.fire_at - last_fire_at >= cooldown]
    if len(kept) != len(candidates):
        logger.debug(
            "Cooldown dropped %d reminder(s) within %s of %s",
            len(candidates) - len(kept),
            cooldown,
            last_fire_at.isoformat(),
        )
    return kept


def throttle(decisions: list[SchedulingDecision], context: EvaluationContext) -> list[SchedulingDecision]:
    """
    Admit schedule decisions under the daily cap and cooldown.

    Candidates are ranked by priority (desc) then fire time (asc), cut to the
    free slots left under ``notification_cap_per_day``, then filtered against
    the latest already-scheduled reminder. Dropped candidates are discarded.
    Non-schedule decisions pass through unchanged after the survivors.
    """
    candidates = [d for d in decisions if isinstance(d, ScheduleReminder)]
    others = [d for d in decisions if not isinstance(d, ScheduleReminder)]

    slots_available = max(0, context.settings.notification_cap_per_day - context.scheduled_reminder_count())
    ranked = sorted(candidates, key=_admission_order)
    admitted = ranked[:slots_available]
    if len(admitted) != len(ranked):
        logger.debug("Daily cap dropped %d reminder(s), %d slot(s) free", len(ranked) - len(admitted), slots_available)

    return [*apply_cooldown(admitted, context), *others]
