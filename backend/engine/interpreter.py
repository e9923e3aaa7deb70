"""
Rule interpreter.

Pipeline per rule, in input order:
1. skip disabled rules
2. trigger match against ``context.now`` and the optional trigger event
3. conditions (implicit AND at top level, all/any/not recurse)
4. actions -> scheduling decisions

Decisions from every rule are concatenated and passed through the throttle.
Evaluation is a pure function of (rules, context, event): no clock reads, no
I/O, and decision ids come from an injected factory.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable
from uuid import UUID

from engine.context import EvaluationContext
from engine.models import (
    CancelReminder,
    CompletionTriggerEvent,
    CreateReturnHook,
    CreateSalvagePlan,
    Reminder,
    SalvagePlan,
    ScheduleReminder,
    SchedulingDecision,
    TriggerEvent,
)
from engine.rules import (
    AbsoluteTimeInPhaseTrigger,
    AbsoluteTimeTrigger,
    Action,
    AllCondition,
    AllTag,
    AnyCondition,
    ByDateKeyTag,
    ByHabitTag,
    ByRuleTag,
    CancelNotificationsAction,
    CancelTag,
    CompletedInPhaseWindowCondition,
    CompletedTodayCondition,
    CompletedWithinLastCondition,
    Condition,
    CountCompletedTodayCondition,
    CreateReturnHookAction,
    NotCompletedTodayCondition,
    NotCondition,
    NotifyAction,
    OnCompletionTrigger,
    PhaseStartTrigger,
    ReturnHookExistsCondition,
    Rule,
    ScheduleNotifyAtAction,
    SleepWakeKnownCondition,
    TimeAfterCompletionTrigger,
    TimeInPhaseTrigger,
    Trigger,
    TriggerSalvageAction,
    WithinPhaseCondition,
)
from engine.throttle import throttle

logger = logging.getLogger(__name__)

IdFactory = Callable[[str], UUID]

DECISION_NAMESPACE = uuid.UUID("5b0d7c1e-8d1f-4c55-9a43-2f6f1e3c9b20")
TRIGGER_WINDOW = timedelta(seconds=60)
DEFAULT_NOTIFY_EXPIRATION = timedelta(hours=1)

SALVAGE_TITLE = "Let's rebalance your day"
SALVAGE_MESSAGE = "Some items didn't fit into their usual time. Here's a gentle adjustment."


def deterministic_id(seed: str) -> UUID:
    return uuid.uuid5(DECISION_NAMESPACE, seed)


def _near(instant: datetime, target: datetime) -> bool:
    return abs(instant - target) < TRIGGER_WINDOW


def _clock_matches(instant: datetime, hour: int, minute: int) -> bool:
    return instant.hour == hour and instant.minute == minute


def trigger_matches(trigger: Trigger, context: EvaluationContext, event: TriggerEvent | None) -> bool:
    now = context.now

    if isinstance(trigger, PhaseStartTrigger):
        interval = context.phases.interval_for(trigger.phase)
        return interval is not None and _near(now, interval.start)

    if isinstance(trigger, TimeInPhaseTrigger):
        interval = context.phases.interval_for(trigger.phase)
        if interval is None:
            return False
        return _near(now, interval.start + timedelta(minutes=trigger.minutes_from_phase_start))

    if isinstance(trigger, AbsoluteTimeTrigger):
        return _clock_matches(now, trigger.hour, trigger.minute)

    if isinstance(trigger, OnCompletionTrigger):
        return isinstance(event, CompletionTriggerEvent) and event.habit_id == trigger.habit_id

    if isinstance(trigger, TimeAfterCompletionTrigger):
        if not isinstance(event, CompletionTriggerEvent) or event.habit_id != trigger.habit_id:
            return False
        if not trigger.must_be_same_day:
            return True
        target = event.occurred_at + timedelta(minutes=trigger.offset_minutes)
        boundary = context.day_boundary
        return boundary.date_key(event.occurred_at) == boundary.date_key(target)

    if isinstance(trigger, AbsoluteTimeInPhaseTrigger):
        interval = context.phases.interval_for(trigger.phase)
        in_phase = interval is not None and interval.contains(now)
        return _clock_matches(now, trigger.hour, trigger.minute) and in_phase

    return False


def condition_holds(condition: Condition, context: EvaluationContext) -> bool:
    if isinstance(condition, CompletedWithinLastCondition):
        return context.is_completed_within_last(condition.habit_id, condition.minutes)
    if isinstance(condition, CompletedTodayCondition):
        return context.is_completed(condition.habit_id)
    if isinstance(condition, NotCompletedTodayCondition):
        return not context.is_completed(condition.habit_id)
    if isinstance(condition, CompletedInPhaseWindowCondition):
        return context.is_completed_in_phase(condition.habit_id, condition.phase)
    if isinstance(condition, CountCompletedTodayCondition):
        return context.completion_count(condition.habit_id) >= condition.at_least
    if isinstance(condition, SleepWakeKnownCondition):
        # Sleep/wake detection does not exist yet; the condition never holds.
        return False
    if isinstance(condition, ReturnHookExistsCondition):
        return bool(context.pending_return_hooks())
    if isinstance(condition, WithinPhaseCondition):
        return context.current_phase() == condition.phase
    if isinstance(condition, AllCondition):
        return all(condition_holds(c, context) for c in condition.conditions)
    if isinstance(condition, AnyCondition):
        return any(condition_holds(c, context) for c in condition.conditions)
    if isinstance(condition, NotCondition):
        return not condition_holds(condition.condition, context)
    return False


def conditions_hold(conditions: Iterable[Condition], context: EvaluationContext) -> bool:
    return all(condition_holds(c, context) for c in conditions)


def reminders_to_cancel(tag: CancelTag, context: EvaluationContext) -> list[Reminder]:
    scheduled = context.scheduled_reminders()
    if isinstance(tag, ByHabitTag):
        return [r for r in scheduled if r.habit_id == tag.habit_id]
    if isinstance(tag, ByRuleTag):
        return [r for r in scheduled if r.rule_id == tag.rule_id]
    if isinstance(tag, ByDateKeyTag):
        return [r for r in scheduled if r.date_key == tag.date_key]
    if isinstance(tag, AllTag):
        return scheduled
    return []


class RuleEngine:
    """Evaluates rules against an :class:`EvaluationContext`."""

    def __init__(self, id_factory: IdFactory | None = None) -> None:
        self._id_factory = id_factory or deterministic_id

    def evaluate(
        self,
        rules: Iterable[Rule],
        context: EvaluationContext,
        event: TriggerEvent | None = None,
    ) -> list[SchedulingDecision]:
        decisions: list[SchedulingDecision] = []
        for rule in rules:
            if not rule.enabled:
                continue
            if not trigger_matches(rule.trigger, context, event):
                continue
            if not conditions_hold(rule.conditions, context):
                continue
            fired = self.execute_actions(rule, context)
            logger.debug("Rule %s fired with %d decision(s)", rule.id, len(fired))
            decisions.extend(fired)
        return throttle(decisions, context)

    def execute_actions(self, rule: Rule, context: EvaluationContext) -> list[SchedulingDecision]:
        decisions: list[SchedulingDecision] = []
        for index, action in enumerate(rule.actions):
            decisions.extend(self._execute(action, index, rule, context))
        return decisions

    def _execute(
        self,
        action: Action,
        index: int,
        rule: Rule,
        context: EvaluationContext,
    ) -> list[SchedulingDecision]:
        if isinstance(action, NotifyAction):
            fire_at = context.now
            return [
                self._schedule(
                    rule, index, context,
                    fire_at=fire_at,
                    expires_at=fire_at + DEFAULT_NOTIFY_EXPIRATION,
                    template_id=action.template_id,
                    habit_id=action.habit_id,
                    priority=action.priority,
                )
            ]

        if isinstance(action, ScheduleNotifyAtAction):
            # A window that has already closed produces nothing.
            if not (action.fire_at < action.expires_at and context.now < action.expires_at):
                return []
            return [
                self._schedule(
                    rule, index, context,
                    fire_at=action.fire_at,
                    expires_at=action.expires_at,
                    template_id=action.template_id,
                    habit_id=action.habit_id,
                    priority=action.priority,
                )
            ]

        if isinstance(action, CancelNotificationsAction):
            return [CancelReminder(reminder_id=r.id) for r in reminders_to_cancel(action.tag, context)]

        if isinstance(action, CreateReturnHookAction):
            return [CreateReturnHook(prompt=action.prompt)]

        if isinstance(action, TriggerSalvageAction):
            return [CreateSalvagePlan(plan=self.salvage_plan(action.plan_id, context))]

        return []

    def _schedule(
        self,
        rule: Rule,
        index: int,
        context: EvaluationContext,
        *,
        fire_at: datetime,
        expires_at: datetime,
        template_id: str,
        habit_id: UUID | None,
        priority: int,
    ) -> ScheduleReminder:
        seed = f"reminder:{rule.id}:{index}:{context.date_key}:{fire_at.isoformat()}"
        return ScheduleReminder(
            id=self._id_factory(seed),
            habit_id=habit_id,
            rule_id=rule.id,
            fire_at=fire_at,
            expires_at=expires_at,
            template_id=template_id,
            priority=priority,
        )

    def salvage_plan(self, plan_id: str, context: EvaluationContext) -> SalvagePlan:
        """
        Build the salvage plan for the current day.

        Rebalancing is not implemented: the plan always carries the fixed
        gentle-tone message and no rebalanced items.
        """
        return SalvagePlan(
            id=self._id_factory(f"salvage:{plan_id}:{context.date_key}"),
            date_key=context.date_key,
            created_at=context.now,
            title=SALVAGE_TITLE,
            message=SALVAGE_MESSAGE,
            rebalanced_items=(),
        )


def evaluate(
    rules: Iterable[Rule],
    context: EvaluationContext,
    event: TriggerEvent | None = None,
    *,
    id_factory: IdFactory | None = None,
) -> list[SchedulingDecision]:
    return RuleEngine(id_factory=id_factory).evaluate(rules, context, event)
