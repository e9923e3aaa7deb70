"""
Built-in routine templates.

A template describes habits and the rules that drive their reminders. Rule
payloads refer to the template's own habits by position (``HABIT_REF`` markers)
and are bound to real habit ids when the template is instantiated.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from db.models import GoalRecord, HabitRecord, RoutineRecord
from engine.models import Goal, GoalMeasurement, Habit, HabitCategory, PhaseName, Routine
from engine.rules import Rule
from services.errors import TemplateNotFoundError
from services.providers import Clock, system_clock
from services.rule_service import add_rule, parse_rule
from utils.datetime_utils import to_storage

logger = logging.getLogger(__name__)

HABIT_REF = "$habit"


def habit_ref(index: int) -> dict:
    return {HABIT_REF: index}


@dataclass(frozen=True)
class HabitTemplate:
    title: str
    category: HabitCategory
    default_phase: PhaseName
    target_count_per_day: int = 1

    def create_habit(self, habit_id: uuid.UUID, created_at: datetime) -> Habit:
        return Habit(
            id=habit_id,
            title=self.title,
            category=self.category,
            default_phase=self.default_phase,
            created_at=created_at,
        )

    def create_goal(self, goal_id: uuid.UUID, habit_id: uuid.UUID) -> Goal:
        measurement = GoalMeasurement.BOOLEAN if self.target_count_per_day == 1 else GoalMeasurement.COUNT
        return Goal(
            id=goal_id,
            habit_id=habit_id,
            target_count_per_day=self.target_count_per_day,
            measurement=measurement,
        )


@dataclass(frozen=True)
class RuleTemplate:
    trigger: dict
    conditions: list[dict] = field(default_factory=list)
    actions: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class RoutineTemplate:
    id: str
    name: str
    description: str
    icon: str
    habits: tuple[HabitTemplate, ...]
    rules: tuple[RuleTemplate, ...]


@dataclass(frozen=True)
class TemplateInstance:
    routine: Routine
    habits: list[Habit]
    goals: list[Goal]
    rules: list[Rule]


def _notify(template_id: str, habit: int | None, priority: int) -> dict:
    return {
        "type": "notify",
        "template_id": template_id,
        "habit_id": habit_ref(habit) if habit is not None else None,
        "priority": priority,
    }


def _not_completed_today(habit: int) -> dict:
    return {"type": "not_completed_today", "habit_id": habit_ref(habit)}


MEALS_AND_SUPPLEMENTS = RoutineTemplate(
    id="meals_supplements",
    name="Meals + Supplements",
    description="Track meals and take supplements after eating",
    icon="fork.knife.circle.fill",
    habits=(
        HabitTemplate("Breakfast", HabitCategory.MEAL, PhaseName.MORNING),
        HabitTemplate("Lunch", HabitCategory.MEAL, PhaseName.AFTERNOON),
        HabitTemplate("Dinner", HabitCategory.MEAL, PhaseName.EVENING),
        HabitTemplate("Supplements", HabitCategory.SUPPLEMENTS, PhaseName.EVENING),
    ),
    rules=(
        RuleTemplate(
            trigger={"type": "absolute_time_in_phase", "phase": "morning", "hour": 8, "minute": 0},
            conditions=[_not_completed_today(0)],
            actions=[_notify("breakfast_reminder", 0, 1)],
        ),
        RuleTemplate(
            trigger={"type": "absolute_time_in_phase", "phase": "afternoon", "hour": 12, "minute": 30},
            conditions=[_not_completed_today(1)],
            actions=[_notify("lunch_reminder", 1, 1)],
        ),
        RuleTemplate(
            trigger={"type": "absolute_time_in_phase", "phase": "evening", "hour": 18, "minute": 0},
            conditions=[_not_completed_today(2)],
            actions=[_notify("dinner_reminder", 2, 1)],
        ),
        # Supplements at 21:00 only if a meal happened in the last two hours.
        RuleTemplate(
            trigger={"type": "absolute_time", "hour": 21, "minute": 0},
            conditions=[
                {
                    "type": "any",
                    "conditions": [
                        {"type": "completed_within_last", "habit_id": habit_ref(i), "minutes": 120}
                        for i in range(3)
                    ],
                }
            ],
            actions=[_notify("supplements_reminder", 3, 2)],
        ),
    ),
)

MORNING_ROUTINE = RoutineTemplate(
    id="morning_routine",
    name="Morning Routine",
    description="Start your day with meditation and journaling",
    icon="sunrise.fill",
    habits=(
        HabitTemplate("Meditation", HabitCategory.MEDITATION, PhaseName.MORNING),
        HabitTemplate("Morning Journal", HabitCategory.JOURNALING, PhaseName.MORNING),
        HabitTemplate("Hydrate", HabitCategory.HYDRATION, PhaseName.MORNING),
    ),
    rules=(
        RuleTemplate(
            trigger={"type": "time_in_phase", "phase": "morning", "minutes_from_phase_start": 30},
            actions=[_notify("morning_checkin", None, 1)],
        ),
        RuleTemplate(
            trigger={"type": "on_completion", "habit_id": habit_ref(0)},
            conditions=[_not_completed_today(1)],
            actions=[_notify("journal_after_meditation", 1, 2)],
        ),
    ),
)

EVENING_WIND_DOWN = RoutineTemplate(
    id="evening_winddown",
    name="Evening Wind Down",
    description="Prepare for restful sleep with a calm evening routine",
    icon="moon.stars.fill",
    habits=(
        HabitTemplate("Evening Hygiene", HabitCategory.HYGIENE, PhaseName.EVENING),
        HabitTemplate("Evening Reflection", HabitCategory.JOURNALING, PhaseName.EVENING),
        HabitTemplate("Sleep Prep", HabitCategory.SLEEP, PhaseName.NIGHT),
    ),
    rules=(
        RuleTemplate(
            trigger={"type": "absolute_time_in_phase", "phase": "evening", "hour": 21, "minute": 0},
            actions=[_notify("hygiene_reminder", 0, 1)],
        ),
        RuleTemplate(
            trigger={"type": "absolute_time_in_phase", "phase": "night", "hour": 22, "minute": 0},
            actions=[_notify("sleep_prep", 2, 2)],
        ),
    ),
)

EXERCISE_AND_MOVEMENT = RoutineTemplate(
    id="exercise_movement",
    name="Exercise & Movement",
    description="Stay active throughout the day",
    icon="figure.run",
    habits=(
        HabitTemplate("Morning Stretch", HabitCategory.EXERCISE, PhaseName.MORNING),
        HabitTemplate("Workout", HabitCategory.EXERCISE, PhaseName.AFTERNOON),
        HabitTemplate("Evening Walk", HabitCategory.EXERCISE, PhaseName.EVENING),
    ),
    rules=(
        RuleTemplate(
            trigger={"type": "time_in_phase", "phase": "morning", "minutes_from_phase_start": 60},
            conditions=[_not_completed_today(0)],
            actions=[_notify("stretch_reminder", 0, 1)],
        ),
        RuleTemplate(
            trigger={"type": "time_in_phase", "phase": "afternoon", "minutes_from_phase_start": 120},
            conditions=[_not_completed_today(1)],
            actions=[_notify("workout_reminder", 1, 1)],
        ),
    ),
)

BUILT_IN_TEMPLATES: tuple[RoutineTemplate, ...] = (
    MEALS_AND_SUPPLEMENTS,
    MORNING_ROUTINE,
    EVENING_WIND_DOWN,
    EXERCISE_AND_MOVEMENT,
)


def get_template(template_id: str) -> RoutineTemplate:
    for template in BUILT_IN_TEMPLATES:
        if template.id == template_id:
            return template
    raise TemplateNotFoundError(f"Routine template {template_id!r} not found")


def template_to_dict(template: RoutineTemplate) -> dict:
    return {
        "id": template.id,
        "name": template.name,
        "description": template.description,
        "icon": template.icon,
        "habits": [
            {
                "title": h.title,
                "category": h.category.value,
                "default_phase": h.default_phase.value,
                "target_count_per_day": h.target_count_per_day,
            }
            for h in template.habits
        ],
        "rule_count": len(template.rules),
    }


def bind_habit_refs(payload: Any, habit_ids: list[uuid.UUID]) -> Any:
    """Replace ``{"$habit": i}`` markers with the i-th habit id, recursively."""
    if isinstance(payload, dict):
        if set(payload) == {HABIT_REF}:
            return str(habit_ids[payload[HABIT_REF]])
        return {k: bind_habit_refs(v, habit_ids) for k, v in payload.items()}
    if isinstance(payload, list):
        return [bind_habit_refs(v, habit_ids) for v in payload]
    return payload


def instantiate(
    template: RoutineTemplate,
    id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    clock: Clock = system_clock,
) -> TemplateInstance:
    """
    Build a routine with its habits, goals and rules from a template.

    Ids are drawn from ``id_factory`` in a fixed order: routine, habits,
    goals, rules. Every object shares the single ``clock()`` reading.
    """
    routine_id = id_factory()
    created_at = clock()

    habits = [t.create_habit(id_factory(), created_at) for t in template.habits]
    habit_ids = [h.id for h in habits]
    goals = [t.create_goal(id_factory(), h.id) for t, h in zip(template.habits, habits)]

    rules = [
        parse_rule(
            rule_id=id_factory(),
            routine_id=routine_id,
            trigger=bind_habit_refs(rt.trigger, habit_ids),
            conditions=bind_habit_refs(rt.conditions, habit_ids),
            actions=bind_habit_refs(rt.actions, habit_ids),
            created_at=created_at,
        )
        for rt in template.rules
    ]

    routine = Routine(
        id=routine_id,
        name=template.name,
        habit_ids=tuple(habit_ids),
        rule_ids=tuple(r.id for r in rules),
        created_at=created_at,
    )
    return TemplateInstance(routine=routine, habits=habits, goals=goals, rules=rules)


def save_instance(db: Session, instance: TemplateInstance, template_id: str | None = None) -> RoutineRecord:
    routine = instance.routine
    record = RoutineRecord(
        id=str(routine.id),
        name=routine.name,
        habit_ids=json.dumps([str(h) for h in routine.habit_ids]),
        template_id=template_id,
        is_active=routine.is_active,
        created_at=to_storage(routine.created_at),
    )
    db.add(record)
    for habit in instance.habits:
        db.add(
            HabitRecord(
                id=str(habit.id),
                title=habit.title,
                category=habit.category.value,
                default_phase=habit.default_phase.value,
                is_active=habit.is_active,
                created_at=to_storage(habit.created_at),
            )
        )
    db.flush()
    for goal in instance.goals:
        db.add(
            GoalRecord(
                id=str(goal.id),
                habit_id=str(goal.habit_id),
                target_count_per_day=goal.target_count_per_day,
                measurement=goal.measurement.value,
            )
        )
    for rule in instance.rules:
        add_rule(db, rule)
    db.flush()
    logger.info(
        "Instantiated template %s as routine %s (%d habits, %d rules)",
        template_id,
        record.id,
        len(instance.habits),
        len(instance.rules),
    )
    return record
