from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import ClassVar, Mapping, Union
from uuid import UUID


class PhaseName(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


PHASE_ORDER: tuple[PhaseName, ...] = (
    PhaseName.MORNING,
    PhaseName.AFTERNOON,
    PhaseName.EVENING,
    PhaseName.NIGHT,
)


class HabitCategory(str, Enum):
    GENERAL = "general"
    MEAL = "meal"
    HYDRATION = "hydration"
    EXERCISE = "exercise"
    SLEEP = "sleep"
    MEDITATION = "meditation"
    JOURNALING = "journaling"
    MEDICATION = "medication"
    SUPPLEMENTS = "supplements"
    HYGIENE = "hygiene"
    SOCIAL = "social"
    CREATIVE = "creative"
    LEARNING = "learning"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class PhaseMode(str, Enum):
    AUTO_SOLAR = "auto_solar"
    MANUAL = "manual"


class NotificationTone(str, Enum):
    ZEN_COACH = "zen_coach"

    @property
    def display_name(self) -> str:
        return "Zen Coach"


class MealType(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"


class GoalMeasurement(str, Enum):
    COUNT = "count"
    BOOLEAN = "boolean"


class ReminderState(str, Enum):
    SCHEDULED = "scheduled"
    FIRED = "fired"
    CANCELED = "canceled"
    EXPIRED = "expired"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    SNOOZED = "snoozed"


# A reminder never returns to SCHEDULED; snoozing creates a new reminder.
REMINDER_TRANSITIONS: dict[ReminderState, frozenset[ReminderState]] = {
    ReminderState.SCHEDULED: frozenset(
        {
            ReminderState.FIRED,
            ReminderState.CANCELED,
            ReminderState.EXPIRED,
            ReminderState.COMPLETED,
            ReminderState.SKIPPED,
            ReminderState.SNOOZED,
        }
    ),
    ReminderState.FIRED: frozenset(
        {
            ReminderState.COMPLETED,
            ReminderState.SKIPPED,
            ReminderState.SNOOZED,
            ReminderState.EXPIRED,
        }
    ),
    ReminderState.CANCELED: frozenset(),
    ReminderState.EXPIRED: frozenset(),
    ReminderState.COMPLETED: frozenset(),
    ReminderState.SKIPPED: frozenset(),
    ReminderState.SNOOZED: frozenset(),
}


def can_transition(current: ReminderState, target: ReminderState) -> bool:
    return target in REMINDER_TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class GeoCoordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class PhaseOverride:
    start_hour: int
    start_minute: int
    end_hour: int
    end_minute: int


DEFAULT_PHASE_OVERRIDES: dict[PhaseName, PhaseOverride] = {
    PhaseName.MORNING: PhaseOverride(6, 0, 12, 0),
    PhaseName.AFTERNOON: PhaseOverride(12, 0, 18, 0),
    PhaseName.EVENING: PhaseOverride(18, 0, 22, 0),
    PhaseName.NIGHT: PhaseOverride(22, 0, 6, 0),
}


@dataclass(frozen=True)
class UserSettings:
    reset_hour: int = 2
    reset_minute: int = 0
    notification_cap_per_day: int = 8
    notification_cooldown_minutes: int = 45
    phase_mode: PhaseMode = PhaseMode.AUTO_SOLAR
    manual_phase_overrides: Mapping[PhaseName, PhaseOverride] = field(default_factory=dict)
    tone: NotificationTone = NotificationTone.ZEN_COACH
    location_enabled: bool = False
    timezone: str = "UTC"

    def override_for(self, phase: PhaseName) -> PhaseOverride:
        return self.manual_phase_overrides.get(phase) or DEFAULT_PHASE_OVERRIDES[phase]


@dataclass(frozen=True)
class Habit:
    id: UUID
    title: str
    category: HabitCategory
    default_phase: PhaseName
    created_at: datetime
    is_active: bool = True


@dataclass(frozen=True)
class Goal:
    id: UUID
    habit_id: UUID
    target_count_per_day: int
    target_by_phase: Mapping[PhaseName, int] | None = None
    measurement: GoalMeasurement = GoalMeasurement.COUNT

    def target_for(self, phase: PhaseName) -> int | None:
        if not self.target_by_phase:
            return None
        return self.target_by_phase.get(phase)


@dataclass(frozen=True)
class Routine:
    id: UUID
    name: str
    habit_ids: tuple[UUID, ...]
    rule_ids: tuple[UUID, ...]
    created_at: datetime
    is_active: bool = True


@dataclass(frozen=True)
class CompletionMetadata:
    note: str | None = None
    calories: int | None = None
    meal_name: str | None = None
    meal_type: MealType | None = None
    custom_data: Mapping[str, str] | None = None

    def to_dict(self) -> dict:
        return {
            "note": self.note,
            "calories": self.calories,
            "meal_name": self.meal_name,
            "meal_type": self.meal_type.value if self.meal_type else None,
            "custom_data": dict(self.custom_data) if self.custom_data else None,
        }


@dataclass(frozen=True)
class CompletionEvent:
    id: UUID
    habit_id: UUID
    timestamp: datetime
    date_key: str
    metadata: CompletionMetadata = field(default_factory=CompletionMetadata)
    is_late_correction: bool = False


@dataclass(frozen=True)
class Reminder:
    id: UUID
    habit_id: UUID | None
    rule_id: UUID | None
    date_key: str
    fire_at: datetime
    expires_at: datetime
    notification_id: str
    template_id: str
    state: ReminderState = ReminderState.SCHEDULED
    priority: int = 0

    def __post_init__(self) -> None:
        if self.expires_at < self.fire_at:
            raise ValueError("Reminder expiration must not precede its fire time")

    def is_expired(self, now: datetime) -> bool:
        return self.state == ReminderState.SCHEDULED and now > self.expires_at

    def can_snooze(self, now: datetime) -> bool:
        return self.state == ReminderState.FIRED and now <= self.expires_at

    def with_state(self, state: ReminderState) -> Reminder:
        if not can_transition(self.state, state):
            raise ValueError(f"Cannot move reminder from {self.state.value} to {state.value}")
        return replace(self, state=state)


@dataclass(frozen=True)
class ReturnHook:
    id: UUID
    prompt: str
    created_at: datetime
    user_response: str | None = None
    responded_at: datetime | None = None

    @property
    def is_responded(self) -> bool:
        return self.user_response is not None


@dataclass(frozen=True)
class RebalancedItem:
    id: UUID
    habit_id: UUID
    suggested_phase: PhaseName
    reason: str
    suggested_time: datetime | None = None


@dataclass(frozen=True)
class SalvagePlan:
    id: UUID
    date_key: str
    created_at: datetime
    title: str
    message: str
    rebalanced_items: tuple[RebalancedItem, ...] = ()
    is_accepted: bool = False
    accepted_at: datetime | None = None


@dataclass(frozen=True)
class PhaseInterval:
    phase: PhaseName
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


@dataclass(frozen=True)
class DayPhases:
    date_key: str
    intervals: tuple[PhaseInterval, ...]

    def interval_for(self, phase: PhaseName) -> PhaseInterval | None:
        return next((i for i in self.intervals if i.phase == phase), None)

    def phase_at(self, instant: datetime) -> PhaseName | None:
        return next((i.phase for i in self.intervals if i.contains(instant)), None)


# ── Trigger events ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class CompletionTriggerEvent:
    habit_id: UUID
    occurred_at: datetime


@dataclass(frozen=True)
class PhaseChangeEvent:
    to_phase: PhaseName
    from_phase: PhaseName | None = None


@dataclass(frozen=True)
class TimeCheckEvent:
    at: datetime


TriggerEvent = Union[CompletionTriggerEvent, PhaseChangeEvent, TimeCheckEvent]


# ── Scheduling decisions ───────────────────────────────────────────────


@dataclass(frozen=True)
class ScheduleReminder:
    kind: ClassVar[str] = "schedule_reminder"

    id: UUID
    habit_id: UUID | None
    rule_id: UUID | None
    fire_at: datetime
    expires_at: datetime
    template_id: str
    priority: int


@dataclass(frozen=True)
class CancelReminder:
    kind: ClassVar[str] = "cancel_reminder"

    reminder_id: UUID


@dataclass(frozen=True)
class CreateReturnHook:
    kind: ClassVar[str] = "create_return_hook"

    prompt: str


@dataclass(frozen=True)
class CreateSalvagePlan:
    kind: ClassVar[str] = "create_salvage_plan"

    plan: SalvagePlan


SchedulingDecision = Union[ScheduleReminder, CancelReminder, CreateReturnHook, CreateSalvagePlan]
