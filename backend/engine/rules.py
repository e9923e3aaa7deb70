"""
Rule language: triggers, conditions and actions.

Each closed variant set is a pydantic discriminated union keyed on ``type``, so
persisted rules serialize as ``{"type": ..., <payload fields>}`` and are
validated on load. The interpreter only ever sees valid instances.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, TypeAdapter

from engine.models import PhaseName

DATE_KEY_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

Hour = Annotated[int, Field(ge=0, le=23)]
Minute = Annotated[int, Field(ge=0, le=59)]
Minutes = Annotated[int, Field(ge=0)]


class _RuleModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ── Triggers ───────────────────────────────────────────────────────────


class PhaseStartTrigger(_RuleModel):
    type: Literal["phase_start"] = "phase_start"
    phase: PhaseName


class TimeInPhaseTrigger(_RuleModel):
    type: Literal["time_in_phase"] = "time_in_phase"
    phase: PhaseName
    minutes_from_phase_start: Minutes


class AbsoluteTimeTrigger(_RuleModel):
    type: Literal["absolute_time"] = "absolute_time"
    hour: Hour
    minute: Minute


class OnCompletionTrigger(_RuleModel):
    type: Literal["on_completion"] = "on_completion"
    habit_id: UUID


class TimeAfterCompletionTrigger(_RuleModel):
    type: Literal["time_after_completion"] = "time_after_completion"
    habit_id: UUID
    offset_minutes: Minutes
    must_be_same_day: bool = False


class AbsoluteTimeInPhaseTrigger(_RuleModel):
    type: Literal["absolute_time_in_phase"] = "absolute_time_in_phase"
    phase: PhaseName
    hour: Hour
    minute: Minute


Trigger = Annotated[
    Union[
        PhaseStartTrigger,
        TimeInPhaseTrigger,
        AbsoluteTimeTrigger,
        OnCompletionTrigger,
        TimeAfterCompletionTrigger,
        AbsoluteTimeInPhaseTrigger,
    ],
    Field(discriminator="type"),
]


# ── Conditions ─────────────────────────────────────────────────────────


class CompletedWithinLastCondition(_RuleModel):
    type: Literal["completed_within_last"] = "completed_within_last"
    habit_id: UUID
    minutes: Minutes


class CompletedTodayCondition(_RuleModel):
    type: Literal["completed_today"] = "completed_today"
    habit_id: UUID


class NotCompletedTodayCondition(_RuleModel):
    type: Literal["not_completed_today"] = "not_completed_today"
    habit_id: UUID


class CompletedInPhaseWindowCondition(_RuleModel):
    type: Literal["completed_in_phase_window"] = "completed_in_phase_window"
    habit_id: UUID
    phase: PhaseName


class CountCompletedTodayCondition(_RuleModel):
    type: Literal["count_completed_today"] = "count_completed_today"
    habit_id: UUID
    at_least: Minutes


class SleepWakeKnownCondition(_RuleModel):
    type: Literal["sleep_wake_known"] = "sleep_wake_known"


class ReturnHookExistsCondition(_RuleModel):
    type: Literal["return_hook_exists"] = "return_hook_exists"


class WithinPhaseCondition(_RuleModel):
    type: Literal["within_phase"] = "within_phase"
    phase: PhaseName


class AllCondition(_RuleModel):
    type: Literal["all"] = "all"
    conditions: tuple[Condition, ...] = ()


class AnyCondition(_RuleModel):
    type: Literal["any"] = "any"
    conditions: tuple[Condition, ...] = ()


class NotCondition(_RuleModel):
    type: Literal["not"] = "not"
    condition: Condition


Condition = Annotated[
    Union[
        CompletedWithinLastCondition,
        CompletedTodayCondition,
        NotCompletedTodayCondition,
        CompletedInPhaseWindowCondition,
        CountCompletedTodayCondition,
        SleepWakeKnownCondition,
        ReturnHookExistsCondition,
        WithinPhaseCondition,
        AllCondition,
        AnyCondition,
        NotCondition,
    ],
    Field(discriminator="type"),
]

AllCondition.model_rebuild()
AnyCondition.model_rebuild()
NotCondition.model_rebuild()


# ── Actions ────────────────────────────────────────────────────────────


class ByHabitTag(_RuleModel):
    type: Literal["by_habit"] = "by_habit"
    habit_id: UUID


class ByRuleTag(_RuleModel):
    type: Literal["by_rule"] = "by_rule"
    rule_id: UUID


class ByDateKeyTag(_RuleModel):
    type: Literal["by_date_key"] = "by_date_key"
    date_key: str = Field(pattern=DATE_KEY_PATTERN)


class AllTag(_RuleModel):
    type: Literal["all"] = "all"


CancelTag = Annotated[
    Union[ByHabitTag, ByRuleTag, ByDateKeyTag, AllTag],
    Field(discriminator="type"),
]


class NotifyAction(_RuleModel):
    type: Literal["notify"] = "notify"
    template_id: str = Field(min_length=1)
    habit_id: Optional[UUID] = None
    priority: int = 0

    @property
    def description(self) -> str:
        return f"Notify '{self.template_id}' (priority: {self.priority})"


class ScheduleNotifyAtAction(_RuleModel):
    type: Literal["schedule_notify_at"] = "schedule_notify_at"
    fire_at: AwareDatetime
    expires_at: AwareDatetime
    template_id: str = Field(min_length=1)
    habit_id: Optional[UUID] = None
    priority: int = 0

    @property
    def description(self) -> str:
        return f"Schedule '{self.template_id}' at {self.fire_at.isoformat()}"


class CancelNotificationsAction(_RuleModel):
    type: Literal["cancel_notifications"] = "cancel_notifications"
    tag: CancelTag

    @property
    def description(self) -> str:
        return "Cancel notifications"


class CreateReturnHookAction(_RuleModel):
    type: Literal["create_return_hook"] = "create_return_hook"
    prompt: str = Field(min_length=1)

    @property
    def description(self) -> str:
        return f"Return hook: {self.prompt}"


class TriggerSalvageAction(_RuleModel):
    type: Literal["trigger_salvage"] = "trigger_salvage"
    plan_id: str

    @property
    def description(self) -> str:
        return f"Salvage plan: {self.plan_id}"


Action = Annotated[
    Union[
        NotifyAction,
        ScheduleNotifyAtAction,
        CancelNotificationsAction,
        CreateReturnHookAction,
        TriggerSalvageAction,
    ],
    Field(discriminator="type"),
]


class Rule(_RuleModel):
    id: UUID
    routine_id: UUID
    enabled: bool = True
    trigger: Trigger
    conditions: tuple[Condition, ...] = ()
    actions: tuple[Action, ...] = ()
    created_at: datetime


TRIGGER_ADAPTER: TypeAdapter = TypeAdapter(Trigger)
CONDITIONS_ADAPTER: TypeAdapter = TypeAdapter(tuple[Condition, ...])
ACTIONS_ADAPTER: TypeAdapter = TypeAdapter(tuple[Action, ...])
