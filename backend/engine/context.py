from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from uuid import UUID

from engine.day_boundary import DayBoundary
from engine.models import (
    CompletionEvent,
    DayPhases,
    GeoCoordinate,
    PhaseName,
    Reminder,
    ReminderState,
    ReturnHook,
    UserSettings,
)
from engine.phases import compute_phases


@dataclass(frozen=True)
class EvaluationContext:
    """Immutable snapshot of one evaluation pass. All queries are pure projections."""

    date_key: str
    now: datetime
    phases: DayPhases
    completions: tuple[CompletionEvent, ...] = ()
    reminders: tuple[Reminder, ...] = ()
    return_hooks: tuple[ReturnHook, ...] = ()
    settings: UserSettings = field(default_factory=UserSettings)
    day_boundary: DayBoundary = field(default_factory=DayBoundary)

    def completions_for(self, habit_id: UUID) -> list[CompletionEvent]:
        return [c for c in self.completions if c.habit_id == habit_id]

    def is_completed(self, habit_id: UUID) -> bool:
        return bool(self.completions_for(habit_id))

    def completion_count(self, habit_id: UUID) -> int:
        return len(self.completions_for(habit_id))

    def most_recent_completion(self, habit_id: UUID) -> CompletionEvent | None:
        completions = self.completions_for(habit_id)
        if not completions:
            return None
        return max(completions, key=lambda c: c.timestamp)

    def is_completed_within_last(self, habit_id: UUID, minutes: int) -> bool:
        most_recent = self.most_recent_completion(habit_id)
        if most_recent is None:
            return False
        return most_recent.timestamp >= self.now - timedelta(minutes=minutes)

    def is_completed_in_phase(self, habit_id: UUID, phase: PhaseName) -> bool:
        interval = self.phases.interval_for(phase)
        if interval is None:
            return False
        return any(interval.contains(c.timestamp) for c in self.completions_for(habit_id))

    def current_phase(self) -> PhaseName | None:
        return self.phases.phase_at(self.now)

    def scheduled_reminders(self) -> list[Reminder]:
        return [r for r in self.reminders if r.state == ReminderState.SCHEDULED]

    def scheduled_reminder_count(self) -> int:
        return len(self.scheduled_reminders())

    def pending_return_hooks(self) -> list[ReturnHook]:
        return [h for h in self.return_hooks if not h.is_responded]


def build_context(
    now: datetime,
    settings: UserSettings,
    *,
    completions: list[CompletionEvent] | tuple[CompletionEvent, ...] = (),
    reminders: list[Reminder] | tuple[Reminder, ...] = (),
    return_hooks: list[ReturnHook] | tuple[ReturnHook, ...] = (),
    location: GeoCoordinate | None = None,
    tz: tzinfo | None = None,
) -> EvaluationContext:
    """Derive the date key and phases for ``now`` and bundle them with the supplied day data."""
    boundary = DayBoundary.from_settings(settings)
    day = boundary.application_day(now)
    phases = compute_phases(day, settings, location, tz if tz is not None else now.tzinfo)
    return EvaluationContext(
        date_key=phases.date_key,
        now=now,
        phases=phases,
        completions=tuple(completions),
        reminders=tuple(reminders),
        return_hooks=tuple(return_hooks),
        settings=settings,
        day_boundary=boundary,
    )
