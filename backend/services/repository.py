"""
Persistence provider for the engine.

Loads the day's inputs (settings, active rules, completions, reminders, pending
return hooks) from SQLAlchemy records and converts them into engine values.
Rule payloads are validated here; rows that do not decode into the rule
language are skipped so the engine only sees valid rules.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import settings as app_settings
from db.models import (
    CompletionEventRecord,
    GoalRecord,
    ReminderRecord,
    ReturnHookRecord,
    RoutineRecord,
    RuleRecord,
    SalvagePlanRecord,
    UserSettingsRecord,
)
from engine.models import (
    CompletionEvent,
    CompletionMetadata,
    Goal,
    GoalMeasurement,
    MealType,
    NotificationTone,
    PhaseMode,
    PhaseName,
    PhaseOverride,
    RebalancedItem,
    Reminder,
    ReminderState,
    ReturnHook,
    SalvagePlan,
    UserSettings,
)
from engine.rules import ACTIONS_ADAPTER, CONDITIONS_ADAPTER, TRIGGER_ADAPTER, Rule
from utils.datetime_utils import from_storage

logger = logging.getLogger(__name__)


def _safe_json_loads(raw: str | None, fallback: Any) -> Any:
    if not raw:
        return fallback
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return fallback


def _json_dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


def _uuid_or_none(raw: str | None) -> UUID | None:
    return UUID(raw) if raw else None


# ── Settings ───────────────────────────────────────────────────────────


def get_or_create_settings(db: Session) -> UserSettingsRecord:
    record = db.query(UserSettingsRecord).order_by(UserSettingsRecord.id.asc()).first()
    if record is not None:
        return record
    record = UserSettingsRecord(
        reset_hour=app_settings.DEFAULT_RESET_HOUR,
        reset_minute=app_settings.DEFAULT_RESET_MINUTE,
        notification_cap_per_day=app_settings.DEFAULT_NOTIFICATION_CAP_PER_DAY,
        notification_cooldown_minutes=app_settings.DEFAULT_NOTIFICATION_COOLDOWN_MINUTES,
        phase_mode=app_settings.DEFAULT_PHASE_MODE,
        manual_phase_overrides="{}",
        tone=NotificationTone.ZEN_COACH.value,
        location_enabled=False,
        timezone=app_settings.DEFAULT_TIMEZONE,
    )
    db.add(record)
    db.flush()
    return record


def overrides_from_json(raw: str | None) -> dict[PhaseName, PhaseOverride]:
    overrides: dict[PhaseName, PhaseOverride] = {}
    payload = _safe_json_loads(raw, {})
    if not isinstance(payload, dict):
        return overrides
    for key, value in payload.items():
        try:
            phase = PhaseName(key)
            overrides[phase] = PhaseOverride(
                start_hour=int(value["start_hour"]),
                start_minute=int(value["start_minute"]),
                end_hour=int(value["end_hour"]),
                end_minute=int(value["end_minute"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed phase override {key!r}: {e}")
    return overrides


def overrides_to_json(overrides: dict[PhaseName, PhaseOverride]) -> str:
    return _json_dump(
        {
            phase.value: {
                "start_hour": o.start_hour,
                "start_minute": o.start_minute,
                "end_hour": o.end_hour,
                "end_minute": o.end_minute,
            }
            for phase, o in overrides.items()
        }
    )


def settings_from_record(record: UserSettingsRecord) -> UserSettings:
    try:
        phase_mode = PhaseMode(record.phase_mode)
    except ValueError:
        phase_mode = PhaseMode.MANUAL
    return UserSettings(
        reset_hour=int(record.reset_hour),
        reset_minute=int(record.reset_minute),
        notification_cap_per_day=int(record.notification_cap_per_day),
        notification_cooldown_minutes=int(record.notification_cooldown_minutes),
        phase_mode=phase_mode,
        manual_phase_overrides=overrides_from_json(record.manual_phase_overrides),
        tone=NotificationTone.ZEN_COACH,
        location_enabled=bool(record.location_enabled),
        timezone=record.timezone or app_settings.DEFAULT_TIMEZONE,
    )


# ── Goals ──────────────────────────────────────────────────────────────


def goal_from_record(record: GoalRecord) -> Goal:
    by_phase = _safe_json_loads(record.target_by_phase, None)
    target_by_phase = None
    if isinstance(by_phase, dict):
        target_by_phase = {PhaseName(k): int(v) for k, v in by_phase.items() if k in PhaseName._value2member_map_}
    return Goal(
        id=UUID(record.id),
        habit_id=UUID(record.habit_id),
        target_count_per_day=int(record.target_count_per_day),
        target_by_phase=target_by_phase,
        measurement=GoalMeasurement(record.measurement or "count"),
    )


# ── Completions ────────────────────────────────────────────────────────


def metadata_from_json(raw: str | None) -> CompletionMetadata:
    payload = _safe_json_loads(raw, {})
    if not isinstance(payload, dict):
        return CompletionMetadata()
    meal_type = payload.get("meal_type")
    custom = payload.get("custom_data")
    return CompletionMetadata(
        note=payload.get("note"),
        calories=payload.get("calories"),
        meal_name=payload.get("meal_name"),
        meal_type=MealType(meal_type) if meal_type in MealType._value2member_map_ else None,
        custom_data={str(k): str(v) for k, v in custom.items()} if isinstance(custom, dict) else None,
    )


def completion_from_record(record: CompletionEventRecord, tz_name: str | None) -> CompletionEvent:
    return CompletionEvent(
        id=UUID(record.id),
        habit_id=UUID(record.habit_id),
        timestamp=from_storage(record.timestamp, tz_name),
        date_key=record.date_key,
        metadata=metadata_from_json(record.metadata_json),
        is_late_correction=bool(record.is_late_correction),
    )


def load_completions(db: Session, date_key: str, tz_name: str | None) -> list[CompletionEvent]:
    rows = (
        db.query(CompletionEventRecord)
        .filter(CompletionEventRecord.date_key == date_key)
        .order_by(CompletionEventRecord.timestamp.asc())
        .all()
    )
    return [completion_from_record(row, tz_name) for row in rows]


# ── Reminders ──────────────────────────────────────────────────────────


def reminder_from_record(record: ReminderRecord, tz_name: str | None) -> Reminder:
    return Reminder(
        id=UUID(record.id),
        habit_id=_uuid_or_none(record.habit_id),
        rule_id=_uuid_or_none(record.rule_id),
        date_key=record.date_key,
        fire_at=from_storage(record.fire_at, tz_name),
        expires_at=from_storage(record.expires_at, tz_name),
        notification_id=record.notification_id,
        template_id=record.template_id,
        state=ReminderState(record.state),
        priority=int(record.priority or 0),
    )


def load_reminders(db: Session, date_key: str, tz_name: str | None) -> list[Reminder]:
    rows = (
        db.query(ReminderRecord)
        .filter(ReminderRecord.date_key == date_key)
        .order_by(ReminderRecord.fire_at.asc())
        .all()
    )
    return [reminder_from_record(row, tz_name) for row in rows]


# ── Return hooks and salvage plans ─────────────────────────────────────


def return_hook_from_record(record: ReturnHookRecord, tz_name: str | None) -> ReturnHook:
    return ReturnHook(
        id=UUID(record.id),
        prompt=record.prompt,
        created_at=from_storage(record.created_at, tz_name),
        user_response=record.user_response,
        responded_at=from_storage(record.responded_at, tz_name),
    )


def load_pending_return_hooks(db: Session, tz_name: str | None) -> list[ReturnHook]:
    rows = (
        db.query(ReturnHookRecord)
        .filter(ReturnHookRecord.user_response.is_(None))
        .order_by(ReturnHookRecord.created_at.asc())
        .all()
    )
    return [return_hook_from_record(row, tz_name) for row in rows]


def salvage_plan_from_record(record: SalvagePlanRecord, tz_name: str | None) -> SalvagePlan:
    items = []
    for raw in _safe_json_loads(record.rebalanced_items, []):
        items.append(
            RebalancedItem(
                id=UUID(raw["id"]),
                habit_id=UUID(raw["habit_id"]),
                suggested_phase=PhaseName(raw["suggested_phase"]),
                reason=raw.get("reason", ""),
            )
        )
    return SalvagePlan(
        id=UUID(record.id),
        date_key=record.date_key,
        created_at=from_storage(record.created_at, tz_name),
        title=record.title,
        message=record.message,
        rebalanced_items=tuple(items),
        is_accepted=bool(record.is_accepted),
        accepted_at=from_storage(record.accepted_at, tz_name),
    )


# ── Rules ──────────────────────────────────────────────────────────────


def rule_payload(rule: Rule) -> dict[str, str]:
    """Serialized trigger/conditions/actions columns for a rule."""
    return {
        "trigger_json": TRIGGER_ADAPTER.dump_json(rule.trigger).decode(),
        "conditions_json": CONDITIONS_ADAPTER.dump_json(rule.conditions).decode(),
        "actions_json": ACTIONS_ADAPTER.dump_json(rule.actions).decode(),
    }


def rule_from_record(record: RuleRecord) -> Rule:
    """Decode a rule row. Raises pydantic ``ValidationError`` for malformed payloads."""
    return Rule(
        id=UUID(record.id),
        routine_id=UUID(record.routine_id),
        enabled=bool(record.enabled),
        trigger=TRIGGER_ADAPTER.validate_json(record.trigger_json),
        conditions=CONDITIONS_ADAPTER.validate_json(record.conditions_json or "[]"),
        actions=ACTIONS_ADAPTER.validate_json(record.actions_json or "[]"),
        created_at=record.created_at,
    )


def load_active_rules(db: Session) -> list[Rule]:
    """Enabled rules of active routines, in routine then position order."""
    rows = (
        db.query(RuleRecord)
        .join(RoutineRecord, RuleRecord.routine_id == RoutineRecord.id)
        .filter(RoutineRecord.is_active.is_(True), RuleRecord.enabled.is_(True))
        .order_by(RoutineRecord.created_at.asc(), RuleRecord.position.asc(), RuleRecord.created_at.asc())
        .all()
    )
    rules: list[Rule] = []
    for row in rows:
        try:
            rules.append(rule_from_record(row))
        except (ValidationError, ValueError) as e:
            logger.warning("Skipping malformed rule %s: %s", row.id, e)
    return rules
