from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from db.models import RoutineRecord, RuleRecord
from engine.rules import ACTIONS_ADAPTER, CONDITIONS_ADAPTER, TRIGGER_ADAPTER, Rule
from services.errors import InvalidRuleError, NotFoundError
from services.repository import rule_from_record, rule_payload
from utils.datetime_utils import to_storage

logger = logging.getLogger(__name__)


def routine_to_dict(routine: RoutineRecord) -> dict:
    try:
        habit_ids = json.loads(routine.habit_ids or "[]")
    except json.JSONDecodeError:
        habit_ids = []
    return {
        "id": routine.id,
        "name": routine.name,
        "habit_ids": habit_ids,
        "rule_ids": [r.id for r in sorted(routine.rules, key=lambda r: r.position)],
        "template_id": routine.template_id,
        "is_active": bool(routine.is_active),
        "created_at": routine.created_at.isoformat() if routine.created_at else None,
    }


def rule_to_dict(record: RuleRecord) -> dict:
    try:
        rule = rule_from_record(record)
    except (ValidationError, ValueError):
        return {
            "id": record.id,
            "routine_id": record.routine_id,
            "enabled": bool(record.enabled),
            "valid": False,
        }
    return {
        "id": record.id,
        "routine_id": record.routine_id,
        "enabled": rule.enabled,
        "valid": True,
        "position": record.position,
        "trigger": TRIGGER_ADAPTER.dump_python(rule.trigger, mode="json"),
        "conditions": CONDITIONS_ADAPTER.dump_python(rule.conditions, mode="json"),
        "actions": ACTIONS_ADAPTER.dump_python(rule.actions, mode="json"),
        "action_descriptions": [a.description for a in rule.actions],
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }


def parse_rule(
    *,
    rule_id: uuid.UUID,
    routine_id: uuid.UUID,
    trigger: Any,
    conditions: Any,
    actions: Any,
    created_at: datetime,
    enabled: bool = True,
) -> Rule:
    """Validate raw trigger/conditions/actions payloads into a :class:`Rule`."""
    try:
        return Rule(
            id=rule_id,
            routine_id=routine_id,
            enabled=enabled,
            trigger=TRIGGER_ADAPTER.validate_python(trigger),
            conditions=CONDITIONS_ADAPTER.validate_python(conditions or []),
            actions=ACTIONS_ADAPTER.validate_python(actions or []),
            created_at=created_at,
        )
    except ValidationError as e:
        raise InvalidRuleError(str(e)) from e


# ── Routines ───────────────────────────────────────────────────────────


def get_routine(db: Session, routine_id: str) -> RoutineRecord:
    routine = db.get(RoutineRecord, routine_id)
    if routine is None:
        raise NotFoundError(f"Routine {routine_id} not found")
    return routine


def list_routines(db: Session) -> list[RoutineRecord]:
    return db.query(RoutineRecord).order_by(RoutineRecord.created_at.asc()).all()


def create_routine(
    db: Session,
    *,
    name: str,
    habit_ids: list[str],
    created_at: datetime,
    template_id: str | None = None,
    routine_id: uuid.UUID | None = None,
) -> RoutineRecord:
    routine = RoutineRecord(
        id=str(routine_id or uuid.uuid4()),
        name=name.strip(),
        habit_ids=json.dumps([str(h) for h in habit_ids]),
        template_id=template_id,
        is_active=True,
        created_at=to_storage(created_at),
    )
    db.add(routine)
    db.flush()
    return routine


def set_routine_active(db: Session, routine_id: str, is_active: bool) -> RoutineRecord:
    routine = get_routine(db, routine_id)
    routine.is_active = bool(is_active)
    db.flush()
    return routine


# ── Rules ──────────────────────────────────────────────────────────────


def get_rule(db: Session, rule_id: str) -> RuleRecord:
    record = db.get(RuleRecord, rule_id)
    if record is None:
        raise NotFoundError(f"Rule {rule_id} not found")
    return record


def list_rules(db: Session, routine_id: str | None = None) -> list[RuleRecord]:
    query = db.query(RuleRecord)
    if routine_id:
        query = query.filter(RuleRecord.routine_id == routine_id)
    return query.order_by(RuleRecord.routine_id.asc(), RuleRecord.position.asc()).all()


def add_rule(db: Session, rule: Rule) -> RuleRecord:
    """Append a validated rule to the end of its routine's evaluation order."""
    get_routine(db, str(rule.routine_id))
    last_position = (
        db.query(func.max(RuleRecord.position)).filter(RuleRecord.routine_id == str(rule.routine_id)).scalar()
    )
    record = RuleRecord(
        id=str(rule.id),
        routine_id=str(rule.routine_id),
        enabled=rule.enabled,
        position=0 if last_position is None else last_position + 1,
        created_at=to_storage(rule.created_at),
        **rule_payload(rule),
    )
    db.add(record)
    db.flush()
    logger.info("Added rule %s to routine %s", record.id, record.routine_id)
    return record


def create_rule(
    db: Session,
    *,
    routine_id: str,
    trigger: Any,
    conditions: Any,
    actions: Any,
    created_at: datetime,
    enabled: bool = True,
) -> RuleRecord:
    routine = get_routine(db, routine_id)
    rule = parse_rule(
        rule_id=uuid.uuid4(),
        routine_id=uuid.UUID(routine.id),
        trigger=trigger,
        conditions=conditions,
        actions=actions,
        created_at=created_at,
        enabled=enabled,
    )
    return add_rule(db, rule)


def set_rule_enabled(db: Session, rule_id: str, enabled: bool) -> RuleRecord:
    record = get_rule(db, rule_id)
    record.enabled = bool(enabled)
    db.flush()
    return record


def delete_rule(db: Session, rule_id: str) -> None:
    record = get_rule(db, rule_id)
    db.delete(record)
    db.flush()
