from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from db.database import get_db
from services.errors import InvalidRuleError, NotFoundError
from services.providers import Clock, get_clock
from services.rule_service import (
    create_routine,
    create_rule,
    delete_rule,
    get_routine,
    list_routines,
    list_rules,
    routine_to_dict,
    rule_to_dict,
    set_routine_active,
    set_rule_enabled,
)

routines_router = APIRouter(prefix="/routines", tags=["routines"])
router = APIRouter(prefix="/rules", tags=["rules"])


class RoutineCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    habit_ids: list[str] = []


class RoutineUpdateRequest(BaseModel):
    is_active: bool


class RuleCreateRequest(BaseModel):
    routine_id: str
    trigger: dict[str, Any]
    conditions: list[dict[str, Any]] = []
    actions: list[dict[str, Any]] = []
    enabled: bool = True


# ── Routines ───────────────────────────────────────────────────────────


@routines_router.get("")
def get_routines(db: Session = Depends(get_db)):
    return [routine_to_dict(r) for r in list_routines(db)]


@routines_router.post("", status_code=201)
def add_routine(req: RoutineCreateRequest, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    routine = create_routine(db, name=req.name, habit_ids=req.habit_ids, created_at=clock())
    db.commit()
    db.refresh(routine)
    return routine_to_dict(routine)


@routines_router.get("/{routine_id}")
def get_routine_detail(routine_id: str, db: Session = Depends(get_db)):
    try:
        routine = get_routine(db, routine_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Routine not found")
    data = routine_to_dict(routine)
    data["rules"] = [rule_to_dict(r) for r in list_rules(db, routine_id)]
    return data


@routines_router.put("/{routine_id}")
def update_routine(routine_id: str, req: RoutineUpdateRequest, db: Session = Depends(get_db)):
    try:
        routine = set_routine_active(db, routine_id, req.is_active)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Routine not found")
    db.commit()
    db.refresh(routine)
    return routine_to_dict(routine)


# ── Rules ──────────────────────────────────────────────────────────────


@router.get("")
def get_rules(routine_id: Optional[str] = None, db: Session = Depends(get_db)):
    return [rule_to_dict(r) for r in list_rules(db, routine_id)]


@router.post("", status_code=201)
def add_rule(req: RuleCreateRequest, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    try:
        record = create_rule(
            db,
            routine_id=req.routine_id,
            trigger=req.trigger,
            conditions=req.conditions,
            actions=req.actions,
            created_at=clock(),
            enabled=req.enabled,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Routine not found")
    except InvalidRuleError as e:
        raise HTTPException(status_code=422, detail=f"Invalid rule: {e}")
    db.commit()
    db.refresh(record)
    return rule_to_dict(record)


@router.post("/{rule_id}/enable")
def enable_rule(rule_id: str, db: Session = Depends(get_db)):
    try:
        record = set_rule_enabled(db, rule_id, True)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Rule not found")
    db.commit()
    return rule_to_dict(record)


@router.post("/{rule_id}/disable")
def disable_rule(rule_id: str, db: Session = Depends(get_db)):
    try:
        record = set_rule_enabled(db, rule_id, False)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Rule not found")
    db.commit()
    return rule_to_dict(record)


@router.delete("/{rule_id}")
def remove_rule(rule_id: str, db: Session = Depends(get_db)):
    try:
        delete_rule(db, rule_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Rule not found")
    db.commit()
    return {"status": "deleted", "id": rule_id}
