import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config import settings as app_settings
from db.database import get_db
from db.models import HabitRecord, ReminderRecord, ReturnHookRecord, SalvagePlanRecord
from engine.day_boundary import DayBoundary
from engine.models import ReminderState
from services.errors import InvalidTransitionError, NotFoundError
from services.habit_service import completion_to_dict, record_completion
from services.notification_templates import render_template
from services.providers import Clock, get_clock
from services.reminder_service import get_reminder, reminder_to_dict, snooze_reminder, transition_reminder
from services.repository import get_or_create_settings, return_hook_from_record, salvage_plan_from_record, settings_from_record
from utils.datetime_utils import from_storage, to_storage

router = APIRouter(prefix="/reminders", tags=["reminders"])
return_hooks_router = APIRouter(prefix="/return-hooks", tags=["return-hooks"])
salvage_router = APIRouter(prefix="/salvage-plans", tags=["salvage-plans"])
logger = logging.getLogger(__name__)

TARGET_STATES = {
    "fire": ReminderState.FIRED,
    "skip": ReminderState.SKIPPED,
    "expire": ReminderState.EXPIRED,
    "cancel": ReminderState.CANCELED,
}


class ReminderResponseRequest(BaseModel):
    response: Literal["done", "snooze", "skip", "fire", "expire", "cancel"]
    snooze_minutes: Optional[int] = None


class ReturnHookResponseRequest(BaseModel):
    response: str = Field(min_length=1, max_length=2000)


@router.get("")
def list_reminders(date_key: Optional[str] = None, state: Optional[str] = None, db: Session = Depends(get_db)):
    tz_name = get_or_create_settings(db).timezone
    query = db.query(ReminderRecord)
    if date_key:
        query = query.filter(ReminderRecord.date_key == date_key)
    if state:
        query = query.filter(ReminderRecord.state == state)
    rows = query.order_by(ReminderRecord.fire_at.asc()).all()
    return [reminder_to_dict(r, tz_name) for r in rows]


@router.post("/{reminder_id}/respond")
def respond_to_reminder(
    reminder_id: str,
    req: ReminderResponseRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    user_settings = settings_from_record(get_or_create_settings(db))
    tz_name = user_settings.timezone
    try:
        record = get_reminder(db, reminder_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Reminder not found")

    payload: dict = {}
    try:
        if req.response == "done":
            transition_reminder(record, ReminderState.COMPLETED)
            if record.habit_id:
                completion = record_completion(db, record.habit_id, timestamp=now, user_settings=user_settings)
                payload["completion"] = completion_to_dict(completion, tz_name)
        elif req.response == "snooze":
            minutes = req.snooze_minutes or app_settings.SNOOZE_OPTIONS_MINUTES[0]
            if minutes not in app_settings.SNOOZE_OPTIONS_MINUTES:
                raise HTTPException(
                    status_code=422,
                    detail=f"snooze_minutes must be one of {app_settings.SNOOZE_OPTIONS_MINUTES}",
                )
            replacement = snooze_reminder(
                db,
                record,
                minutes=minutes,
                now=now,
                boundary=DayBoundary.from_settings(user_settings),
                tz_name=tz_name,
            )
            payload["replacement"] = reminder_to_dict(replacement, tz_name)
        else:
            transition_reminder(record, TARGET_STATES[req.response])
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Habit not found")

    db.commit()
    db.refresh(record)
    logger.info("Reminder %s -> %s", record.id, record.state)
    return {"reminder": reminder_to_dict(record, tz_name), **payload}


@router.get("/{reminder_id}/notification")
def reminder_notification(reminder_id: str, db: Session = Depends(get_db)):
    try:
        record = get_reminder(db, reminder_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Reminder not found")
    habit_title = None
    if record.habit_id:
        habit = db.get(HabitRecord, record.habit_id)
        habit_title = habit.title if habit else None
    return {
        "notification_id": record.notification_id,
        **render_template(record.template_id, habit_title=habit_title),
    }


# ── Return hooks ───────────────────────────────────────────────────────


def _hook_to_dict(record: ReturnHookRecord, tz_name: str) -> dict:
    hook = return_hook_from_record(record, tz_name)
    return {
        "id": str(hook.id),
        "date_key": record.date_key,
        "prompt": hook.prompt,
        "user_response": hook.user_response,
        "created_at": hook.created_at.isoformat(),
        "responded_at": hook.responded_at.isoformat() if hook.responded_at else None,
        "is_responded": hook.is_responded,
    }


@return_hooks_router.get("")
def list_return_hooks(pending_only: bool = True, db: Session = Depends(get_db)):
    tz_name = get_or_create_settings(db).timezone
    query = db.query(ReturnHookRecord)
    if pending_only:
        query = query.filter(ReturnHookRecord.user_response.is_(None))
    rows = query.order_by(ReturnHookRecord.created_at.asc()).all()
    return [_hook_to_dict(r, tz_name) for r in rows]


@return_hooks_router.post("/{hook_id}/respond")
def respond_to_return_hook(
    hook_id: str,
    req: ReturnHookResponseRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    record = db.get(ReturnHookRecord, hook_id)
    if not record:
        raise HTTPException(status_code=404, detail="Return hook not found")
    if record.user_response is not None:
        raise HTTPException(status_code=409, detail="Return hook already answered")
    record.user_response = req.response.strip()
    record.responded_at = to_storage(clock())
    db.commit()
    db.refresh(record)
    return _hook_to_dict(record, get_or_create_settings(db).timezone)


# ── Salvage plans ──────────────────────────────────────────────────────


def _plan_to_dict(record: SalvagePlanRecord, tz_name: str) -> dict:
    plan = salvage_plan_from_record(record, tz_name)
    return {
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
        "is_accepted": plan.is_accepted,
        "accepted_at": plan.accepted_at.isoformat() if plan.accepted_at else None,
        "created_at": from_storage(record.created_at, tz_name).isoformat(),
    }


@salvage_router.get("")
def list_salvage_plans(date_key: Optional[str] = None, db: Session = Depends(get_db)):
    tz_name = get_or_create_settings(db).timezone
    query = db.query(SalvagePlanRecord)
    if date_key:
        query = query.filter(SalvagePlanRecord.date_key == date_key)
    rows = query.order_by(SalvagePlanRecord.created_at.asc()).all()
    return [_plan_to_dict(r, tz_name) for r in rows]


@salvage_router.post("/{plan_id}/accept")
def accept_salvage_plan(plan_id: str, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    record = db.get(SalvagePlanRecord, plan_id)
    if not record:
        raise HTTPException(status_code=404, detail="Salvage plan not found")
    if not record.is_accepted:
        record.is_accepted = True
        record.accepted_at = to_storage(clock())
        db.commit()
        db.refresh(record)
    return _plan_to_dict(record, get_or_create_settings(db).timezone)
