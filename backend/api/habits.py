import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import AwareDatetime, BaseModel, Field
from sqlalchemy.orm import Session

from db.database import get_db
from engine.models import CompletionTriggerEvent
from services.errors import NotFoundError
from services.evaluation_service import result_to_dict, run_evaluation
from services.habit_service import (
    completion_to_dict,
    create_habit,
    delete_completion,
    get_habit,
    habit_to_dict,
    list_habits,
    record_completion,
    update_habit,
)
from services.providers import Clock, get_clock
from services.repository import get_or_create_settings, settings_from_record
from utils.datetime_utils import to_local

router = APIRouter(prefix="/habits", tags=["habits"])
logger = logging.getLogger(__name__)


class HabitCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    category: str = "general"
    default_phase: str = "morning"
    target_count_per_day: int = Field(default=1, ge=1, le=50)
    target_by_phase: Optional[dict[str, int]] = None


class HabitUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category: Optional[str] = None
    default_phase: Optional[str] = None
    is_active: Optional[bool] = None


class CompletionRequest(BaseModel):
    timestamp: Optional[AwareDatetime] = None
    note: Optional[str] = None
    calories: Optional[int] = None
    meal_name: Optional[str] = None
    meal_type: Optional[str] = None
    custom_data: Optional[dict[str, str]] = None
    is_late_correction: bool = False


def _tz_name(db: Session) -> str:
    return get_or_create_settings(db).timezone


@router.get("")
def get_habits(include_inactive: bool = False, db: Session = Depends(get_db)):
    tz_name = _tz_name(db)
    return [habit_to_dict(h, tz_name) for h in list_habits(db, include_inactive=include_inactive)]


@router.post("", status_code=201)
def add_habit(req: HabitCreateRequest, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    try:
        habit = create_habit(
            db,
            title=req.title,
            category=req.category,
            default_phase=req.default_phase,
            target_count_per_day=req.target_count_per_day,
            target_by_phase=req.target_by_phase,
            created_at=clock(),
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    db.commit()
    db.refresh(habit)
    return habit_to_dict(habit, _tz_name(db))


@router.get("/{habit_id}")
def get_habit_detail(habit_id: str, db: Session = Depends(get_db)):
    try:
        habit = get_habit(db, habit_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Habit not found")
    return habit_to_dict(habit, _tz_name(db))


@router.put("/{habit_id}")
def edit_habit(habit_id: str, req: HabitUpdateRequest, db: Session = Depends(get_db)):
    try:
        habit = update_habit(
            db,
            habit_id,
            title=req.title,
            category=req.category,
            default_phase=req.default_phase,
            is_active=req.is_active,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Habit not found")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    db.commit()
    db.refresh(habit)
    return habit_to_dict(habit, _tz_name(db))


@router.delete("/{habit_id}")
def deactivate_habit(habit_id: str, db: Session = Depends(get_db)):
    try:
        update_habit(db, habit_id, is_active=False)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Habit not found")
    db.commit()
    return {"status": "inactive", "id": habit_id}


@router.post("/{habit_id}/complete", status_code=201)
def complete_habit(
    habit_id: str,
    req: Optional[CompletionRequest] = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Record a completion, then evaluate rules with a completion trigger event."""
    req = req or CompletionRequest()
    now = clock()
    user_settings = settings_from_record(get_or_create_settings(db))
    timestamp: datetime = req.timestamp or now

    metadata = req.model_dump(exclude={"timestamp", "is_late_correction"}, exclude_none=True)
    try:
        completion = record_completion(
            db,
            habit_id,
            timestamp=timestamp,
            user_settings=user_settings,
            metadata=metadata or None,
            is_late_correction=req.is_late_correction,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Habit not found")

    event = CompletionTriggerEvent(
        habit_id=uuid.UUID(completion.habit_id),
        occurred_at=to_local(timestamp, user_settings.timezone),
    )
    result = run_evaluation(db, now, event)
    db.commit()
    return {
        "completion": completion_to_dict(completion, user_settings.timezone),
        "evaluation": result_to_dict(result, db),
    }


@router.delete("/completions/{completion_id}")
def remove_completion(completion_id: str, db: Session = Depends(get_db)):
    try:
        delete_completion(db, completion_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Completion not found")
    db.commit()
    return {"status": "deleted", "id": completion_id}
