import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from db.database import get_db
from engine.models import PhaseChangeEvent, PhaseName, TimeCheckEvent
from services.evaluation_service import load_context, result_to_dict, run_evaluation
from services.providers import Clock, get_clock
from services.reminder_service import expire_overdue
from services.summary_service import today_snapshot

router = APIRouter(prefix="/today", tags=["today"])
logger = logging.getLogger(__name__)


class EvaluateRequest(BaseModel):
    event: Literal["time_check", "phase_change"] = "time_check"
    to_phase: Optional[str] = None
    from_phase: Optional[str] = None


def _phase_or_422(raw: Optional[str], field_name: str) -> Optional[PhaseName]:
    if raw is None:
        return None
    try:
        return PhaseName(raw)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"{field_name} must be a phase name")


@router.get("")
def get_today(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    now = clock()
    expire_overdue(db, now)
    context = load_context(db, now)
    snapshot = today_snapshot(db, context)
    db.commit()
    return snapshot


@router.post("/evaluate")
def evaluate_today(
    req: Optional[EvaluateRequest] = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    req = req or EvaluateRequest()
    now = clock()
    if req.event == "phase_change":
        to_phase = _phase_or_422(req.to_phase, "to_phase")
        if to_phase is None:
            raise HTTPException(status_code=422, detail="to_phase is required for phase_change")
        event = PhaseChangeEvent(to_phase=to_phase, from_phase=_phase_or_422(req.from_phase, "from_phase"))
    else:
        event = TimeCheckEvent(at=now)

    result = run_evaluation(db, now, event)
    db.commit()
    logger.info("Evaluated %s for %s: %d decision(s)", req.event, result.context.date_key, len(result.decisions))
    return result_to_dict(result, db)
