import logging
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from db.database import get_db
from db.models import UserSettingsRecord
from engine.models import PHASE_ORDER, PhaseMode, PhaseName, PhaseOverride
from services.repository import get_or_create_settings, overrides_from_json, overrides_to_json, settings_from_record

router = APIRouter(prefix="/settings", tags=["settings"])
logger = logging.getLogger(__name__)

VALID_PHASE_MODES = {m.value for m in PhaseMode}


class PhaseOverrideModel(BaseModel):
    start_hour: int = Field(ge=0, le=23)
    start_minute: int = Field(ge=0, le=59)
    end_hour: int = Field(ge=0, le=23)
    end_minute: int = Field(ge=0, le=59)


class SettingsUpdate(BaseModel):
    reset_hour: Optional[int] = Field(default=None, ge=0, le=23)
    reset_minute: Optional[int] = Field(default=None, ge=0, le=59)
    notification_cap_per_day: Optional[int] = Field(default=None, ge=0)
    notification_cooldown_minutes: Optional[int] = Field(default=None, ge=0)
    phase_mode: Optional[str] = None
    manual_phase_overrides: Optional[dict[str, PhaseOverrideModel]] = None
    location_enabled: Optional[bool] = None
    latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)
    timezone: Optional[str] = None


def _settings_to_dict(record: UserSettingsRecord) -> dict:
    engine_settings = settings_from_record(record)
    return {
        "reset_hour": engine_settings.reset_hour,
        "reset_minute": engine_settings.reset_minute,
        "notification_cap_per_day": engine_settings.notification_cap_per_day,
        "notification_cooldown_minutes": engine_settings.notification_cooldown_minutes,
        "phase_mode": engine_settings.phase_mode.value,
        "manual_phase_overrides": {
            phase.value: {
                "start_hour": o.start_hour,
                "start_minute": o.start_minute,
                "end_hour": o.end_hour,
                "end_minute": o.end_minute,
            }
            for phase in PHASE_ORDER
            for o in [engine_settings.override_for(phase)]
        },
        "tone": engine_settings.tone.value,
        "tone_label": engine_settings.tone.display_name,
        "location_enabled": engine_settings.location_enabled,
        "latitude": record.latitude,
        "longitude": record.longitude,
        "timezone": engine_settings.timezone,
    }


@router.get("")
def get_settings(db: Session = Depends(get_db)):
    record = get_or_create_settings(db)
    db.commit()
    return _settings_to_dict(record)


@router.put("")
def update_settings(req: SettingsUpdate, db: Session = Depends(get_db)):
    record = get_or_create_settings(db)

    if req.phase_mode is not None:
        if req.phase_mode not in VALID_PHASE_MODES:
            raise HTTPException(status_code=422, detail=f"phase_mode must be one of {sorted(VALID_PHASE_MODES)}")
        record.phase_mode = req.phase_mode
    if req.timezone is not None:
        try:
            ZoneInfo(req.timezone)
        except Exception:
            raise HTTPException(status_code=422, detail=f"Unknown timezone: {req.timezone}")
        record.timezone = req.timezone
    if req.manual_phase_overrides is not None:
        unknown = set(req.manual_phase_overrides) - {p.value for p in PhaseName}
        if unknown:
            raise HTTPException(status_code=422, detail=f"Unknown phase(s): {sorted(unknown)}")
        merged = overrides_from_json(record.manual_phase_overrides)
        for name, override in req.manual_phase_overrides.items():
            merged[PhaseName(name)] = PhaseOverride(**override.model_dump())
        record.manual_phase_overrides = overrides_to_json(merged)

    for field_name in (
        "reset_hour",
        "reset_minute",
        "notification_cap_per_day",
        "notification_cooldown_minutes",
        "location_enabled",
        "latitude",
        "longitude",
    ):
        value = getattr(req, field_name)
        if value is not None:
            setattr(record, field_name, value)

    db.commit()
    db.refresh(record)
    logger.info("Updated settings: %s", sorted(req.model_dump(exclude_none=True)))
    return _settings_to_dict(record)
