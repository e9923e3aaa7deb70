from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from db.database import get_db
from services.errors import TemplateNotFoundError
from services.habit_service import get_habit, habit_to_dict
from services.providers import Clock, get_clock
from services.rule_service import routine_to_dict, rule_to_dict
from services.template_service import BUILT_IN_TEMPLATES, get_template, instantiate, save_instance, template_to_dict

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("")
def list_templates():
    return [template_to_dict(t) for t in BUILT_IN_TEMPLATES]


@router.get("/{template_id}")
def get_template_detail(template_id: str):
    try:
        return template_to_dict(get_template(template_id))
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail="Template not found")


@router.post("/{template_id}/instantiate", status_code=201)
def instantiate_template(template_id: str, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    try:
        template = get_template(template_id)
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail="Template not found")
    instance = instantiate(template, clock=clock)
    routine = save_instance(db, instance, template_id=template.id)
    db.commit()
    db.refresh(routine)
    return {
        "routine": routine_to_dict(routine),
        "habits": [habit_to_dict(get_habit(db, str(h.id))) for h in instance.habits],
        "rules": [rule_to_dict(r) for r in sorted(routine.rules, key=lambda r: r.position)],
    }
