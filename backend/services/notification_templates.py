from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class NotificationTemplate:
    id: str
    title: str
    body: str
    category_id: str = "HABIT_REMINDER"


GENERIC_REMINDER = NotificationTemplate(
    id="generic_reminder",
    title="Gentle reminder",
    body="Time to check in with your routine",
)

STANDARD_TEMPLATES: dict[str, NotificationTemplate] = {
    t.id: t
    for t in (
        GENERIC_REMINDER,
        NotificationTemplate(id="phase_start", title="New phase beginning", body="Your {phase} is starting"),
        NotificationTemplate(id="cascade_reminder", title="Dependency reminder", body="{habit} so the next step can happen"),
        NotificationTemplate(id="return_hook", title="Welcome back", body="How did {habit} go?"),
        NotificationTemplate(id="salvage_plan", title="Let's rebalance", body="Your routine needs a gentle adjustment"),
    )
}


def render_template(template_id: str, *, habit_title: str | None = None, phase: str | None = None) -> dict:
    """
    Title/body for a reminder.

    Unknown template ids (routine templates name their own, e.g.
    ``supplements_reminder``) fall back to a gentle reminder mentioning the habit.
    """
    template = STANDARD_TEMPLATES.get(template_id)
    if template is None:
        body = f"Time for {habit_title}" if habit_title else GENERIC_REMINDER.body
        return {"title": GENERIC_REMINDER.title, "body": body, "category_id": GENERIC_REMINDER.category_id}
    body = template.body.format(habit=habit_title or "your habit", phase=phase or "next phase")
    return {"title": template.title, "body": body, "category_id": template.category_id}
