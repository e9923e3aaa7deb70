"""End-to-end flow through the HTTP API with an in-memory database and a fixed clock."""
from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base, get_db  # noqa: E402
from main import app  # noqa: E402
from services.providers import get_clock  # noqa: E402

UTC = timezone.utc


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def api():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    testing_session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    clock = FakeClock(datetime(2025, 1, 5, 7, 0, tzinfo=UTC))

    def _override_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        yield TestClient(app), clock
    finally:
        app.dependency_overrides.clear()


def _configure_utc_manual(client: TestClient) -> None:
    resp = client.put("/api/settings", json={"timezone": "UTC", "phase_mode": "manual"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["timezone"] == "UTC"
    assert body["phase_mode"] == "manual"
    assert body["manual_phase_overrides"]["morning"]["start_hour"] == 6


def _habit_id(habits: list[dict], title: str) -> str:
    return next(h["id"] for h in habits if h["title"] == title)


def test_health_and_default_settings(api):
    client, _ = api
    assert client.get("/api/health").json()["status"] == "ok"
    settings = client.get("/api/settings").json()
    assert settings["reset_hour"] == 2
    assert settings["notification_cap_per_day"] == 8
    assert settings["notification_cooldown_minutes"] == 45
    assert settings["tone_label"] == "Zen Coach"


def test_settings_validation(api):
    client, _ = api
    assert client.put("/api/settings", json={"timezone": "Mars/Olympus"}).status_code == 422
    assert client.put("/api/settings", json={"phase_mode": "lunar"}).status_code == 422
    assert client.put("/api/settings", json={"reset_hour": 24}).status_code == 422
    assert client.put("/api/settings", json={"manual_phase_overrides": {"brunch": {
        "start_hour": 10, "start_minute": 0, "end_hour": 11, "end_minute": 0,
    }}}).status_code == 422


def test_meal_template_day_flow(api):
    client, clock = api
    _configure_utc_manual(client)

    created = client.post("/api/templates/meals_supplements/instantiate")
    assert created.status_code == 201
    body = created.json()
    assert body["routine"]["template_id"] == "meals_supplements"
    assert len(body["habits"]) == 4
    assert len(body["rules"]) == 4
    assert all(r["valid"] for r in body["rules"])
    breakfast = _habit_id(body["habits"], "Breakfast")
    dinner = _habit_id(body["habits"], "Dinner")
    supplements = _habit_id(body["habits"], "Supplements")

    # 08:00 breakfast reminder
    clock.now = datetime(2025, 1, 5, 8, 0, tzinfo=UTC)
    evaluated = client.post("/api/today/evaluate", json={"event": "time_check"})
    assert evaluated.status_code == 200
    result = evaluated.json()
    assert result["date_key"] == "2025-01-05"
    assert result["scheduled_count"] == 1
    decision = result["decisions"][0]
    assert decision["kind"] == "schedule_reminder"
    assert decision["habit_id"] == breakfast
    assert decision["notification"]["body"] == "Time for Breakfast"

    today = client.get("/api/today").json()
    assert today["current_phase"] == "morning"
    assert [r["id"] for r in today["reminders"]] == [decision["id"]]

    done = client.post(f"/api/reminders/{decision['id']}/respond", json={"response": "done"})
    assert done.status_code == 200
    assert done.json()["reminder"]["state"] == "completed"
    assert done.json()["completion"]["habit_id"] == breakfast

    # Dinner at 20:30, supplements cascade at 21:00
    clock.now = datetime(2025, 1, 5, 20, 30, tzinfo=UTC)
    completed = client.post(f"/api/habits/{dinner}/complete", json={"meal_type": "dinner", "calories": 650})
    assert completed.status_code == 201
    assert completed.json()["completion"]["date_key"] == "2025-01-05"
    assert completed.json()["completion"]["metadata"] == {"meal_type": "dinner", "calories": 650}

    clock.now = datetime(2025, 1, 5, 21, 0, tzinfo=UTC)
    result = client.post("/api/today/evaluate").json()
    assert result["scheduled_count"] == 1
    cascade = result["decisions"][0]
    assert cascade["habit_id"] == supplements
    assert cascade["priority"] == 2
    assert cascade["template_id"] == "supplements_reminder"

    early_snooze = client.post(
        f"/api/reminders/{cascade['id']}/respond", json={"response": "snooze", "snooze_minutes": 15}
    )
    assert early_snooze.status_code == 409
    fired = client.post(f"/api/reminders/{cascade['id']}/respond", json={"response": "fire"})
    assert fired.json()["reminder"]["state"] == "fired"

    bad_snooze = client.post(
        f"/api/reminders/{cascade['id']}/respond", json={"response": "snooze", "snooze_minutes": 7}
    )
    assert bad_snooze.status_code == 422

    snoozed = client.post(
        f"/api/reminders/{cascade['id']}/respond", json={"response": "snooze", "snooze_minutes": 15}
    )
    assert snoozed.status_code == 200
    assert snoozed.json()["reminder"]["state"] == "snoozed"
    replacement = snoozed.json()["replacement"]
    assert replacement["fire_at"] == "2025-01-05T21:15:00+00:00"
    assert replacement["snoozed_from_id"] == cascade["id"]

    conflict = client.post(f"/api/reminders/{cascade['id']}/respond", json={"response": "done"})
    assert conflict.status_code == 409

    summary = client.get("/api/today").json()["summary"]
    assert summary["total_completions"] == 2
    assert summary["by_phase"] == {"morning": 1, "afternoon": 0, "evening": 1, "night": 0}
    assert summary["by_habit"] == {breakfast: 1, dinner: 1}


def test_fired_reminder_cannot_be_snoozed_after_it_expires(api):
    client, clock = api
    _configure_utc_manual(client)
    client.post("/api/templates/meals_supplements/instantiate")

    clock.now = datetime(2025, 1, 5, 8, 0, tzinfo=UTC)
    reminder_id = client.post("/api/today/evaluate").json()["decisions"][0]["id"]
    client.post(f"/api/reminders/{reminder_id}/respond", json={"response": "fire"})

    clock.now = datetime(2025, 1, 5, 11, 0, tzinfo=UTC)
    late = client.post(f"/api/reminders/{reminder_id}/respond", json={"response": "snooze", "snooze_minutes": 15})
    assert late.status_code == 409

    reminders = client.get("/api/reminders").json()
    assert [(r["id"], r["state"]) for r in reminders] == [(reminder_id, "fired")]


def test_today_shows_goal_target_for_current_phase(api):
    client, _ = api
    _configure_utc_manual(client)
    water = client.post(
        "/api/habits",
        json={
            "title": "Water",
            "category": "hydration",
            "default_phase": "morning",
            "target_count_per_day": 6,
            "target_by_phase": {"morning": 2, "afternoon": 3},
        },
    ).json()
    assert water["goals"][0]["measurement"] == "count"

    (entry,) = client.get("/api/today").json()["habits"]
    assert entry["target_count_per_day"] == 6
    assert entry["current_phase_target"] == 2
    assert entry["is_done"] is False

    bad = client.post(
        "/api/habits",
        json={"title": "Tea", "default_phase": "morning", "target_by_phase": {"brunch": 1}},
    )
    assert bad.status_code == 422


def test_custom_rule_lifecycle(api):
    client, clock = api
    _configure_utc_manual(client)

    habit = client.post(
        "/api/habits", json={"title": "Stretch", "category": "exercise", "default_phase": "evening"}
    ).json()
    assert habit["category_label"] == "Exercise"
    routine = client.post("/api/routines", json={"name": "Evening", "habit_ids": [habit["id"]]}).json()

    invalid = client.post(
        "/api/rules", json={"routine_id": routine["id"], "trigger": {"type": "phase_start", "phase": "dusk"}}
    )
    assert invalid.status_code == 422
    missing = client.post(
        "/api/rules", json={"routine_id": "nope", "trigger": {"type": "phase_start", "phase": "evening"}}
    )
    assert missing.status_code == 404

    rule = client.post(
        "/api/rules",
        json={
            "routine_id": routine["id"],
            "trigger": {"type": "phase_start", "phase": "evening"},
            "conditions": [{"type": "not_completed_today", "habit_id": habit["id"]}],
            "actions": [
                {"type": "notify", "template_id": "phase_start", "habit_id": habit["id"]},
                {"type": "create_return_hook", "prompt": "How did stretching feel?"},
            ],
        },
    )
    assert rule.status_code == 201
    rule_id = rule.json()["id"]
    assert rule.json()["action_descriptions"][0] == "Notify 'phase_start' (priority: 0)"

    assert client.post(f"/api/rules/{rule_id}/disable").json()["enabled"] is False
    clock.now = datetime(2025, 1, 5, 18, 0, tzinfo=UTC)
    assert client.post("/api/today/evaluate").json()["decisions"] == []

    assert client.post(f"/api/rules/{rule_id}/enable").json()["enabled"] is True
    result = client.post(
        "/api/today/evaluate", json={"event": "phase_change", "to_phase": "evening", "from_phase": "afternoon"}
    ).json()
    assert [d["kind"] for d in result["decisions"]] == ["schedule_reminder", "create_return_hook"]

    hooks = client.get("/api/return-hooks").json()
    assert [h["prompt"] for h in hooks] == ["How did stretching feel?"]
    answered = client.post(f"/api/return-hooks/{hooks[0]['id']}/respond", json={"response": "Great"})
    assert answered.json()["is_responded"] is True
    assert client.get("/api/return-hooks").json() == []

    assert client.delete(f"/api/rules/{rule_id}").status_code == 200
    assert client.get("/api/rules").json() == []


def test_unknown_resources_return_404(api):
    client, _ = api
    assert client.post("/api/habits/missing/complete").status_code == 404
    assert client.post("/api/reminders/missing/respond", json={"response": "skip"}).status_code == 404
    assert client.post("/api/templates/missing/instantiate").status_code == 404
    assert client.post("/api/salvage-plans/missing/accept").status_code == 404
    assert client.post(
        "/api/today/evaluate", json={"event": "phase_change", "to_phase": "teatime"}
    ).status_code == 422
