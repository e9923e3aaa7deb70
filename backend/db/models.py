from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, ForeignKey, Index,
    DateTime,
)
from sqlalchemy.orm import relationship
from db.database import Base
from utils.datetime_utils import utcnow_naive


class UserSettingsRecord(Base):
    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reset_hour = Column(Integer, nullable=False, default=2)
    reset_minute = Column(Integer, nullable=False, default=0)
    notification_cap_per_day = Column(Integer, nullable=False, default=8)
    notification_cooldown_minutes = Column(Integer, nullable=False, default=45)
    phase_mode = Column(Text, nullable=False, default="auto_solar")  # auto_solar | manual
    manual_phase_overrides = Column(Text)  # JSON object keyed by phase name
    tone = Column(Text, nullable=False, default="zen_coach")
    location_enabled = Column(Boolean, nullable=False, default=False)
    latitude = Column(Float)
    longitude = Column(Float)
    timezone = Column(Text, default="America/Edmonton")
    updated_at = Column(DateTime, default=utcnow_naive, onupdate=utcnow_naive)


class HabitRecord(Base):
    __tablename__ = "habits"

    id = Column(Text, primary_key=True)  # UUID
    title = Column(Text, nullable=False)
    category = Column(Text, nullable=False, default="general")
    default_phase = Column(Text, nullable=False, default="morning")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow_naive)
    updated_at = Column(DateTime, default=utcnow_naive, onupdate=utcnow_naive)

    goals = relationship("GoalRecord", back_populates="habit", cascade="all, delete-orphan")
    completions = relationship("CompletionEventRecord", back_populates="habit", cascade="all, delete-orphan")


class GoalRecord(Base):
    __tablename__ = "goals"

    id = Column(Text, primary_key=True)
    habit_id = Column(Text, ForeignKey("habits.id"), nullable=False)
    target_count_per_day = Column(Integer, nullable=False, default=1)
    target_by_phase = Column(Text)  # JSON object keyed by phase name
    measurement = Column(Text, nullable=False, default="count")  # count | boolean

    habit = relationship("HabitRecord", back_populates="goals")


class RoutineRecord(Base):
    __tablename__ = "routines"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    habit_ids = Column(Text, nullable=False, default="[]")  # JSON array of habit ids
    template_id = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow_naive)

    rules = relationship("RuleRecord", back_populates="routine", cascade="all, delete-orphan")


class RuleRecord(Base):
    __tablename__ = "rules"

    id = Column(Text, primary_key=True)
    routine_id = Column(Text, ForeignKey("routines.id"), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    position = Column(Integer, nullable=False, default=0)
    trigger_json = Column(Text, nullable=False)
    conditions_json = Column(Text, nullable=False, default="[]")
    actions_json = Column(Text, nullable=False, default="[]")
    created_at = Column(DateTime, default=utcnow_naive)

    routine = relationship("RoutineRecord", back_populates="rules")


class CompletionEventRecord(Base):
    __tablename__ = "completion_events"

    id = Column(Text, primary_key=True)
    habit_id = Column(Text, ForeignKey("habits.id"), nullable=False)
    timestamp = Column(DateTime, nullable=False)  # naive UTC
    date_key = Column(Text, nullable=False)  # YYYY-MM-DD application day
    metadata_json = Column(Text)
    is_late_correction = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow_naive)

    habit = relationship("HabitRecord", back_populates="completions")


class ReminderRecord(Base):
    __tablename__ = "reminders"

    id = Column(Text, primary_key=True)
    habit_id = Column(Text)  # may name a habit that was since deleted
    rule_id = Column(Text)
    date_key = Column(Text, nullable=False)
    fire_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    notification_id = Column(Text, nullable=False, unique=True)
    state = Column(Text, nullable=False, default="scheduled")
    priority = Column(Integer, nullable=False, default=0)
    template_id = Column(Text, nullable=False)
    snoozed_from_id = Column(Text)
    created_at = Column(DateTime, default=utcnow_naive)
    updated_at = Column(DateTime, default=utcnow_naive, onupdate=utcnow_naive)


class ReturnHookRecord(Base):
    __tablename__ = "return_hooks"

    id = Column(Text, primary_key=True)
    date_key = Column(Text, nullable=False)  # day the hook was created
    prompt = Column(Text, nullable=False)
    user_response = Column(Text)
    created_at = Column(DateTime, nullable=False)
    responded_at = Column(DateTime)


class SalvagePlanRecord(Base):
    __tablename__ = "salvage_plans"

    id = Column(Text, primary_key=True)
    date_key = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    rebalanced_items = Column(Text, nullable=False, default="[]")  # JSON array
    is_accepted = Column(Boolean, nullable=False, default=False)
    accepted_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False)


Index("idx_completion_events_date", CompletionEventRecord.date_key, CompletionEventRecord.timestamp)
Index("idx_completion_events_habit", CompletionEventRecord.habit_id, CompletionEventRecord.date_key)
Index("idx_reminders_date_state", ReminderRecord.date_key, ReminderRecord.state)
Index("idx_rules_routine", RuleRecord.routine_id, RuleRecord.position)
Index("idx_return_hooks_pending", ReturnHookRecord.user_response, ReturnHookRecord.created_at)
Index("idx_salvage_plans_date", SalvagePlanRecord.date_key)
