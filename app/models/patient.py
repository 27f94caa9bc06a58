"""
Patient: identity, plan tier, lifecycle status and the embedded
gamification state.

Gamification columns are only written by app/services/gamification.py
and app/services/streak.py. `total_points` never gets assigned directly
from outside the ledger.

weekly_progress: {perspective: {"current": int, "goal": int, "is_complete": bool}}
badges:          list of badge ids, set semantics (no duplicates)
"""
from datetime import datetime, date
from sqlalchemy import Integer, String, Boolean, DateTime, Date, Enum, JSON, Text, func
from sqlalchemy.orm import Mapped, mapped_column
import enum

from app.db.base import Base


class PlanTier(str, enum.Enum):
    freemium = "freemium"
    premium = "premium"
    vip = "vip"


class PatientStatus(str, enum.Enum):
    pending = "pending"
    active = "active"


class PreferredTime(str, enum.Enum):
    morning = "morning"
    afternoon = "afternoon"
    night = "night"


class Perspective(str, enum.Enum):
    nutrition = "nutrition"
    movement = "movement"
    hydration = "hydration"
    discipline = "discipline"
    wellbeing = "wellbeing"


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(256), nullable=False)
    plan: Mapped[str] = mapped_column(
        Enum(PlanTier, name="plan_tier_enum"), nullable=False, default=PlanTier.freemium
    )
    status: Mapped[str] = mapped_column(
        Enum(PatientStatus, name="patient_status_enum"), nullable=False, default=PatientStatus.pending
    )
    needs_attention: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set when onboarding completes (PreferredTime value)
    preferred_message_time: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # --- gamification ---
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    badges: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    weekly_progress: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    week_start: Mapped[date | None] = mapped_column(Date, nullable=True)

    # --- streak ---
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    streak_freezes: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    freezes_used_this_month: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
