"""
WeeklyProgressLog: snapshot of a finished week's perspective progress.

Written by the gamification ledger when it lazily rolls a stale week over.
One row per (patient_id, week_start).
"""
from datetime import datetime, date
from sqlalchemy import Integer, Boolean, Date, DateTime, JSON, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class WeeklyProgressLog(Base):
    __tablename__ = "weekly_progress_logs"
    __table_args__ = (
        UniqueConstraint("patient_id", "week_start", name="uq_weekly_progress_patient_week"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("patients.id"), nullable=False, index=True
    )
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    progress: Mapped[dict] = mapped_column(JSON, nullable=False)
    all_goals_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
