"""
Daily check-in state and history.

CheckinState   - one row per (patient, day). `step` only moves forward
                 through `steps`, the ordered plan fixed when the check-in
                 started. Terminal when step == "complete".
CheckinRecord  - append-only history row written on completion.
"""
from datetime import datetime, date
from sqlalchemy import (
    Integer, String, DateTime, Date, JSON, Numeric, ForeignKey, UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class CheckinState(Base):
    __tablename__ = "checkin_states"
    __table_args__ = (
        UniqueConstraint("patient_id", "day", name="uq_checkin_state_patient_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("patients.id"), nullable=False, index=True
    )
    day: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    step: Mapped[str] = mapped_column(String(32), nullable=False)
    steps: Mapped[list] = mapped_column(JSON, nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    points_earned: Mapped[int | None] = mapped_column(Integer, nullable=True)


class CheckinRecord(Base):
    __tablename__ = "checkin_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("patients.id"), nullable=False, index=True
    )
    day: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    hydration: Mapped[str | None] = mapped_column(String(16), nullable=True)
    breakfast: Mapped[str | None] = mapped_column(String(1), nullable=True)
    lunch: Mapped[str | None] = mapped_column(String(1), nullable=True)
    dinner: Mapped[str | None] = mapped_column(String(1), nullable=True)
    snacks: Mapped[str | None] = mapped_column(String(8), nullable=True)
    activity: Mapped[str | None] = mapped_column(String(8), nullable=True)
    wellbeing: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight_kg: Mapped[float | None] = mapped_column(Numeric(6, 2), nullable=True)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
