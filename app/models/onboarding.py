"""
OnboardingState: the three-step WhatsApp onboarding of a registered patient.

  welcome → preferences → complete

One row per patient, ever. `step` only moves forward and the row is
finished when completed_at is set. A finished onboarding is never restarted.
"""
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, JSON, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class OnboardingState(Base):
    __tablename__ = "onboarding_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("patients.id"), nullable=False, unique=True, index=True
    )
    step: Mapped[str] = mapped_column(String(32), nullable=False)
    # Plan at the time onboarding started; the closing message is worded for it
    plan: Mapped[str] = mapped_column(String(16), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
