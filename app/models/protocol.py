from datetime import datetime
from sqlalchemy import Integer, String, Boolean, DateTime, Numeric, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class PatientProtocol(Base):
    """A multi-week engagement protocol assigned to a patient."""

    __tablename__ = "patient_protocols"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("patients.id"), nullable=False, index=True
    )
    protocol_name: Mapped[str] = mapped_column(String(128), nullable=False)
    current_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    # Python weekday (0 = Monday). NULL → settings.DEFAULT_WEIGH_DAY
    weigh_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight_goal_kg: Mapped[float | None] = mapped_column(Numeric(6, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
