"""
ScheduledMessage: outbound queue.

status moves pending → sent | error exactly once. Every transition is a
conditional UPDATE on status = 'pending', so a row is never processed twice.

source values:
  "protocol"        - daily protocol announcement / congratulations
  "checkin"         - check-in step prompt
  "missed_checkin"  - reminder synthesized by the missed check-in detector
  "badge"           - badge unlock notification
  "reply"           - conversational reply, escalation alert or registration prompt
  "reminder"        - ad-hoc reminder
  "onboarding"      - onboarding question, closing message or plan welcome
"""
from datetime import datetime
from sqlalchemy import Integer, String, Text, Boolean, DateTime, Enum, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
import enum

from app.db.base import Base


class ScheduledStatus(str, enum.Enum):
    pending = "pending"
    sent = "sent"
    error = "error"


class ScheduledMessage(Base):
    __tablename__ = "scheduled_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("patients.id"), nullable=False, index=True
    )
    destination: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    send_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        Enum(ScheduledStatus, name="scheduled_status_enum"),
        nullable=False,
        default=ScheduledStatus.pending,
        index=True,
    )
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    is_gamification: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    protocol_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
