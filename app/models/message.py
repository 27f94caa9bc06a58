"""
Message: append-only audit log of everything exchanged with a patient.

`external_id` is the delivery id of the inbound channel (Twilio MessageSid).
Its unique constraint is the only deduplication mechanism for inbound events:
a second insert with the same id fails at the DB and the event is treated
as already handled.
"""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, Enum, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
import enum

from app.db.base import Base


class MessageSender(str, enum.Enum):
    patient = "patient"
    system = "system"
    staff = "staff"


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("patients.id"), nullable=False, index=True
    )
    sender: Mapped[str] = mapped_column(
        Enum(MessageSender, name="message_sender_enum"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
