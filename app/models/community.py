from datetime import datetime
from sqlalchemy import Integer, DateTime, Enum, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
import enum

from app.db.base import Base


class CommunityActivityKind(str, enum.Enum):
    comment = "comment"
    reaction = "reaction"
    post = "post"


class CommunityActivity(Base):
    """One row per comment / reaction / post a patient made in the community."""

    __tablename__ = "community_activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("patients.id"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(
        Enum(CommunityActivityKind, name="community_activity_kind_enum"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
