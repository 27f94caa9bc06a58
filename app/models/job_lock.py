"""
JobLock: one row per running scheduler job.

The primary key makes acquisition a plain INSERT: a second concurrent run
hits IntegrityError and backs off. Locks older than JOB_LOCK_TTL_MINUTES
are considered abandoned and taken over.
"""
from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class JobLock(Base):
    __tablename__ = "job_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
