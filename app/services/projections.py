"""
Read-only projections over a patient's gamification state and check-in
history. Nothing here writes.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import PatientNotFoundError
from app.models.checkin import CheckinRecord
from app.models.patient import Patient
from app.services import badges as badge_engine
from app.services.gamification import empty_weekly_progress, monday_of
from app.services.levels import level_name, level_progress, points_for_next_level
from app.services.stats import aggregate_stats


def get_patient(db: Session, patient_id: int) -> Patient:
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise PatientNotFoundError(patient_id=patient_id)
    return patient


@dataclass
class GamificationSummary:
    patient_id: int
    total_points: int
    level: int
    level_name: str
    next_level_points: Optional[int]
    level_progress: int
    current_streak: int
    longest_streak: int
    streak_freezes: int
    last_activity_date: Optional[date]
    week_start: date
    weekly_progress: dict[str, dict]
    badges: list[badge_engine.BadgeDefinition]


def gamification_summary(db: Session, patient_id: int, today: date) -> GamificationSummary:
    """A week that has not been rolled over yet is shown as empty."""
    patient = get_patient(db, patient_id)
    current_monday = monday_of(today)
    if patient.week_start is not None and patient.week_start >= current_monday and patient.weekly_progress:
        progress, week_start = patient.weekly_progress, patient.week_start
    else:
        progress, week_start = empty_weekly_progress(), current_monday

    unlocked = [b for b in (badge_engine.get_badge(i) for i in patient.badges or []) if b is not None]
    return GamificationSummary(
        patient_id=patient.id,
        total_points=patient.total_points or 0,
        level=patient.level or 1,
        level_name=level_name(patient.level or 1),
        next_level_points=points_for_next_level(patient.level or 1),
        level_progress=level_progress(patient.total_points or 0),
        current_streak=patient.current_streak or 0,
        longest_streak=patient.longest_streak or 0,
        streak_freezes=patient.streak_freezes,
        last_activity_date=patient.last_activity_date,
        week_start=week_start,
        weekly_progress=progress,
        badges=unlocked,
    )


def badge_progress(db: Session, patient_id: int, limit: Optional[int] = None) -> list[badge_engine.BadgeProgress]:
    patient = get_patient(db, patient_id)
    items = badge_engine.badge_progress(patient.badges or [], aggregate_stats(db, patient))
    return items[:limit] if limit else items


def checkin_history(db: Session, patient_id: int, limit: int = 30, offset: int = 0) -> tuple[int, list[CheckinRecord]]:
    """(total, page) of completed check-ins, newest first."""
    get_patient(db, patient_id)
    query = db.query(CheckinRecord).filter(CheckinRecord.patient_id == patient_id)
    total = query.count()
    items = (
        query.order_by(CheckinRecord.day.desc(), CheckinRecord.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return total, items
