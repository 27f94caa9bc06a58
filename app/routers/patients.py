"""
Patient read endpoints.

GET /patients/{id}/gamification      - points, level, streak, weekly goals, badges
GET /patients/{id}/badges/progress   - locked badges, closest to unlock first
GET /patients/{id}/checkins          - completed check-ins, newest first
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.deps import get_now
from app.db.base import get_db
from app.schemas.checkin import CheckinHistoryResponse, CheckinRecordResponse
from app.schemas.common import ErrorResponse
from app.schemas.gamification import (
    BadgeProgressListResponse,
    BadgeProgressResponse,
    BadgeResponse,
    GamificationResponse,
    StreakResponse,
    WeeklyGoalProgress,
)
from app.services import projections
from app.services.badges import BadgeDefinition

router = APIRouter(prefix="/patients", tags=["patients"])

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Patient not found."}}


def _badge_to_response(badge: BadgeDefinition) -> BadgeResponse:
    return BadgeResponse(
        id=badge.id,
        name=badge.name,
        description=badge.description,
        icon=badge.icon,
        rarity=badge.rarity,
    )


@router.get(
    "/{patient_id}/gamification",
    response_model=GamificationResponse,
    summary="Gamification summary",
    responses=_NOT_FOUND,
)
def get_gamification(
    patient_id: int,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    s = projections.gamification_summary(db, patient_id, now.date())
    return GamificationResponse(
        patient_id=s.patient_id,
        total_points=s.total_points,
        level=s.level,
        level_name=s.level_name,
        next_level_points=s.next_level_points,
        level_progress=s.level_progress,
        streak=StreakResponse(
            current=s.current_streak,
            longest=s.longest_streak,
            freezes=s.streak_freezes,
            last_activity_date=s.last_activity_date,
        ),
        week_start=s.week_start,
        weekly_progress={k: WeeklyGoalProgress(**v) for k, v in s.weekly_progress.items()},
        badges=[_badge_to_response(b) for b in s.badges],
    )


@router.get(
    "/{patient_id}/badges/progress",
    response_model=BadgeProgressListResponse,
    summary="Progress toward locked badges",
    responses=_NOT_FOUND,
)
def get_badge_progress(
    patient_id: int,
    limit: Optional[int] = Query(default=None, ge=1, le=20, description="Return only the N closest badges."),
    db: Session = Depends(get_db),
):
    items = projections.badge_progress(db, patient_id, limit)
    return BadgeProgressListResponse(
        patient_id=patient_id,
        items=[
            BadgeProgressResponse(
                badge=_badge_to_response(bp.badge),
                current=bp.current,
                target=bp.target,
                percent=bp.percent,
            )
            for bp in items
        ],
    )


@router.get(
    "/{patient_id}/checkins",
    response_model=CheckinHistoryResponse,
    summary="Check-in history (newest first)",
    responses=_NOT_FOUND,
)
def list_checkins(
    patient_id: int,
    limit: int = Query(default=30, ge=1, le=200, description="Page size."),
    offset: int = Query(default=0, ge=0, description="Skip N items."),
    db: Session = Depends(get_db),
):
    total, items = projections.checkin_history(db, patient_id, limit, offset)
    return CheckinHistoryResponse(
        total=total,
        items=[CheckinRecordResponse.model_validate(r) for r in items],
    )
