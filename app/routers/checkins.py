"""
Check-in router.

POST /checkins/{patient_id}/start - start today's check-in and send the first question
"""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.clients.sender import ChannelSender
from app.core.deps import get_now, get_sender
from app.db.base import get_db
from app.schemas.checkin import CheckinStartResponse
from app.schemas.common import ErrorResponse
from app.services.checkin import start_checkin
from app.services.projections import get_patient

router = APIRouter(prefix="/checkins", tags=["checkins"])


@router.post(
    "/{patient_id}/start",
    response_model=CheckinStartResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start today's check-in",
    responses={
        404: {"model": ErrorResponse, "description": "Patient not found."},
        409: {"model": ErrorResponse, "description": "Check-in already started today."},
        422: {"model": ErrorResponse, "description": "Plan has no check-ins (freemium)."},
    },
)
def start(
    patient_id: int,
    db: Session = Depends(get_db),
    sender: ChannelSender = Depends(get_sender),
    now: datetime = Depends(get_now),
):
    patient = get_patient(db, patient_id)
    return start_checkin(db, sender, patient, now.date(), now)
