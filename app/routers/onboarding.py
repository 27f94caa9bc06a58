"""
Onboarding router.

POST /onboarding/{patient_id}/start - send the welcome question to a registered patient
"""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.clients.sender import ChannelSender
from app.core.deps import get_now, get_sender
from app.db.base import get_db
from app.schemas.common import ErrorResponse
from app.schemas.onboarding import OnboardingStartResponse
from app.services.onboarding import start_onboarding
from app.services.projections import get_patient

router = APIRouter(prefix="/onboarding", tags=["onboarding"])


@router.post(
    "/{patient_id}/start",
    response_model=OnboardingStartResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start WhatsApp onboarding",
    responses={
        404: {"model": ErrorResponse, "description": "Patient not found."},
        409: {"model": ErrorResponse, "description": "Onboarding already in progress or completed."},
    },
)
def start(
    patient_id: int,
    db: Session = Depends(get_db),
    sender: ChannelSender = Depends(get_sender),
    now: datetime = Depends(get_now),
):
    return start_onboarding(db, sender, get_patient(db, patient_id), now)
