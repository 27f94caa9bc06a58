"""
Scheduled job triggers, called by an external cron.

POST /jobs/dispatch-messages   - send due queued messages
POST /jobs/missed-checkins     - remind patients who did not answer
POST /jobs/daily-checkins      - start today's check-ins
POST /jobs/protocol-messages   - queue today's protocol messages
POST /jobs/reset-freezes       - monthly streak freeze reset

All require `Authorization: Bearer <CRON_SECRET>` when CRON_SECRET is set.
"""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.clients.sender import ChannelSender
from app.core.deps import get_now, get_sender, verify_job_token
from app.db.base import get_db
from app.schemas.common import ErrorResponse
from app.schemas.jobs import (
    DailyCheckinRunResponse,
    DispatchRunResponse,
    FreezeResetResponse,
    MissedCheckinRunResponse,
    ProtocolRunResponse,
)
from app.services.checkin import start_daily_checkins
from app.services.protocols import schedule_protocol_messages
from app.services.scheduler import detect_missed_checkins, dispatch_due_messages
from app.services.streak import reset_monthly_freezes

router = APIRouter(
    prefix="/jobs",
    tags=["jobs"],
    dependencies=[Depends(verify_job_token)],
    responses={401: {"model": ErrorResponse, "description": "Missing or wrong cron secret."}},
)


@router.post("/dispatch-messages", response_model=DispatchRunResponse, summary="Dispatch due messages")
def dispatch_messages(
    db: Session = Depends(get_db),
    sender: ChannelSender = Depends(get_sender),
    now: datetime = Depends(get_now),
):
    r = dispatch_due_messages(db, sender, now)
    return DispatchRunResponse(
        skipped=r.skipped, processed=r.processed, sent=r.sent,
        failed=r.failed, blocked=r.blocked, expired=r.expired,
    )


@router.post("/missed-checkins", response_model=MissedCheckinRunResponse, summary="Detect missed check-ins")
def missed_checkins(
    db: Session = Depends(get_db),
    sender: ChannelSender = Depends(get_sender),
    now: datetime = Depends(get_now),
):
    r = detect_missed_checkins(db, sender, now)
    return MissedCheckinRunResponse(
        skipped=r.skipped, checked=r.checked, reminded=r.reminded, failed=r.failed
    )


@router.post("/daily-checkins", response_model=DailyCheckinRunResponse, summary="Start today's check-ins")
def daily_checkins(
    db: Session = Depends(get_db),
    sender: ChannelSender = Depends(get_sender),
    now: datetime = Depends(get_now),
):
    r = start_daily_checkins(db, sender, now.date(), now)
    return DailyCheckinRunResponse(started=r.started, skipped=r.skipped, failed=r.failed)


@router.post("/protocol-messages", response_model=ProtocolRunResponse, summary="Queue protocol messages")
def protocol_messages(
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    r = schedule_protocol_messages(db, now)
    return ProtocolRunResponse(
        messages_scheduled=r.messages_scheduled,
        protocols_completed=r.protocols_completed,
        failed=r.failed,
    )


@router.post("/reset-freezes", response_model=FreezeResetResponse, summary="Restore monthly streak freezes")
def reset_freezes(db: Session = Depends(get_db)):
    return FreezeResetResponse(patients_updated=reset_monthly_freezes(db))
