"""
Scheduled Message Processor.

Runs are triggered by an external cron through /jobs/* and are guarded by
a row in job_locks: a run that finds the lock held (and not stale) does
nothing and reports skipped=True.

dispatch_due_messages
---------------------
  1. pending rows older than MAX_PENDING_AGE_HOURS → error "expired"
  2. pending rows with send_at <= now, oldest first, capped at batch_size
       test destination → error, never sent
       send ok          → pending → sent (conditional) + audit Message
       send failed      → stays pending for the next run

Every status change is `UPDATE ... WHERE status = 'pending'`, so a row is
never sent twice even if two runs overlap past the lock TTL.

detect_missed_checkins
----------------------
For each patient with an active protocol: the latest gamification-tagged
message sent in the last 24h, with no patient message after it and no
reminder already issued for it, gets a reminder. One patient's failure is
logged and the batch continues.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clients.sender import ChannelSender
from app.core.config import settings
from app.models.job_lock import JobLock
from app.models.message import Message, MessageSender
from app.models.patient import Patient
from app.models.protocol import PatientProtocol
from app.models.scheduled_message import ScheduledMessage, ScheduledStatus
from app.services.outbound import deliver, is_test_destination, log_message, try_send

logger = logging.getLogger(__name__)

DISPATCH_JOB = "dispatch_messages"
MISSED_CHECKIN_JOB = "missed_checkins"
MISSED_CHECKIN_WINDOW = timedelta(hours=24)


def missed_checkin_reminder(patient_name: str) -> str:
    first = (patient_name or "").split()[0] if (patient_name or "").split() else ""
    return (
        f"👋 Olá {first}! \n\n"
        "Percebi que você ainda não respondeu ao check-in de hoje. \n\n"
        "Não se preocupe, estou aqui para te ajudar! Sua resposta é importante "
        "para acompanharmos seu progresso. 💪\n\nComo está indo? 😊"
    )


# ---------------------------------------------------------------------------
# Job lock
# ---------------------------------------------------------------------------

def acquire_lock(db: Session, name: str, now: datetime, ttl: Optional[timedelta] = None) -> bool:
    """Take the named lock. A lock older than `ttl` is considered abandoned."""
    if ttl is None:
        ttl = timedelta(minutes=settings.JOB_LOCK_TTL_MINUTES)
    try:
        db.execute(insert(JobLock).values(name=name, acquired_at=now))
        db.commit()
        return True
    except IntegrityError:
        db.rollback()

    taken = (
        db.query(JobLock)
        .filter(JobLock.name == name, JobLock.acquired_at < now - ttl)
        .update({JobLock.acquired_at: now}, synchronize_session=False)
    )
    db.commit()
    if taken:
        logger.warning("Took over stale %s lock", name)
    return taken == 1


def release_lock(db: Session, name: str) -> None:
    db.query(JobLock).filter(JobLock.name == name).delete(synchronize_session=False)
    db.commit()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

@dataclass
class DispatchResult:
    skipped: bool = False
    processed: int = 0
    sent: int = 0
    failed: int = 0
    blocked: int = 0
    expired: int = 0


def _transition(db: Session, message_id: int, values: dict) -> bool:
    """pending → sent | error, at most once."""
    updated = (
        db.query(ScheduledMessage)
        .filter(
            ScheduledMessage.id == message_id,
            ScheduledMessage.status == ScheduledStatus.pending,
        )
        .update(values, synchronize_session=False)
    )
    return updated == 1


def _expire_stale(db: Session, now: datetime) -> int:
    if settings.MAX_PENDING_AGE_HOURS <= 0:
        return 0
    cutoff = now - timedelta(hours=settings.MAX_PENDING_AGE_HOURS)
    expired = (
        db.query(ScheduledMessage)
        .filter(
            ScheduledMessage.status == ScheduledStatus.pending,
            ScheduledMessage.send_at < cutoff,
        )
        .update(
            {ScheduledMessage.status: ScheduledStatus.error, ScheduledMessage.error_info: "expired"},
            synchronize_session=False,
        )
    )
    db.commit()
    if expired:
        logger.warning("Expired %s pending messages older than %sh", expired, settings.MAX_PENDING_AGE_HOURS)
    return expired


def dispatch_due_messages(
    db: Session,
    sender: ChannelSender,
    now: datetime,
    batch_size: Optional[int] = None,
) -> DispatchResult:
    if batch_size is None:
        batch_size = settings.DISPATCH_BATCH_SIZE
    if not acquire_lock(db, DISPATCH_JOB, now):
        logger.info("Dispatch run skipped: another run holds the lock")
        return DispatchResult(skipped=True)

    result = DispatchResult()
    try:
        result.expired = _expire_stale(db, now)
        due = (
            db.query(ScheduledMessage)
            .filter(
                ScheduledMessage.status == ScheduledStatus.pending,
                ScheduledMessage.send_at <= now,
            )
            .order_by(ScheduledMessage.send_at, ScheduledMessage.id)
            .limit(batch_size)
            .all()
        )
        for sm in due:
            result.processed += 1
            if is_test_destination(sm.destination):
                _transition(db, sm.id, {
                    ScheduledMessage.status: ScheduledStatus.error,
                    ScheduledMessage.error_info: "test destination",
                })
                result.blocked += 1
            elif try_send(sender, sm.destination, sm.content):
                if _transition(db, sm.id, {
                    ScheduledMessage.status: ScheduledStatus.sent,
                    ScheduledMessage.sent_at: now,
                }):
                    log_message(db, sm.patient_id, sm.content, now)
                    result.sent += 1
            else:
                result.failed += 1
            db.commit()
    finally:
        release_lock(db, DISPATCH_JOB)

    logger.info(
        "Dispatch run: processed=%s sent=%s failed=%s blocked=%s expired=%s",
        result.processed, result.sent, result.failed, result.blocked, result.expired,
    )
    return result


# ---------------------------------------------------------------------------
# Missed check-ins
# ---------------------------------------------------------------------------

@dataclass
class MissedCheckinResult:
    skipped: bool = False
    checked: int = 0
    reminded: int = 0
    failed: int = 0


def _needs_reminder(db: Session, patient_id: int, now: datetime) -> bool:
    prompt = (
        db.query(ScheduledMessage)
        .filter(
            ScheduledMessage.patient_id == patient_id,
            ScheduledMessage.is_gamification == True,  # noqa: E712
            ScheduledMessage.status == ScheduledStatus.sent,
            ScheduledMessage.sent_at >= now - MISSED_CHECKIN_WINDOW,
        )
        .order_by(ScheduledMessage.sent_at.desc(), ScheduledMessage.id.desc())
        .first()
    )
    if prompt is None:
        return False

    replied = (
        db.query(Message.id)
        .filter(
            Message.patient_id == patient_id,
            Message.sender == MessageSender.patient,
            Message.created_at > prompt.sent_at,
        )
        .first()
        is not None
    )
    if replied:
        return False

    already_reminded = (
        db.query(ScheduledMessage.id)
        .filter(
            ScheduledMessage.patient_id == patient_id,
            ScheduledMessage.source == "missed_checkin",
            ScheduledMessage.send_at >= prompt.sent_at,
        )
        .first()
        is not None
    )
    return not already_reminded


def detect_missed_checkins(db: Session, sender: ChannelSender, now: datetime) -> MissedCheckinResult:
    if not acquire_lock(db, MISSED_CHECKIN_JOB, now):
        logger.info("Missed check-in run skipped: another run holds the lock")
        return MissedCheckinResult(skipped=True)

    result = MissedCheckinResult()
    try:
        patient_ids = [
            pid for (pid,) in (
                db.query(PatientProtocol.patient_id)
                .filter(PatientProtocol.is_active == True)  # noqa: E712
                .distinct()
                .order_by(PatientProtocol.patient_id)
                .all()
            )
        ]
        for patient_id in patient_ids:
            result.checked += 1
            try:
                if not _needs_reminder(db, patient_id, now):
                    continue
                patient = db.get(Patient, patient_id)
                deliver(
                    db, sender, patient, missed_checkin_reminder(patient.full_name),
                    source="missed_checkin", now=now,
                )
                db.commit()
                result.reminded += 1
                logger.info("Missed check-in reminder issued for patient %s", patient_id)
            except Exception:
                db.rollback()
                result.failed += 1
                logger.exception("Missed check-in detection failed for patient %s", patient_id)
    finally:
        release_lock(db, MISSED_CHECKIN_JOB)

    logger.info(
        "Missed check-in run: checked=%s reminded=%s failed=%s",
        result.checked, result.reminded, result.failed,
    )
    return result


# ---------------------------------------------------------------------------
# Ad-hoc reminders
# ---------------------------------------------------------------------------

def schedule_reminder(db: Session, patient: Patient, text: str, send_at: datetime) -> ScheduledMessage:
    """Queue a reminder for the dispatcher. Commits."""
    if not (text or "").strip():
        raise ValueError("reminder text must not be empty")
    sm = ScheduledMessage(
        patient_id=patient.id,
        destination=patient.phone_number,
        content=text.strip(),
        send_at=send_at,
        status=ScheduledStatus.pending,
        source="reminder",
    )
    db.add(sm)
    db.commit()
    db.refresh(sm)
    logger.info("Reminder %s scheduled for patient %s at %s", sm.id, patient.id, send_at)
    return sm
