"""
Protocol scheduling: daily run over active protocol assignments.

For each active assignment:
  current_day > duration_days → protocol completed (is_active = False,
                                congratulations queued)
  otherwise                   → the day's check-in announcement is queued
                                (gamification-tagged) and current_day += 1

A day already queued for an assignment is not queued again, so a second
run on the same day changes nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.patient import Patient
from app.models.protocol import PatientProtocol
from app.models.scheduled_message import ScheduledMessage, ScheduledStatus

logger = logging.getLogger(__name__)

# Local hour the evening check-in announcement goes out
CHECKIN_ANNOUNCEMENT_HOUR = 20


def congratulations_message(protocol_name: str, days: int) -> str:
    return (
        f"🎉 PARABÉNS! Você completou o {protocol_name}! Foram {days} dias de "
        "dedicação e crescimento. Estamos muito orgulhosos de você! 💪"
    )


def announcement_message(protocol_name: str, day: int, duration_days: int) -> str:
    return (
        f"📅 *Dia {day}/{duration_days} do {protocol_name}*\n\n"
        "Hoje à noite tem check-in! Responda às perguntas para somar pontos "
        "e manter seu streak. 🔥"
    )


@dataclass
class ProtocolRunResult:
    messages_scheduled: int = 0
    protocols_completed: int = 0
    failed: int = 0


def _announcement_send_at(now: datetime) -> datetime:
    evening = now.replace(hour=CHECKIN_ANNOUNCEMENT_HOUR, minute=0, second=0, microsecond=0)
    return max(now, evening)


def _day_already_queued(db: Session, assignment: PatientProtocol) -> bool:
    return (
        db.query(ScheduledMessage.id)
        .filter(
            ScheduledMessage.patient_id == assignment.patient_id,
            ScheduledMessage.source == "protocol",
            ScheduledMessage.protocol_day == assignment.current_day,
        )
        .first()
        is not None
    )


def _queue(db: Session, patient: Patient, content: str, send_at: datetime, **kw) -> None:
    db.add(
        ScheduledMessage(
            patient_id=patient.id,
            destination=patient.phone_number,
            content=content,
            send_at=send_at,
            status=ScheduledStatus.pending,
            source="protocol",
            **kw,
        )
    )


def schedule_protocol_messages(db: Session, now: datetime) -> ProtocolRunResult:
    result = ProtocolRunResult()
    assignments = (
        db.query(PatientProtocol)
        .filter(PatientProtocol.is_active == True)  # noqa: E712
        .order_by(PatientProtocol.id)
        .all()
    )

    for assignment in assignments:
        try:
            patient = db.get(Patient, assignment.patient_id)
            if assignment.current_day > assignment.duration_days:
                assignment.is_active = False
                assignment.completed_at = now
                _queue(
                    db, patient,
                    congratulations_message(assignment.protocol_name, assignment.duration_days),
                    now,
                )
                result.protocols_completed += 1
                result.messages_scheduled += 1
                logger.info(
                    "Patient %s completed protocol %s (%s days)",
                    patient.id, assignment.protocol_name, assignment.duration_days,
                )
            elif not _day_already_queued(db, assignment):
                _queue(
                    db, patient,
                    announcement_message(
                        assignment.protocol_name, assignment.current_day, assignment.duration_days
                    ),
                    _announcement_send_at(now),
                    is_gamification=True,
                    protocol_day=assignment.current_day,
                )
                assignment.current_day += 1
                result.messages_scheduled += 1
            db.commit()
        except Exception:
            db.rollback()
            result.failed += 1
            logger.exception("Protocol scheduling failed for assignment %s", assignment.id)

    logger.info(
        "Protocol run: scheduled=%s completed=%s failed=%s",
        result.messages_scheduled, result.protocols_completed, result.failed,
    )
    return result
