"""
Outbound delivery and the message audit log.

Every system-originated message goes through `deliver()`: it is queued as a
ScheduledMessage and sent inline. A failed send leaves the row `pending`,
so the scheduled message processor retries it on its next run; the caller's
flow never fails because of the channel.

Inbound messages go through `record_inbound()`, which enforces the
external_id idempotency key.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clients.sender import ChannelSender
from app.core.config import settings
from app.core.errors import DuplicateEventError
from app.models.message import Message, MessageSender
from app.models.patient import Patient
from app.models.scheduled_message import ScheduledMessage, ScheduledStatus

logger = logging.getLogger(__name__)

_test_number_re = re.compile(settings.TEST_NUMBER_PATTERN) if settings.TEST_NUMBER_PATTERN else None


def is_test_destination(destination: str) -> bool:
    """Seed/test numbers that must never reach the real channel."""
    return bool(_test_number_re and _test_number_re.search(destination.strip()))


def try_send(sender: ChannelSender, destination: str, text: str) -> bool:
    """Call the channel; any exception counts as a failed send."""
    try:
        return bool(sender.send(destination, text))
    except Exception:
        logger.warning("Send to %s raised; leaving message for retry", destination, exc_info=True)
        return False


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

def log_message(
    db: Session,
    patient_id: int,
    text: str,
    now: datetime,
    sender: MessageSender = MessageSender.system,
) -> Message:
    msg = Message(patient_id=patient_id, sender=sender, text=text, created_at=now)
    db.add(msg)
    return msg


def _inbound_exists(db: Session, external_id: str) -> bool:
    return (
        db.query(Message.id).filter(Message.external_id == external_id).first()
        is not None
    )


def record_inbound(
    db: Session,
    patient: Patient,
    text: str,
    external_id: Optional[str],
    now: datetime,
) -> Message:
    """
    Persist an inbound patient message and commit.
    Raises DuplicateEventError when external_id was already recorded; the
    DB unique constraint is the final guard for concurrent deliveries.
    """
    if external_id and _inbound_exists(db, external_id):
        raise DuplicateEventError(external_id)

    msg = Message(
        patient_id=patient.id,
        sender=MessageSender.patient,
        text=text,
        external_id=external_id,
        created_at=now,
    )
    db.add(msg)
    try:
        db.commit()
    except IntegrityError as exc:
        # Race: another worker recorded the same delivery first
        db.rollback()
        raise DuplicateEventError(external_id or "") from exc
    return msg


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

def deliver(
    db: Session,
    sender: ChannelSender,
    patient: Patient,
    text: str,
    *,
    source: str,
    now: datetime,
    is_gamification: bool = False,
    protocol_day: Optional[int] = None,
) -> ScheduledMessage:
    """
    Queue `text` for `patient` and try to send it right away.
    Flushes; the caller commits.
    """
    sm = ScheduledMessage(
        patient_id=patient.id,
        destination=patient.phone_number,
        content=text,
        send_at=now,
        status=ScheduledStatus.pending,
        source=source,
        is_gamification=is_gamification,
        protocol_day=protocol_day,
    )
    db.add(sm)

    if is_test_destination(patient.phone_number):
        sm.status = ScheduledStatus.error
        sm.error_info = "test destination"
        logger.info("Not sending %s message to test destination %s", source, patient.phone_number)
    elif try_send(sender, patient.phone_number, text):
        sm.status = ScheduledStatus.sent
        sm.sent_at = now
        log_message(db, patient.id, text, now)
    else:
        logger.warning(
            "Inline send of %s message to patient %s failed; queued for retry", source, patient.id
        )

    db.flush()
    return sm
