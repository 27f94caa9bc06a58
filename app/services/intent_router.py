"""
Message Intent Router: the inbound message entry point.

Order of operations for one delivery:
  1. Patient lookup by phone number. An unknown contact becomes a pending
     freemium patient and gets the registration prompt; nothing else runs.
  2. Audit log insert keyed by external_id. A duplicate delivery stops
     here with success=True, duplicate=True.
  3. last_message / last_message_at update.
  4. Classification (fails open to `question`), routing, dispatch.

Routing precedence (resolve_route):
  emergency                       → escalate, even mid check-in or onboarding
  onboarding in progress          → onboarding state machine
  social                          → canned acknowledgment
  checkin_response + active       → check-in state machine
  everything else                 → conversation

handle_inbound_message never raises. Every path returns a HandleResult.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clients.classifier import Classification, Intent, IntentClassifier, MessageContext
from app.clients.replies import ReplyGenerator
from app.clients.sender import ChannelSender
from app.core.errors import DuplicateEventError
from app.models.patient import Patient, PatientStatus, PlanTier
from app.services import checkin, handlers, onboarding
from app.services.outbound import deliver, record_inbound

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5


class Route(str, enum.Enum):
    escalate = "escalate"
    social = "social"
    checkin = "checkin"
    onboarding = "onboarding"
    conversation = "conversation"
    registration = "registration"


@dataclass
class EngineServices:
    classifier: IntentClassifier
    replies: ReplyGenerator
    sender: ChannelSender


@dataclass(frozen=True)
class InboundMessage:
    phone_number: str
    text: str
    external_id: Optional[str] = None
    profile_name: Optional[str] = None


@dataclass
class HandleResult:
    success: bool
    intent: Optional[Intent] = None
    route: Optional[Route] = None
    duplicate: bool = False
    error: Optional[str] = None


def normalize_phone(raw: str) -> str:
    number = (raw or "").strip()
    if number.startswith("whatsapp:"):
        number = number[len("whatsapp:"):]
    return number.replace(" ", "")


# ---------------------------------------------------------------------------
# Classification and routing
# ---------------------------------------------------------------------------

def classify(classifier: IntentClassifier, text: str, context: MessageContext) -> Classification:
    """Delegate to the classifier; any failure becomes `question` at 0.5."""
    try:
        result = classifier.classify(text, context)
        if not isinstance(result.intent, Intent) or not 0.0 <= result.confidence <= 1.0:
            raise ValueError(f"invalid classification {result!r}")
        return result
    except Exception as exc:
        logger.warning("Classification failed, treating message as question: %s", exc)
        return Classification(
            intent=Intent.question,
            confidence=FALLBACK_CONFIDENCE,
            reason=f"classification failed: {exc}",
        )


def resolve_route(intent: Intent, has_active_checkin: bool, has_active_onboarding: bool = False) -> Route:
    if intent == Intent.emergency:
        return Route.escalate
    if has_active_onboarding:
        return Route.onboarding
    if intent == Intent.social:
        return Route.social
    if intent == Intent.checkin_response and has_active_checkin:
        return Route.checkin
    return Route.conversation


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _find_patient(db: Session, phone_number: str) -> Optional[Patient]:
    return db.query(Patient).filter(Patient.phone_number == phone_number).first()


def _register_contact(
    db: Session,
    services: EngineServices,
    inbound: InboundMessage,
    phone_number: str,
    now: datetime,
) -> HandleResult:
    patient = Patient(
        phone_number=phone_number,
        full_name=(inbound.profile_name or "").strip() or "Novo Contato",
        plan=PlanTier.freemium,
        status=PatientStatus.pending,
        last_message=inbound.text,
        last_message_at=now,
    )
    db.add(patient)
    try:
        db.flush()
    except IntegrityError:
        # Race: a concurrent delivery registered the contact first
        db.rollback()
        return _handle_known(db, services, _find_patient(db, phone_number), inbound, now)

    logger.info("Registered unknown contact %s as pending patient %s", phone_number, patient.id)
    try:
        record_inbound(db, patient, inbound.text, inbound.external_id, now)
    except DuplicateEventError:
        return HandleResult(success=True, route=Route.registration, duplicate=True)
    deliver(
        db, services.sender, patient, handlers.registration_prompt(inbound.profile_name),
        source="reply", now=now,
    )
    db.commit()
    return HandleResult(success=True, route=Route.registration)


def _handle_known(
    db: Session,
    services: EngineServices,
    patient: Patient,
    inbound: InboundMessage,
    now: datetime,
) -> HandleResult:
    try:
        record_inbound(db, patient, inbound.text, inbound.external_id, now)
    except DuplicateEventError:
        logger.info("Duplicate delivery %s ignored", inbound.external_id)
        return HandleResult(success=True, duplicate=True)

    patient.last_message = inbound.text
    patient.last_message_at = now
    db.commit()

    today = now.date()
    active = checkin.get_active_checkin(db, patient.id, today)
    context = MessageContext(
        has_active_checkin=active is not None,
        checkin_title=checkin.CHECKIN_TITLE if active is not None else None,
    )
    in_onboarding = onboarding.get_active_onboarding(db, patient.id) is not None
    classification = classify(services.classifier, inbound.text, context)
    route = resolve_route(classification.intent, context.has_active_checkin, in_onboarding)
    logger.info(
        "Patient %s message classified %s (%.2f) → %s",
        patient.id, classification.intent.value, classification.confidence, route.value,
    )

    if route == Route.escalate:
        handlers.handle_emergency(db, services.sender, services.replies, patient, inbound.text, now)
    elif route == Route.onboarding:
        outcome = onboarding.handle_onboarding_reply(db, services.sender, patient, inbound.text, now)
        if outcome.outcome == onboarding.OnboardingOutcome.NO_ACTIVE:
            route = Route.conversation
            handlers.handle_conversation(db, services.sender, services.replies, patient, inbound.text, now)
    elif route == Route.social:
        handlers.handle_social(db, services.sender, patient, now)
    elif route == Route.checkin:
        outcome = checkin.handle_checkin_reply(db, services.sender, patient, inbound.text, today, now)
        if outcome.outcome == checkin.ReplyOutcome.NO_ACTIVE:
            # Completed between lookup and dispatch
            route = Route.conversation
            handlers.handle_conversation(db, services.sender, services.replies, patient, inbound.text, now)
    else:
        handlers.handle_conversation(db, services.sender, services.replies, patient, inbound.text, now)

    db.commit()
    return HandleResult(success=True, intent=classification.intent, route=route)


def handle_inbound_message(
    db: Session,
    services: EngineServices,
    inbound: InboundMessage,
    now: datetime,
) -> HandleResult:
    phone_number = normalize_phone(inbound.phone_number)
    try:
        patient = _find_patient(db, phone_number)
        if patient is None:
            return _register_contact(db, services, inbound, phone_number, now)
        return _handle_known(db, services, patient, inbound, now)
    except Exception as exc:
        db.rollback()
        logger.exception("Failed to handle inbound message from %s", phone_number)
        return HandleResult(success=False, error=str(exc))
