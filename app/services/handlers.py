"""
Route handlers for non-check-in messages: escalation, social
acknowledgment and general conversation.

Each handler flushes its writes and sends through outbound.deliver; the
intent router commits.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.clients.replies import ReplyAction, ReplyGenerator
from app.clients.sender import ChannelSender
from app.models.attention_request import AttentionRequest
from app.models.patient import Patient
from app.services.outbound import deliver

logger = logging.getLogger(__name__)

EMERGENCY_ALERT = (
    "🚨 Situação identificada como urgente. Já alertei a equipe médica. "
    "Alguém entrará em contato em breve."
)
EMERGENCY_STAY_CALM = (
    "Por favor, mantenha a calma. Se for muito urgente, ligue para 192 (SAMU) "
    "ou vá ao hospital mais próximo."
)
SOCIAL_ACK = "Olá! 😊 Como posso te ajudar hoje?"
GENERIC_ERROR = "Desculpe, tive um problema ao processar sua mensagem. Pode tentar novamente?"


def registration_prompt(profile_name: Optional[str]) -> str:
    first = (profile_name or "").split()[0] if (profile_name or "").split() else ""
    greeting = f"Olá {first}! 👋" if first else "Olá! 👋"
    return (
        f"{greeting} Recebemos sua mensagem.\n\n"
        "Ainda não encontramos seu cadastro no programa. Nossa equipe vai "
        "concluir seu registro e em breve você receberá as boas-vindas. 💙"
    )


def _raise_attention(
    db: Session,
    patient: Patient,
    reason: str,
    trigger_message: str,
    summary: Optional[str],
    priority: int,
) -> AttentionRequest:
    request = AttentionRequest(
        patient_id=patient.id,
        reason=reason,
        trigger_message=trigger_message,
        summary=summary,
        priority=priority,
    )
    db.add(request)
    patient.needs_attention = True
    db.flush()
    logger.warning(
        "Attention request %s for patient %s (priority %s): %s",
        request.id, patient.id, priority, reason,
    )
    return request


def handle_emergency(
    db: Session,
    sender: ChannelSender,
    replies: ReplyGenerator,
    patient: Patient,
    text: str,
    now: datetime,
) -> AttentionRequest:
    """
    Escalate at priority 1 whatever the model decides, then answer with the
    model's emergency reply. No reply from the model means the canned alert.
    """
    request = _raise_attention(
        db, patient,
        reason="Emergência Detectada",
        trigger_message=text,
        summary=f"Sistema detectou emergência: {text}",
        priority=1,
    )
    try:
        reply = replies.generate(patient.full_name, text, emergency=True).reply.strip()
    except Exception:
        logger.warning("Emergency reply generation failed for patient %s", patient.id, exc_info=True)
        reply = ""
    deliver(db, sender, patient, reply or f"{EMERGENCY_ALERT}\n\n{EMERGENCY_STAY_CALM}", source="reply", now=now)
    return request


def handle_social(db: Session, sender: ChannelSender, patient: Patient, now: datetime) -> None:
    deliver(db, sender, patient, SOCIAL_ACK, source="reply", now=now)


def handle_conversation(
    db: Session,
    sender: ChannelSender,
    replies: ReplyGenerator,
    patient: Patient,
    text: str,
    now: datetime,
) -> bool:
    """
    Answer with the reply generator. Returns True when the conversation was
    escalated to staff. A generator failure falls back to a canned apology.
    """
    try:
        decision = replies.generate(patient.full_name, text)
    except Exception:
        logger.warning("Reply generation failed for patient %s", patient.id, exc_info=True)
        deliver(db, sender, patient, GENERIC_ERROR, source="reply", now=now)
        return False

    escalated = decision.action == ReplyAction.escalate
    if escalated:
        _raise_attention(
            db, patient,
            reason=decision.reason or "Mensagem do paciente",
            trigger_message=text,
            summary=decision.summary,
            priority=decision.priority,
        )
    deliver(db, sender, patient, decision.reply, source="reply", now=now)
    return escalated
