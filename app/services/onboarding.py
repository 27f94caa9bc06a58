"""
WhatsApp onboarding for patients already registered by the clinic.

  welcome → preferences → complete

welcome      - confirm the registration ("Sim") or go fix it on the portal
preferences  - pick when daily messages arrive: morning, afternoon or night

Completion stores the preferred time, activates the patient and sends the
closing message followed by the plan-specific welcome.

Transitions use the same compare-and-swap on `step` as the daily
check-in: a reply that lost the race to a concurrent one is ignored.
An invalid reply re-asks the same question with a hint.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clients.sender import ChannelSender
from app.core.config import settings
from app.core.errors import OnboardingAlreadyStartedError, OnboardingReplyError
from app.models.onboarding import OnboardingState
from app.models.patient import Patient, PatientStatus, PlanTier, PreferredTime
from app.models.protocol import PatientProtocol
from app.services.checkin import reply_tokens
from app.services.outbound import deliver

logger = logging.getLogger(__name__)


class OnboardingStep:
    WELCOME     = "welcome"
    PREFERENCES = "preferences"
    COMPLETE    = "complete"


FLOW: tuple[str, ...] = (OnboardingStep.WELCOME, OnboardingStep.PREFERENCES)

PREFERRED_HOURS = {
    PreferredTime.morning: "8h",
    PreferredTime.afternoon: "14h",
    PreferredTime.night: "20h",
}
_TIME_EMOJI = {
    PreferredTime.morning: "🌅",
    PreferredTime.afternoon: "🌞",
    PreferredTime.night: "🌙",
}
_PLAN_EMOJI = {PlanTier.freemium: "🌱", PlanTier.premium: "💎", PlanTier.vip: "⭐"}
_PLAN_LABEL = {PlanTier.freemium: "Freemium", PlanTier.premium: "Premium", PlanTier.vip: "VIP"}


def next_step(step: str) -> str:
    if step not in FLOW or step == FLOW[-1]:
        return OnboardingStep.COMPLETE
    return FLOW[FLOW.index(step) + 1]


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

_CONFIRM_WORDS = frozenset({"sim", "s", "vamos", "ok", "comecar", "bora", "claro"})
_ADJUST_WORDS = frozenset({"ajustar", "alterar", "mudar", "corrigir"})

_TIME_WORDS = {
    PreferredTime.morning: frozenset({"manha"}),
    PreferredTime.afternoon: frozenset({"tarde"}),
    PreferredTime.night: frozenset({"noite"}),
}
_TIME_LETTERS = {"a": PreferredTime.morning, "b": PreferredTime.afternoon, "c": PreferredTime.night}

CONFIRM_HINT = 'Responda "Sim" para começar ou "Ajustar" para alterar seus dados.'
PREFERENCES_HINT = "Por favor, escolha:\nA) Manhã\nB) Tarde\nC) Noite"


def _adjust_hint() -> str:
    return (
        f"Para ajustar seus dados, acesse: {settings.PORTAL_URL}/profile\n\n"
        'Depois volte aqui e me mande "Sim" para continuar!'
    )


def _parse_preferred_time(tokens: set[str], text: str) -> Optional[PreferredTime]:
    by_word = [t for t, words in _TIME_WORDS.items() if tokens & words or _TIME_EMOJI[t] in text]
    if len(by_word) == 1:
        return by_word[0]
    if by_word:
        return None
    by_letter = [t for letter, t in _TIME_LETTERS.items() if letter in tokens]
    return by_letter[0] if len(by_letter) == 1 else None


def parse_onboarding_reply(step: str, reply: str, data: dict) -> dict:
    """
    New data dict for a valid reply at `step`. Raises OnboardingReplyError
    otherwise; the hint says what to answer.
    """
    text = (reply or "").strip()
    tokens = reply_tokens(text)
    updated = dict(data or {})

    if step == OnboardingStep.WELCOME:
        if tokens & _ADJUST_WORDS:
            raise OnboardingReplyError(step, _adjust_hint())
        if not (tokens & _CONFIRM_WORDS or "👍" in text):
            raise OnboardingReplyError(step, CONFIRM_HINT)
        updated["confirmed"] = True
    elif step == OnboardingStep.PREFERENCES:
        preferred = _parse_preferred_time(tokens, text)
        if preferred is None:
            raise OnboardingReplyError(step, PREFERENCES_HINT)
        updated["preferred_time"] = preferred.value
    else:
        raise ValueError(f"step {step!r} does not take a reply")
    return updated


def advance(current_step: str, reply: str, data: dict) -> tuple[str, dict]:
    updated = parse_onboarding_reply(current_step, reply, data)
    return next_step(current_step), updated


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def _first_name(full_name: str) -> str:
    parts = (full_name or "").split()
    return parts[0] if parts else ""


def step_message(step: str, plan: PlanTier | str, data: dict, patient_name: str = "") -> str:
    tier = PlanTier(plan)
    if step == OnboardingStep.WELCOME:
        name = _first_name(patient_name)
        greeting = f"Olá {name}!" if name else "Olá!"
        return (
            f"{greeting} Vi que você se cadastrou no programa 👋\n\n"
            f"{_PLAN_EMOJI[tier]} Plano: {_PLAN_LABEL[tier]}\n\n"
            "Tudo certo para começarmos?\n\n"
            'Responda "Sim" para continuar ou "Ajustar" se precisar alterar algo no cadastro.\n\n'
            "_Para parar de receber mensagens, envie SAIR a qualquer momento._"
        )
    if step == OnboardingStep.PREFERENCES:
        return (
            "Ótimo! Quando prefere receber suas mensagens diárias?\n\n"
            "A) 🌅 Manhã (8h)\nB) 🌞 Tarde (14h)\nC) 🌙 Noite (20h)\n\n"
            "Responda A, B ou C"
        )
    if step == OnboardingStep.COMPLETE:
        preferred = PreferredTime(data.get("preferred_time", PreferredTime.night.value))
        if tier == PlanTier.freemium:
            plan_line = (
                "💡 Dica: Upgrade para Premium e tenha acesso a protocolos "
                "personalizados e gamificação completa!"
            )
        elif tier == PlanTier.premium:
            plan_line = "🎉 Como Premium, você tem acesso a protocolos personalizados e gamificação!"
        else:
            plan_line = "⭐ Como VIP, você tem acesso total + consultoria mensal!"
        return (
            f"Perfeito! {_TIME_EMOJI[preferred]}\n\n"
            f"A partir de amanhã às {PREFERRED_HOURS[preferred]} você receberá:\n"
            "📊 Check-in diário\n💬 Dicas personalizadas\n🎯 Acompanhamento do seu progresso\n\n"
            f"{plan_line}\n\n"
            "Bem-vindo à sua jornada de transformação! 🚀"
        )
    raise ValueError(f"no message for step {step!r}")


def error_message(hint: str) -> str:
    return f"❌ {hint}\n\nTente novamente:"


def welcome_message(patient: Patient, protocol_name: Optional[str] = None) -> str:
    """Plan-specific welcome sent once the patient is active."""
    name = _first_name(patient.full_name)
    portal = settings.PORTAL_URL
    if PlanTier(patient.plan) == PlanTier.freemium:
        return (
            f"Olá {name}! 👋 Bem-vindo(a) ao programa.\n\n"
            "Sou sua assistente de saúde pessoal. 🤖\n\n"
            "No plano *Gratuito* você tem acesso a:\n"
            "✅ Dicas de saúde básicas\n✅ Acompanhamento de peso\n\n"
            "⚠️ *Dica importante:* complete seu perfil no nosso site para eu te ajudar melhor:\n"
            f"{portal}/profile\n\n"
            "Quer conhecer nossos planos Premium com nutricionista e protocolos "
            "personalizados? Digite *PLANOS* a qualquer momento."
        )
    if protocol_name:
        return (
            f"Olá {name}! 👋 Que bom ter você aqui.\n\n"
            f"Vou te acompanhar no seu protocolo *{protocol_name}*. 🚀\n\n"
            "Vou te mandar lembretes, dicas e tarefas diárias para garantir que "
            "você alcance seus objetivos.\n\n"
            f"Confira se seu perfil está completo:\n{portal}/profile\n\n"
            "Vamos juntos nessa jornada! 💪"
        )
    return (
        f"Olá {name}! 👋 Bem-vindo(a) ao {_PLAN_LABEL[PlanTier(patient.plan)]}! 🌟\n\n"
        "Vi que você ainda não escolheu seu protocolo de saúde. "
        "Acesse o portal para selecionar o melhor programa para você:\n"
        f"{portal}/journey\n\n"
        "Assim que você escolher, começaremos nosso acompanhamento diário! 😉"
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def get_active_onboarding(db: Session, patient_id: int) -> Optional[OnboardingState]:
    return (
        db.query(OnboardingState)
        .filter(OnboardingState.patient_id == patient_id, OnboardingState.completed_at.is_(None))
        .first()
    )


def _active_protocol_name(db: Session, patient_id: int) -> Optional[str]:
    protocol = (
        db.query(PatientProtocol)
        .filter(PatientProtocol.patient_id == patient_id, PatientProtocol.is_active == True)  # noqa: E712
        .order_by(PatientProtocol.id.desc())
        .first()
    )
    return protocol.protocol_name if protocol is not None else None


def start_onboarding(db: Session, sender: ChannelSender, patient: Patient, now: datetime) -> OnboardingState:
    """
    Create the onboarding row at `welcome` and send the first question.
    Once per patient; commits.
    """
    existing = db.query(OnboardingState).filter(OnboardingState.patient_id == patient.id).first()
    if existing is not None:
        raise OnboardingAlreadyStartedError(patient.id, completed=existing.completed_at is not None)

    plan = PlanTier(patient.plan)
    state = OnboardingState(
        patient_id=patient.id,
        step=FLOW[0],
        plan=plan.value,
        data={},
        started_at=now,
    )
    db.add(state)
    try:
        db.flush()
    except IntegrityError as exc:
        # Race: a concurrent request started it first
        db.rollback()
        raise OnboardingAlreadyStartedError(patient.id) from exc

    deliver(
        db, sender, patient, step_message(FLOW[0], plan, {}, patient.full_name),
        source="onboarding", now=now,
    )
    db.commit()
    db.refresh(state)
    logger.info("Onboarding started for patient %s (%s)", patient.id, plan.value)
    return state


class OnboardingOutcome:
    ADVANCED  = "advanced"
    COMPLETED = "completed"
    INVALID   = "invalid"
    IGNORED   = "ignored"
    NO_ACTIVE = "no_active"


@dataclass
class OnboardingReplyResult:
    outcome: str
    step: Optional[str] = None


def handle_onboarding_reply(
    db: Session,
    sender: ChannelSender,
    patient: Patient,
    text: str,
    now: datetime,
) -> OnboardingReplyResult:
    state = get_active_onboarding(db, patient.id)
    if state is None:
        return OnboardingReplyResult(outcome=OnboardingOutcome.NO_ACTIVE)

    read_step = state.step
    try:
        step, data = advance(read_step, text, state.data or {})
    except OnboardingReplyError as exc:
        logger.info("Invalid onboarding reply at step %s for patient %s", read_step, patient.id)
        deliver(db, sender, patient, error_message(exc.hint), source="onboarding", now=now)
        db.commit()
        return OnboardingReplyResult(outcome=OnboardingOutcome.INVALID, step=read_step)

    values: dict = {OnboardingState.step: step, OnboardingState.data: data}
    if step == OnboardingStep.COMPLETE:
        values[OnboardingState.completed_at] = now

    updated = (
        db.query(OnboardingState)
        .filter(OnboardingState.id == state.id, OnboardingState.step == read_step)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        logger.info("Onboarding %s already moved past %s; ignoring concurrent reply", state.id, read_step)
        return OnboardingReplyResult(outcome=OnboardingOutcome.IGNORED, step=read_step)

    deliver(
        db, sender, patient, step_message(step, state.plan, data, patient.full_name),
        source="onboarding", now=now,
    )
    if step != OnboardingStep.COMPLETE:
        db.commit()
        return OnboardingReplyResult(outcome=OnboardingOutcome.ADVANCED, step=step)

    patient.preferred_message_time = data["preferred_time"]
    patient.status = PatientStatus.active
    deliver(
        db, sender, patient, welcome_message(patient, _active_protocol_name(db, patient.id)),
        source="onboarding", now=now,
    )
    db.commit()
    logger.info(
        "Onboarding %s completed for patient %s (preferred time %s)",
        state.id, patient.id, data["preferred_time"],
    )
    return OnboardingReplyResult(outcome=OnboardingOutcome.COMPLETED, step=step)
