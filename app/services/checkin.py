"""
Daily check-in state machine.

  hydration → meal_breakfast → meal_lunch → meal_dinner → snacks
            → activity → wellbeing → (weight, weigh-day only) → complete

The step plan is fixed when the check-in starts (build_step_plan) and
stored on the state row, so a plan change or a protocol edit mid-day
never reshapes a check-in already in progress.

Transitions are compare-and-swap on `step`: the UPDATE only matches when
the row is still at the step this request read. A concurrent reply that
loses the race is ignored (first writer wins). Invalid replies never touch
the persisted row; the patient gets the same question back with a hint.

Pure pieces (no DB): build_step_plan, parse_reply, advance, step_prompt,
calculate_points, points_by_perspective, checkin_summary.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clients.sender import ChannelSender
from app.core.config import settings
from app.core.errors import (
    CheckinAlreadyStartedError,
    CheckinNotAvailableError,
    CheckinReplyError,
)
from app.models.checkin import CheckinRecord, CheckinState
from app.models.health_metric import HealthMetric
from app.models.patient import Patient, PatientStatus, Perspective, PlanTier
from app.models.protocol import PatientProtocol
from app.services import gamification
from app.services.outbound import deliver

logger = logging.getLogger(__name__)

CHECKIN_TITLE = "Check-in diário"


class Step:
    HYDRATION = "hydration"
    BREAKFAST = "meal_breakfast"
    LUNCH     = "meal_lunch"
    DINNER    = "meal_dinner"
    SNACKS    = "snacks"
    ACTIVITY  = "activity"
    WELLBEING = "wellbeing"
    WEIGHT    = "weight"
    COMPLETE  = "complete"


BASE_STEPS: tuple[str, ...] = (
    Step.HYDRATION,
    Step.BREAKFAST,
    Step.LUNCH,
    Step.DINNER,
    Step.SNACKS,
    Step.ACTIVITY,
    Step.WELLBEING,
)

# meal step → key in CheckinState.data / CheckinRecord column
_MEAL_KEYS = {
    Step.BREAKFAST: "breakfast",
    Step.LUNCH: "lunch",
    Step.DINNER: "dinner",
}

# Plan tiers that get the weekly weigh-in on the weigh-day
_WEIGHT_PLANS = frozenset({PlanTier.premium, PlanTier.vip})

MIN_WEIGHT_KG = 30.0
MAX_WEIGHT_KG = 300.0


# ---------------------------------------------------------------------------
# Step plan
# ---------------------------------------------------------------------------

def build_step_plan(day: date, plan: PlanTier | str, weigh_day: Optional[int] = None) -> tuple[str, ...]:
    """
    Ordered question steps for a check-in on `day`. Freemium has no
    check-ins. `weigh_day` is a Python weekday (0 = Monday).
    """
    tier = PlanTier(plan)
    if tier == PlanTier.freemium:
        raise CheckinNotAvailableError(tier.value)
    if weigh_day is None:
        weigh_day = settings.DEFAULT_WEIGH_DAY
    if tier in _WEIGHT_PLANS and day.weekday() == weigh_day:
        return BASE_STEPS + (Step.WEIGHT,)
    return BASE_STEPS


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(r"[a-z0-9%]+")

_YES_WORDS = frozenset({"sim", "s", "yes"})
# Verbs that echo the question. They only mean yes when no negation is present.
_YES_VERBS = frozenset({"bebi", "fiz", "pratiquei"})
_NO_WORDS = frozenset({"nao", "n", "no"})
_ALMOST_WORDS = frozenset({"quase"})

_YES_EMOJI = ("👍", "✅")
_NO_EMOJI = ("👎", "❌")
_ALMOST_EMOJI = ("🤏",)

_MEAL_EMOJI = {"A": ("🅰",), "B": ("🅱",), "C": ("🅲",)}
_MEAL_WORDS = {
    "A": frozenset({"100", "100%"}),
    "B": frozenset({"b", "adaptei"}),
    "C": frozenset({"c", "fugi"}),
}

_WELLBEING_EMOJI = {1: "😢", 2: "😕", 3: "😐", 4: "😊", 5: "😄"}
_WELLBEING_WORDS = {
    1: frozenset({"pessimo", "1"}),
    2: frozenset({"ruim", "2"}),
    3: frozenset({"ok", "3"}),
    4: frozenset({"bem", "4"}),
    5: frozenset({"otimo", "5"}),
}

_WEIGHT_RE = re.compile(r"(?<![\d.,])(\d{2,3}(?:[.,]\d+)?)(?![\d.,]*\d)")
# Option A by letter: a standalone capital A, or a reply that is only "a".
# Inside a sentence lowercase "a" is the article.
_MEAL_A_RE = re.compile(r"(?<![^\W\d_])A(?![^\W\d_])")

_HINTS = {
    Step.HYDRATION: "Use os emojis: 👍 🤏 👎",
    Step.BREAKFAST: "Use: 🅰️ 🅱️ 🅲 (ou A, B, C)",
    Step.LUNCH: "Use: 🅰️ 🅱️ 🅲 (ou A, B, C)",
    Step.DINNER: "Use: 🅰️ 🅱️ 🅲 (ou A, B, C)",
    Step.SNACKS: "Use: 👍 ou 👎",
    Step.ACTIVITY: "Use: 👍 ou 👎",
    Step.WELLBEING: "Use os emojis: 😢 😕 😐 😊 😄",
    Step.WEIGHT: "Informe um peso válido entre 30 e 300 kg",
}


def _normalize(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def reply_tokens(text: str) -> set[str]:
    """Lowercase, accent-free word tokens of a patient reply."""
    return set(_TOKEN_RE.findall(_normalize(text)))


def _single_choice(matches: list) -> Any:
    """The only matched option, or None when nothing or several matched."""
    return matches[0] if len(matches) == 1 else None


def _parse_yes_no(text: str, tokens: set[str], allow_almost: bool = False) -> Optional[str]:
    negated = bool(tokens & _NO_WORDS)
    yes_words = _YES_WORDS if negated else _YES_WORDS | _YES_VERBS
    matches = []
    if tokens & yes_words or any(e in text for e in _YES_EMOJI):
        matches.append("yes")
    if allow_almost and (tokens & _ALMOST_WORDS or any(e in text for e in _ALMOST_EMOJI)):
        matches.append("almost")
    if negated or any(e in text for e in _NO_EMOJI):
        matches.append("no")
    # "quase sim" means almost
    if "almost" in matches and "yes" in matches and "no" not in matches:
        return "almost"
    return _single_choice(matches)


def _parse_meal(text: str, tokens: set[str]) -> Optional[str]:
    matches = [
        letter
        for letter in ("A", "B", "C")
        if tokens & _MEAL_WORDS[letter] or any(e in text for e in _MEAL_EMOJI[letter])
    ]
    if "A" not in matches and (_MEAL_A_RE.search(text) or text.lower() == "a"):
        matches.insert(0, "A")
    return _single_choice(matches)


def _parse_wellbeing(text: str, tokens: set[str]) -> Optional[int]:
    matches = [
        score
        for score in range(1, 6)
        if tokens & _WELLBEING_WORDS[score] or _WELLBEING_EMOJI[score] in text
    ]
    return _single_choice(matches)


def _parse_weight(text: str) -> Optional[float]:
    m = _WEIGHT_RE.search(text)
    if not m:
        return None
    weight = float(m.group(1).replace(",", "."))
    if not MIN_WEIGHT_KG <= weight <= MAX_WEIGHT_KG:
        return None
    return weight


def parse_reply(step: str, reply: str, data: dict) -> dict:
    """
    Validate `reply` for `step` and return a new data dict with the answer
    merged in. Raises CheckinReplyError when the reply does not fit.
    """
    text = (reply or "").strip()
    tokens = reply_tokens(text)
    updated = dict(data or {})

    if step == Step.HYDRATION:
        value = _parse_yes_no(text, tokens, allow_almost=True)
        key = "hydration"
    elif step in _MEAL_KEYS:
        value = _parse_meal(text, tokens)
        key = _MEAL_KEYS[step]
    elif step in (Step.SNACKS, Step.ACTIVITY):
        value = _parse_yes_no(text, tokens)
        key = step
    elif step == Step.WELLBEING:
        value = _parse_wellbeing(text, tokens)
        key = "wellbeing"
    elif step == Step.WEIGHT:
        value = _parse_weight(text)
        key = "weight"
    else:
        raise ValueError(f"step {step!r} does not take a reply")

    if value is None:
        raise CheckinReplyError(step, _HINTS[step])
    updated[key] = value
    return updated


def advance(steps: tuple[str, ...] | list[str], current_step: str, reply: str, data: dict) -> tuple[str, dict]:
    """
    (next_step, updated_data) for a reply at `current_step`. The step only
    ever moves forward; an invalid reply raises and nothing changes.
    """
    steps = tuple(steps)
    if current_step not in steps:
        raise ValueError(f"step {current_step!r} is not part of this check-in")
    updated = parse_reply(current_step, reply, data)
    idx = steps.index(current_step)
    next_step = steps[idx + 1] if idx + 1 < len(steps) else Step.COMPLETE
    return next_step, updated


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_MEAL_OPTIONS = "🅰️ 100% | 🅱️ Adaptei | 🅲 Fugi"


def _first_name(full_name: str) -> str:
    parts = (full_name or "").split()
    return parts[0] if parts else ""


def step_prompt(step: str, patient_name: str = "") -> str:
    if step == Step.HYDRATION:
        name = _first_name(patient_name)
        greeting = f"Oi {name}! Check-in do dia 🌙" if name else "Oi! Check-in do dia 🌙"
        return f"{greeting}\n\nResponda com emojis:\n\n💧 *Água:* Bebeu 2.5L hoje?\n👍 Sim | 🤏 Quase | 👎 Não"
    if step == Step.BREAKFAST:
        return f"🍳 *Café da manhã:* Seguiu o plano?\n{_MEAL_OPTIONS}"
    if step == Step.LUNCH:
        return f"🍽️ *Almoço:* Seguiu o plano?\n{_MEAL_OPTIONS}"
    if step == Step.DINNER:
        return f"🌮 *Jantar:* Seguiu o plano?\n{_MEAL_OPTIONS}"
    if step == Step.SNACKS:
        return "🍎 *Lanches:* Fez lanches saudáveis?\n👍 Sim | 👎 Não"
    if step == Step.ACTIVITY:
        return "🏃 *Atividade física:* Praticou hoje?\n👍 Sim | 👎 Não"
    if step == Step.WELLBEING:
        return "😊 *Como você está se sentindo?*\n😢 Péssimo | 😕 Ruim | 😐 Ok | 😊 Bem | 😄 Ótimo"
    if step == Step.WEIGHT:
        return "⚖️ *Pesagem semanal!*\n\nQual seu peso hoje? (em kg)"
    raise ValueError(f"no prompt for step {step!r}")


def error_prompt(step: str, hint: str) -> str:
    """Same question again, qualified with what went wrong."""
    return f"⚠️ Não entendi sua resposta. {hint}\n\n{step_prompt(step)}"


# ---------------------------------------------------------------------------
# Points and summary
# ---------------------------------------------------------------------------

_HYDRATION_POINTS = {"yes": 15, "almost": 10}
_MEAL_POINTS = {"A": 20, "B": 15, "C": 5}
SNACKS_POINTS = 10
ACTIVITY_POINTS = 30
WELLBEING_POINTS = 10
WEIGHT_POINTS = 20


def points_by_perspective(data: dict) -> dict[str, int]:
    """Points of each answered perspective. Unanswered perspectives are absent."""
    shares: dict[str, int] = {}
    if "hydration" in data:
        shares[Perspective.hydration.value] = _HYDRATION_POINTS.get(data["hydration"], 0)
    if any(k in data for k in ("breakfast", "lunch", "dinner", "snacks")):
        meals = sum(_MEAL_POINTS.get(data.get(k), 0) for k in ("breakfast", "lunch", "dinner"))
        snacks = SNACKS_POINTS if data.get("snacks") == "yes" else 0
        shares[Perspective.nutrition.value] = meals + snacks
    if "activity" in data:
        shares[Perspective.movement.value] = ACTIVITY_POINTS if data["activity"] == "yes" else 0
    if "wellbeing" in data:
        shares[Perspective.wellbeing.value] = WELLBEING_POINTS if (data["wellbeing"] or 0) >= 4 else 0
    if data.get("weight"):
        shares[Perspective.discipline.value] = WEIGHT_POINTS
    return shares


def calculate_points(data: dict) -> int:
    return sum(points_by_perspective(data).values())


def checkin_summary(data: dict, points: int) -> str:
    lines = ["✅ *Check-in completo!*", "", "📊 *RESUMO DO DIA:*", ""]

    hydration = data.get("hydration")
    if hydration == "yes":
        lines.append("✅ Hidratação: Excelente!")
    elif hydration == "almost":
        lines.append("⚡ Hidratação: Quase lá!")
    elif hydration == "no":
        lines.append("❌ Hidratação: Precisa melhorar")

    perfect_meals = sum(1 for k in ("breakfast", "lunch", "dinner") if data.get(k) == "A")
    if perfect_meals == 3:
        lines.append("✅ Alimentação: Perfeita! 🌟")
    elif perfect_meals == 2:
        lines.append("⚡ Alimentação: Muito boa!")
    else:
        lines.append("❌ Alimentação: Pode melhorar")

    if data.get("activity") == "yes":
        lines.append("✅ Atividade: Praticou hoje")
    else:
        lines.append("❌ Atividade: Não praticou")

    wellbeing = data.get("wellbeing") or 3
    lines.append(f"{_WELLBEING_EMOJI[wellbeing]} Bem-estar: {wellbeing}/5")

    if data.get("weight"):
        lines.append(f"⚖️ Peso: {data['weight']:g}kg")

    lines += ["", f"🌟 *Total: +{points} pontos*", "", "Continue assim! 💪"]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _weigh_day_for(db: Session, patient_id: int) -> Optional[int]:
    protocol = (
        db.query(PatientProtocol)
        .filter(PatientProtocol.patient_id == patient_id, PatientProtocol.is_active == True)  # noqa: E712
        .order_by(PatientProtocol.id.desc())
        .first()
    )
    return protocol.weigh_day if protocol is not None else None


def _checkin_exists(db: Session, patient_id: int, day: date) -> bool:
    return (
        db.query(CheckinState.id)
        .filter(CheckinState.patient_id == patient_id, CheckinState.day == day)
        .first()
        is not None
    )


def get_active_checkin(db: Session, patient_id: int, today: date) -> Optional[CheckinState]:
    """
    The most recent unfinished check-in started today or yesterday.
    Yesterday counts so that replies to an evening check-in still land
    after midnight.
    """
    return (
        db.query(CheckinState)
        .filter(
            CheckinState.patient_id == patient_id,
            CheckinState.day >= today - timedelta(days=1),
            CheckinState.day <= today,
            CheckinState.step != Step.COMPLETE,
        )
        .order_by(CheckinState.day.desc())
        .first()
    )


def start_checkin(
    db: Session,
    sender: ChannelSender,
    patient: Patient,
    today: date,
    now: datetime,
) -> CheckinState:
    """
    Create today's check-in at its first step and send the first prompt.
    One check-in per patient per day; commits.
    """
    steps = build_step_plan(today, patient.plan, _weigh_day_for(db, patient.id))
    if _checkin_exists(db, patient.id, today):
        raise CheckinAlreadyStartedError(patient.id, today)

    state = CheckinState(
        patient_id=patient.id,
        day=today,
        step=steps[0],
        steps=list(steps),
        data={},
        started_at=now,
    )
    db.add(state)
    try:
        db.flush()
    except IntegrityError as exc:
        # Race: another run started the same check-in first
        db.rollback()
        raise CheckinAlreadyStartedError(patient.id, today) from exc

    deliver(
        db, sender, patient, step_prompt(steps[0], patient.full_name),
        source="checkin", now=now, is_gamification=True,
    )
    db.commit()
    db.refresh(state)
    logger.info("Check-in started for patient %s on %s (%s steps)", patient.id, today, len(steps))
    return state


class ReplyOutcome:
    ADVANCED  = "advanced"
    COMPLETED = "completed"
    INVALID   = "invalid"
    IGNORED   = "ignored"     # lost the compare-and-swap race
    NO_ACTIVE = "no_active"


@dataclass
class CheckinReplyResult:
    outcome: str
    step: Optional[str] = None
    points_earned: int = 0
    new_badges: list[str] = field(default_factory=list)
    leveled_up: bool = False


def _compare_and_swap(db: Session, state: CheckinState, read_step: str, values: dict) -> bool:
    updated = (
        db.query(CheckinState)
        .filter(CheckinState.id == state.id, CheckinState.step == read_step)
        .update(values, synchronize_session=False)
    )
    return updated == 1


def _complete(
    db: Session,
    sender: ChannelSender,
    patient: Patient,
    state: CheckinState,
    data: dict,
    points: int,
    today: date,
    now: datetime,
) -> CheckinReplyResult:
    db.add(
        CheckinRecord(
            patient_id=patient.id,
            day=state.day,
            hydration=data.get("hydration"),
            breakfast=data.get("breakfast"),
            lunch=data.get("lunch"),
            dinner=data.get("dinner"),
            snacks=data.get("snacks"),
            activity=data.get("activity"),
            wellbeing=data.get("wellbeing"),
            weight_kg=data.get("weight"),
            points_earned=points,
        )
    )
    if data.get("weight"):
        db.add(HealthMetric(patient_id=patient.id, day=state.day, weight_kg=data["weight"]))
    db.flush()

    result = CheckinReplyResult(outcome=ReplyOutcome.COMPLETED, step=Step.COMPLETE, points_earned=points)
    for perspective, share in points_by_perspective(data).items():
        action = gamification.apply_action(db, patient, perspective, share, today, now)
        result.new_badges.extend(action.new_badges)
        result.leveled_up = result.leveled_up or action.leveled_up

    deliver(db, sender, patient, checkin_summary(data, points), source="checkin", now=now)
    logger.info("Check-in %s completed for patient %s: +%s points", state.id, patient.id, points)
    return result


def handle_checkin_reply(
    db: Session,
    sender: ChannelSender,
    patient: Patient,
    text: str,
    today: date,
    now: datetime,
) -> CheckinReplyResult:
    state = get_active_checkin(db, patient.id, today)
    if state is None:
        return CheckinReplyResult(outcome=ReplyOutcome.NO_ACTIVE)

    read_step = state.step
    try:
        next_step, data = advance(state.steps, read_step, text, state.data or {})
    except CheckinReplyError as exc:
        logger.info("Invalid reply at step %s for patient %s", read_step, patient.id)
        deliver(db, sender, patient, error_prompt(read_step, exc.hint), source="checkin", now=now)
        db.commit()
        return CheckinReplyResult(outcome=ReplyOutcome.INVALID, step=read_step)

    values: dict = {CheckinState.step: next_step, CheckinState.data: data}
    points = 0
    if next_step == Step.COMPLETE:
        points = calculate_points(data)
        values[CheckinState.completed_at] = now
        values[CheckinState.points_earned] = points

    if not _compare_and_swap(db, state, read_step, values):
        db.rollback()
        logger.info(
            "Check-in %s already moved past %s; ignoring concurrent reply", state.id, read_step
        )
        return CheckinReplyResult(outcome=ReplyOutcome.IGNORED, step=read_step)

    if next_step == Step.COMPLETE:
        result = _complete(db, sender, patient, state, data, points, today, now)
    else:
        deliver(
            db, sender, patient, step_prompt(next_step, patient.full_name),
            source="checkin", now=now, is_gamification=True,
        )
        result = CheckinReplyResult(outcome=ReplyOutcome.ADVANCED, step=next_step)

    db.commit()
    return result


# ---------------------------------------------------------------------------
# Batch start
# ---------------------------------------------------------------------------

@dataclass
class DailyCheckinRun:
    started: int = 0
    skipped: int = 0
    failed: int = 0


def start_daily_checkins(db: Session, sender: ChannelSender, today: date, now: datetime) -> DailyCheckinRun:
    """Start today's check-in for every active premium/vip patient."""
    run = DailyCheckinRun()
    patients = (
        db.query(Patient)
        .filter(
            Patient.status == PatientStatus.active,
            Patient.plan.in_([PlanTier.premium, PlanTier.vip]),
        )
        .order_by(Patient.id)
        .all()
    )
    for patient in patients:
        try:
            start_checkin(db, sender, patient, today, now)
            run.started += 1
        except CheckinAlreadyStartedError:
            run.skipped += 1
        except Exception:
            db.rollback()
            run.failed += 1
            logger.exception("Failed to start check-in for patient %s", patient.id)
    logger.info(
        "Daily check-ins for %s: started=%s skipped=%s failed=%s",
        today, run.started, run.skipped, run.failed,
    )
    return run
