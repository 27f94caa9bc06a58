"""
Streak Ledger.

Day-over-day streak continuation, break and freeze consumption.

decide_streak(state, today) is a pure decision table over the calendar-day
difference between `today` and the last activity date:

  days | freezes | outcome
  -----+---------+------------------------------------------------
    0  |   any   | unchanged   (repeat activity on the same day)
    1  |   any   | incremented (current += 1)
    2  |   >= 1  | frozen      (one freeze consumed, current kept)
    2  |    0    | reset       (current = 1)
   >2  |   any   | reset       (current = 1)

A patient with no previous activity starts at 1 (reset). A `today` earlier
than the last activity (late, out-of-order delivery) is `unchanged`.

Milestone bonuses are paid only by the `incremented` decision that lands
exactly on the milestone. Bonus points are returned, not applied: the
gamification ledger owns total_points.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from app.models.patient import Patient, PatientStatus

logger = logging.getLogger(__name__)

MAX_STREAK_FREEZES = 2

STREAK_MILESTONE_BONUS: dict[int, int] = {
    7: 100,
    14: 200,
    30: 500,
    60: 1000,
    90: 2000,
}


class StreakOutcome(str, enum.Enum):
    incremented = "incremented"
    unchanged = "unchanged"
    frozen = "frozen"
    reset = "reset"


@dataclass(frozen=True)
class StreakState:
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None
    streak_freezes: int = MAX_STREAK_FREEZES
    freezes_used_this_month: int = 0


@dataclass(frozen=True)
class StreakDecision:
    outcome: StreakOutcome
    state: StreakState
    bonus_points: int = 0

    @property
    def current_streak(self) -> int:
        return self.state.current_streak

    @property
    def longest_streak(self) -> int:
        return self.state.longest_streak

    @property
    def streak_freezes(self) -> int:
        return self.state.streak_freezes


def decide_streak(state: StreakState, today: date) -> StreakDecision:
    if state.last_activity_date is None:
        return _finish(StreakOutcome.reset, replace(state, current_streak=1, last_activity_date=today))

    days = (today - state.last_activity_date).days

    if days <= 0:
        return _finish(StreakOutcome.unchanged, state)

    if days == 1:
        new_state = replace(
            state,
            current_streak=state.current_streak + 1,
            last_activity_date=today,
        )
        bonus = STREAK_MILESTONE_BONUS.get(new_state.current_streak, 0)
        return _finish(StreakOutcome.incremented, new_state, bonus)

    if days == 2 and state.streak_freezes > 0:
        new_state = replace(
            state,
            streak_freezes=state.streak_freezes - 1,
            freezes_used_this_month=state.freezes_used_this_month + 1,
            last_activity_date=today,
        )
        return _finish(StreakOutcome.frozen, new_state)

    return _finish(StreakOutcome.reset, replace(state, current_streak=1, last_activity_date=today))


def _finish(outcome: StreakOutcome, state: StreakState, bonus: int = 0) -> StreakDecision:
    longest = max(state.longest_streak, state.current_streak)
    return StreakDecision(
        outcome=outcome,
        state=replace(state, longest_streak=longest),
        bonus_points=bonus,
    )


# ---------------------------------------------------------------------------
# Patient row adapters
# ---------------------------------------------------------------------------

def streak_state_of(patient: Patient) -> StreakState:
    return StreakState(
        current_streak=patient.current_streak or 0,
        longest_streak=patient.longest_streak or 0,
        last_activity_date=patient.last_activity_date,
        streak_freezes=(
            patient.streak_freezes if patient.streak_freezes is not None else MAX_STREAK_FREEZES
        ),
        freezes_used_this_month=patient.freezes_used_this_month or 0,
    )


def update_streak(patient: Patient, today: date) -> StreakDecision:
    """Apply today's decision to the patient row (no flush, no commit)."""
    decision = decide_streak(streak_state_of(patient), today)
    s = decision.state
    patient.current_streak = s.current_streak
    patient.longest_streak = s.longest_streak
    patient.last_activity_date = s.last_activity_date
    patient.streak_freezes = s.streak_freezes
    patient.freezes_used_this_month = s.freezes_used_this_month

    if decision.outcome != StreakOutcome.unchanged:
        logger.info(
            "Streak %s for patient %s: current=%s longest=%s freezes=%s bonus=%s",
            decision.outcome.value, patient.id, s.current_streak,
            s.longest_streak, s.streak_freezes, decision.bonus_points,
        )
    return decision


def reset_monthly_freezes(db: Session) -> int:
    """
    Restore every non-pending patient to MAX_STREAK_FREEZES and zero the
    monthly counter. Invoked by an external monthly scheduler.
    Returns the number of patients touched.
    """
    count = (
        db.query(Patient)
        .filter(Patient.status != PatientStatus.pending)
        .update(
            {
                Patient.streak_freezes: MAX_STREAK_FREEZES,
                Patient.freezes_used_this_month: 0,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    logger.info("Monthly streak freezes restored for %s patients", count)
    return count
