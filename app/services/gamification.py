"""
Gamification Ledger: the only writer of a patient's points, level,
weekly progress and badges.

apply_action(patient, perspective, points, today, now)
------------------------------------------------------
  1. Weekly rollover
     If week_start is not the Monday of `today`, the stored week is
     snapshotted into weekly_progress_logs and every perspective restarts
     at zero with the default goal.

  2. Points
     total_points += points; weekly_progress[perspective].current += points

  3. Weekly goal
     The first time current >= goal within a week → +WEEKLY_GOAL_BONUS and
     is_complete = True. A completed goal never pays twice in the same week.

  4. Streak
     update_streak(today); its milestone bonus is added to total_points.

  5. Level
     Recomputed from total_points (monotonic thresholds).

  6. Badges
     Stats are aggregated, newly met badges are unioned into `badges`, and
     an unlock notification is queued (ScheduledMessage, source "badge").

The ledger flushes but never commits; the caller owns the transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.models.patient import Patient, Perspective
from app.models.scheduled_message import ScheduledMessage, ScheduledStatus
from app.models.weekly_progress import WeeklyProgressLog
from app.services import badges as badge_engine
from app.services.levels import calculate_level, level_name
from app.services.stats import aggregate_stats
from app.services.streak import StreakDecision, update_streak

logger = logging.getLogger(__name__)

WEEKLY_GOALS: dict[str, int] = {
    Perspective.nutrition.value: 250,
    Perspective.movement.value: 150,
    Perspective.hydration.value: 75,
    Perspective.discipline.value: 20,
    Perspective.wellbeing.value: 50,
}
WEEKLY_GOAL_BONUS = 50


@dataclass
class ActionResult:
    success: bool
    points_earned: int
    new_level: Optional[int] = None
    level_name: Optional[str] = None
    leveled_up: bool = False
    weekly_goal_completed: bool = False
    new_badges: list[str] = field(default_factory=list)
    streak: Optional[StreakDecision] = None


def monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def empty_weekly_progress() -> dict[str, dict]:
    return {
        perspective: {"current": 0, "goal": goal, "is_complete": False}
        for perspective, goal in WEEKLY_GOALS.items()
    }


# ---------------------------------------------------------------------------
# Weekly rollover
# ---------------------------------------------------------------------------

def _week_logged(db: Session, patient_id: int, week_start: date) -> bool:
    return (
        db.query(WeeklyProgressLog.id)
        .filter(
            WeeklyProgressLog.patient_id == patient_id,
            WeeklyProgressLog.week_start == week_start,
        )
        .first()
        is not None
    )


def roll_week_if_stale(db: Session, patient: Patient, today: date) -> bool:
    """
    Start a fresh week when the stored one is older than today's week.
    Returns True when a rollover happened. A stored week later than
    today's (late delivery) is left alone.
    """
    current_monday = monday_of(today)
    if patient.week_start is not None and patient.week_start >= current_monday:
        if not patient.weekly_progress:
            patient.weekly_progress = empty_weekly_progress()
        return False

    old_progress = patient.weekly_progress or {}
    if patient.week_start is not None and old_progress and not _week_logged(db, patient.id, patient.week_start):
        all_met = all(
            old_progress.get(p, {}).get("is_complete", False) for p in WEEKLY_GOALS
        )
        db.add(
            WeeklyProgressLog(
                patient_id=patient.id,
                week_start=patient.week_start,
                progress=old_progress,
                all_goals_met=all_met,
            )
        )
        logger.info(
            "Weekly progress rolled over for patient %s (week %s, all_goals_met=%s)",
            patient.id, patient.week_start, all_met,
        )

    patient.week_start = current_monday
    patient.weekly_progress = empty_weekly_progress()
    return True


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

def _queue_badge_notification(db: Session, patient: Patient, badge_ids: list[str], now: datetime) -> None:
    db.add(
        ScheduledMessage(
            patient_id=patient.id,
            destination=patient.phone_number,
            content=badge_engine.unlock_message(badge_ids),
            send_at=now,
            status=ScheduledStatus.pending,
            source="badge",
            is_gamification=False,
        )
    )


def apply_action(
    db: Session,
    patient: Patient,
    perspective: Perspective | str,
    points: int,
    today: date,
    now: datetime,
) -> ActionResult:
    if points < 0:
        raise ValueError("points must be non-negative")
    key = Perspective(perspective).value

    roll_week_if_stale(db, patient, today)

    # JSON columns: assign new objects so SQLAlchemy sees the change
    progress = {p: dict(v) for p, v in (patient.weekly_progress or {}).items()}
    entry = progress.setdefault(
        key, {"current": 0, "goal": WEEKLY_GOALS[key], "is_complete": False}
    )

    old_level = patient.level or 1
    total = (patient.total_points or 0) + points
    entry["current"] = entry.get("current", 0) + points

    weekly_goal_completed = False
    if not entry.get("is_complete") and entry["current"] >= entry.get("goal", WEEKLY_GOALS[key]):
        entry["is_complete"] = True
        total += WEEKLY_GOAL_BONUS
        weekly_goal_completed = True
        logger.info("Weekly %s goal completed for patient %s", key, patient.id)

    patient.weekly_progress = progress

    streak = update_streak(patient, today)
    total += streak.bonus_points

    patient.total_points = total
    patient.level = calculate_level(total)
    leveled_up = patient.level > old_level
    if leveled_up:
        logger.info("Patient %s leveled up %s → %s", patient.id, old_level, patient.level)

    stats = aggregate_stats(db, patient)
    unlocked = list(patient.badges or [])
    new_badges = badge_engine.evaluate(unlocked, stats)
    if new_badges:
        patient.badges = unlocked + [b for b in new_badges if b not in unlocked]
        _queue_badge_notification(db, patient, new_badges, now)
        logger.info("Patient %s unlocked badges %s", patient.id, new_badges)

    db.flush()
    return ActionResult(
        success=True,
        points_earned=points,
        new_level=patient.level if leveled_up else None,
        level_name=level_name(patient.level) if leveled_up else None,
        leveled_up=leveled_up,
        weekly_goal_completed=weekly_goal_completed,
        new_badges=new_badges,
        streak=streak,
    )
