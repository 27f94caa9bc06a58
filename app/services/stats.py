"""
Stats Aggregator: reads a patient's history and produces the flat
StatsSnapshot the badge rule engine evaluates.

Sources
-------
  streak / points / level   - patient row
  perspectives              - checkin_records (one row per completed check-in)
  community                 - community_activities
  special.perfect_weeks     - weekly_progress_logs.all_goals_met (+ current week)
  special.weight_goal       - latest health_metrics weight vs protocol goal
"""
from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from app.models.checkin import CheckinRecord
from app.models.community import CommunityActivity, CommunityActivityKind
from app.models.health_metric import HealthMetric
from app.models.patient import Patient, Perspective
from app.models.protocol import PatientProtocol
from app.models.weekly_progress import WeeklyProgressLog
from app.services.levels import calculate_level


@dataclass
class StreakStats:
    current: int = 0
    longest: int = 0


@dataclass
class PointsStats:
    total: int = 0


@dataclass
class LevelStats:
    current: int = 1


@dataclass
class PerspectiveStats:
    checkins: int = 0
    perfect_checkins: int = 0


@dataclass
class CommunityStats:
    comments: int = 0
    reactions: int = 0
    posts: int = 0


@dataclass
class SpecialStats:
    perfect_weeks: int = 0
    weight_goal_reached: bool = False


@dataclass
class StatsSnapshot:
    streak: StreakStats = field(default_factory=StreakStats)
    points: PointsStats = field(default_factory=PointsStats)
    level: LevelStats = field(default_factory=LevelStats)
    perspectives: dict[str, PerspectiveStats] = field(
        default_factory=lambda: {p.value: PerspectiveStats() for p in Perspective}
    )
    community: CommunityStats = field(default_factory=CommunityStats)
    special: SpecialStats = field(default_factory=SpecialStats)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def _count_if(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _perspective_stats(db: Session, patient_id: int) -> dict[str, PerspectiveStats]:
    r = CheckinRecord
    row = (
        db.query(
            func.count(r.hydration),
            _count_if(r.hydration == "yes"),
            _count_if(or_(r.breakfast.isnot(None), r.lunch.isnot(None), r.dinner.isnot(None))),
            _count_if(r.breakfast == "A") + _count_if(r.lunch == "A") + _count_if(r.dinner == "A"),
            _count_if(r.activity == "yes"),
            func.count(r.wellbeing),
            _count_if(r.wellbeing >= 4),
            func.count(r.weight_kg),
        )
        .filter(r.patient_id == patient_id)
        .one()
    )
    (hyd, hyd_yes, meals, meals_a, active, well, well_good, weighed) = (int(v or 0) for v in row)
    return {
        Perspective.hydration.value: PerspectiveStats(checkins=hyd, perfect_checkins=hyd_yes),
        Perspective.nutrition.value: PerspectiveStats(checkins=meals, perfect_checkins=meals_a),
        Perspective.movement.value: PerspectiveStats(checkins=active, perfect_checkins=active),
        Perspective.wellbeing.value: PerspectiveStats(checkins=well, perfect_checkins=well_good),
        Perspective.discipline.value: PerspectiveStats(checkins=weighed, perfect_checkins=weighed),
    }


def _community_stats(db: Session, patient_id: int) -> CommunityStats:
    rows = (
        db.query(CommunityActivity.kind, func.count(CommunityActivity.id))
        .filter(CommunityActivity.patient_id == patient_id)
        .group_by(CommunityActivity.kind)
        .all()
    )
    counts = {
        (kind.value if hasattr(kind, "value") else str(kind)): n for kind, n in rows
    }
    return CommunityStats(
        comments=counts.get(CommunityActivityKind.comment.value, 0),
        reactions=counts.get(CommunityActivityKind.reaction.value, 0),
        posts=counts.get(CommunityActivityKind.post.value, 0),
    )


def _current_week_perfect(patient: Patient) -> bool:
    progress = patient.weekly_progress or {}
    return bool(progress) and all(
        progress.get(p.value, {}).get("is_complete", False) for p in Perspective
    )


def _perfect_weeks(db: Session, patient: Patient) -> int:
    logged = (
        db.query(func.count(WeeklyProgressLog.id))
        .filter(
            WeeklyProgressLog.patient_id == patient.id,
            WeeklyProgressLog.all_goals_met == True,  # noqa: E712
        )
        .scalar()
        or 0
    )
    return logged + (1 if _current_week_perfect(patient) else 0)


def _weight_goal_reached(db: Session, patient_id: int) -> bool:
    protocol = (
        db.query(PatientProtocol)
        .filter(
            PatientProtocol.patient_id == patient_id,
            PatientProtocol.weight_goal_kg.isnot(None),
        )
        .order_by(PatientProtocol.is_active.desc(), PatientProtocol.id.desc())
        .first()
    )
    if protocol is None:
        return False
    latest = (
        db.query(HealthMetric)
        .filter(HealthMetric.patient_id == patient_id, HealthMetric.weight_kg.isnot(None))
        .order_by(HealthMetric.day.desc(), HealthMetric.id.desc())
        .first()
    )
    if latest is None:
        return False
    return float(latest.weight_kg) <= float(protocol.weight_goal_kg)


def aggregate_stats(db: Session, patient: Patient) -> StatsSnapshot:
    """Flush pending changes first so the snapshot sees this request's writes."""
    db.flush()
    return StatsSnapshot(
        streak=StreakStats(current=patient.current_streak or 0, longest=patient.longest_streak or 0),
        points=PointsStats(total=patient.total_points or 0),
        level=LevelStats(current=patient.level or calculate_level(patient.total_points or 0)),
        perspectives=_perspective_stats(db, patient.id),
        community=_community_stats(db, patient.id),
        special=SpecialStats(
            perfect_weeks=_perfect_weeks(db, patient),
            weight_goal_reached=_weight_goal_reached(db, patient.id),
        ),
    )
