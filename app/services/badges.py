"""
Badge Rule Engine.

evaluate(unlocked_ids, stats) walks the static BADGE_CATALOG, skips badges
already unlocked and returns every badge whose criteria the StatsSnapshot
satisfies. Pure: no DB, no I/O. Criteria are independent of each other, so
catalog order never changes the result.

Criteria types
--------------
  streak       stats.streak.current      >= requirement
  points       stats.points.total        >= requirement
  level        stats.level.current       >= requirement
  perspective  stats.perspectives[key].checkins >= requirement
               (badges in _PERFECT_CHECKIN_BADGES count perfect_checkins)
  community    stats.community.<community_metric> >= requirement
  special      "perfect_4_weeks" | "weight_goal_reached"
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from app.models.patient import Perspective
from app.services.stats import StatsSnapshot


class CriteriaType(str, enum.Enum):
    streak = "streak"
    points = "points"
    level = "level"
    perspective = "perspective"
    community = "community"
    special = "special"


class CommunityMetric(str, enum.Enum):
    comments = "comments"
    reactions = "reactions"


class SpecialRequirement:
    PERFECT_4_WEEKS     = "perfect_4_weeks"
    WEIGHT_GOAL_REACHED = "weight_goal_reached"


_PERFECT_WEEKS_REQUIRED = 4


@dataclass(frozen=True)
class BadgeCriteria:
    type: CriteriaType
    requirement: Union[int, str]
    perspective: Optional[Perspective] = None
    community_metric: Optional[CommunityMetric] = None


@dataclass(frozen=True)
class BadgeDefinition:
    id: str
    name: str
    description: str
    icon: str
    rarity: str  # comum | raro | epico | lendario
    criteria: BadgeCriteria


def _badge(id, name, description, icon, rarity, type, requirement, **kw) -> BadgeDefinition:
    return BadgeDefinition(id, name, description, icon, rarity, BadgeCriteria(type, requirement, **kw))


_S, _P, _L = CriteriaType.streak, CriteriaType.points, CriteriaType.level
_PERSP, _COMM, _SPEC = CriteriaType.perspective, CriteriaType.community, CriteriaType.special

BADGE_CATALOG: tuple[BadgeDefinition, ...] = (
    # streak
    _badge("streak_7", "Fogo no Parquinho", "Mantenha um streak de 7 dias consecutivos", "🔥", "comum", _S, 7),
    _badge("streak_14", "Chama Constante", "Mantenha um streak de 14 dias consecutivos", "🔥", "comum", _S, 14),
    _badge("streak_30", "Chama Acesa", "Mantenha um streak de 30 dias consecutivos", "🔥🔥", "raro", _S, 30),
    _badge("streak_60", "Inferno Controlado", "Mantenha um streak de 60 dias consecutivos", "🔥🔥", "epico", _S, 60),
    _badge("streak_90", "Inferno Vivo", "Mantenha um streak de 90 dias consecutivos", "🔥🔥🔥", "lendario", _S, 90),
    # perspectives
    _badge("hydration_master", "Hidratado Profissional", "Complete 30 check-ins de hidratação", "💧", "comum",
           _PERSP, 30, perspective=Perspective.hydration),
    _badge("nutrition_expert", "Nutri Expert", 'Obtenha 50 respostas "A" em check-ins de refeição', "🥗", "raro",
           _PERSP, 50, perspective=Perspective.nutrition),
    _badge("athlete", "Atleta", "Complete 20 check-ins de atividade física", "🏃", "raro",
           _PERSP, 20, perspective=Perspective.movement),
    _badge("zen_master", "Zen Master", "Complete 20 check-ins de bem-estar", "🧘", "raro",
           _PERSP, 20, perspective=Perspective.wellbeing),
    _badge("disciplined", "Disciplinado", "Complete 10 pesagens semanais", "📊", "comum",
           _PERSP, 10, perspective=Perspective.discipline),
    # points
    _badge("points_500", "Iniciante Dedicado", "Alcance 500 pontos totais", "⭐", "comum", _P, 500),
    _badge("points_1000", "Praticante Comprometido", "Alcance 1.000 pontos totais", "⭐", "comum", _P, 1000),
    _badge("points_2000", "Veterano Comprometido", "Alcance 2.000 pontos totais", "⭐⭐", "raro", _P, 2000),
    _badge("points_5000", "Mestre dos Pontos", "Alcance 5.000 pontos totais", "⭐⭐⭐", "epico", _P, 5000),
    # community
    _badge("community_10_comments", "Conversador", "Faça 10 comentários na comunidade", "💬", "comum",
           _COMM, 10, community_metric=CommunityMetric.comments),
    _badge("community_50_reactions", "Apoiador", "Dê 50 reações em posts da comunidade", "❤️", "raro",
           _COMM, 50, community_metric=CommunityMetric.reactions),
    # special
    _badge("perfectionist", "Perfeccionista", "Complete todas as metas semanais em 4 semanas", "🎯", "epico",
           _SPEC, SpecialRequirement.PERFECT_4_WEEKS),
    _badge("weight_goal", "Campeão", "Atinja sua meta de peso do protocolo", "🏆", "lendario",
           _SPEC, SpecialRequirement.WEIGHT_GOAL_REACHED),
    # level
    _badge("level_10", "Praticante Avançado", "Alcance o nível 10", "👑", "raro", _L, 10),
    _badge("level_20", "Lenda Viva", "Alcance o nível máximo (20)", "👑", "lendario", _L, 20),
)

_BADGES_BY_ID: dict[str, BadgeDefinition] = {b.id: b for b in BADGE_CATALOG}

# Meal badges reward strict adherence ("A" answers), not participation.
_PERFECT_CHECKIN_BADGES = frozenset({"nutrition_expert"})


def get_badge(badge_id: str) -> Optional[BadgeDefinition]:
    return _BADGES_BY_ID.get(badge_id)


# ---------------------------------------------------------------------------
# Criteria
# ---------------------------------------------------------------------------

def _current_value(badge: BadgeDefinition, stats: StatsSnapshot) -> Optional[int]:
    """The counter a numeric criterion compares against, or None."""
    c = badge.criteria
    if c.type == CriteriaType.streak:
        return stats.streak.current
    if c.type == CriteriaType.points:
        return stats.points.total
    if c.type == CriteriaType.level:
        return stats.level.current
    if c.type == CriteriaType.perspective:
        if c.perspective is None:
            return None
        p_stats = stats.perspectives.get(c.perspective.value)
        if p_stats is None:
            return None
        if badge.id in _PERFECT_CHECKIN_BADGES:
            return p_stats.perfect_checkins
        return p_stats.checkins
    if c.type == CriteriaType.community:
        if c.community_metric == CommunityMetric.comments:
            return stats.community.comments
        if c.community_metric == CommunityMetric.reactions:
            return stats.community.reactions
        return None
    if c.type == CriteriaType.special:
        if c.requirement == SpecialRequirement.PERFECT_4_WEEKS:
            return stats.special.perfect_weeks
        return None
    return None


def _target(badge: BadgeDefinition) -> Optional[int]:
    c = badge.criteria
    if c.type == CriteriaType.special:
        if c.requirement == SpecialRequirement.PERFECT_4_WEEKS:
            return _PERFECT_WEEKS_REQUIRED
        return None
    return int(c.requirement)


def meets_criteria(badge: BadgeDefinition, stats: StatsSnapshot) -> bool:
    c = badge.criteria
    if c.type == CriteriaType.special and c.requirement == SpecialRequirement.WEIGHT_GOAL_REACHED:
        return stats.special.weight_goal_reached
    current, target = _current_value(badge, stats), _target(badge)
    if current is None or target is None:
        return False
    return current >= target


def evaluate(unlocked_ids: Iterable[str], stats: StatsSnapshot) -> list[str]:
    """Ids of badges newly unlocked by `stats`, in catalog order."""
    unlocked = set(unlocked_ids)
    return [
        badge.id
        for badge in BADGE_CATALOG
        if badge.id not in unlocked and meets_criteria(badge, stats)
    ]


# ---------------------------------------------------------------------------
# Progress projection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BadgeProgress:
    badge: BadgeDefinition
    current: int
    target: int

    @property
    def percent(self) -> int:
        if self.target <= 0:
            return 100
        return min(int(self.current * 100 / self.target), 100)


def badge_progress(unlocked_ids: Iterable[str], stats: StatsSnapshot) -> list[BadgeProgress]:
    """
    Progress of every locked badge with a countable requirement, closest
    to unlocking first. weight_goal is binary and never listed.
    """
    unlocked = set(unlocked_ids)
    items = []
    for badge in BADGE_CATALOG:
        if badge.id in unlocked:
            continue
        current, target = _current_value(badge, stats), _target(badge)
        if current is None or target is None:
            continue
        items.append(BadgeProgress(badge=badge, current=min(current, target), target=target))
    items.sort(key=lambda bp: (-bp.percent, bp.target - bp.current))
    return items


def unlock_message(badge_ids: list[str]) -> str:
    names = [b.name for b in (get_badge(i) for i in badge_ids) if b is not None]
    if len(names) == 1:
        return f"🏆 Novo badge desbloqueado: {names[0]}!"
    return f"🏆 {len(names)} novos badges desbloqueados: {', '.join(names)}!"
