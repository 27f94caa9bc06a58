"""
Level table: 20 levels over four tiers.

  Levels  1-5   Iniciante   (0-500 pts,     steps of 100)
  Levels  6-10  Praticante  (500-1500 pts,  steps of 200)
  Levels 11-15  Veterano    (1500-3000 pts, steps of 300)
  Levels 16-20  Mestre      (3000-6000 pts, steps of 600)
"""
from __future__ import annotations

from bisect import bisect_right

LEVEL_THRESHOLDS: tuple[int, ...] = (
    0, 100, 200, 300, 400,
    500, 700, 900, 1100, 1300,
    1500, 1800, 2100, 2400, 2700,
    3000, 3600, 4200, 4800, 5400,
)
MAX_LEVEL = len(LEVEL_THRESHOLDS)

_TIERS = ("Iniciante", "Praticante", "Veterano", "Mestre")
_ROMAN = ("I", "II", "III", "IV", "V")


def calculate_level(total_points: int) -> int:
    """Level 1..20 for a points total. Monotonic in total_points."""
    return max(1, bisect_right(LEVEL_THRESHOLDS, max(total_points, 0)))


def level_tier(level: int) -> str:
    level = min(max(level, 1), MAX_LEVEL)
    return _TIERS[(level - 1) // 5]


def level_name(level: int) -> str:
    """e.g. 7 → "Praticante II"."""
    level = min(max(level, 1), MAX_LEVEL)
    return f"{level_tier(level)} {_ROMAN[(level - 1) % 5]}"


def points_for_next_level(level: int) -> int | None:
    """Threshold of the next level, or None at the top."""
    if level >= MAX_LEVEL:
        return None
    return LEVEL_THRESHOLDS[level]


def level_progress(total_points: int) -> int:
    """Percent (0-100) of the way through the current level."""
    level = calculate_level(total_points)
    nxt = points_for_next_level(level)
    if nxt is None:
        return 100
    start = LEVEL_THRESHOLDS[level - 1]
    return min(round((total_points - start) * 100 / (nxt - start)), 100)
