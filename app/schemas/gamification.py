"""
Gamification read schemas.

GET /patients/{id}/gamification       → GamificationResponse
GET /patients/{id}/badges/progress    → BadgeProgressListResponse
"""
from datetime import date
from typing import Optional
from pydantic import BaseModel, Field


class BadgeResponse(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    rarity: str


class WeeklyGoalProgress(BaseModel):
    current: int
    goal: int
    is_complete: bool


class StreakResponse(BaseModel):
    current: int
    longest: int
    freezes: int
    last_activity_date: Optional[date] = None


class GamificationResponse(BaseModel):
    patient_id: int
    total_points: int
    level: int
    level_name: str = Field(examples=["Praticante II"])
    next_level_points: Optional[int] = Field(
        default=None, description="Points threshold of the next level; null at level 20."
    )
    level_progress: int = Field(ge=0, le=100)
    streak: StreakResponse
    week_start: date
    weekly_progress: dict[str, WeeklyGoalProgress]
    badges: list[BadgeResponse]


class BadgeProgressResponse(BaseModel):
    badge: BadgeResponse
    current: int
    target: int
    percent: int = Field(ge=0, le=100)


class BadgeProgressListResponse(BaseModel):
    patient_id: int
    items: list[BadgeProgressResponse]
