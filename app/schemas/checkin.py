"""
Check-in schemas.

POST /checkins/{patient_id}/start → CheckinStartResponse
GET  /patients/{id}/checkins      → CheckinHistoryResponse
"""
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class CheckinStartResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    day: date
    step: str
    steps: list[str]
    started_at: datetime


class CheckinRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    day: date
    hydration: Optional[str] = None
    breakfast: Optional[str] = None
    lunch: Optional[str] = None
    dinner: Optional[str] = None
    snacks: Optional[str] = None
    activity: Optional[str] = None
    wellbeing: Optional[int] = None
    weight_kg: Optional[float] = None
    points_earned: int


class CheckinHistoryResponse(BaseModel):
    total: int
    items: list[CheckinRecordResponse]
