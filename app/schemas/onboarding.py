"""
Onboarding schemas.

POST /onboarding/{patient_id}/start → OnboardingStartResponse
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict


class OnboardingStartResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    step: str
    plan: str
    started_at: datetime
