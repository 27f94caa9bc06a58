"""
Job run summaries for the /jobs/* endpoints.
"""
from pydantic import BaseModel


class DispatchRunResponse(BaseModel):
    skipped: bool
    processed: int
    sent: int
    failed: int
    blocked: int
    expired: int


class MissedCheckinRunResponse(BaseModel):
    skipped: bool
    checked: int
    reminded: int
    failed: int


class DailyCheckinRunResponse(BaseModel):
    started: int
    skipped: int
    failed: int


class ProtocolRunResponse(BaseModel):
    messages_scheduled: int
    protocols_completed: int
    failed: int


class FreezeResetResponse(BaseModel):
    patients_updated: int
