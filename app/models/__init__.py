from .patient import Patient, PlanTier, PatientStatus, Perspective, PreferredTime
from .checkin import CheckinState, CheckinRecord
from .onboarding import OnboardingState
from .message import Message, MessageSender
from .scheduled_message import ScheduledMessage, ScheduledStatus
from .protocol import PatientProtocol
from .health_metric import HealthMetric
from .community import CommunityActivity, CommunityActivityKind
from .weekly_progress import WeeklyProgressLog
from .attention_request import AttentionRequest
from .job_lock import JobLock

__all__ = [
    "Patient",
    "PlanTier",
    "PatientStatus",
    "Perspective",
    "PreferredTime",
    "CheckinState",
    "CheckinRecord",
    "OnboardingState",
    "Message",
    "MessageSender",
    "ScheduledMessage",
    "ScheduledStatus",
    "PatientProtocol",
    "HealthMetric",
    "CommunityActivity",
    "CommunityActivityKind",
    "WeeklyProgressLog",
    "AttentionRequest",
    "JobLock",
]
