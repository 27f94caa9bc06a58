"""
Shared pytest fixtures.

Uses a SQLite database file so no Postgres is required for tests. Tables
are created once per session and emptied after every test.

External collaborators (classifier, reply model, WhatsApp channel) are
replaced by in-memory fakes through app.dependency_overrides, and the
clock is pinned to NOW.
"""
from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.clients.classifier import Classification, Intent
from app.clients.replies import ReplyAction, ReplyDecision
from app.core.deps import get_classifier, get_now, get_reply_generator, get_sender
from app.db.base import Base, get_db
from app.main import app as fastapi_app
from app.models.patient import Patient, PatientStatus, PlanTier
from app.services.intent_router import EngineServices

SQLITE_URL = "sqlite:///./test_engage.db"

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Wednesday 2026-10-14, 20:00 UTC
NOW = datetime(2026, 10, 14, 20, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
# Sunday, the default weigh-day
WEIGH_DAY = date(2026, 10, 18)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeSender:
    """Records every send. `ok=False` simulates a channel failure."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: list[tuple[str, str]] = []

    def send(self, destination: str, text: str) -> bool:
        if not self.ok:
            return False
        self.sent.append((destination, text))
        return True

    @property
    def texts(self) -> list[str]:
        return [t for _, t in self.sent]


class RaisingSender:
    def send(self, destination: str, text: str) -> bool:
        raise RuntimeError("channel down")


class FakeClassifier:
    def __init__(self, intent: Intent = Intent.question, confidence: float = 0.9, error: Exception | None = None):
        self.intent = intent
        self.confidence = confidence
        self.error = error
        self.calls: list[tuple[str, object]] = []

    def classify(self, text, context):
        self.calls.append((text, context))
        if self.error is not None:
            raise self.error
        return Classification(intent=self.intent, confidence=self.confidence, reason="test")


class FakeReplyGenerator:
    def __init__(self, decision: ReplyDecision | None = None, error: Exception | None = None):
        self.decision = decision or ReplyDecision(action=ReplyAction.reply, reply="Resposta de teste")
        self.error = error
        self.calls: list[str] = []
        self.emergency_flags: list[bool] = []

    def generate(self, patient_name, text, emergency=False):
        self.calls.append(text)
        self.emergency_flags.append(emergency)
        if self.error is not None:
            raise self.error
        return self.decision


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(autouse=True)
def no_cron_secret(monkeypatch):
    from app.core.config import settings
    monkeypatch.setattr(settings, "CRON_SECRET", "")


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_patient(db):
    counter = {"n": 0}

    def _make(**kw) -> Patient:
        counter["n"] += 1
        defaults = dict(
            phone_number=f"+55119888{counter['n']:05d}",
            full_name="Maria Souza",
            plan=PlanTier.premium,
            status=PatientStatus.active,
            badges=[],
            weekly_progress={},
        )
        defaults.update(kw)
        patient = Patient(**defaults)
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient

    return _make


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture()
def sender():
    return FakeSender()


@pytest.fixture()
def classifier():
    return FakeClassifier()


@pytest.fixture()
def replies():
    return FakeReplyGenerator()


@pytest.fixture()
def services(classifier, replies, sender):
    return EngineServices(classifier=classifier, replies=replies, sender=sender)


@pytest.fixture()
def client(db, sender, classifier, replies):
    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_sender] = lambda: sender
    fastapi_app.dependency_overrides[get_classifier] = lambda: classifier
    fastapi_app.dependency_overrides[get_reply_generator] = lambda: replies
    fastapi_app.dependency_overrides[get_now] = lambda: NOW
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()
