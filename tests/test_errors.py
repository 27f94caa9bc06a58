"""
Tests for error handling: structured error responses, HTTP status codes,
and the custom exception classes.
"""
from datetime import date

import pytest

from app.core.errors import (
    CheckinAlreadyStartedError,
    CheckinNotAvailableError,
    CheckinReplyError,
    DownstreamUnavailableError,
    DuplicateEventError,
    PatientNotFoundError,
    UnauthorizedJobError,
)
from app.models.patient import PlanTier


# ---------------------------------------------------------------------------
# Unit tests on exception classes
# ---------------------------------------------------------------------------

class TestExceptionClasses:
    def test_checkin_already_started_error(self):
        err = CheckinAlreadyStartedError(patient_id=7, day=date(2026, 10, 14))
        assert err.http_status == 409
        assert err.code == "CHECKIN_ALREADY_STARTED"
        assert "2026-10-14" in err.message
        d = err.to_dict()
        assert d["details"]["patient_id"] == 7
        assert d["details"]["day"] == "2026-10-14"

    def test_patient_not_found_by_id(self):
        err = PatientNotFoundError(patient_id=42)
        assert err.http_status == 404
        assert err.code == "PATIENT_NOT_FOUND"
        assert "42" in err.message
        assert err.details == {"patient_id": 42}

    def test_patient_not_found_by_phone(self):
        err = PatientNotFoundError(phone_number="+5511988880000")
        assert err.details == {"phone_number": "+5511988880000"}

    def test_checkin_reply_error_carries_hint(self):
        err = CheckinReplyError(step="hydration", hint="Responda com 👍 ou 👎")
        assert err.http_status == 422
        assert err.code == "CHECKIN_REPLY_INVALID"
        assert err.hint == "Responda com 👍 ou 👎"
        assert err.to_dict()["details"]["step"] == "hydration"

    def test_duplicate_event_error(self):
        err = DuplicateEventError("SM123")
        assert err.http_status == 409
        assert err.external_id == "SM123"

    def test_downstream_unavailable_error(self):
        err = DownstreamUnavailableError("llm", "timeout")
        assert err.http_status == 503
        assert err.message == "llm unavailable: timeout"

    def test_checkin_not_available_error(self):
        err = CheckinNotAvailableError(plan="freemium")
        assert err.http_status == 422
        assert err.code == "CHECKIN_NOT_AVAILABLE"

    def test_to_dict_without_details(self):
        d = UnauthorizedJobError().to_dict()
        assert d["code"] == "UNAUTHORIZED"
        assert "message" in d
        # details should not be in dict when empty
        assert "details" not in d


# ---------------------------------------------------------------------------
# Integration tests on HTTP error responses
# ---------------------------------------------------------------------------

class TestValidationErrors:
    def test_empty_body_returns_validation_error(self, client):
        r = client.post("/webhooks/messages", json={"from_number": "+5511988880000", "body": ""})
        assert r.status_code == 422
        body = r.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert "errors" in body["details"]
        assert isinstance(body["details"]["errors"], list)

    def test_whitespace_only_body_returns_validation_error(self, client):
        r = client.post("/webhooks/messages", json={"from_number": "+5511988880000", "body": "  \t\n "})
        assert r.status_code == 422
        assert r.json()["code"] == "VALIDATION_ERROR"

    def test_missing_sender_returns_validation_error(self, client):
        r = client.post("/webhooks/messages", json={"body": "oi"})
        assert r.status_code == 422
        body = r.json()
        # Should indicate which field failed
        fields = [e["field"] for e in body["details"]["errors"]]
        assert any("from_number" in f for f in fields)

    def test_body_too_long_returns_validation_error(self, client):
        r = client.post("/webhooks/messages", json={"from_number": "+5511988880000", "body": "x" * 4097})
        assert r.status_code == 422

    @pytest.mark.parametrize("query", ["limit=0", "limit=21"])
    def test_badge_progress_limit_bounds(self, client, make_patient, query):
        p = make_patient()
        r = client.get(f"/patients/{p.id}/badges/progress?{query}")
        assert r.status_code == 422
        assert r.json()["code"] == "VALIDATION_ERROR"

    def test_negative_offset_rejected(self, client, make_patient):
        p = make_patient()
        r = client.get(f"/patients/{p.id}/checkins?offset=-1")
        assert r.status_code == 422


class TestNotFound:
    @pytest.mark.parametrize("path", [
        "/patients/999/gamification",
        "/patients/999/badges/progress",
        "/patients/999/checkins",
    ])
    def test_unknown_patient_returns_404_with_code(self, client, path):
        r = client.get(path)
        assert r.status_code == 404
        body = r.json()
        assert body["code"] == "PATIENT_NOT_FOUND"
        assert body["details"]["patient_id"] == 999

    def test_start_checkin_unknown_patient(self, client):
        r = client.post("/checkins/999/start")
        assert r.status_code == 404


class TestConflictErrors:
    def test_start_checkin_twice_returns_409_with_code(self, client, make_patient):
        p = make_patient()
        r1 = client.post(f"/checkins/{p.id}/start")
        assert r1.status_code == 201

        r2 = client.post(f"/checkins/{p.id}/start")
        assert r2.status_code == 409
        body = r2.json()
        assert body["code"] == "CHECKIN_ALREADY_STARTED"
        assert "day" in body["details"]

    def test_freemium_checkin_returns_422(self, client, make_patient):
        p = make_patient(plan=PlanTier.freemium)
        r = client.post(f"/checkins/{p.id}/start")
        assert r.status_code == 422
        assert r.json()["code"] == "CHECKIN_NOT_AVAILABLE"


class TestJobAuth:
    @pytest.fixture()
    def cron_secret(self, monkeypatch):
        from app.core.config import settings
        monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
        return "s3cret"

    def test_missing_token_rejected(self, client, cron_secret):
        r = client.post("/jobs/dispatch-messages")
        assert r.status_code == 401
        assert r.json()["code"] == "UNAUTHORIZED"

    def test_wrong_token_rejected(self, client, cron_secret):
        r = client.post("/jobs/reset-freezes", headers={"Authorization": "Bearer nope"})
        assert r.status_code == 401

    def test_correct_token_accepted(self, client, cron_secret):
        r = client.post("/jobs/reset-freezes", headers={"Authorization": f"Bearer {cron_secret}"})
        assert r.status_code == 200

    def test_no_secret_configured_allows_calls(self, client):
        r = client.post("/jobs/reset-freezes")
        assert r.status_code == 200
