"""Tests for the event verification API."""

import json
import pytest
from datetime import date
from fastapi.testclient import TestClient
from unittest.mock import Mock
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from api.main import Services, app, get_services
from ingest.event_store import InMemoryEventStore, StoreError
from ingest.schemas import EventStatus, StoredEvent
from verification.settings import VerificationSettings
from verification.trust import DEFAULT_SOURCES, SourceTrustTable
from verification.trust_feedback import TrustFeedbackLogger

client = TestClient(app)

EVENT_DATA = {"title": "Salsa Night", "date": "2025-06-10", "time": "20:00", "venue_name": "The Hall"}


class FakeBackend:
    """Returns queued responses in order."""

    def __init__(self):
        self.responses = []

    def complete(self, prompt, *, max_tokens=1024):
        return self.responses.pop(0)


@pytest.fixture
def services(tmp_path):
    """Swap the environment-built services for in-memory ones."""
    svc = Services(
        store=InMemoryEventStore([
            StoredEvent(id="evt-100", title="Yoga Flow", start_date=date(2025, 6, 10), source_tag="meetup"),
            StoredEvent(id="evt-101", title="Yoga Flow", start_date=date(2025, 6, 10), source_tag="tourism-squamish"),
        ]),
        backend=FakeBackend(),
        settings=VerificationSettings(),
        trust_table=SourceTrustTable.from_sources(DEFAULT_SOURCES),
        feedback=TrustFeedbackLogger(str(tmp_path / "feedback.jsonl")),
    )
    app.dependency_overrides[get_services] = lambda: svc
    yield svc
    app.dependency_overrides.clear()


def submit(services, confidence, **extra):
    services.backend.responses.append(json.dumps({"is_valid": True, "confidence": confidence, **extra}))
    return client.post("/submissions", json={"user_id": "user-1", "event_data": EVENT_DATA})


def test_health_endpoint():
    """Test the health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
    assert "version" in data


def test_root_endpoint():
    """Test the root endpoint returns API info."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert "Event Verification API" in data["name"]
    assert "docs" in data
    assert "health" in data


def test_extract_endpoint_success(services):
    services.backend.responses.append(json.dumps({
        "events": [{"title": "Sunset Paddle", "date": "2025-06-10", "time": "19:30", "category": "sports"}],
        "extraction_notes": "One event",
    }))
    response = client.post("/extract", json={
        "content": "<h1>Sunset Paddle</h1><p>June 10, 7:30pm</p>",
        "source_url": "https://paddle.example",
        "source_tag": "firecrawl-business",
    })

    assert response.status_code == 200
    data = response.json()
    assert data["notes"] == "One event"
    assert data["events"][0]["title"] == "Sunset Paddle"
    assert data["events"][0]["start_time"] == "19:30:00"
    assert data["events"][0]["source_tag"] == "firecrawl-business"
    assert "processing_time_seconds" in data


def test_extract_endpoint_parse_failure(services):
    services.backend.responses.append("not json")
    response = client.post("/extract", json={"content": "...", "source_url": "https://example.com"})
    assert response.status_code == 200
    assert response.json()["events"] == []
    assert response.json()["notes"] == "Parse failed"


def test_extract_endpoint_missing_content(services):
    response = client.post("/extract", json={"source_url": "https://example.com"})
    assert response.status_code == 422  # Validation error


def test_submission_auto_approved(services):
    response = submit(services, 0.9)
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "approved"
    assert data["event_id"] in services.store.events


def test_submission_with_invalid_event_data(services):
    response = client.post("/submissions", json={"user_id": "user-1", "event_data": {"title": "No date"}})
    assert response.status_code == 422


def test_review_then_admin_approval(services):
    submission_id = submit(services, 0.7).json()["submission_id"]

    pending = client.get("/submissions/pending")
    assert [s["id"] for s in pending.json()] == [submission_id]

    response = client.post(f"/submissions/{submission_id}/approve", json={"admin_id": "admin-1"})
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    again = client.post(f"/submissions/{submission_id}/approve", json={"admin_id": "admin-1"})
    assert again.status_code == 409


def test_admin_rejection_requires_reason(services):
    submission_id = submit(services, 0.7).json()["submission_id"]
    response = client.post(f"/submissions/{submission_id}/reject", json={"admin_id": "admin-1", "reason": ""})
    assert response.status_code == 422

    response = client.post(f"/submissions/{submission_id}/reject", json={"admin_id": "admin-1", "reason": "Spam"})
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"


def test_unknown_submission_is_404(services):
    response = client.post("/submissions/sub-404/approve", json={"admin_id": "admin-1"})
    assert response.status_code == 404


def test_retry_of_review_submission_is_409(services):
    submission_id = submit(services, 0.7).json()["submission_id"]
    response = client.post(f"/submissions/{submission_id}/retry")
    assert response.status_code == 409


def test_verify_event(services):
    response = client.post("/events/evt-100/verify")
    assert response.status_code == 200
    data = response.json()
    assert data["event_id"] == "evt-100"
    assert data["match_count"] == 1
    assert data["final_confidence"] == pytest.approx(0.788)
    assert data["decision"] == "review"


def test_verify_unknown_event(services):
    assert client.post("/events/evt-404/verify").status_code == 404


def test_store_failure_is_502(services):
    services.store = Mock()
    services.store.get_event.side_effect = StoreError("connection refused")
    response = client.post("/events/evt-100/verify")
    assert response.status_code == 502


def test_flags_hide_event_after_threshold(services):
    for user in ("u1", "u2", "u3"):
        response = client.post("/events/evt-100/flags", json={"user_id": user, "issue_type": "cancelled"})
        assert response.status_code == 200
        assert response.json()["status"] == "pending"
    assert services.store.get_event("evt-100").status == EventStatus.FLAGGED


def test_flag_with_invalid_issue_type(services):
    response = client.post("/events/evt-100/flags", json={"user_id": "u1", "issue_type": "boring"})
    assert response.status_code == 422


def test_flag_unknown_event(services):
    response = client.post("/events/evt-404/flags", json={"user_id": "u1", "issue_type": "spam"})
    assert response.status_code == 404


def test_source_feedback_is_recorded(services):
    response = client.post("/sources/meetup/feedback", json={"is_accurate": False, "event_id": "evt-100"})
    assert response.status_code == 200
    assert response.json() == {"recorded": True, "source": "meetup", "is_accurate": False}
    assert services.feedback.summarize()["meetup"].total == 1
