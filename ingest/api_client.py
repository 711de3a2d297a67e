"""Event store backed by the community events REST API."""
from __future__ import annotations

import os
import logging
from datetime import date, datetime
from typing import Any, Iterable, List, Optional

import requests
from dotenv import load_dotenv

from .event_store import StoreError
from .schemas import (
    CandidateEvent,
    CommunitySubmission,
    EventFlag,
    EventStatus,
    FlagStatus,
    StoredEvent,
    SubmissionStatus,
    VerificationSource,
)

load_dotenv()

API_BASE_URL = os.getenv("API_URL", "http://localhost:8000/api/v1")

logger = logging.getLogger(__name__)
if os.getenv("SCRAPER_DEBUG"):
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def _make_headers() -> dict[str, str]:
    """Return headers for API requests, including the auth token if set."""
    token = os.getenv("API_TOKEN")
    headers: dict[str, str] = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _log_request(method: str, url: str, payload: Any | None = None) -> None:
    """Log details about an outgoing HTTP request."""
    logger.info("%s %s", method.upper(), url)
    if payload is not None:
        logger.debug("Payload: %s", payload)


class ApiEventStore:
    """:class:`ingest.event_store.EventStore` over HTTP.

    The backend enforces a unique ``community_submission_id`` on events and
    answers ``409`` to a second insert for the same submission.
    """

    def __init__(self, base_url: str | None = None, timeout: float = 30):
        self.base_url = (base_url or API_BASE_URL).rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, *, params: dict | None = None,
                 payload: Any | None = None, allow: tuple[int, ...] = ()) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        _log_request(method, url, payload)
        try:
            response = requests.request(
                method, url, params=params, json=payload,
                headers=_make_headers(), timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise StoreError(f"{method.upper()} {url} failed: {exc}") from exc
        if response.status_code in allow:
            return response
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise StoreError(f"{method.upper()} {url} returned {response.status_code}") from exc
        return response

    def _list(self, path: str, params: dict) -> list[dict]:
        data = self._request("get", path, params=params).json()
        # Paginated responses wrap rows in "results"
        return data.get("results", []) if isinstance(data, dict) else data

    # Events

    def find_events_between(self, start: date, end: date) -> List[StoredEvent]:
        rows = self._list("events/", {"start_date__gte": start.isoformat(), "start_date__lte": end.isoformat()})
        return [StoredEvent.model_validate(row) for row in rows]

    def find_events_on(self, day: date, venue_name: Optional[str]) -> List[StoredEvent]:
        params = {"start_date": day.isoformat()}
        if venue_name:
            params["venue_name"] = venue_name
        return [StoredEvent.model_validate(row) for row in self._list("events/", params)]

    def get_event(self, event_id: str) -> Optional[StoredEvent]:
        response = self._request("get", f"events/{event_id}/", allow=(404,))
        if response.status_code == 404:
            return None
        return StoredEvent.model_validate(response.json())

    def find_unverified(self, limit: int) -> List[StoredEvent]:
        rows = self._list(
            "events/",
            {"verified": "false", "status": EventStatus.ACTIVE.value, "ordering": "-created_at", "limit": limit},
        )
        return [StoredEvent.model_validate(row) for row in rows]

    def insert_event(
        self,
        event: CandidateEvent,
        *,
        confidence_score: Optional[float] = None,
        community_submission_id: Optional[str] = None,
    ) -> StoredEvent:
        payload = event.model_dump(mode="json", include=set(CandidateEvent.model_fields))
        payload.update(
            status=EventStatus.ACTIVE.value,
            confidence_score=confidence_score,
            community_submission_id=community_submission_id,
        )
        response = self._request("post", "events/", payload=payload, allow=(409,))
        if response.status_code == 409:
            rows = self._list("events/", {"community_submission_id": community_submission_id})
            if not rows:
                raise StoreError(f"Conflict inserting event for submission {community_submission_id}")
            return StoredEvent.model_validate(rows[0])
        return StoredEvent.model_validate(response.json())

    def record_verification(
        self,
        event_id: str,
        *,
        confidence_score: float,
        verified_at: datetime,
        sources: Iterable[VerificationSource],
    ) -> StoredEvent:
        payload = {
            "confidence_score": confidence_score,
            "verified_at": verified_at.isoformat(),
            "verification_sources": [s.model_dump(mode="json") for s in sources],
        }
        response = self._request("patch", f"events/{event_id}/", payload=payload)
        return StoredEvent.model_validate(response.json())

    def set_event_status(self, event_id: str, status: EventStatus) -> StoredEvent:
        response = self._request("patch", f"events/{event_id}/", payload={"status": status.value})
        return StoredEvent.model_validate(response.json())

    # Community submissions

    def add_submission(self, submission: CommunitySubmission) -> CommunitySubmission:
        payload = submission.model_dump(mode="json", exclude={"id"})
        response = self._request("post", "submissions/", payload=payload)
        return CommunitySubmission.model_validate(response.json())

    def update_submission(self, submission: CommunitySubmission) -> CommunitySubmission:
        payload = submission.model_dump(mode="json", exclude={"id"})
        response = self._request("patch", f"submissions/{submission.id}/", payload=payload)
        return CommunitySubmission.model_validate(response.json())

    def get_submission(self, submission_id: str) -> Optional[CommunitySubmission]:
        response = self._request("get", f"submissions/{submission_id}/", allow=(404,))
        if response.status_code == 404:
            return None
        return CommunitySubmission.model_validate(response.json())

    def list_submissions(self, status: SubmissionStatus, limit: int) -> List[CommunitySubmission]:
        rows = self._list("submissions/", {"status": status.value, "ordering": "-created_at", "limit": limit})
        return [CommunitySubmission.model_validate(row) for row in rows]

    def has_approved_submission(self, user_id: str) -> bool:
        rows = self._list(
            "submissions/",
            {"user_id": user_id, "status": SubmissionStatus.APPROVED.value, "reviewed": "true", "limit": 1},
        )
        return bool(rows)

    # Flags

    def add_flag(self, flag: EventFlag) -> EventFlag:
        response = self._request("post", "flags/", payload=flag.model_dump(mode="json", exclude={"id"}))
        return EventFlag.model_validate(response.json())

    def count_pending_flags(self, event_id: str) -> int:
        data = self._request(
            "get", "flags/", params={"event_id": event_id, "status": FlagStatus.PENDING.value},
        ).json()
        if isinstance(data, dict):
            return int(data.get("count", len(data.get("results", []))))
        return len(data)
