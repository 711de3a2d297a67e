"""Event store interface and an in-memory implementation."""
from __future__ import annotations

import itertools
import threading
from datetime import date, datetime
from typing import Iterable, List, Optional, Protocol

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


class StoreError(RuntimeError):
    """A read or write against the event store failed."""


class EventStore(Protocol):
    """Storage operations the verification core relies on."""

    def find_events_between(self, start: date, end: date) -> List[StoredEvent]: ...

    def find_events_on(self, day: date, venue_name: Optional[str]) -> List[StoredEvent]: ...

    def get_event(self, event_id: str) -> Optional[StoredEvent]: ...

    def find_unverified(self, limit: int) -> List[StoredEvent]: ...

    def insert_event(
        self,
        event: CandidateEvent,
        *,
        confidence_score: Optional[float] = None,
        community_submission_id: Optional[str] = None,
    ) -> StoredEvent: ...

    def record_verification(
        self,
        event_id: str,
        *,
        confidence_score: float,
        verified_at: datetime,
        sources: Iterable[VerificationSource],
    ) -> StoredEvent: ...

    def set_event_status(self, event_id: str, status: EventStatus) -> StoredEvent: ...

    def add_submission(self, submission: CommunitySubmission) -> CommunitySubmission: ...

    def update_submission(self, submission: CommunitySubmission) -> CommunitySubmission: ...

    def get_submission(self, submission_id: str) -> Optional[CommunitySubmission]: ...

    def list_submissions(self, status: SubmissionStatus, limit: int) -> List[CommunitySubmission]: ...

    def has_approved_submission(self, user_id: str) -> bool: ...

    def add_flag(self, flag: EventFlag) -> EventFlag: ...

    def count_pending_flags(self, event_id: str) -> int: ...


class InMemoryEventStore:
    """Dictionary-backed store.

    Inserts are unique per ``community_submission_id``: inserting again for
    the same submission returns the existing event.
    """

    def __init__(self, events: Iterable[StoredEvent] = ()):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.events: dict[str, StoredEvent] = {}
        self.submissions: dict[str, CommunitySubmission] = {}
        self.flags: dict[str, EventFlag] = {}
        for event in events:
            self.events[event.id] = event

    def _snapshot(self, table: dict) -> list:
        """Copy of ``table``'s values taken under the lock."""
        with self._lock:
            return list(table.values())

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _require_event(self, event_id: str) -> StoredEvent:
        try:
            return self.events[event_id]
        except KeyError:
            raise StoreError(f"Event {event_id} not found") from None

    def find_events_between(self, start: date, end: date) -> List[StoredEvent]:
        return [e for e in self._snapshot(self.events) if start <= e.start_date <= end]

    def find_events_on(self, day: date, venue_name: Optional[str]) -> List[StoredEvent]:
        return [
            e for e in self._snapshot(self.events)
            if e.start_date == day and (e.venue_name or None) == (venue_name or None)
        ]

    def get_event(self, event_id: str) -> Optional[StoredEvent]:
        return self.events.get(event_id)

    def find_unverified(self, limit: int) -> List[StoredEvent]:
        pending = [
            e for e in self._snapshot(self.events)
            if e.verified_at is None and e.status == EventStatus.ACTIVE
        ]
        pending.sort(key=lambda e: e.created_at, reverse=True)
        return pending[:limit]

    def insert_event(
        self,
        event: CandidateEvent,
        *,
        confidence_score: Optional[float] = None,
        community_submission_id: Optional[str] = None,
    ) -> StoredEvent:
        with self._lock:
            if community_submission_id is not None:
                for existing in self.events.values():
                    if existing.community_submission_id == community_submission_id:
                        return existing
            data = event.model_dump(include=set(CandidateEvent.model_fields))
            stored = StoredEvent(
                **data,
                id=self._next_id("evt"),
                confidence_score=confidence_score,
                community_submission_id=community_submission_id,
            )
            self.events[stored.id] = stored
            return stored

    def record_verification(
        self,
        event_id: str,
        *,
        confidence_score: float,
        verified_at: datetime,
        sources: Iterable[VerificationSource],
    ) -> StoredEvent:
        with self._lock:
            updated = self._require_event(event_id).model_copy(
                update={
                    "confidence_score": confidence_score,
                    "verified_at": verified_at,
                    "verification_sources": tuple(sources),
                }
            )
            self.events[event_id] = updated
            return updated

    def set_event_status(self, event_id: str, status: EventStatus) -> StoredEvent:
        with self._lock:
            updated = self._require_event(event_id).model_copy(update={"status": status})
            self.events[event_id] = updated
            return updated

    def add_submission(self, submission: CommunitySubmission) -> CommunitySubmission:
        with self._lock:
            stored = submission.model_copy(update={"id": submission.id or self._next_id("sub")})
            self.submissions[stored.id] = stored
            return stored

    def update_submission(self, submission: CommunitySubmission) -> CommunitySubmission:
        with self._lock:
            if submission.id not in self.submissions:
                raise StoreError(f"Submission {submission.id} not found")
            self.submissions[submission.id] = submission
            return submission

    def get_submission(self, submission_id: str) -> Optional[CommunitySubmission]:
        return self.submissions.get(submission_id)

    def list_submissions(self, status: SubmissionStatus, limit: int) -> List[CommunitySubmission]:
        matching = [s for s in self._snapshot(self.submissions) if s.status == status]
        matching.sort(key=lambda s: s.created_at, reverse=True)
        return matching[:limit]

    def has_approved_submission(self, user_id: str) -> bool:
        return any(
            s.user_id == user_id
            and s.status == SubmissionStatus.APPROVED
            and s.reviewed_by is not None
            for s in self._snapshot(self.submissions)
        )

    def add_flag(self, flag: EventFlag) -> EventFlag:
        with self._lock:
            stored = flag.model_copy(update={"id": flag.id or self._next_id("flag")})
            self.flags[stored.id] = stored
            return stored

    def count_pending_flags(self, event_id: str) -> int:
        return sum(
            1 for f in self._snapshot(self.flags)
            if f.event_id == event_id and f.status == FlagStatus.PENDING
        )
