"""Find stored events similar to a candidate within a date window."""
from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from ingest.event_store import EventStore
from ingest.schemas import CandidateEvent, MatchResult, StoredEvent
from .settings import VerificationSettings
from .similarity import similarity


def find_matches(
    event: CandidateEvent,
    store: EventStore,
    settings: Optional[VerificationSettings] = None,
) -> List[MatchResult]:
    """Return stored events scoring at least ``match_threshold``, best first.

    Searches ``start_date ± match_window_days`` and skips the event's own
    id. Read-only.
    """
    settings = settings or VerificationSettings()
    window = timedelta(days=settings.match_window_days)
    own_id = event.id if isinstance(event, StoredEvent) else None

    candidates = store.find_events_between(event.start_date - window, event.start_date + window)
    matches = []
    for candidate in candidates:
        if own_id is not None and candidate.id == own_id:
            continue
        score = similarity(event, candidate)
        if score >= settings.match_threshold:
            matches.append(MatchResult(candidate=event, matched=candidate, similarity=score))

    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches
