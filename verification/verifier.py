"""Multi-source verification: trust plus corroboration into a confidence score."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from ingest.event_store import EventStore
from ingest.schemas import CandidateEvent, StoredEvent, VerificationSource
from .matching import find_matches
from .settings import VerificationSettings
from .trust import SourceTrustTable

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    AUTO_APPROVE = "auto_approve"
    REVIEW = "review"
    REJECT = "reject"


@dataclass
class VerificationResult:
    event_id: Optional[str]
    base_trust: float
    match_count: int = 0
    corroboration_score: float = 0.0
    final_confidence: float = 0.0
    details: List[str] = field(default_factory=list)
    sources: List[VerificationSource] = field(default_factory=list)
    decision: Decision = Decision.REJECT


def decide(confidence: float, settings: VerificationSettings) -> Decision:
    """Route a confidence score to auto-approve, review or reject."""
    if confidence >= settings.auto_approve_threshold:
        return Decision.AUTO_APPROVE
    if confidence >= settings.review_threshold:
        return Decision.REVIEW
    return Decision.REJECT


class Verifier:
    """Scores events against the store using an injected trust table."""

    def __init__(
        self,
        store: EventStore,
        trust_table: Optional[SourceTrustTable] = None,
        settings: Optional[VerificationSettings] = None,
    ):
        self.store = store
        self.trust_table = trust_table or SourceTrustTable.default()
        self.settings = settings or VerificationSettings()

    def decide(self, confidence: float) -> Decision:
        return decide(confidence, self.settings)

    def verify(self, event: CandidateEvent) -> VerificationResult:
        """Verify ``event`` against corroborating stored events."""
        base_trust = self.trust_table.trust_for(event.source_tag)
        result = VerificationResult(
            event_id=event.id if isinstance(event, StoredEvent) else None,
            base_trust=base_trust,
            final_confidence=min(self.settings.confidence_ceiling, base_trust),
        )

        matches = find_matches(event, self.store, self.settings)
        result.match_count = len(matches)
        if not matches:
            result.details.append("No corroborating sources found")
            result.decision = self.decide(result.final_confidence)
            return result

        boost = 0.0
        for match in matches:
            source = match.matched.source_tag
            match_trust = self.trust_table.trust_for(source)
            boost += match.similarity * match_trust * self.settings.corroboration_factor
            result.sources.append(
                VerificationSource(
                    event_id=match.matched.id,
                    source_tag=source,
                    similarity=match.similarity,
                    trust=match_trust,
                )
            )
            result.details.append(
                f"Match from {source} ({round(match.similarity * 100)}% similar, trust: {match_trust})"
            )

        result.corroboration_score = min(self.settings.corroboration_cap, boost)
        result.final_confidence = min(
            self.settings.confidence_ceiling, base_trust + result.corroboration_score
        )
        result.decision = self.decide(result.final_confidence)
        return result


def verify_all_events(
    verifier: Verifier,
    limit: Optional[int] = None,
    *,
    stop: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[VerificationResult]:
    """Verify unverified active events and persist their scores.

    Each event is an independent unit: a failure is logged and skipped, and
    setting ``stop`` ends the sweep before the next event starts.
    """
    settings = verifier.settings
    store = verifier.store
    events = store.find_unverified(settings.batch_limit if limit is None else limit)
    logger.info("Verifying %d unverified event(s)", len(events))

    results: List[VerificationResult] = []
    for index, event in enumerate(events):
        if stop is not None and stop.is_set():
            logger.info("Verification sweep stopped after %d event(s)", index)
            break
        try:
            verification = verifier.verify(event)
            store.record_verification(
                event.id,
                confidence_score=verification.final_confidence,
                verified_at=datetime.now(timezone.utc),
                sources=verification.sources,
            )
            results.append(verification)
            logger.info(
                "Verified %s (%s): confidence %.2f from %d match(es)",
                event.id, event.title, verification.final_confidence, verification.match_count,
            )
        except Exception as exc:
            logger.error("Failed to verify event %s: %s", event.id, exc)

        if settings.batch_delay_seconds and index < len(events) - 1:
            sleep(settings.batch_delay_seconds)

    return results
