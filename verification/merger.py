"""Merge confirmed duplicate events into one authoritative record."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from pydantic import ValidationError

from ingest.schemas import MULTI_SOURCE_VERIFIED, CandidateEvent, StoredEvent
from scrapers.llm_backend import CompletionBackend
from scrapers.llm_extractor import reconcile_events
from .trust import SourceTrustTable

logger = logging.getLogger(__name__)


def highest_trust(events: Sequence[CandidateEvent], trust_table: SourceTrustTable) -> CandidateEvent:
    """Return the event whose source is most trusted; ties keep input order."""
    return max(events, key=lambda e: trust_table.trust_for(e.source_tag))


def merge_events(
    events: List[CandidateEvent],
    trust_table: Optional[SourceTrustTable] = None,
    *,
    backend: Optional[CompletionBackend] = None,
) -> CandidateEvent:
    """Reconcile duplicates into one record.

    A single event comes back unchanged. Otherwise the backend picks the best
    value per field; if that fails the highest-trust input is returned as-is.
    Never returns ``None`` for a non-empty input.
    """
    if not events:
        raise ValueError("merge_events requires at least one event")
    if len(events) == 1:
        return events[0]

    trust_table = trust_table or SourceTrustTable.default()
    best = highest_trust(events, trust_table)

    result = reconcile_events(events, backend=backend)
    if result is not None:
        fields = {k: v for k, v in result.merged_event.items() if k in CandidateEvent.model_fields}
        fields.setdefault("source_tag", best.source_tag)
        fields.pop("annotations", None)
        source_ids = tuple(result.source_ids) or tuple(
            e.id for e in events if isinstance(e, StoredEvent)
        )
        try:
            merged = CandidateEvent.model_validate(
                {
                    **fields,
                    "merged_from": source_ids,
                    "merge_notes": result.merge_notes or None,
                }
            )
            logger.info("Merged %d events into %r", len(events), merged.title)
            return merged.annotate(MULTI_SOURCE_VERIFIED)
        except ValidationError as exc:
            logger.warning("Merged record rejected, falling back to highest trust: %s", exc)
    else:
        logger.warning("Merge reconciliation failed, falling back to highest trust source")

    return best
