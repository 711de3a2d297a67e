"""
Source accuracy feedback logging.

Records whether events from a source turned out to be accurate so the trust
table can be recalibrated offline. Recording has no effect on verification
passes already in flight.
"""

import json
import logging
import os
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional

from .trust import SourceTrustTable

logger = logging.getLogger(__name__)

DEFAULT_FEEDBACK_LOG = os.getenv("TRUST_FEEDBACK_LOG", "source_trust_feedback.jsonl")


@dataclass
class FeedbackSummary:
    source: str
    accurate: int = 0
    total: int = 0

    @property
    def accuracy(self) -> float:
        return self.accurate / self.total if self.total else 0.0


class TrustFeedbackLogger:
    """Appends per-source accuracy feedback to a JSONL file."""

    def __init__(self, log_file: str = DEFAULT_FEEDBACK_LOG):
        self.log_file = log_file

    def record(self, source: str, is_accurate: bool, event_id: Optional[str] = None) -> dict:
        """
        Record one piece of accuracy feedback.

        Args:
            source: Source tag the feedback is about
            is_accurate: Whether the reported event turned out to be correct
            event_id: Optional event the feedback refers to

        Returns:
            The record that was written
        """
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source": source,
            "is_accurate": bool(is_accurate),
            "event_id": event_id,
        }
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
        logger.info("Source %s: %s", source, "accurate" if is_accurate else "inaccurate")
        return record

    def _iter_records(self) -> Iterator[dict]:
        if not os.path.exists(self.log_file):
            return
        with open(self.log_file, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed feedback line %d in %s", line_no, self.log_file)

    def summarize(self) -> Dict[str, FeedbackSummary]:
        """Aggregate feedback into per-source accuracy counts."""
        summaries: Dict[str, FeedbackSummary] = defaultdict(lambda: FeedbackSummary(source=""))
        for record in self._iter_records():
            source = record.get("source") or "unknown"
            summary = summaries[source]
            summary.source = source
            summary.total += 1
            if record.get("is_accurate"):
                summary.accurate += 1
        return dict(summaries)


def recalibrate(
    table: SourceTrustTable,
    summaries: Dict[str, FeedbackSummary],
    min_samples: int = 20,
    prior_strength: float = 50.0,
    ceiling: float = 0.99,
) -> SourceTrustTable:
    """Propose a new table blending current trust with observed accuracy.

    Sources with fewer than ``min_samples`` reports keep their current value.
    The blend weight is ``n / (n + prior_strength)`` so a handful of reports
    cannot swing an established source.
    """
    updated = table
    for source, summary in summaries.items():
        if summary.total < min_samples:
            continue
        weight = summary.total / (summary.total + prior_strength)
        current = table.trust_for(source)
        proposed = (1 - weight) * current + weight * summary.accuracy
        updated = updated.with_trust(source, min(ceiling, max(0.0, proposed)))
    return updated
