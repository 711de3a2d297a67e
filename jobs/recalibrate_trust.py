"""Summarize source accuracy feedback and propose recalibrated trust values."""
from __future__ import annotations

import argparse
import logging
import os

from verification.trust import SourceTrustTable, export_trust_table
from verification.trust_feedback import DEFAULT_FEEDBACK_LOG, TrustFeedbackLogger, recalibrate

logger = logging.getLogger(__name__)
if os.getenv("SCRAPER_DEBUG"):
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def run(log_file: str = DEFAULT_FEEDBACK_LOG, output: str | None = None, min_samples: int = 20) -> SourceTrustTable:
    """Print per-source accuracy and optionally write the proposed table."""
    table = SourceTrustTable.default()
    summaries = TrustFeedbackLogger(log_file).summarize()
    if not summaries:
        print("No feedback recorded in", log_file)
        return table

    proposed = recalibrate(table, summaries, min_samples=min_samples)
    for source, summary in sorted(summaries.items()):
        print(
            f"{source:<24} {summary.accurate:>4}/{summary.total:<4} "
            f"accuracy {summary.accuracy:.2f}  trust {table.trust_for(source):.2f} -> {proposed.trust_for(source):.2f}"
        )

    if output:
        export_trust_table(proposed, output)
        print("📝 Wrote trust table to", output)
    return proposed


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Recalibrate source trust from feedback")
    parser.add_argument("--log-file", default=DEFAULT_FEEDBACK_LOG)
    parser.add_argument("--output", help="Write the proposed table as JSON to this path")
    parser.add_argument("--min-samples", type=int, default=20)
    args = parser.parse_args()
    run(args.log_file, args.output, args.min_samples)
