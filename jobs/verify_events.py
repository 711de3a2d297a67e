"""Score unverified events against corroborating sources and save the results."""
from __future__ import annotations

import argparse
import logging
import os
import threading

from ingest.api_client import ApiEventStore
from verification.settings import VerificationSettings
from verification.trust import SourceTrustTable
from verification.verifier import Verifier, verify_all_events

logger = logging.getLogger(__name__)
if os.getenv("SCRAPER_DEBUG"):
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def run(limit: int | None = None, stop: threading.Event | None = None) -> int:
    """Run one verification sweep and return the number of events scored."""
    verifier = Verifier(ApiEventStore(), SourceTrustTable.default(), VerificationSettings.from_env())
    stop = stop or threading.Event()
    try:
        results = verify_all_events(verifier, limit, stop=stop)
    except KeyboardInterrupt:
        stop.set()
        print("⏹️  Verification interrupted")
        return 0

    for result in results:
        print(
            f"✅ {result.event_id}: {result.final_confidence:.2f} "
            f"({result.match_count} match(es), {result.decision.value})"
        )
    print(f"Verified {len(results)} event(s)")
    return len(results)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Verify unverified events")
    parser.add_argument("--limit", type=int, default=None, help="Maximum events to verify")
    args = parser.parse_args()
    run(args.limit)
