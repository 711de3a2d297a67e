"""Route a file of community submissions through AI moderation.

The input is a JSON list of ``{"user_id": ..., "event_data": {...}}`` objects.
"""
from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import List

from community.submissions import SubmissionOutcome, SubmissionRouter
from ingest.api_client import ApiEventStore
from ingest.event_store import StoreError
from scrapers.llm_backend import OpenAIBackend
from verification.settings import VerificationSettings

logger = logging.getLogger(__name__)
if os.getenv("SCRAPER_DEBUG"):
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def run(path: str, router: SubmissionRouter | None = None, sleep=time.sleep) -> List[SubmissionOutcome]:
    """Process every submission in ``path``, pausing between LLM calls."""
    settings = VerificationSettings.from_env()
    router = router or SubmissionRouter(ApiEventStore(), OpenAIBackend(), settings)

    with open(path, "r", encoding="utf-8") as f:
        items = json.load(f)

    outcomes: List[SubmissionOutcome] = []
    for index, item in enumerate(items):
        title = item.get("event_data", {}).get("title", "<unknown>")
        try:
            outcome = router.process_submission(item["event_data"], item["user_id"])
        except (KeyError, ValueError) as exc:
            print("❌ Invalid submission:", title, exc)
            continue
        except StoreError as exc:
            logger.error("Store failure while processing %s: %s", title, exc)
            print("❌ Failed to process submission:", title, exc)
            continue
        outcomes.append(outcome)
        print(f"{outcome.status.value:>9}: {title} ({outcome.reason})")

        if index < len(items) - 1:
            sleep(settings.batch_delay_seconds)

    logger.info("Processed %d of %d submission(s)", len(outcomes), len(items))
    return outcomes


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python -m jobs.process_submissions <submissions.json>")
        raise SystemExit(1)
    run(sys.argv[1])
