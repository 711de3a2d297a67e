import json
import os
import sys
from datetime import date, time
from unittest.mock import Mock

import pytest

# Ensure the project root is on the import path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from ingest.schemas import MULTI_SOURCE_VERIFIED, CandidateEvent, StoredEvent
from verification.merger import highest_trust, merge_events
from verification.trust import DEFAULT_SOURCES, SourceTrustTable

TABLE = SourceTrustTable.from_sources(DEFAULT_SOURCES)


def stored(event_id, source_tag, **overrides):
    data = {
        "id": event_id,
        "title": "Yoga Flow",
        "start_date": date(2025, 6, 10),
        "start_time": time(9, 0),
        "venue_name": "Studio A",
        "source_tag": source_tag,
    }
    data.update(overrides)
    return StoredEvent(**data)


@pytest.fixture
def duplicates():
    return [
        stored("evt-1", "meetup", description="Bring a mat"),
        stored("evt-2", "tourism-squamish", image_url="https://example.com/yoga.jpg"),
        stored("evt-3", "firecrawl-business"),
    ]


def test_single_event_returned_unchanged():
    event = stored("evt-1", "meetup")
    backend = Mock()
    assert merge_events([event], TABLE, backend=backend) is event
    backend.complete.assert_not_called()


def test_empty_input_is_an_error():
    with pytest.raises(ValueError):
        merge_events([], TABLE, backend=Mock())


def test_highest_trust_prefers_trusted_source(duplicates):
    assert highest_trust(duplicates, TABLE).id == "evt-2"


def test_highest_trust_ties_keep_first():
    events = [stored("evt-1", "mindbody-widget"), stored("evt-2", "wellnessliving-widget")]
    assert highest_trust(events, TABLE).id == "evt-1"


def test_merge_uses_reconciled_record(duplicates):
    backend = Mock()
    backend.complete.return_value = "```json\n" + json.dumps({
        "merged_event": {
            "title": "Yoga Flow",
            "description": "Bring a mat",
            "start_date": "2025-06-10",
            "start_time": "09:00",
            "venue_name": "Studio A",
            "image_url": "https://example.com/yoga.jpg",
        },
        "source_ids": ["evt-1", "evt-2", "evt-3"],
        "merge_notes": "Description from meetup, image from tourism",
    }) + "\n```"

    merged = merge_events(duplicates, TABLE, backend=backend)

    assert isinstance(merged, CandidateEvent)
    assert merged.description == "Bring a mat"
    assert merged.image_url == "https://example.com/yoga.jpg"
    assert merged.merged_from == ("evt-1", "evt-2", "evt-3")
    assert merged.source_tag == "tourism-squamish"
    assert MULTI_SOURCE_VERIFIED in merged.annotations


def test_merge_falls_back_on_unparseable_response(duplicates):
    backend = Mock()
    backend.complete.return_value = "I could not merge these."
    merged = merge_events(duplicates, TABLE, backend=backend)
    assert merged is duplicates[1]


def test_merge_falls_back_when_backend_raises(duplicates):
    backend = Mock()
    backend.complete.side_effect = RuntimeError("rate limited")
    assert merge_events(duplicates, TABLE, backend=backend) is duplicates[1]


def test_merge_falls_back_on_invalid_merged_record(duplicates):
    backend = Mock()
    backend.complete.return_value = json.dumps({"merged_event": {"title": "", "start_date": "soon"}})
    assert merge_events(duplicates, TABLE, backend=backend) is duplicates[1]
