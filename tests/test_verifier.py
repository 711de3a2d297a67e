import os
import sys
import threading
from datetime import date, datetime, time, timezone
from unittest.mock import Mock

import pytest

# Ensure the project root is on the import path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from ingest.event_store import InMemoryEventStore, StoreError
from ingest.schemas import CandidateEvent, StoredEvent
from verification.settings import VerificationSettings
from verification.trust import DEFAULT_SOURCES, SourceTrustTable
from verification.verifier import Decision, Verifier, decide, verify_all_events

TABLE = SourceTrustTable.from_sources(DEFAULT_SOURCES)


def stored(event_id, **overrides):
    data = {
        "id": event_id,
        "title": "Yoga Flow",
        "start_date": date(2025, 6, 10),
        "start_time": time(9, 0),
        "venue_name": "Studio A",
        "source_tag": "meetup",
    }
    data.update(overrides)
    return StoredEvent(**data)


def candidate(source_tag="firecrawl-business", **overrides):
    data = {
        "title": "Yoga Flow",
        "start_date": date(2025, 6, 10),
        "start_time": time(9, 0),
        "venue_name": "Studio A",
        "source_tag": source_tag,
    }
    data.update(overrides)
    return CandidateEvent(**data)


def test_no_matches_uses_base_trust():
    verifier = Verifier(InMemoryEventStore(), TABLE)
    result = verifier.verify(candidate("meetup"))

    assert result.match_count == 0
    assert result.corroboration_score == 0.0
    assert result.final_confidence == 0.70
    assert result.details == ["No corroborating sources found"]
    assert result.decision == Decision.REVIEW


def test_corroboration_from_two_sources():
    store = InMemoryEventStore([
        stored("evt-1", source_tag="tourism-squamish"),
        stored("evt-2", title="Morning Yoga Flow", start_time=time(9, 15), source_tag="meetup"),
    ])
    result = Verifier(store, TABLE).verify(candidate())

    # 1.0 * 0.88 * 0.1 + 0.85 * 0.70 * 0.1
    assert result.match_count == 2
    assert result.corroboration_score == pytest.approx(0.1475)
    assert result.final_confidence == pytest.approx(0.7475)
    assert result.decision == Decision.REVIEW
    assert [s.event_id for s in result.sources] == ["evt-1", "evt-2"]
    assert "Match from tourism-squamish (100% similar, trust: 0.88)" in result.details


def test_near_duplicate_across_sources_raises_confidence():
    store = InMemoryEventStore([
        stored("evt-b", title="Morning Vinyasa", start_time=time(9, 15), venue_name="Shala Yoga",
               source_tag="firecrawl-aggregator"),
    ])
    event = candidate("mindbody-api", title="Morning Vinyasa Flow", venue_name="Shala Yoga")
    result = Verifier(store, TABLE).verify(event)

    assert result.match_count == 1
    assert result.sources[0].similarity == 0.85
    assert result.final_confidence > TABLE.trust_for("mindbody-api")
    assert result.final_confidence == 0.99


def test_corroboration_is_capped_and_confidence_ceiling_holds():
    store = InMemoryEventStore([stored(f"evt-{i}", source_tag="mindbody-api") for i in range(6)])
    result = Verifier(store, TABLE).verify(candidate("mindbody-api"))

    assert result.corroboration_score == 0.3
    assert result.final_confidence == 0.99
    assert result.decision == Decision.AUTO_APPROVE


def test_more_matches_never_lower_confidence():
    store = InMemoryEventStore([stored("evt-1")])
    verifier = Verifier(store, TABLE)
    before = verifier.verify(candidate()).final_confidence

    store.events["evt-2"] = stored("evt-2", source_tag="community-unverified")
    after = verifier.verify(candidate()).final_confidence
    assert after >= before


def test_verify_is_idempotent():
    store = InMemoryEventStore([stored("evt-1"), stored("evt-2", source_tag="tourism-squamish")])
    verifier = Verifier(store, TABLE)
    first = verifier.verify(candidate())
    second = verifier.verify(candidate())
    assert first == second


def test_stored_event_excludes_itself():
    own = stored("evt-1", source_tag="meetup")
    store = InMemoryEventStore([own])
    result = Verifier(store, TABLE).verify(own)
    assert result.event_id == "evt-1"
    assert result.match_count == 0


def test_unknown_source_floor():
    result = Verifier(InMemoryEventStore(), TABLE).verify(candidate("random-blog"))
    assert result.base_trust == 0.40
    assert result.decision == Decision.REJECT


@pytest.mark.parametrize(
    "confidence,expected",
    [
        (0.90, Decision.AUTO_APPROVE),
        (0.85, Decision.AUTO_APPROVE),
        (0.70, Decision.REVIEW),
        (0.60, Decision.REVIEW),
        (0.59, Decision.REJECT),
        (0.30, Decision.REJECT),
    ],
)
def test_decide_thresholds(confidence, expected):
    assert decide(confidence, VerificationSettings()) == expected


def test_settings_reject_inverted_thresholds():
    with pytest.raises(ValueError):
        VerificationSettings(auto_approve_threshold=0.5, review_threshold=0.7)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("VERIFY_MATCH_THRESHOLD", "0.7")
    monkeypatch.setenv("FLAG_THRESHOLD", "5")
    settings = VerificationSettings.from_env()
    assert settings.match_threshold == 0.7
    assert settings.flag_threshold == 5
    assert settings.auto_approve_threshold == 0.85


def _sweep_store():
    return InMemoryEventStore([
        stored("evt-1", created_at=datetime(2025, 6, 1, tzinfo=timezone.utc)),
        stored("evt-2", source_tag="tourism-squamish", created_at=datetime(2025, 6, 2, tzinfo=timezone.utc)),
        stored("evt-3", title="Pottery", venue_name="Clay House", source_tag="firecrawl-business",
               created_at=datetime(2025, 6, 3, tzinfo=timezone.utc)),
    ])


def test_verify_all_events_persists_scores():
    store = _sweep_store()
    sleep = Mock()
    results = verify_all_events(Verifier(store, TABLE), sleep=sleep)

    assert len(results) == 3
    assert all(e.verified_at is not None for e in store.events.values())
    assert store.events["evt-3"].confidence_score == 0.60
    assert store.events["evt-1"].verification_sources[0].event_id == "evt-2"
    assert sleep.call_count == 2
    assert store.find_unverified(10) == []


def test_verify_all_events_skips_failures():
    store = _sweep_store()
    original = store.record_verification

    def flaky(event_id, **kwargs):
        if event_id == "evt-2":
            raise StoreError("write failed")
        return original(event_id, **kwargs)

    store.record_verification = flaky
    results = verify_all_events(Verifier(store, TABLE), sleep=Mock())

    assert len(results) == 2
    assert store.events["evt-2"].verified_at is None
    assert store.events["evt-1"].verified_at is not None


def test_verify_all_events_honours_stop():
    store = _sweep_store()
    stop = threading.Event()
    stop.set()
    assert verify_all_events(Verifier(store, TABLE), stop=stop, sleep=Mock()) == []
    assert len(store.find_unverified(10)) == 3


def test_verify_all_events_respects_limit():
    store = _sweep_store()
    results = verify_all_events(Verifier(store, TABLE), limit=1, sleep=Mock())
    assert [r.event_id for r in results] == ["evt-3"]


def test_verify_all_events_zero_limit_verifies_nothing():
    store = _sweep_store()
    assert verify_all_events(Verifier(store, TABLE), limit=0, sleep=Mock()) == []
    assert len(store.find_unverified(10)) == 3
