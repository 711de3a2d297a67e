import os
import sys
from datetime import date

import pytest

# Ensure the project root is on the import path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from community.flags import flag_event
from ingest.event_store import InMemoryEventStore
from ingest.schemas import EventStatus, FlagStatus, IssueType, StoredEvent
from verification.settings import VerificationSettings


@pytest.fixture
def store():
    return InMemoryEventStore([StoredEvent(id="evt-1", title="Salsa Night", start_date=date(2025, 6, 10))])


def test_two_flags_leave_event_active(store):
    flag_event(store, "evt-1", "user-1", "wrong_time")
    flag_event(store, "evt-1", "user-2", "wrong_time", "Starts at 8 not 7")

    assert store.get_event("evt-1").status == EventStatus.ACTIVE
    assert store.count_pending_flags("evt-1") == 2


def test_third_flag_hides_event(store):
    for user in ("user-1", "user-2", "user-3"):
        flag_event(store, "evt-1", user, "cancelled")
    assert store.get_event("evt-1").status == EventStatus.FLAGGED


def test_flag_is_recorded_as_pending(store):
    flag = flag_event(store, "evt-1", "user-1", "spam", "Link to a shop")
    assert flag.id is not None
    assert flag.issue_type == IssueType.SPAM
    assert flag.status == FlagStatus.PENDING
    assert flag.description == "Link to a shop"


def test_resolved_flags_do_not_count(store):
    first = flag_event(store, "evt-1", "user-1", "duplicate")
    store.flags[first.id] = first.model_copy(update={"status": FlagStatus.RESOLVED})
    flag_event(store, "evt-1", "user-2", "duplicate")
    flag_event(store, "evt-1", "user-3", "duplicate")
    assert store.get_event("evt-1").status == EventStatus.ACTIVE


def test_threshold_is_configurable(store):
    flag_event(store, "evt-1", "user-1", "other", settings=VerificationSettings(flag_threshold=1))
    assert store.get_event("evt-1").status == EventStatus.FLAGGED


def test_archived_event_is_not_reopened(store):
    store.set_event_status("evt-1", EventStatus.ARCHIVED)
    for user in ("user-1", "user-2", "user-3"):
        flag_event(store, "evt-1", user, "wrong_date")
    assert store.get_event("evt-1").status == EventStatus.ARCHIVED


def test_invalid_issue_type(store):
    with pytest.raises(ValueError, match="Invalid issue type"):
        flag_event(store, "evt-1", "user-1", "boring")
    assert store.flags == {}


def test_unknown_event(store):
    with pytest.raises(LookupError):
        flag_event(store, "evt-404", "user-1", "spam")
