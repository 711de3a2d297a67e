import json
import os
import sys
from unittest.mock import Mock, patch

import pytest

# Ensure the project root is on the import path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import start_api
from community.submissions import SubmissionRouter
from ingest.event_store import InMemoryEventStore, StoreError
from ingest.schemas import SubmissionStatus
from jobs.process_submissions import run


class FakeBackend:
    """Returns the same verdict for every prompt."""

    def __init__(self, response):
        self.response = response
        self.prompts = []

    def complete(self, prompt, *, max_tokens=1024):
        self.prompts.append(prompt)
        return self.response


class UnreachableForUser(InMemoryEventStore):
    """Store whose reads fail for one submitter."""

    def __init__(self, user_id):
        super().__init__()
        self.user_id = user_id

    def has_approved_submission(self, user_id):
        if user_id == self.user_id:
            raise StoreError("connection reset")
        return super().has_approved_submission(user_id)


def write_submissions(tmp_path, *users):
    path = tmp_path / "submissions.json"
    path.write_text(json.dumps([
        {"user_id": user, "event_data": {"title": f"Salsa Night {user}", "date": "2025-06-10", "venue_name": "The Hall"}}
        for user in users
    ]))
    return str(path)


def test_store_failure_does_not_stop_the_batch(tmp_path):
    store = UnreachableForUser("u1")
    router = SubmissionRouter(store, FakeBackend(json.dumps({"is_valid": True, "confidence": 0.9})))

    outcomes = run(write_submissions(tmp_path, "u1", "u2"), router=router, sleep=Mock())

    assert [o.event.title for o in outcomes] == ["Salsa Night u2"]
    assert outcomes[0].status == SubmissionStatus.APPROVED
    assert [s.user_id for s in store.submissions.values()] == ["u2"]


def test_invalid_entries_are_skipped(tmp_path):
    path = tmp_path / "submissions.json"
    path.write_text(json.dumps([{"event_data": {"title": "No user"}}]))
    router = SubmissionRouter(InMemoryEventStore(), FakeBackend("{}"))
    assert run(str(path), router=router, sleep=Mock()) == []


@patch("start_api.uvicorn.run")
def test_launcher_memory_flag_selects_in_memory_store(mock_run, monkeypatch, capsys):
    monkeypatch.setenv("EVENT_STORE", "api")
    start_api.main(["--memory", "--no-reload"])

    assert os.environ["EVENT_STORE"] == "memory"
    assert "Event store: in-memory" in capsys.readouterr().out
    kwargs = mock_run.call_args.kwargs
    assert kwargs["app"] == "api.main:app"
    assert "reload" not in kwargs


@patch("start_api.uvicorn.run")
def test_launcher_prod_mode_uses_workers(mock_run, monkeypatch):
    monkeypatch.delenv("EVENT_STORE", raising=False)
    start_api.main(["--prod", "--workers", "3", "--port", "9000"])

    kwargs = mock_run.call_args.kwargs
    assert kwargs["workers"] == 3
    assert kwargs["port"] == 9000
    assert "EVENT_STORE" not in os.environ


def test_launcher_refuses_memory_store_across_workers():
    with pytest.raises(SystemExit):
        start_api.main(["--memory", "--prod", "--workers", "2"])
