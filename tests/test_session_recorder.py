"""Tests for the session recorder."""

import datetime

import pytest

from vigil.session_recorder import SessionRecorder
from vigil.state_store import StateStore

NOW = datetime.datetime(2026, 3, 10, 12, 0, tzinfo=datetime.UTC)


@pytest.fixture
def store(tmp_path):
    s = StateStore(tmp_path / "state.json")
    s.create()
    return s


class TestRecord:
    def test_appends_and_saves(self, store):
        recorder = SessionRecorder(store)
        assert recorder.record("memory", "Consolidate notes", task_key="k1", now=NOW)
        history = store.load().session_history
        assert len(history) == 1
        assert history[0].task_name == "Consolidate notes"
        assert history[0].date == NOW
        assert history[0].task_key == "k1"

    def test_same_key_recorded_once(self, store):
        recorder = SessionRecorder(store)
        recorder.record("memory", "Consolidate notes", task_key="k1", now=NOW)
        assert not recorder.record("memory", "Consolidate notes", task_key="k1", now=NOW)
        assert len(store.load().session_history) == 1

    def test_same_key_different_outcome_is_separate(self, store):
        recorder = SessionRecorder(store)
        recorder.record("memory", "x", "abandoned", task_key="k1", now=NOW)
        recorder.record("memory", "x", "completed", task_key="k1", now=NOW)
        assert len(store.load().session_history) == 2

    def test_unkeyed_entries_always_append(self, store):
        recorder = SessionRecorder(store)
        recorder.record("research", "x", now=NOW)
        recorder.record("research", "x", now=NOW)
        assert len(store.load().session_history) == 2

    def test_unknown_outcome(self, store):
        with pytest.raises(ValueError, match="outcome"):
            SessionRecorder(store).record("memory", "x", "skipped")

    def test_is_recorded(self, store):
        recorder = SessionRecorder(store)
        assert not recorder.is_recorded("k1")
        recorder.record("memory", "x", task_key="k1", now=NOW)
        assert recorder.is_recorded("k1")
        assert not recorder.is_recorded("k1", "abandoned")

    def test_bumps_revision(self, store):
        SessionRecorder(store).record("memory", "x", now=NOW)
        assert store.load().revision == 1
