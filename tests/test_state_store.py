"""Tests for the state document model and the State Store."""

import datetime
import json

import pytest

from vigil.manifest_types import (
    LastSession,
    ManifestConfig,
    ManifestFormatError,
    ManifestState,
    SessionHistoryEntry,
    Task,
    TrackedArtifact,
)
from vigil.state_store import (
    MALFORMED,
    NOT_FOUND,
    WRITE_CONFLICT,
    StateStore,
    StateStoreError,
    deserialize_state,
    serialize_state,
)

NOW = datetime.datetime(2026, 3, 10, 12, 0, tzinfo=datetime.UTC)


@pytest.fixture
def full_state():
    return ManifestState(
        artifacts={
            "MEMORY.md": TrackedArtifact(
                path="MEMORY.md",
                base_weight=0.9,
                type="core",
                last_access=datetime.date(2026, 3, 9),
                access_count=4,
                decay_rate=0.0,
                summary="Index of everything",
            ),
            "memory/topics/rust.md": TrackedArtifact(
                path="memory/topics/rust.md",
                base_weight=0.4,
                type="topic",
                last_access=datetime.date(2026, 3, 1),
                access_count=1,
            ),
        },
        task_queue=[
            Task(
                text="Review cron jobs",
                context="weekly",
                priority=0,
                category="research",
                impact="low",
                tags={"research", "ops"},
                created_at=NOW - datetime.timedelta(hours=5),
                skip_count=2,
                source="manual",
                dependencies=["fix-the-boot-script"],
            )
        ],
        active_task=Task(
            text="Fix the boot script",
            category="survival",
            impact="critical",
            tags={"survival"},
            created_at=NOW,
            blocks_others=True,
        ),
        session_history=[
            SessionHistoryEntry(
                date=NOW - datetime.timedelta(days=1),
                category="memory",
                task_name="Consolidate notes",
                task_key="consolidate-notes@2026-03-09T10:00:00+00:00",
            )
        ],
        completed_signatures={"consolidate-notes", "b-task"},
        recent_topics=["rust", "sqlite"],
        last_session=LastSession(date="2026-03-09", focus="Consolidate notes", outcome="completed"),
        last_decay_run=datetime.date(2026, 3, 9),
        config=ManifestConfig(max_boot_files=5, weight_decay_per_day=0.03, min_core_weight=0.6),
        revision=7,
    )


class TestSerialization:
    def test_round_trip_reproduces_every_field(self, full_state):
        assert deserialize_state(serialize_state(full_state)) == full_state

    def test_wire_keys_are_camel_case(self, full_state):
        data = json.loads(serialize_state(full_state))
        assert set(data) >= {
            "artifacts",
            "taskQueue",
            "activeTask",
            "sessionHistory",
            "completedSignatures",
            "recentTopics",
            "lastSession",
            "lastDecayRun",
            "config",
            "revision",
        }
        assert data["completedSignatures"] == ["b-task", "consolidate-notes"]
        assert data["artifacts"]["MEMORY.md"]["lastAccess"] == "2026-03-09"
        assert data["taskQueue"][0]["task"] == "Review cron jobs"
        assert data["config"]["minCoreWeight"] == 0.6

    def test_invalid_json(self):
        with pytest.raises(ManifestFormatError):
            deserialize_state("{not json")

    def test_legacy_keys(self):
        text = json.dumps(
            {
                "files": {"a.md": {"weight": 0.5, "lastAccess": "2026-03-01"}},
                "nextTask": {"task": "Do it"},
                "sessionHistory": [
                    {
                        "date": "2026-03-01T00:00:00Z",
                        "taskCategory": "memory",
                        "taskName": "Old",
                    }
                ],
            }
        )
        state = deserialize_state(text)
        assert state.artifacts["a.md"].base_weight == 0.5
        assert state.active_task.text == "Do it"
        assert state.session_history[0].category == "memory"

    def test_malformed_task_is_kept_for_backfill(self):
        state = deserialize_state(
            json.dumps({"taskQueue": [{"task": "Tidy notes", "category": "bogus"}]})
        )
        task = state.task_queue[0]
        assert task.category is None
        assert task.created_at is None
        assert task.impact == "medium"


class TestStateStore:
    def test_missing_document_is_not_found(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        result = store.read()
        assert not result.ok
        assert result.error == NOT_FOUND
        assert "State store unavailable" in result.message

    def test_load_missing_raises_and_creates_nothing(self, tmp_path):
        path = tmp_path / "state.json"
        store = StateStore(path)
        with pytest.raises(StateStoreError) as exc_info:
            store.load()
        assert exc_info.value.kind == NOT_FOUND
        assert not path.exists()

    def test_malformed_document(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("[1, 2, 3]")
        result = StateStore(path).read()
        assert result.error == MALFORMED

    def test_create_then_load(self, tmp_path, full_state):
        store = StateStore(tmp_path / "ops" / "state.json")
        store.create(full_state)
        loaded = store.load()
        assert loaded.revision == 0
        assert loaded.active_task.text == "Fix the boot script"

    def test_create_refuses_existing(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        store.create()
        with pytest.raises(StateStoreError) as exc_info:
            store.create()
        assert exc_info.value.kind == WRITE_CONFLICT

    def test_save_bumps_revision(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        store.create()
        state = store.load()
        state.recent_topics.append("rust")
        store.save(state)
        assert state.revision == 1
        assert store.load().recent_topics == ["rust"]

    def test_stale_copy_is_refused(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        store.create()
        stale = store.load()
        fresh = store.load()
        fresh.recent_topics.append("appended")
        store.save(fresh)

        stale.recent_topics.append("overwrite")
        with pytest.raises(StateStoreError) as exc_info:
            store.save(stale)
        assert exc_info.value.kind == WRITE_CONFLICT
        assert store.load().recent_topics == ["appended"]

    def test_save_when_document_vanished(self, tmp_path):
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.create()
        state = store.load()
        path.unlink()
        with pytest.raises(StateStoreError) as exc_info:
            store.save(state)
        assert exc_info.value.kind == NOT_FOUND
        assert not path.exists()

    def test_no_temp_file_left_behind(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        store.create()
        store.save(store.load())
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]
