"""Tests for the intelligent task generator -- scan and rule cascade."""

import datetime
import os

import pytest

from vigil.config import GeneratorConfig, VigilConfig
from vigil.manifest_types import (
    ManifestState,
    SessionHistoryEntry,
    Task,
    TrackedArtifact,
)
from vigil.task_generator import (
    GenerationContext,
    WorkspaceSignals,
    _read_frontmatter,
    find_missing_paths,
    find_recent_files,
    find_stale_artifacts,
    generate_next_task,
    generate_task,
    is_settled,
)

NOW = datetime.datetime.now(datetime.UTC)


def _age(path, days):
    ts = (NOW - datetime.timedelta(days=days)).timestamp()
    os.utime(path, (ts, ts))


def _write(root, rel, text="x", days_old=None):
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    if days_old is not None:
        _age(path, days_old)
    return path


def _track(state, rel):
    state.artifacts[rel] = TrackedArtifact(path=rel, base_weight=0.5)


@pytest.fixture
def workspace(tmp_path):
    """A workspace with every required structural path present."""
    _write(tmp_path, "MEMORY.md", days_old=10)
    _write(tmp_path, "memory/index.md", days_old=10)
    (tmp_path / "memory" / "daily").mkdir(parents=True)
    return tmp_path


def _ctx(signals=None, state=None, config=None):
    return GenerationContext(
        signals=signals or WorkspaceSignals(),
        state=state or ManifestState(),
        config=config or VigilConfig(),
        now=NOW,
    )


# ---------------------------------------------------------------------------
# Frontmatter
# ---------------------------------------------------------------------------


class TestFrontmatter:
    def test_reads_mapping(self, tmp_path):
        path = _write(tmp_path, "a.md", "---\nstatus: archived\n---\nbody\n")
        assert _read_frontmatter(path) == {"status": "archived"}

    def test_no_frontmatter(self, tmp_path):
        assert _read_frontmatter(_write(tmp_path, "a.md", "# title\n")) == {}

    def test_malformed_yaml(self, tmp_path):
        path = _write(tmp_path, "a.md", "---\nkey: [unclosed\n---\n")
        assert _read_frontmatter(path) == {}

    def test_missing_file(self, tmp_path):
        assert _read_frontmatter(tmp_path / "nope.md") == {}

    @pytest.mark.parametrize(
        "header",
        ["status: archived", "status: Reviewed", "archived: true", "reviewed: 2026-03-01"],
    )
    def test_settled_markers(self, tmp_path, header):
        path = _write(tmp_path, "a.md", f"---\n{header}\n---\nbody\n")
        assert is_settled(path)

    def test_active_note_not_settled(self, tmp_path):
        path = _write(tmp_path, "a.md", "---\nstatus: active\n---\nbody\n")
        assert not is_settled(path)

    def test_non_markdown_never_settled(self, tmp_path):
        path = _write(tmp_path, "a.json", "---\nstatus: archived\n---\n")
        assert not is_settled(path)


# ---------------------------------------------------------------------------
# Scan
# ---------------------------------------------------------------------------


class TestScan:
    def test_missing_paths(self, tmp_path):
        _write(tmp_path, "MEMORY.md")
        missing = find_missing_paths(tmp_path, GeneratorConfig().required_paths)
        assert missing == ["memory/index.md", "memory/daily"]

    def test_stale_excludes_archived_and_reviewed(self, workspace):
        state = ManifestState()
        for i in range(3):
            _track(state, f"memory/topics/t{i}.md")
            _write(workspace, f"memory/topics/t{i}.md", days_old=5)
        _track(state, "memory/topics/old.md")
        _write(
            workspace,
            "memory/topics/old.md",
            "---\nstatus: archived\n---\n",
            days_old=30,
        )
        _track(state, "memory/topics/checked.md")
        _write(
            workspace,
            "memory/topics/checked.md",
            "---\nreviewed: 2026-01-01\n---\n",
            days_old=30,
        )
        _track(state, "memory/topics/fresh.md")
        _write(workspace, "memory/topics/fresh.md")
        _track(state, "memory/topics/gone.md")

        stale = find_stale_artifacts(workspace, state, NOW, 3)
        assert stale == [f"memory/topics/t{i}.md" for i in range(3)]

    def test_recent_files_excludes_auto_generated(self, workspace):
        _write(workspace, "memory/daily/today.md")
        _write(workspace, "memory/sessions/s1.md")
        _write(workspace, "memory/manifest.json")
        _write(workspace, "memory/topics/old.md", days_old=3)
        recent = find_recent_files(
            workspace, "memory", NOW, 24, GeneratorConfig().auto_generated_patterns
        )
        assert recent == ["memory/daily/today.md"]

    def test_recent_files_missing_root(self, tmp_path):
        assert find_recent_files(tmp_path, "memory", NOW, 24, ()) == []


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------


class TestCascade:
    def test_missing_structure_wins_over_everything(self):
        signals = WorkspaceSignals(
            missing_paths=["MEMORY.md"],
            stale_artifacts=["a", "b", "c", "d"],
            recent_files=[f"f{i}" for i in range(10)],
        )
        state = ManifestState(recent_topics=["rust"])
        result = generate_task(_ctx(signals, state))
        task = result.task
        assert task.source == "missing-structure"
        assert task.category == "survival"
        assert task.priority == 1
        assert task.blocks_others
        assert "MEMORY.md" in task.context
        assert [r.rule for r in result.rules] == ["missing-structure"]

    def test_stale_needs_more_than_threshold(self):
        two = _ctx(WorkspaceSignals(stale_artifacts=["a", "b"]))
        assert generate_task(two).task.source == "strategic-planning"
        three = _ctx(WorkspaceSignals(stale_artifacts=["a", "b", "c"]))
        result = generate_task(three)
        assert result.task.source == "staleness-analysis"
        assert result.task.category == "memory"

    def test_burst(self):
        signals = WorkspaceSignals(recent_files=[f"f{i}" for i in range(6)])
        task = generate_task(_ctx(signals)).task
        assert task.source == "fragmentation-detection"
        assert task.category == "memory"

    def test_burst_on_cooldown_falls_through(self):
        signals = WorkspaceSignals(recent_files=[f"f{i}" for i in range(6)])
        state = ManifestState(
            recent_topics=["sqlite"],
            session_history=[
                SessionHistoryEntry(
                    date=NOW - datetime.timedelta(hours=1),
                    category="memory",
                    task_name="Consolidate recent learnings",
                )
            ],
        )
        task = generate_task(_ctx(signals, state)).task
        assert task.source == "topic-momentum"

    def test_topic_momentum_uses_most_recent_topic(self):
        state = ManifestState(recent_topics=["sqlite", "rust"])
        task = generate_task(_ctx(state=state)).task
        assert task.source == "topic-momentum"
        assert task.category == "expansion"
        assert "sqlite" in task.text

    def test_default(self):
        result = generate_task(_ctx())
        assert result.task.source == "strategic-planning"
        assert result.task.text == "Add cross-reference integrity checker"
        assert result.task.category == "infrastructure"
        assert result.task.created_at == NOW
        assert [r.triggered for r in result.rules] == [False, False, False, False, True]


def _session(category, name="earlier work", hours_ago=48):
    return SessionHistoryEntry(
        date=NOW - datetime.timedelta(hours=hours_ago),
        category=category,
        task_name=name,
    )


class TestStrategicBacklog:
    def test_condition_gates_item(self):
        state = ManifestState()
        _track(state, "memory/topics/a.md")
        task = generate_task(_ctx(state=state)).task
        assert task.text == "Audit artifact weights against recent use"
        assert task.category == "memory"
        assert task.impact == "high"
        assert task.priority == 2

    def test_skips_categories_of_last_two_sessions(self):
        state = ManifestState(
            session_history=[
                _session("research", "oldest"),
                _session("memory", "older"),
                _session("infrastructure", "latest"),
            ]
        )
        _track(state, "memory/topics/a.md")
        task = generate_task(_ctx(state=state)).task
        # research is three sessions back, so it is allowed again
        assert task.text == "Review open problems from recent sessions"
        assert task.category == "research"

    def test_skips_completed_and_queued_items(self):
        state = ManifestState(
            completed_signatures={"add-cross-reference-integrity-checker"},
            session_history=[_session("survival")],
        )
        task = generate_task(_ctx(state=state)).task
        assert task.text == "Review open problems from recent sessions"

    def test_exhausted_backlog_falls_back_to_planning(self):
        state = ManifestState(
            session_history=[_session("memory"), _session("infrastructure")],
        )
        state.task_queue.append(
            Task(text="Review open problems from recent sessions", created_at=NOW)
        )
        task = generate_task(_ctx(state=state)).task
        assert task.text == "Design next capability expansion"
        assert task.category == "expansion"
        assert task.source == "strategic-planning"


class TestGenerateNextTask:
    def test_end_to_end_missing_structure(self, tmp_path):
        result = generate_next_task(tmp_path, ManifestState(), VigilConfig(), NOW)
        assert result.task.source == "missing-structure"

    def test_end_to_end_archived_content_does_not_trigger(self, workspace):
        state = ManifestState()
        for i in range(4):
            rel = f"memory/topics/t{i}.md"
            _track(state, rel)
            _write(workspace, rel, "---\nstatus: archived\n---\n", days_old=20)
        result = generate_next_task(workspace, state, VigilConfig(), NOW)
        assert result.task.source == "strategic-planning"

    def test_end_to_end_burst(self, workspace):
        for i in range(6):
            _write(workspace, f"memory/daily/n{i}.md")
        result = generate_next_task(workspace, ManifestState(), VigilConfig(), NOW)
        assert result.task.source == "fragmentation-detection"
