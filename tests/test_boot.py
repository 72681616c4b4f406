"""Tests for boot context ranking and rendering."""

import datetime

from vigil.boot import rank_artifacts, render_boot_context
from vigil.manifest_types import (
    LastSession,
    ManifestConfig,
    ManifestState,
    Task,
    TrackedArtifact,
)
from vigil.scoring import ScoringContext, rank_tasks

NOW = datetime.datetime(2026, 3, 10, 12, 0, tzinfo=datetime.UTC)
TODAY = NOW.date()


def _art(path, weight, type_="topic", days=0, count=0):
    return TrackedArtifact(
        path=path,
        base_weight=weight,
        type=type_,
        last_access=TODAY - datetime.timedelta(days=days),
        access_count=count,
    )


def _state(**kw):
    arts = [
        _art("MEMORY.md", 0.2, "core", days=365),
        _art("memory/b.md", 0.4),
        _art("memory/a.md", 0.4),
        _art("memory/old.md", 0.9, days=30),
    ]
    return ManifestState(artifacts={a.path: a for a in arts}, **kw)


class TestRankArtifacts:
    def test_order_and_ties(self):
        ranked = rank_artifacts(_state(), NOW)
        assert [r.artifact.path for r in ranked] == [
            "MEMORY.md",
            "memory/a.md",
            "memory/b.md",
            "memory/old.md",
        ]
        # core artifact lifted to the minimum core weight
        assert ranked[0].weight == 0.5

    def test_respects_max_boot_files(self):
        state = _state(config=ManifestConfig(max_boot_files=2))
        assert len(rank_artifacts(state, NOW)) == 2

    def test_empty(self):
        assert rank_artifacts(ManifestState(), NOW) == []


class TestRender:
    def test_sections(self):
        state = _state(
            active_task=Task(text="Fix boot", category="survival", context="urgent"),
            last_session=LastSession(date="2026-03-09", focus="Notes", outcome="completed"),
            recent_topics=["rust", "sqlite"],
        )
        queue_tasks = [
            Task(text=f"Task {i}", category="research", created_at=NOW) for i in range(7)
        ]
        queue = rank_tasks(queue_tasks, ScoringContext(now=NOW))
        text = render_boot_context(state, NOW, queue, active_score=0.72)

        assert text.startswith("# Boot context (2026-03-10)")
        assert "- [survival] Fix boot -- 0.720 [#######...]" in text
        assert "- 2026-03-09: Notes (completed)" in text
        assert "- MEMORY.md (0.500, core)" in text
        assert "rust, sqlite" in text
        assert "## Queue (7)" in text
        assert "... and 2 more" in text

    def test_no_active_task(self):
        text = render_boot_context(ManifestState(), NOW)
        assert "- none" in text
        assert "- no tracked artifacts" in text
        assert "## Last session" not in text
        assert "## Queue" not in text
