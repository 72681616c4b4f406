"""Boot Context Renderer: what the agent reads first on wake-up.

Artifacts are ranked by effective weight (descending, ties by path) and the
top ``max_boot_files`` are listed together with the active task, the last
session snapshot, recent topics and a short preview of the ranked queue.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass

from vigil.manifest_types import ManifestState, TrackedArtifact
from vigil.scoring import ScoredTask, format_score
from vigil.weights import effective_weight

QUEUE_PREVIEW = 5


@dataclass
class RankedArtifact:
    artifact: TrackedArtifact
    weight: float


def rank_artifacts(
    state: ManifestState, now: datetime.datetime | datetime.date
) -> list[RankedArtifact]:
    """Top ``max_boot_files`` artifacts by effective weight."""
    min_core = state.config.min_core_weight
    ranked = [
        RankedArtifact(art, effective_weight(art, now, min_core))
        for art in state.artifacts.values()
    ]
    ranked.sort(key=lambda r: (-r.weight, r.artifact.path))
    return ranked[: max(0, state.config.max_boot_files)]


def render_boot_context(
    state: ManifestState,
    now: datetime.datetime,
    queue: list[ScoredTask] | None = None,
    active_score: float | None = None,
) -> str:
    """Render the wake-up briefing as markdown text."""
    lines = [f"# Boot context ({now.date().isoformat()})", ""]

    lines.append("## Active task")
    active = state.active_task
    if active is None:
        lines.append("- none (run `vigil next` to select one)")
    else:
        score = f" -- {format_score(active_score)}" if active_score is not None else ""
        lines.append(f"- [{active.category}] {active.text}{score}")
        if active.context:
            lines.append(f"  {active.context}")
    lines.append("")

    last = state.last_session
    if last.date:
        lines.append("## Last session")
        lines.append(f"- {last.date}: {last.focus} ({last.outcome})")
        lines.append("")

    lines.append("## Read first")
    ranked = rank_artifacts(state, now)
    if not ranked:
        lines.append("- no tracked artifacts")
    for r in ranked:
        summary = f" -- {r.artifact.summary}" if r.artifact.summary else ""
        lines.append(f"- {r.artifact.path} ({r.weight:.3f}, {r.artifact.type}){summary}")
    lines.append("")

    if state.recent_topics:
        lines.append("## Recent topics")
        lines.append(", ".join(state.recent_topics))
        lines.append("")

    if queue:
        lines.append(f"## Queue ({len(queue)})")
        for i, scored in enumerate(queue[:QUEUE_PREVIEW], 1):
            lines.append(
                f"{i}. {format_score(scored.score)} [{scored.task.category}] "
                f"{scored.task.text}"
            )
        if len(queue) > QUEUE_PREVIEW:
            lines.append(f"... and {len(queue) - QUEUE_PREVIEW} more")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
