"""Intelligent task generator: fabricates work when the queue runs dry.

Scans the workspace into a :class:`WorkspaceSignals` snapshot, then applies a
first-match-wins rule cascade:

    1. missing structure      -> survival, priority 1, blocks others
    2. stale artifacts        -> memory refresh
    3. modification burst     -> memory consolidation
    4. recent topic momentum  -> expansion on the latest topic
    5. default                -> strategic backlog item, else generic planning

Every generated task names the rule that fired in ``source``. The generator
has no error path: a rule that fails is logged and skipped, and the default
always matches.
"""

from __future__ import annotations

import datetime
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from vigil.audit import RuleEvaluation
from vigil.config import VigilConfig
from vigil.manifest_types import ManifestState, Task
from vigil.task_text import task_signature

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frontmatter parser (minimal -- only the archive/review markers matter here)
# ---------------------------------------------------------------------------

_FM_RE = re.compile(r"^---\s*\n(.*?)\n---", re.DOTALL)

_SETTLED_STATUSES = frozenset({"archived", "reviewed"})


def _read_frontmatter(path: Path) -> dict:
    """Read YAML frontmatter from a markdown file. Returns {} on failure."""
    try:
        text = path.read_text(errors="replace")
    except OSError:
        logger.warning("Cannot read file: %s", path)
        return {}
    m = _FM_RE.match(text)
    if not m:
        return {}
    try:
        fm = yaml.safe_load(m.group(1))
        return fm if isinstance(fm, dict) else {}
    except yaml.YAMLError:
        logger.warning("Malformed YAML frontmatter in %s", path)
        return {}


def is_settled(path: Path) -> bool:
    """True if the artifact's own metadata marks it archived or reviewed.

    Recognized markers: ``status: archived|reviewed``, ``archived: true``,
    or any non-empty ``reviewed`` value (typically a date). Modification
    time alone is never enough to call an artifact stale.
    """
    if path.suffix.lower() not in (".md", ".markdown"):
        return False
    fm = _read_frontmatter(path)
    if str(fm.get("status", "")).strip().lower() in _SETTLED_STATUSES:
        return True
    if fm.get("archived") is True:
        return True
    return bool(fm.get("reviewed"))


# ---------------------------------------------------------------------------
# Workspace snapshot
# ---------------------------------------------------------------------------


@dataclass
class WorkspaceSignals:
    """Filesystem-structure signals the generator rules read."""

    missing_paths: list[str] = field(default_factory=list)
    stale_artifacts: list[str] = field(default_factory=list)
    recent_files: list[str] = field(default_factory=list)


def _mtime(path: Path) -> float | None:
    try:
        return path.stat().st_mtime
    except OSError:
        return None


def find_missing_paths(workspace: Path, required: tuple[str, ...]) -> list[str]:
    return [rel for rel in required if not (workspace / rel).exists()]


def find_stale_artifacts(
    workspace: Path,
    state: ManifestState,
    now: datetime.datetime,
    stale_after_days: int,
) -> list[str]:
    """Tracked artifacts unmodified for ``stale_after_days``, not settled.

    Artifacts whose file is absent are ignored.
    """
    cutoff = (now - datetime.timedelta(days=stale_after_days)).timestamp()
    stale = []
    for rel in sorted(state.artifacts):
        path = workspace / rel
        if not path.is_file():
            continue
        mtime = _mtime(path)
        if mtime is None or mtime >= cutoff:
            continue
        if is_settled(path):
            logger.debug("Skipping settled artifact %s", rel)
            continue
        stale.append(rel)
    return stale


def find_recent_files(
    workspace: Path,
    root: str,
    now: datetime.datetime,
    window_hours: int,
    auto_patterns: tuple[str, ...],
) -> list[str]:
    """Files under ``root`` modified within the window, minus auto-generated."""
    base = workspace / root
    if not base.is_dir():
        return []
    cutoff = (now - datetime.timedelta(hours=window_hours)).timestamp()
    compiled = [re.compile(p) for p in auto_patterns]
    recent = []
    for path in sorted(base.rglob("*")):
        if ".git" in path.parts or not path.is_file():
            continue
        mtime = _mtime(path)
        if mtime is None or mtime <= cutoff:
            continue
        rel = path.relative_to(workspace).as_posix()
        if any(p.search(rel) for p in compiled):
            continue
        recent.append(rel)
    return recent


def scan_workspace(
    workspace: Path,
    state: ManifestState,
    config: VigilConfig,
    now: datetime.datetime,
) -> WorkspaceSignals:
    """Scan the workspace filesystem to build a signal snapshot."""
    gen = config.generator
    return WorkspaceSignals(
        missing_paths=find_missing_paths(workspace, gen.required_paths),
        stale_artifacts=find_stale_artifacts(
            workspace, state, now, gen.stale_after_days
        ),
        recent_files=find_recent_files(
            workspace,
            gen.memory_root,
            now,
            gen.burst_window_hours,
            gen.auto_generated_patterns,
        ),
    )


# ---------------------------------------------------------------------------
# Rule cascade -- first match wins
# ---------------------------------------------------------------------------


@dataclass
class GenerationContext:
    signals: WorkspaceSignals
    state: ManifestState
    config: VigilConfig
    now: datetime.datetime


@dataclass
class GenerationResult:
    """The generated task plus the audit trail of rules evaluated."""

    task: Task
    rules: list[RuleEvaluation] = field(default_factory=list)


def _new_task(ctx: GenerationContext, **fields) -> Task:
    fields.setdefault("tags", {fields["category"]})
    return Task(created_at=ctx.now, **fields)


def _check_missing_structure(ctx: GenerationContext) -> Task | None:
    missing = ctx.signals.missing_paths
    if not missing:
        return None
    return _new_task(
        ctx,
        text="Fix missing memory structure",
        context=(
            f"Critical: {', '.join(missing)} missing -- agent cannot boot "
            f"with continuity"
        ),
        priority=1,
        category="survival",
        impact="critical",
        blocks_others=True,
        source="missing-structure",
        tags={"blocker", "memory", "critical"},
    )


def _check_stale(ctx: GenerationContext) -> Task | None:
    stale = ctx.signals.stale_artifacts
    if len(stale) <= ctx.config.generator.stale_count_threshold:
        return None
    return _new_task(
        ctx,
        text="Refresh stale memory files",
        context=(
            f"{len(stale)} tracked files not updated in over "
            f"{ctx.config.generator.stale_after_days} days: "
            f"{', '.join(stale[:3])}"
        ),
        priority=2,
        category="memory",
        impact="medium",
        source="staleness-analysis",
        tags={"stale", "memory"},
    )


def _consolidation_on_cooldown(ctx: GenerationContext) -> bool:
    hours = ctx.config.generator.consolidation_cooldown_hours
    cutoff = ctx.now - datetime.timedelta(hours=hours)
    return any(
        "consolidat" in entry.task_name.lower() and entry.date >= cutoff
        for entry in ctx.state.session_history
    )


def _check_burst(ctx: GenerationContext) -> Task | None:
    recent = ctx.signals.recent_files
    if len(recent) <= ctx.config.generator.burst_file_threshold:
        return None
    if _consolidation_on_cooldown(ctx):
        logger.info("Modification burst seen but consolidation is on cooldown")
        return None
    return _new_task(
        ctx,
        text="Consolidate recent learnings",
        context=(
            f"High activity: {len(recent)} files modified in the last "
            f"{ctx.config.generator.burst_window_hours}h. Synthesize before "
            f"the notes fragment."
        ),
        priority=2,
        category="memory",
        impact="medium",
        source="fragmentation-detection",
        tags={"consolidation", "memory"},
    )


def _check_topics(ctx: GenerationContext) -> Task | None:
    if not ctx.state.recent_topics:
        return None
    topic = ctx.state.recent_topics[0]
    return _new_task(
        ctx,
        text=f"Advance {topic} understanding",
        context=f"Recent focus on {topic} -- keep building expertise here",
        priority=2,
        category="expansion",
        impact="medium",
        source="topic-momentum",
        tags={topic, "learning"},
    )


# ---------------------------------------------------------------------------
# Strategic backlog (rule 5)
# ---------------------------------------------------------------------------

RECENT_CATEGORY_SESSIONS = 2


@dataclass(frozen=True)
class BacklogItem:
    text: str
    context: str
    category: str
    impact: str
    condition: Callable[[GenerationContext], bool] | None = None


STRATEGIC_BACKLOG: tuple[BacklogItem, ...] = (
    BacklogItem(
        text="Audit artifact weights against recent use",
        context=(
            "Tracked weights drift from how artifacts are actually read. "
            "Compare weights with access counts and re-seed the outliers."
        ),
        category="memory",
        impact="high",
        condition=lambda ctx: bool(ctx.state.artifacts),
    ),
    BacklogItem(
        text="Add cross-reference integrity checker",
        context=(
            "Memory files reference each other. Build a check that every "
            "reference resolves to an existing file or section."
        ),
        category="infrastructure",
        impact="medium",
    ),
    BacklogItem(
        text="Review open problems from recent sessions",
        context=(
            "Walk the recent session history and turn unresolved problems "
            "into queued tasks."
        ),
        category="research",
        impact="medium",
        condition=lambda ctx: bool(ctx.state.session_history),
    ),
)


def _recent_categories(ctx: GenerationContext) -> set[str]:
    recent = ctx.state.session_history[-RECENT_CATEGORY_SESSIONS:]
    return {entry.category for entry in recent}


def _backlog_task(ctx: GenerationContext) -> Task | None:
    """First backlog item that applies and was not worked on just now.

    Items whose category appears in the last two sessions are skipped, as
    are items already queued, active or completed.
    """
    recent = _recent_categories(ctx)
    known = set(ctx.state.completed_signatures)
    known.update(task_signature(t.text) for t in ctx.state.task_queue)
    if ctx.state.active_task is not None:
        known.add(task_signature(ctx.state.active_task.text))
    for item in STRATEGIC_BACKLOG:
        if item.category in recent or task_signature(item.text) in known:
            continue
        if item.condition is not None and not item.condition(ctx):
            continue
        return _new_task(
            ctx,
            text=item.text,
            context=item.context,
            priority=2,
            category=item.category,
            impact=item.impact,
            source="strategic-planning",
            tags={item.category, "strategy"},
        )
    return None


def _default_task(ctx: GenerationContext) -> Task:
    task = _backlog_task(ctx)
    if task is not None:
        return task
    return _new_task(
        ctx,
        text="Design next capability expansion",
        context="System is stable. Plan a strategic improvement to core functions.",
        priority=3,
        category="expansion",
        impact="medium",
        source="strategic-planning",
        tags={"strategy", "planning"},
    )


_RULES: list[tuple[str, Callable[[GenerationContext], Task | None]]] = [
    ("missing-structure", _check_missing_structure),
    ("staleness-analysis", _check_stale),
    ("fragmentation-detection", _check_burst),
    ("topic-momentum", _check_topics),
]


def generate_task(ctx: GenerationContext) -> GenerationResult:
    """Apply the rule cascade to a prepared context."""
    rules: list[RuleEvaluation] = []
    for name, check in _RULES:
        try:
            task = check(ctx)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            logger.warning("Generator rule %s failed: %s", name, exc)
            rules.append(RuleEvaluation(rule=name, triggered=False, detail=str(exc)))
            continue
        rules.append(RuleEvaluation(rule=name, triggered=task is not None))
        if task is not None:
            return GenerationResult(task=task, rules=rules)

    rules.append(RuleEvaluation(rule="strategic-planning", triggered=True))
    return GenerationResult(task=_default_task(ctx), rules=rules)


def generate_next_task(
    workspace: Path,
    state: ManifestState,
    config: VigilConfig,
    now: datetime.datetime,
) -> GenerationResult:
    """Scan the workspace and generate the next task. Never raises OSError.

    If the scan itself fails, the rules run against an empty snapshot and
    fall through to the state-driven rules.
    """
    try:
        signals = scan_workspace(workspace, state, config, now)
    except OSError as exc:
        logger.warning("Workspace scan failed, using empty signals: %s", exc)
        signals = WorkspaceSignals()
    result = generate_task(
        GenerationContext(signals=signals, state=state, config=config, now=now)
    )
    logger.info("Generated task %r via %s", result.task.text, result.task.source)
    return result
