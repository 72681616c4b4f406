"""Task scorer: multi-signal priority score and next-task selection.

score = urgency x 0.25 + impact x 0.35 + dependency x 0.15
      + skip_decay x 0.15 + blocker x 0.10

Every signal is normalized to [0, 1], so the score is too. Two guards run
before ranking:

    - Anti-repetition is an exclusion filter, not a penalty: a task whose
      signature was already completed (or completed within the lookback
      window of session history) is never a candidate.
    - Category rotation multiplies the score of candidates in a category
      that has a current streak in session history, so a run of one kind
      of work cannot starve the others.

Weights and thresholds come from :class:`vigil.config.VigilConfig`.
"""

from __future__ import annotations

import datetime
import logging
import math
from dataclasses import dataclass, field

from vigil.config import VigilConfig
from vigil.manifest_types import ManifestState, SessionHistoryEntry, Task
from vigil.task_text import task_signature

logger = logging.getLogger(__name__)

CATEGORY_WEIGHTS: dict[str, float] = {
    "survival": 1.0,
    "memory": 0.85,
    "infrastructure": 0.70,
    "expansion": 0.55,
    "research": 0.40,
    "maintenance": 0.30,
    "nice-to-have": 0.15,
}

IMPACT_WEIGHTS: dict[str, float] = {
    "critical": 1.0,
    "high": 0.75,
    "medium": 0.5,
    "low": 0.25,
}

_SCORE_DECIMALS = 6


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class ScoreBreakdown:
    """Raw signal values (each in [0, 1]) and the weighted total."""

    urgency: float
    impact: float
    dependency: float
    skip_decay: float
    blocker: float
    total: float
    rotation_factor: float = 1.0

    @property
    def adjusted(self) -> float:
        """Total after the category rotation penalty."""
        return self.total * self.rotation_factor


@dataclass
class ScoredTask:
    """A task paired with its score breakdown."""

    task: Task
    breakdown: ScoreBreakdown

    @property
    def score(self) -> float:
        return self.breakdown.adjusted


@dataclass
class ScoringContext:
    """Queue and history context the scorer needs besides the task itself.

    Attributes:
        now: Reference time for ages and lookback windows.
        config: Scheduler configuration.
        pending_signatures: Signatures of every task still queued or active.
        completed_signatures: Signatures of completed work.
        history: Session history, oldest first.
        max_skip: Highest skip count among the candidates being ranked.
    """

    now: datetime.datetime
    config: VigilConfig = field(default_factory=VigilConfig)
    pending_signatures: set[str] = field(default_factory=set)
    completed_signatures: set[str] = field(default_factory=set)
    history: list[SessionHistoryEntry] = field(default_factory=list)
    max_skip: int = 0

    @classmethod
    def from_state(
        cls,
        state: ManifestState,
        now: datetime.datetime,
        config: VigilConfig,
        candidates: list[Task] | None = None,
    ) -> ScoringContext:
        """Build a context from a loaded document.

        Args:
            state: Loaded document.
            now: Reference time.
            config: Scheduler configuration.
            candidates: Tasks to be ranked; defaults to the queue. Used for
                the skip-decay normalizer.
        """
        pool = state.task_queue if candidates is None else candidates
        pending = {task_signature(t.text) for t in state.task_queue}
        if state.active_task is not None:
            pending.add(task_signature(state.active_task.text))
        return cls(
            now=now,
            config=config,
            pending_signatures=pending,
            completed_signatures=set(state.completed_signatures),
            history=list(state.session_history),
            max_skip=max((t.skip_count for t in pool), default=0),
        )


@dataclass
class PickResult:
    """Outcome of :func:`pick_next`."""

    next: Task
    breakdown: ScoreBreakdown
    remaining: list[Task]
    excluded: list[Task] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Individual signals
# ---------------------------------------------------------------------------


def age_hours(task: Task, now: datetime.datetime) -> float:
    if task.created_at is None:
        return 0.0
    return max(0.0, (now - task.created_at).total_seconds() / 3600)


def score_urgency(task: Task, ctx: ScoringContext) -> float:
    """Sigmoid of age in hours: ~0.5 at the midpoint, ~0.97 a week old."""
    cfg = ctx.config.urgency
    x = -cfg.steepness * (age_hours(task, ctx.now) - cfg.midpoint_hours)
    return 1.0 / (1.0 + math.exp(x))


def score_impact(task: Task) -> float:
    category_weight = CATEGORY_WEIGHTS.get(task.category or "", 0.4)
    impact_weight = IMPACT_WEIGHTS.get(task.impact, 0.5)
    return category_weight * impact_weight


def score_dependency(task: Task, ctx: ScoringContext) -> float:
    """Fraction of prerequisites resolved; 1.0 when none are declared.

    A prerequisite is resolved when it was completed, or when it is no
    longer pending anywhere in the queue.
    """
    if not task.dependencies:
        return 1.0
    own = task_signature(task.text)
    resolved = 0
    for dep in task.dependencies:
        sig = task_signature(dep)
        if sig in ctx.completed_signatures:
            resolved += 1
        elif sig == own or sig not in ctx.pending_signatures:
            resolved += 1
    return resolved / len(task.dependencies)


def score_skip_decay(task: Task, ctx: ScoringContext) -> float:
    """log(skip+1) / log(max_skip+1), capped at 1.0."""
    if task.skip_count <= 0 or ctx.max_skip <= 0:
        return 0.0
    raw = math.log(task.skip_count + 1) / math.log(ctx.max_skip + 1)
    return min(1.0, raw)


def score_blocker(task: Task) -> float:
    return 1.0 if task.blocks_others else 0.0


def score_task(task: Task, ctx: ScoringContext) -> ScoreBreakdown:
    """Score one task. The rotation factor is applied separately."""
    w = ctx.config.weights
    urgency = score_urgency(task, ctx)
    impact = score_impact(task)
    dependency = score_dependency(task, ctx)
    skip_decay = score_skip_decay(task, ctx)
    blocker = score_blocker(task)
    total = (
        urgency * w.urgency
        + impact * w.impact
        + dependency * w.dependency
        + skip_decay * w.skip_decay
        + blocker * w.blocker
    )
    return ScoreBreakdown(
        urgency=urgency,
        impact=impact,
        dependency=dependency,
        skip_decay=skip_decay,
        blocker=blocker,
        total=total,
    )


# ---------------------------------------------------------------------------
# History guards
# ---------------------------------------------------------------------------


def category_streak(history: list[SessionHistoryEntry]) -> tuple[str, int]:
    """Return (category, length) of the trailing same-category run."""
    if not history:
        return "", 0
    category = history[-1].category
    length = 0
    for entry in reversed(history):
        if entry.category != category:
            break
        length += 1
    return category, length


def rotation_factor(category: str | None, ctx: ScoringContext) -> float:
    """Score multiplier for a category given the current history streak."""
    cfg = ctx.config.rotation
    if not cfg.enabled or not category:
        return 1.0
    streak_cat, length = category_streak(ctx.history)
    if streak_cat == category and length >= cfg.streak_length:
        return 1.0 - cfg.streak_penalty
    return 1.0


def is_repeat(task: Task, ctx: ScoringContext) -> bool:
    """True if the task matches completed work and must not be a candidate."""
    sig = task_signature(task.text)
    if sig in ctx.completed_signatures:
        return True
    cutoff = ctx.now - datetime.timedelta(days=ctx.config.repetition.lookback_days)
    return any(
        entry.outcome == "completed"
        and entry.date >= cutoff
        and task_signature(entry.task_name) == sig
        for entry in ctx.history
    )


def filter_candidates(
    tasks: list[Task], ctx: ScoringContext
) -> tuple[list[Task], list[Task]]:
    """Split tasks into (eligible, excluded-as-repeat)."""
    eligible: list[Task] = []
    excluded: list[Task] = []
    for task in tasks:
        (excluded if is_repeat(task, ctx) else eligible).append(task)
    return eligible, excluded


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


def _rank_key(scored: ScoredTask, now: datetime.datetime) -> tuple:
    created = scored.task.created_at or now
    return (-round(scored.score, _SCORE_DECIMALS), scored.task.priority, created)


def rank_tasks(tasks: list[Task], ctx: ScoringContext) -> list[ScoredTask]:
    """Score tasks and sort them best first.

    Ties break by declared priority (lower first), then by creation time
    (oldest first). No filtering happens here.
    """
    scored = []
    for task in tasks:
        breakdown = score_task(task, ctx)
        breakdown.rotation_factor = rotation_factor(task.category, ctx)
        scored.append(ScoredTask(task=task, breakdown=breakdown))
    scored.sort(key=lambda s: _rank_key(s, ctx.now))
    return scored


def pick_next(queue: list[Task], ctx: ScoringContext) -> PickResult | None:
    """Pick the best eligible task from the queue.

    Repeats are excluded before scoring. Every eligible task that is not
    picked has its ``skip_count`` incremented.

    Returns:
        PickResult, or None when no eligible task remains. ``excluded``
        holds the repeats that were filtered out, for the caller to retire.
    """
    eligible, excluded = filter_candidates(queue, ctx)
    for task in excluded:
        logger.info("Excluding repeat of completed work: %s", task.text)
    if not eligible:
        return None

    ranked = rank_tasks(eligible, ctx)
    winner = ranked[0]
    remaining = []
    for scored in ranked[1:]:
        scored.task.skip_count += 1
        remaining.append(scored.task)
    logger.debug(
        "Picked %r (score %.3f) over %d other(s)",
        winner.task.text,
        winner.score,
        len(remaining),
    )
    return PickResult(
        next=winner.task,
        breakdown=winner.breakdown,
        remaining=remaining,
        excluded=excluded,
    )


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def format_score(score: float) -> str:
    """Render a score with a ten-cell bar, e.g. ``0.723 [#######...]``."""
    bars = max(0, min(10, round(score * 10)))
    return f"{score:.3f} [{'#' * bars}{'.' * (10 - bars)}]"


def format_breakdown(breakdown: ScoreBreakdown, config: VigilConfig) -> str:
    w = config.weights
    lines = [
        f"  urgency:  {breakdown.urgency:.2f} x {w.urgency}",
        f"  impact:   {breakdown.impact:.2f} x {w.impact}",
        f"  dep:      {breakdown.dependency:.2f} x {w.dependency}",
        f"  skip:     {breakdown.skip_decay:.2f} x {w.skip_decay}",
        f"  blocker:  {breakdown.blocker:.2f} x {w.blocker}",
    ]
    if breakdown.rotation_factor != 1.0:
        lines.append(f"  rotation: x {breakdown.rotation_factor:.2f}")
    lines.append("  ---------------------")
    lines.append(f"  TOTAL:    {breakdown.adjusted:.3f}")
    return "\n".join(lines)
