"""Scheduler: the task lifecycle state machine.

Queued -> Active (exactly one) -> Completed | Abandoned.

Completion protocol (order matters):

    1. Record the session through the Session Recorder. The recorder loads,
       appends and saves on its own.
    2. Reload the whole document. Any copy held from before step 1 is stale
       and saving it would either be refused by the store or discard the
       history entry just written.
    3. Add the completed signature, update ``last_session``.
    4. Promote the next task via the scorer, or generate one when the queue
       has no eligible candidate.
    5. Save.

A retry after a crash between steps 1 and 5 is safe: the recorder skips an
entry whose task key is already in history, and completing a task that is
no longer active but whose completion was recorded is a no-op.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from vigil.audit import (
    GraveyardEntry,
    RuleEvaluation,
    SelectionAudit,
    append_graveyard,
    append_selection,
)
from vigil.config import VigilConfig
from vigil.manifest_types import CATEGORIES, IMPACTS, LastSession, ManifestState, Task
from vigil.scoring import (
    ScoreBreakdown,
    ScoredTask,
    ScoringContext,
    age_hours,
    filter_candidates,
    is_repeat,
    pick_next,
    rank_tasks,
    rotation_factor,
    score_task,
)
from vigil.session_recorder import SessionRecorder
from vigil.state_store import StateStore
from vigil.task_generator import GenerationResult, generate_next_task
from vigil.task_text import backfill_task, duplicate_key, task_key, task_signature
from vigil.weights import DecayReport, run_decay

logger = logging.getLogger(__name__)

DEFAULT_ABANDON_REASON = "no longer relevant"
REPEAT_REASON = "already completed"

ACTIVE = "active"
ALL_STALE = "all-stale"


class SchedulerError(Exception):
    """A lifecycle operation cannot proceed in the current state."""


class UsageError(Exception):
    """Caller supplied an invalid argument (bad index, unknown category)."""


@dataclass
class Promotion:
    """What happened when the active slot was refilled."""

    task: Task | None = None
    breakdown: ScoreBreakdown | None = None
    generated: bool = False
    excluded: list[Task] = field(default_factory=list)
    rules: list[RuleEvaluation] = field(default_factory=list)


@dataclass
class CompletionResult:
    completed: Task
    recorded: bool
    promotion: Promotion = field(default_factory=Promotion)

    @property
    def next(self) -> Task | None:
        return self.promotion.task


@dataclass
class AbandonResult:
    abandoned: list[GraveyardEntry] = field(default_factory=list)
    promotion: Promotion | None = None


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class Scheduler:
    """Task lifecycle operations over one workspace's state document.

    Args:
        workspace: Workspace root; generator signals and the vigil files are
            resolved against it.
        config: Scheduler configuration (defaults if omitted).
        store: State store; defaults to the configured state file.
        clock: Zero-argument callable returning the current aware datetime.
    """

    def __init__(
        self,
        workspace: Path,
        config: VigilConfig | None = None,
        *,
        store: StateStore | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.workspace = Path(workspace)
        self.config = config or VigilConfig()
        self.store = store or StateStore(
            self.workspace / self.config.paths.state_file
        )
        self.recorder = SessionRecorder(self.store)
        self._clock = clock or _utcnow

    @property
    def graveyard_path(self) -> Path:
        return self.workspace / self.config.paths.graveyard

    @property
    def audit_path(self) -> Path:
        return self.workspace / self.config.paths.audit_log

    def now(self) -> datetime.datetime:
        return self._clock()

    def load(self) -> ManifestState:
        """Load the document and backfill malformed tasks in memory.

        Raises:
            StateStoreError: If the document is missing or malformed.
        """
        state = self.store.load()
        now = self.now()
        for task in self._pending(state):
            backfill_task(task, now)
        return state

    def _load_for_update(self) -> ManifestState:
        """Load for a mutation, persisting any creation stamps backfilled.

        A task's key includes ``created_at``, so an undated task must keep
        the stamp it is given here across every later reload.
        """
        state = self.store.load()
        pending = self._pending(state)
        undated = [t for t in pending if t.created_at is None]
        now = self.now()
        for task in pending:
            backfill_task(task, now)
        if undated:
            self.store.save(state)
            logger.info("Stamped %d undated task(s)", len(undated))
        return state

    @staticmethod
    def _pending(state: ManifestState) -> list[Task]:
        tasks = list(state.task_queue)
        if state.active_task is not None:
            tasks.append(state.active_task)
        return tasks

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(
        self,
        text: str,
        context: str = "",
        *,
        priority: int | None = None,
        category: str | None = None,
        impact: str | None = None,
        source: str = "manual",
        blocks_others: bool = False,
        dependencies: list[str] | None = None,
    ) -> Task:
        """Queue a new task. Category is inferred from the text when absent.

        Raises:
            UsageError: On empty text or an unknown category/impact.
        """
        if not text.strip():
            raise UsageError("Task text must not be empty")
        if category is not None and category not in CATEGORIES:
            raise UsageError(
                f"Unknown category {category!r}; expected one of {', '.join(CATEGORIES)}"
            )
        if impact is not None and impact not in IMPACTS:
            raise UsageError(
                f"Unknown impact {impact!r}; expected one of {', '.join(IMPACTS)}"
            )

        state = self._load_for_update()
        task = Task(
            text=text.strip(),
            context=context,
            priority=2 if priority is None else priority,
            category=category,
            impact=impact or "medium",
            source=source,
            blocks_others=blocks_others,
            dependencies=list(dependencies or []),
        )
        backfill_task(task, self.now())
        state.task_queue.append(task)
        self.store.save(state)
        logger.info("Queued [%s/%s] %s", task.category, task.impact, task.text)
        return task

    def next(self) -> tuple[Task, ScoreBreakdown]:
        """Return the active task and its score, promoting one if none is active.

        Promotion here uses the same path as completion: the scorer first,
        the generator when no queued task is eligible.
        """
        state = self._load_for_update()
        if state.active_task is None:
            promotion = self._promote(state, trigger="next")
            self._commit(promotion, state, trigger="next")
        return state.active_task, self.score_active(state)

    def complete(self, task: Task | None = None) -> CompletionResult:
        """Complete ``task`` (default: the current active task).

        Raises:
            SchedulerError: If there is nothing to complete, or ``task`` is
                not active and its completion was never recorded.
            StateStoreError: On store failures; retrying is safe.
        """
        state = self._load_for_update()
        active = state.active_task
        target = task if task is not None else active
        if target is None:
            raise SchedulerError("No active task to complete")

        key = task_key(target)
        if active is None or task_key(active) != key:
            if self.recorder.is_recorded(key):
                logger.info("Completion of %r already applied", target.text)
                return CompletionResult(completed=target, recorded=False)
            raise SchedulerError(f"{target.text!r} is not the active task")

        now = self.now()
        recorded = self.recorder.record(
            target.category or "nice-to-have",
            target.text,
            "completed",
            task_key=key,
            now=now,
        )

        state = self.load()
        if state.active_task is None or task_key(state.active_task) != key:
            raise SchedulerError(
                f"Active task changed while completing {target.text!r}; retry"
            )
        state.completed_signatures.add(task_signature(target.text))
        state.last_session = LastSession(
            date=now.date().isoformat(), focus=target.text, outcome="completed"
        )
        state.active_task = None
        promotion = self._promote(state, trigger="complete")
        self._commit(promotion, state, trigger="complete")
        logger.info("Completed %s", target.text)
        return CompletionResult(
            completed=target, recorded=recorded, promotion=promotion
        )

    def abandon(self, target: str | int, reason: str | None = None) -> AbandonResult:
        """Abandon the active task, a queued task, or every stale task.

        Args:
            target: ``"active"``, a 1-based position in the stored queue
                (int or digit string), or ``"all-stale"``.
            reason: Recorded in the graveyard; defaults to
                ``"no longer relevant"``.

        Raises:
            UsageError: On an unknown target or out-of-range index. The
                queue is not modified.
            SchedulerError: If the graveyard cannot be written.
        """
        reason = (reason or "").strip() or DEFAULT_ABANDON_REASON
        if target == ACTIVE:
            return self._abandon_active(reason)

        state = self._load_for_update()
        now = self.now()
        if target == ALL_STALE:
            victims = self.select_stale(state, now)
        else:
            victims = [self._queue_item(state, target)]

        if not victims:
            logger.info("Nothing to abandon")
            return AbandonResult()

        entries = [self._grave(t, reason, now) for t in victims]
        self._bury(entries)
        gone = {id(t) for t in victims}
        state.task_queue = [t for t in state.task_queue if id(t) not in gone]
        self.store.save(state)
        for entry in entries:
            logger.info("Abandoned %s (%s)", entry.task, entry.reason)
        return AbandonResult(abandoned=entries)

    def decay(self, *, force: bool = False, dry_run: bool = False) -> DecayReport:
        """Run the artifact decay pass and persist it (unless dry-run)."""
        state = self.store.load()
        report = run_decay(
            state, self.now().date(), self.config.decay, force=force, dry_run=dry_run
        )
        if not (report.skipped or dry_run):
            self.store.save(state)
        return report

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def ranked(self, state: ManifestState | None = None) -> list[ScoredTask]:
        """The queue ranked best first, without mutating skip counts."""
        state = state or self.load()
        ctx = ScoringContext.from_state(state, self.now(), self.config)
        return rank_tasks(state.task_queue, ctx)

    def preview_generated(self, state: ManifestState | None = None) -> GenerationResult:
        """What the generator would produce right now. Saves nothing."""
        state = state or self.load()
        return generate_next_task(self.workspace, state, self.config, self.now())

    def select_stale(
        self, state: ManifestState, now: datetime.datetime
    ) -> list[Task]:
        """Queued tasks the all-stale directive would abandon.

        A task qualifies when it is old, skipped many times and of a
        low-stakes category, or when its text duplicates one already seen in
        this pass. The active task counts as seen and is never selected.
        """
        cfg = self.config.staleness
        seen: set[str] = set()
        if state.active_task is not None:
            seen.add(duplicate_key(state.active_task.text))
        victims = []
        for task in state.task_queue:
            key = duplicate_key(task.text)
            if key in seen:
                victims.append(task)
            elif (
                age_hours(task, now) > cfg.max_age_hours
                and task.skip_count > cfg.min_skip_count
                and task.category in cfg.categories
            ):
                victims.append(task)
            seen.add(key)
        return victims

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _queue_item(self, state: ManifestState, target: str | int) -> Task:
        """Resolve a 1-based position in the stored queue order."""
        try:
            index = int(target)
        except (TypeError, ValueError):
            raise UsageError(
                f"Unknown abandon target {target!r}; use 'active', 'all-stale' "
                f"or a queue number"
            ) from None
        queue = state.task_queue
        if not 1 <= index <= len(queue):
            raise UsageError(
                f"Queue index {index} out of range (queue has {len(queue)} task(s))"
            )
        return queue[index - 1]

    def _abandon_active(self, reason: str) -> AbandonResult:
        state = self._load_for_update()
        active = state.active_task
        if active is None:
            raise UsageError("No active task to abandon")
        now = self.now()
        key = task_key(active)
        entry = self._grave(active, reason, now, was_active=True)
        self._bury([entry])
        self.recorder.record(
            active.category or "nice-to-have",
            active.text,
            "abandoned",
            task_key=key,
            now=now,
        )

        state = self.load()
        if state.active_task is None or task_key(state.active_task) != key:
            raise SchedulerError(
                f"Active task changed while abandoning {active.text!r}"
            )
        state.active_task = None
        state.last_session = LastSession(
            date=now.date().isoformat(), focus=active.text, outcome="abandoned"
        )
        promotion = self._promote(state, trigger="abandon")
        self._commit(promotion, state, trigger="abandon")
        logger.info("Abandoned active task %s (%s)", active.text, reason)
        return AbandonResult(abandoned=[entry], promotion=promotion)

    def _grave(
        self, task: Task, reason: str, now: datetime.datetime, was_active: bool = False
    ) -> GraveyardEntry:
        return GraveyardEntry(
            timestamp=now.isoformat(),
            task=task.text,
            reason=reason,
            category=task.category or "",
            created_at=task.created_at.isoformat() if task.created_at else "",
            skip_count=task.skip_count,
            source=task.source,
            was_active=was_active,
        )

    def _bury(self, entries: list[GraveyardEntry]) -> None:
        try:
            append_graveyard(entries, self.graveyard_path)
        except OSError as exc:
            raise SchedulerError(f"Cannot write graveyard: {exc}") from exc

    def _promote(self, state: ManifestState, trigger: str) -> Promotion:
        """Fill the empty active slot, in place. Does not save.

        Queued repeats of completed work are dropped from the queue and
        listed in ``excluded``; :meth:`_commit` retires them once saved.
        """
        now = self.now()
        ctx = ScoringContext.from_state(state, now, self.config)
        eligible, excluded = filter_candidates(state.task_queue, ctx)

        promotion = Promotion(excluded=excluded)
        picked = pick_next(
            eligible, ScoringContext.from_state(state, now, self.config, eligible)
        )
        if picked is not None:
            state.active_task = picked.next
            state.task_queue = picked.remaining
            promotion.task = picked.next
            promotion.breakdown = picked.breakdown
            logger.info("Promoted %s on %s", picked.next.text, trigger)
            return promotion

        state.task_queue = []
        generated = generate_next_task(self.workspace, state, self.config, now)
        task = generated.task
        if is_repeat(task, ctx):
            logger.warning("Generated task repeats completed work: %s", task.text)
        state.active_task = task
        promotion.task = task
        promotion.generated = True
        promotion.rules = generated.rules
        promotion.breakdown = self.score_active(state)
        return promotion

    def _commit(self, promotion: Promotion, state: ManifestState, trigger: str) -> None:
        """Save a promotion, then retire its excluded repeats and audit it.

        The graveyard is written only after the save succeeds, so a save
        refused with ``write_conflict`` leaves nothing to duplicate on retry.
        """
        self.store.save(state)
        if promotion.excluded:
            now = self.now()
            graves = [self._grave(t, REPEAT_REASON, now) for t in promotion.excluded]
            self._bury(graves)
        self._audit(promotion, state, trigger=trigger)

    def score_active(self, state: ManifestState) -> ScoreBreakdown:
        task = state.active_task
        if task is None:
            raise SchedulerError("No active task")
        ctx = ScoringContext.from_state(
            state, self.now(), self.config, state.task_queue + [task]
        )
        breakdown = score_task(task, ctx)
        breakdown.rotation_factor = rotation_factor(task.category, ctx)
        return breakdown

    def _audit(self, promotion: Promotion, state: ManifestState, trigger: str) -> None:
        task = promotion.task
        if task is None:
            return
        append_selection(
            SelectionAudit(
                timestamp=self.now().isoformat(),
                trigger="generate" if promotion.generated else trigger,
                selected_task=task.text,
                selected_category=task.category or "",
                selected_source=task.source,
                score=promotion.breakdown.adjusted if promotion.breakdown else None,
                queue_size=len(state.task_queue),
                excluded_repeats=[t.text for t in promotion.excluded],
                rules_evaluated=promotion.rules,
            ),
            self.audit_path,
        )
