"""Command-line surface for the vigil scheduler.

Usage:
    vigil [--workspace DIR] [-v] <command> [options]

Commands:
    init      Create an empty state document (the only way one is created)
    next      Show the active task and its score, selecting one if needed
    complete  Finish the active task and select or generate the next
    add       Queue a task
    list      Show the queue ranked best first
    score     Show the full score breakdown of every queued task
    abandon   Abandon the active task, a queue entry, or all stale tasks
    smart     Preview the task the generator would create
    decay     Run the daily artifact decay pass
    boot      Print the wake-up context

Exit codes:
    0 = success
    1 = state store, configuration or lifecycle error
    2 = usage error (bad index, unknown category, bad arguments)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import yaml

from vigil.boot import render_boot_context
from vigil.config import CONFIG_REL, ConfigError, load_config
from vigil.manifest_types import CATEGORIES, IMPACTS
from vigil.scheduler import ACTIVE, ALL_STALE, Scheduler, SchedulerError, UsageError
from vigil.scoring import format_breakdown, format_score
from vigil.state_store import StateStoreError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def resolve_workspace(flag: str | None) -> Path:
    """Resolve the workspace root.

    Priority:
        1. --workspace flag
        2. VIGIL_WORKSPACE environment variable
        3. Current directory
    """
    if flag:
        return Path(flag).resolve()
    env_path = os.environ.get("VIGIL_WORKSPACE")
    if env_path:
        return Path(env_path).resolve()
    return Path.cwd()


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _cli_init(args: argparse.Namespace, sched: Scheduler) -> int:
    """CLI handler for 'init' subcommand."""
    sched.store.create()
    print(f"State document created: {sched.store.path}")
    return EXIT_OK


def _cli_next(args: argparse.Namespace, sched: Scheduler) -> int:
    """CLI handler for 'next' subcommand."""
    task, breakdown = sched.next()
    print(f"NEXT [{task.category}/{task.impact}] {task.text}")
    if task.context:
        print(f"  {task.context}")
    print(f"  score: {format_score(breakdown.adjusted)}")
    print(format_breakdown(breakdown, sched.config))
    return EXIT_OK


def _cli_complete(args: argparse.Namespace, sched: Scheduler) -> int:
    """CLI handler for 'complete' subcommand."""
    result = sched.complete()
    if not result.recorded:
        print(f"Already recorded: {result.completed.text}")
    else:
        print(f"Completed: {result.completed.text}")
    promotion = result.promotion
    for task in promotion.excluded:
        print(f"  retired repeat: {task.text}")
    if promotion.task is not None:
        origin = f" (generated: {promotion.task.source})" if promotion.generated else ""
        score = promotion.breakdown.adjusted if promotion.breakdown else 0.0
        print(f"Next: [{promotion.task.category}] {promotion.task.text}{origin}")
        print(f"  score: {format_score(score)}")
    return EXIT_OK


def _cli_add(args: argparse.Namespace, sched: Scheduler) -> int:
    """CLI handler for 'add' subcommand."""
    task = sched.add(
        args.text,
        args.context or "",
        priority=args.priority,
        category=args.category,
        impact=args.impact,
        blocks_others=args.blocks,
        dependencies=args.depends_on,
    )
    print(f"Queued [{task.category}/{task.impact}] {task.text}")
    return EXIT_OK


def _cli_list(args: argparse.Namespace, sched: Scheduler) -> int:
    """CLI handler for 'list' subcommand.

    Rows are ranked best first; ``#n`` is the stored queue position that
    ``abandon`` takes.
    """
    state = sched.load()
    ranked = sched.ranked(state)
    position = {id(t): i for i, t in enumerate(state.task_queue, 1)}
    if args.json:
        print(
            json.dumps(
                [
                    {
                        "queue": position[id(s.task)],
                        "score": round(s.score, 6),
                        **s.task.to_dict(),
                    }
                    for s in ranked
                ],
                indent=2,
            )
        )
        return EXIT_OK
    if not ranked:
        print("Queue is empty.")
        return EXIT_OK
    for scored in ranked:
        task = scored.task
        print(
            f"#{position[id(task)]:<3} {format_score(scored.score)} "
            f"[{task.category}] {task.text} (skipped {task.skip_count}x)"
        )
    return EXIT_OK


def _cli_score(args: argparse.Namespace, sched: Scheduler) -> int:
    """CLI handler for 'score' subcommand."""
    ranked = sched.ranked()
    if not ranked:
        print("Queue is empty.")
        return EXIT_OK
    for i, scored in enumerate(ranked, 1):
        print(f"{i}. [{scored.task.category}/{scored.task.impact}] {scored.task.text}")
        print(format_breakdown(scored.breakdown, sched.config))
        print()
    return EXIT_OK


def _cli_abandon(args: argparse.Namespace, sched: Scheduler) -> int:
    """CLI handler for 'abandon' subcommand."""
    result = sched.abandon(args.target, args.reason)
    if not result.abandoned:
        print("Nothing to abandon.")
        return EXIT_OK
    for entry in result.abandoned:
        print(f"Abandoned: {entry.task} ({entry.reason})")
    if result.promotion is not None and result.promotion.task is not None:
        print(f"Next: [{result.promotion.task.category}] {result.promotion.task.text}")
    return EXIT_OK


def _cli_smart(args: argparse.Namespace, sched: Scheduler) -> int:
    """CLI handler for 'smart' subcommand."""
    result = sched.preview_generated()
    task = result.task
    print(f"Would generate [{task.category}/{task.impact}] {task.text}")
    print(f"  source: {task.source}")
    if task.context:
        print(f"  {task.context}")
    for rule in result.rules:
        mark = "x" if rule.triggered else " "
        detail = f" -- {rule.detail}" if rule.detail else ""
        print(f"  [{mark}] {rule.rule}{detail}")
    return EXIT_OK


def _cli_decay(args: argparse.Namespace, sched: Scheduler) -> int:
    """CLI handler for 'decay' subcommand."""
    try:
        report = sched.decay(force=args.force, dry_run=args.dry_run)
    except ValueError as exc:
        # Floors that break the core-floor invariant.
        return _fail(str(exc), EXIT_ERROR)
    if report.skipped:
        print(f"Decay already ran on {report.run_date}; use --force to rerun.")
        return EXIT_OK
    prefix = "[dry-run] " if report.dry_run else ""
    for change in report.changes:
        print(
            f"{prefix}{change.path}: {change.old_weight:.4f} -> "
            f"{change.new_weight:.4f} ({change.reason.strip()})"
        )
    print(
        f"{prefix}{report.decayed} decayed, {report.raised} raised, "
        f"{report.unchanged} unchanged"
    )
    if report.archival_candidates:
        print(f"Archival candidates: {', '.join(report.archival_candidates)}")
    return EXIT_OK


def _cli_boot(args: argparse.Namespace, sched: Scheduler) -> int:
    """CLI handler for 'boot' subcommand."""
    state = sched.load()
    ranked = sched.ranked(state)
    active_score = None
    if state.active_task is not None:
        active_score = sched.score_active(state).adjusted
    print(render_boot_context(state, sched.now(), ranked, active_score), end="")
    return EXIT_OK


_HANDLERS = {
    "init": _cli_init,
    "next": _cli_next,
    "complete": _cli_complete,
    "add": _cli_add,
    "list": _cli_list,
    "score": _cli_score,
    "abandon": _cli_abandon,
    "smart": _cli_smart,
    "decay": _cli_decay,
    "boot": _cli_boot,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vigil",
        description="Self-scheduling core: artifact weights and task selection",
    )
    parser.add_argument(
        "--workspace",
        default=None,
        help="Workspace root (default: $VIGIL_WORKSPACE or current directory)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("init", help="Create an empty state document")
    sub.add_parser("next", help="Show the active task and its score")
    sub.add_parser("complete", help="Complete the active task")

    add = sub.add_parser("add", help="Queue a task")
    add.add_argument("text", help="Task text")
    add.add_argument("context", nargs="?", default="", help="Why it matters")
    add.add_argument("--priority", type=int, default=None, help="Tie-break rank")
    add.add_argument("--category", choices=CATEGORIES, default=None)
    add.add_argument("--impact", choices=IMPACTS, default=None)
    add.add_argument(
        "--blocks", action="store_true", help="Task blocks other work"
    )
    add.add_argument(
        "--depends-on",
        action="append",
        default=[],
        metavar="TASK",
        help="Prerequisite task text (repeatable)",
    )

    lst = sub.add_parser("list", help="Show the ranked queue")
    lst.add_argument("--json", action="store_true", help="Emit JSON")
    sub.add_parser("score", help="Show per-task score breakdowns")

    abandon = sub.add_parser("abandon", help="Abandon tasks")
    abandon.add_argument(
        "target",
        help=f"'{ACTIVE}', a queue position (#n in 'list'), or '{ALL_STALE}'",
    )
    abandon.add_argument("reason", nargs="?", default=None, help="Why")

    sub.add_parser("smart", help="Preview the generator's next task")

    decay = sub.add_parser("decay", help="Run the daily decay pass")
    decay.add_argument("--dry-run", action="store_true", help="Report only")
    decay.add_argument(
        "--force", action="store_true", help="Run even if already run today"
    )

    sub.add_parser("boot", help="Print the wake-up context")
    return parser


def _fail(message: str, code: int) -> int:
    print(json.dumps({"error": message}), file=sys.stderr)
    return code


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return EXIT_USAGE

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    workspace = resolve_workspace(args.workspace)
    try:
        config = load_config(workspace / CONFIG_REL)
    except (ConfigError, yaml.YAMLError) as exc:
        return _fail(f"Invalid config {workspace / CONFIG_REL}: {exc}", EXIT_ERROR)

    sched = Scheduler(workspace, config)
    try:
        return _HANDLERS[args.command](args, sched)
    except UsageError as exc:
        return _fail(str(exc), EXIT_USAGE)
    except (StateStoreError, SchedulerError) as exc:
        return _fail(str(exc), EXIT_ERROR)


if __name__ == "__main__":
    sys.exit(main())
