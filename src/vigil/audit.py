"""Append-only JSONL logs: the task graveyard and the selection audit.

The graveyard records every abandoned task with its reason. Writing it is
part of the abandon operation: if the line cannot be written the error
propagates and the queue is left untouched.

The selection audit records each promotion -- which task became active, its
score, and for generated tasks which generator rules were evaluated. It is
informational; a failed write is logged and ignored.

Both files are queryable with ``jq``.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class GraveyardEntry:
    """One abandoned task."""

    timestamp: str
    task: str
    reason: str
    category: str
    created_at: str
    skip_count: int
    source: str = ""
    was_active: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RuleEvaluation:
    """Result of evaluating one generator rule."""

    rule: str
    triggered: bool
    detail: str = ""


@dataclass
class SelectionAudit:
    """One promotion of a task to active."""

    timestamp: str
    trigger: str  # "complete" | "abandon" | "generate"
    selected_task: str = ""
    selected_category: str = ""
    selected_source: str = ""
    score: float | None = None
    queue_size: int = 0
    excluded_repeats: list[str] = field(default_factory=list)
    rules_evaluated: list[RuleEvaluation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _append_line(line: str, log_path: Path) -> None:
    """Append one line via a temp file, so a crash never leaves half a line."""
    log_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(log_path.parent), prefix=".log-", suffix=".tmp")
    try:
        os.write(fd, (line + "\n").encode("utf-8"))
        os.close(fd)
        fd = -1
        with (
            open(log_path, "a", encoding="utf-8") as f,
            open(tmp, encoding="utf-8") as t,
        ):
            f.write(t.read())
    finally:
        if fd >= 0:
            os.close(fd)
        with contextlib.suppress(OSError):
            os.unlink(tmp)


def _dumps(record: dict) -> str:
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"))


def append_graveyard(entries: list[GraveyardEntry], log_path: Path) -> None:
    """Append abandoned-task records to the graveyard.

    Raises:
        ValueError: If any entry has an empty reason.
        OSError: If the graveyard cannot be written.
    """
    for entry in entries:
        if not entry.reason.strip():
            raise ValueError(f"Abandoning {entry.task!r} requires a reason")
    if not entries:
        return
    try:
        _append_line("\n".join(_dumps(e.to_dict()) for e in entries), log_path)
    except OSError:
        logger.error("Failed to write graveyard %s", log_path, exc_info=True)
        raise


def append_selection(audit: SelectionAudit, log_path: Path) -> None:
    """Append a selection record. Failures are logged, not raised."""
    try:
        _append_line(_dumps(audit.to_dict()), log_path)
    except OSError:
        logger.warning("Failed to write audit entry to %s", log_path, exc_info=True)


def read_jsonl(log_path: Path) -> list[dict]:
    """Read every well-formed record from a JSONL log. Missing file -> []."""
    if not log_path.is_file():
        return []
    records = []
    for line in log_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError:
            logger.warning("Skipping malformed line in %s", log_path)
    return records
