"""Canonical data model for the persisted scheduler document.

Defines TrackedArtifact, Task, SessionHistoryEntry, LastSession, and the
ManifestState aggregate root, together with their JSON wire form.  The wire
form uses the camelCase keys of the on-disk document; the in-memory form uses
snake_case attributes.  Sets are written as sorted lists, dates as
``YYYY-MM-DD`` and timestamps as ISO 8601 with offset, so serializing and
deserializing a document reproduces every field.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any

# Ordered from most to least important. Order matters: category weights and
# the inference table both follow it.
CATEGORIES: tuple[str, ...] = (
    "survival",
    "memory",
    "infrastructure",
    "expansion",
    "research",
    "maintenance",
    "nice-to-have",
)

IMPACTS: tuple[str, ...] = ("critical", "high", "medium", "low")

ARTIFACT_TYPES: tuple[str, ...] = (
    "core",
    "recent",
    "topic",
    "people",
    "digest",
    "draft",
    "config",
)

OUTCOMES: tuple[str, ...] = ("completed", "abandoned")

DEFAULT_PRIORITY = 2
DEFAULT_IMPACT = "medium"


class ManifestFormatError(ValueError):
    """A document field has a shape that cannot be decoded."""


def parse_timestamp(raw: str) -> datetime.datetime:
    """Parse an ISO 8601 timestamp, assuming UTC when no offset is given."""
    ts = datetime.datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.UTC)
    return ts


def parse_date(raw: str) -> datetime.date:
    """Parse a ``YYYY-MM-DD`` date, tolerating a trailing time component."""
    text = str(raw)
    if "T" in text:
        return parse_timestamp(text).date()
    return datetime.date.fromisoformat(text)


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


@dataclass
class TrackedArtifact:
    """A unit of persisted agent knowledge with a decaying weight."""

    path: str
    base_weight: float
    type: str = "recent"
    last_access: datetime.date = field(default_factory=datetime.date.today)
    access_count: int = 0
    decay_rate: float = 1.0
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "baseWeight": self.base_weight,
            "type": self.type,
            "lastAccess": self.last_access.isoformat(),
            "accessCount": self.access_count,
            "decayRate": self.decay_rate,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, path: str, data: dict[str, Any]) -> TrackedArtifact:
        if not isinstance(data, dict):
            raise ManifestFormatError(f"Artifact {path!r} is not a mapping")
        # Older documents stored the raw weight under "weight".
        weight = data.get("baseWeight", data.get("weight"))
        if weight is None:
            raise ManifestFormatError(f"Artifact {path!r} has no baseWeight")
        if "lastAccess" not in data:
            raise ManifestFormatError(f"Artifact {path!r} has no lastAccess")
        return cls(
            path=path,
            base_weight=float(weight),
            type=str(data.get("type", "recent")),
            last_access=parse_date(data["lastAccess"]),
            access_count=max(0, int(data.get("accessCount", 0))),
            decay_rate=max(0.0, float(data.get("decayRate", 1.0))),
            summary=str(data.get("summary", "")),
        )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@dataclass
class Task:
    """A unit of discretionary work competing for selection.

    ``category`` and ``created_at`` may be None on tasks decoded from older
    documents; :func:`vigil.task_text.backfill_task` fills them in.
    """

    text: str
    context: str = ""
    priority: int = DEFAULT_PRIORITY
    category: str | None = None
    impact: str = DEFAULT_IMPACT
    tags: set[str] = field(default_factory=set)
    created_at: datetime.datetime | None = None
    skip_count: int = 0
    source: str = ""
    blocks_others: bool = False
    dependencies: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "task": self.text,
            "context": self.context,
            "priority": self.priority,
            "category": self.category,
            "impact": self.impact,
            "tags": sorted(self.tags),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "skipCount": self.skip_count,
            "source": self.source,
            "blocksOthers": self.blocks_others,
        }
        if self.dependencies:
            d["dependencies"] = list(self.dependencies)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        if not isinstance(data, dict):
            raise ManifestFormatError(f"Task entry is not a mapping: {data!r}")
        text = data.get("task", data.get("text"))
        if not text:
            raise ManifestFormatError(f"Task entry has no text: {data!r}")
        category = data.get("category") or None
        if category is not None and category not in CATEGORIES:
            category = None
        impact = data.get("impact") or DEFAULT_IMPACT
        if impact not in IMPACTS:
            impact = DEFAULT_IMPACT
        created_raw = data.get("createdAt")
        priority = data.get("priority")
        return cls(
            text=str(text),
            context=str(data.get("context") or ""),
            priority=DEFAULT_PRIORITY if priority is None else int(priority),
            category=category,
            impact=impact,
            tags={str(t) for t in data.get("tags") or []},
            created_at=parse_timestamp(created_raw) if created_raw else None,
            skip_count=max(0, int(data.get("skipCount") or 0)),
            source=str(data.get("source") or ""),
            blocks_others=bool(data.get("blocksOthers", False)),
            dependencies=[str(d) for d in data.get("dependencies") or []],
        )


# ---------------------------------------------------------------------------
# Session history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionHistoryEntry:
    """One immutable record of a finished task."""

    date: datetime.datetime
    category: str
    task_name: str
    outcome: str = "completed"
    task_key: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "category": self.category,
            "taskName": self.task_name,
            "outcome": self.outcome,
            "taskKey": self.task_key,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionHistoryEntry:
        if not isinstance(data, dict):
            raise ManifestFormatError(f"History entry is not a mapping: {data!r}")
        try:
            return cls(
                date=parse_timestamp(data["date"]),
                category=str(data.get("category", data.get("taskCategory", ""))),
                task_name=str(data["taskName"]),
                outcome=str(data.get("outcome") or "completed"),
                task_key=str(data.get("taskKey", "")),
            )
        except (KeyError, ValueError) as exc:
            raise ManifestFormatError(f"Bad history entry {data!r}: {exc}") from exc


@dataclass
class LastSession:
    """Snapshot of the most recent session, shown at boot."""

    date: str = ""
    focus: str = ""
    outcome: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"date": self.date, "focus": self.focus, "outcome": self.outcome}


@dataclass
class ManifestConfig:
    """Settings stored inside the document itself."""

    max_boot_files: int = 10
    weight_decay_per_day: float = 0.02
    min_core_weight: float = 0.5

    def to_dict(self) -> dict[str, Any]:
        return {
            "maxBootFiles": self.max_boot_files,
            "weightDecayPerDay": self.weight_decay_per_day,
            "minCoreWeight": self.min_core_weight,
        }


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------


@dataclass
class ManifestState:
    """The whole persisted document.

    ``revision`` is the optimistic-concurrency stamp: the State Store bumps it
    on every save and refuses a save whose base revision is not the one on
    disk.
    """

    artifacts: dict[str, TrackedArtifact] = field(default_factory=dict)
    task_queue: list[Task] = field(default_factory=list)
    active_task: Task | None = None
    session_history: list[SessionHistoryEntry] = field(default_factory=list)
    completed_signatures: set[str] = field(default_factory=set)
    recent_topics: list[str] = field(default_factory=list)
    last_session: LastSession = field(default_factory=LastSession)
    last_decay_run: datetime.date | None = None
    config: ManifestConfig = field(default_factory=ManifestConfig)
    revision: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "revision": self.revision,
            "artifacts": {
                path: art.to_dict() for path, art in sorted(self.artifacts.items())
            },
            "taskQueue": [t.to_dict() for t in self.task_queue],
            "activeTask": self.active_task.to_dict() if self.active_task else None,
            "sessionHistory": [e.to_dict() for e in self.session_history],
            "completedSignatures": sorted(self.completed_signatures),
            "recentTopics": list(self.recent_topics),
            "lastSession": self.last_session.to_dict(),
            "lastDecayRun": (
                self.last_decay_run.isoformat() if self.last_decay_run else None
            ),
            "config": self.config.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManifestState:
        """Decode a document.

        Raises:
            ManifestFormatError: If a required structure is missing or has
                the wrong type. Task entries with missing category, tags or
                timestamps are accepted; they are backfilled later.
        """
        if not isinstance(data, dict):
            raise ManifestFormatError("Document root is not a mapping")

        # Older documents used "files" for artifacts and "nextTask" for the
        # active task.
        raw_artifacts = data.get("artifacts", data.get("files", {})) or {}
        if not isinstance(raw_artifacts, dict):
            raise ManifestFormatError("artifacts must be a mapping")
        raw_queue = data.get("taskQueue", []) or []
        if not isinstance(raw_queue, list):
            raise ManifestFormatError("taskQueue must be a list")
        raw_history = data.get("sessionHistory", []) or []
        if not isinstance(raw_history, list):
            raise ManifestFormatError("sessionHistory must be a list")
        raw_active = data.get("activeTask", data.get("nextTask"))

        cfg = data.get("config") or {}
        last = data.get("lastSession") or {}
        decay_run = data.get("lastDecayRun")

        try:
            config = ManifestConfig(
                max_boot_files=int(cfg.get("maxBootFiles", 10)),
                weight_decay_per_day=float(cfg.get("weightDecayPerDay", 0.02)),
                min_core_weight=float(cfg.get("minCoreWeight", 0.5)),
            )
            last_decay_run = parse_date(decay_run) if decay_run else None
        except (TypeError, ValueError, AttributeError) as exc:
            raise ManifestFormatError(f"Bad config block: {exc}") from exc

        try:
            artifacts = {
                str(path): TrackedArtifact.from_dict(str(path), entry)
                for path, entry in raw_artifacts.items()
            }
        except (TypeError, ValueError) as exc:
            if isinstance(exc, ManifestFormatError):
                raise
            raise ManifestFormatError(f"Bad artifact entry: {exc}") from exc

        return cls(
            artifacts=artifacts,
            task_queue=[Task.from_dict(t) for t in raw_queue],
            active_task=Task.from_dict(raw_active) if raw_active else None,
            session_history=[SessionHistoryEntry.from_dict(e) for e in raw_history],
            completed_signatures={str(s) for s in data.get("completedSignatures") or []},
            recent_topics=[str(t) for t in data.get("recentTopics") or []],
            last_session=LastSession(
                date=str(last.get("date", "")),
                focus=str(last.get("focus", "")),
                outcome=str(last.get("outcome", "")),
            ),
            last_decay_run=last_decay_run,
            config=config,
            revision=int(data.get("revision", 0)),
        )
