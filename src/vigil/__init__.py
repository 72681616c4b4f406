"""vigil: self-scheduling core for a memoryless autonomous agent."""

__version__ = "0.1.0"

from vigil.config import VigilConfig, load_config
from vigil.manifest_types import (
    ManifestState,
    SessionHistoryEntry,
    Task,
    TrackedArtifact,
)
from vigil.scheduler import Scheduler, SchedulerError, UsageError
from vigil.session_recorder import SessionRecorder
from vigil.state_store import StateStore, StateStoreError

__all__ = [
    # config
    "VigilConfig",
    "load_config",
    # manifest_types
    "ManifestState",
    "SessionHistoryEntry",
    "Task",
    "TrackedArtifact",
    # scheduler
    "Scheduler",
    "SchedulerError",
    "UsageError",
    # session_recorder
    "SessionRecorder",
    # state_store
    "StateStore",
    "StateStoreError",
]
