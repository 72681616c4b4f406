"""Session recorder: append-only session history.

The recorder is a side-effecting collaborator. It loads the document, appends
one entry, and saves -- so any caller holding an older copy must reload
before saving its own changes (see :meth:`vigil.scheduler.Scheduler.complete`).

Entries are never edited or removed. An entry whose ``task_key`` and outcome
are already present is not appended again, which makes retries safe.
"""

from __future__ import annotations

import datetime
import logging

from vigil.manifest_types import OUTCOMES, SessionHistoryEntry
from vigil.state_store import StateStore

logger = logging.getLogger(__name__)


class SessionRecorder:
    """Appends :class:`SessionHistoryEntry` records through the State Store."""

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def record(
        self,
        category: str,
        task_name: str,
        outcome: str = "completed",
        *,
        task_key: str = "",
        now: datetime.datetime | None = None,
    ) -> bool:
        """Append one history entry and save.

        Args:
            category: Category of the finished task.
            task_name: Task text.
            outcome: ``completed`` or ``abandoned``.
            task_key: Identity of the logical completion. Entries with a key
                already recorded for the same outcome are skipped.
            now: Entry timestamp; defaults to the current UTC time.

        Returns:
            True if an entry was appended, False if it was already recorded.

        Raises:
            ValueError: If ``outcome`` is not a known outcome.
            StateStoreError: If the document cannot be loaded or saved.
        """
        if outcome not in OUTCOMES:
            raise ValueError(f"Unknown outcome {outcome!r}")

        state = self.store.load()
        if task_key and any(
            e.task_key == task_key and e.outcome == outcome
            for e in state.session_history
        ):
            logger.info("Session already recorded for %s, not appending", task_key)
            return False

        state.session_history.append(
            SessionHistoryEntry(
                date=now or datetime.datetime.now(datetime.UTC),
                category=category,
                task_name=task_name,
                outcome=outcome,
                task_key=task_key,
            )
        )
        self.store.save(state)
        logger.info("Recorded session [%s] %s (%s)", category, task_name, outcome)
        return True

    def is_recorded(self, task_key: str, outcome: str = "completed") -> bool:
        """Check whether a logical completion is already in history."""
        state = self.store.load()
        return any(
            e.task_key == task_key and e.outcome == outcome
            for e in state.session_history
        )
