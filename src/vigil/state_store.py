"""State Store: sole owner of the persisted scheduler document.

Every other component receives a loaded copy of :class:`ManifestState` and
writes back through :meth:`StateStore.save`. Nothing else touches the file.

Failure handling:
    - A missing or unreadable document is never replaced by a fabricated
      empty one. ``read()`` reports ``not_found``; ``load()`` raises.
      The only way to create a document is the explicit ``create()``.
    - Saves are optimistic: the document carries a ``revision`` stamp, and a
      save whose base revision differs from the one on disk is refused with
      ``write_conflict``. This turns the "stale in-memory copy overwrites a
      fresh append" failure into a loud error instead of silent data loss.
    - Writes go to a temp file which then replaces the document.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from vigil.manifest_types import ManifestFormatError, ManifestState

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"
MALFORMED = "malformed"
WRITE_CONFLICT = "write_conflict"
IO_ERROR = "io_error"


class StateStoreError(Exception):
    """State store unavailable or refusing an operation.

    Attributes:
        kind: One of ``not_found``, ``malformed``, ``write_conflict``,
            ``io_error``.
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass
class StoreResult:
    """Outcome of a read: either a state or an error kind with a message."""

    state: ManifestState | None = None
    error: str = ""
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.state is not None and not self.error

    def unwrap(self) -> ManifestState:
        """Return the state or raise the recorded error."""
        if not self.ok:
            raise StateStoreError(self.error, self.message)
        return self.state  # type: ignore[return-value]


def serialize_state(state: ManifestState) -> str:
    """Encode a state document as indented JSON text."""
    return json.dumps(state.to_dict(), indent=2, ensure_ascii=False) + "\n"


def deserialize_state(text: str) -> ManifestState:
    """Decode JSON text into a state document.

    Raises:
        ManifestFormatError: If the JSON is invalid or has the wrong shape.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ManifestFormatError(f"Invalid JSON: {exc}") from exc
    return ManifestState.from_dict(data)


class StateStore:
    """File-backed store for one :class:`ManifestState` document."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> StoreResult:
        """Read and decode the document without raising."""
        if not self.path.is_file():
            return StoreResult(
                error=NOT_FOUND,
                message=f"State store unavailable: {self.path} does not exist",
            )
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            return StoreResult(
                error=NOT_FOUND,
                message=f"State store unavailable: cannot read {self.path}: {exc}",
            )
        try:
            state = deserialize_state(text)
        except (ManifestFormatError, TypeError, ValueError) as exc:
            return StoreResult(
                error=MALFORMED,
                message=f"State store malformed: {self.path}: {exc}",
            )
        return StoreResult(state=state)

    def load(self) -> ManifestState:
        """Load the document.

        Raises:
            StateStoreError: ``not_found`` or ``malformed``.
        """
        return self.read().unwrap()

    def _disk_revision(self) -> int:
        result = self.read()
        if not result.ok:
            raise StateStoreError(result.error, result.message)
        return result.state.revision  # type: ignore[union-attr]

    def save(self, state: ManifestState) -> ManifestState:
        """Write the document back, bumping its revision.

        The caller's ``state.revision`` must equal the revision on disk, i.e.
        the caller must hold the latest copy.

        Returns:
            The same state object with its new revision.

        Raises:
            StateStoreError: ``not_found`` if the document vanished,
                ``write_conflict`` if someone saved in between, ``io_error``
                if the write itself fails.
        """
        on_disk = self._disk_revision()
        if on_disk != state.revision:
            raise StateStoreError(
                WRITE_CONFLICT,
                f"Refusing to save revision {state.revision} over revision "
                f"{on_disk} of {self.path}; reload before merging",
            )
        state.revision = on_disk + 1
        try:
            self._write(state)
        except OSError as exc:
            state.revision = on_disk
            raise StateStoreError(
                IO_ERROR, f"Cannot write state store {self.path}: {exc}"
            ) from exc
        logger.debug("Saved %s at revision %d", self.path, state.revision)
        return state

    def create(self, state: ManifestState | None = None) -> ManifestState:
        """Create a new document. Refuses to overwrite an existing one.

        Raises:
            StateStoreError: ``write_conflict`` if the document already exists.
        """
        if self.path.exists():
            raise StateStoreError(
                WRITE_CONFLICT, f"State store already exists: {self.path}"
            )
        state = state if state is not None else ManifestState()
        state.revision = 0
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._write(state)
        except OSError as exc:
            raise StateStoreError(
                IO_ERROR, f"Cannot create state store {self.path}: {exc}"
            ) from exc
        logger.info("Created state store at %s", self.path)
        return state

    def _write(self, state: ManifestState) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(serialize_state(state), encoding="utf-8")
        tmp.replace(self.path)
