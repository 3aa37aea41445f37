"""Pointer-file staging store.

Three slots track which rendered artifact the host should be running:

- ``current``: the last confirmed configuration
- ``candidate``: a staged configuration whose reload outcome is not yet known
- ``previous``: the configuration to fall back to if the candidate fails

Each slot is a one-line text file holding the artifact path. Every write goes
to a sibling temp file that is renamed over the slot file, so a reader (or a
restarted process) never sees a torn record. Slot mutations inside stage,
commit and rollback are ordered so that every completed prefix leaves a state
start-up recovery can resume from.
"""

import contextlib
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path

from gitreload.staging.revision import artifact_path_for, is_artifact_name

logger = logging.getLogger(__name__)


class Slot(str, Enum):
    """Logical slot names."""

    CURRENT = "current"
    CANDIDATE = "candidate"
    PREVIOUS = "previous"

    @property
    def filename(self) -> str:
        """On-disk pointer file name for this slot."""
        return _SLOT_FILES[self]


_SLOT_FILES: dict[Slot, str] = {
    Slot.CURRENT: "cur.ref",
    Slot.CANDIDATE: "new.ref",
    Slot.PREVIOUS: "old.ref",
}

# Start-up recovery resumes from the first populated slot in this order
RECOVERY_ORDER: tuple[Slot, ...] = (Slot.CURRENT, Slot.CANDIDATE, Slot.PREVIOUS)


class StoreStatus(Enum):
    """Outcome of a staging store operation."""

    OK = "ok"
    IO_ERROR = "io_error"
    NOTHING_TO_COMMIT = "nothing_to_commit"
    NOTHING_TO_ROLL_BACK = "nothing_to_roll_back"

    @property
    def ok(self) -> bool:
        return self is StoreStatus.OK


def atomic_write_text(path: Path, content: str) -> None:
    """Write content to path via temp file + rename.

    Raises:
        OSError: If the temp file cannot be written or renamed.
    """
    fd, temp_name = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        temp_path.replace(path)
    except OSError:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


class StagingStore:
    """Durable bookkeeping of the current/candidate/previous slots.

    The store holds no process-lifetime state: every query re-reads the
    pointer files, so a restarted process sees exactly what the last one
    left behind.
    """

    def __init__(
        self,
        configs_dir: str | Path,
        extension: str = "yaml",
        clear_current_on_stage: bool = True,
    ):
        self.configs_dir = Path(configs_dir)
        self.extension = extension.lstrip(".")
        # When False, ``current`` stays populated until commit and an
        # in-flight reload is signalled by ``candidate`` alone.
        self.clear_current_on_stage = clear_current_on_stage

    def ensure_layout(self) -> bool:
        """Create the configs directory if needed."""
        try:
            self.configs_dir.mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.error(f"Cannot create configs directory {self.configs_dir}: {e}")
            return False

    @property
    def header_path(self) -> Path:
        """Path of the static header fragment."""
        return self.configs_dir / f"header.{self.extension}"

    def artifact_path(self, revision_id: str) -> Path:
        """Derive the artifact path for a revision id."""
        return artifact_path_for(self.configs_dir, revision_id, self.extension)

    def slot_path(self, slot: Slot) -> Path:
        """Path of the pointer file backing a slot."""
        return self.configs_dir / slot.filename

    # ------------------------------------------------------------------
    # Slot primitives
    # ------------------------------------------------------------------

    def deref_slot(self, slot: Slot) -> Path | None:
        """Read the artifact path a slot points to.

        Missing, unreadable or empty pointer files are reported as absent.
        """
        try:
            raw = self.slot_path(slot).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            if not isinstance(e, FileNotFoundError):
                logger.warning(f"Unreadable {slot.value} pointer, treating as absent: {e}")
            return None

        target = raw.splitlines()[0].strip() if raw.strip() else ""
        if not target:
            return None
        return Path(target)

    def set_slot(self, slot: Slot, target: str | Path) -> bool:
        """Atomically point a slot at an artifact.

        Returns:
            False on I/O failure; the previous record is left intact.
        """
        try:
            atomic_write_text(self.slot_path(slot), f"{target}\n")
        except OSError as e:
            logger.error(f"Failed to write {slot.value} pointer -> {target}: {e}")
            return False

        logger.debug(f"Set {slot.value} -> {target}")
        return True

    def clear_slot(self, slot: Slot) -> bool:
        """Remove a slot's pointer record (never the artifact it points to)."""
        try:
            self.slot_path(slot).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to remove {slot.value} pointer: {e}")
            return False
        return True

    def slot_exists(self, slot: Slot) -> bool:
        """Check whether a slot currently points anywhere."""
        return self.deref_slot(slot) is not None

    def snapshot(self) -> dict[Slot, Path | None]:
        """Dereference all three slots."""
        return {slot: self.deref_slot(slot) for slot in Slot}

    def _remove_artifact(self, path: Path, reason: str) -> None:
        """Delete an artifact file, logging instead of failing."""
        try:
            path.unlink(missing_ok=True)
            logger.debug(f"Removed {reason} artifact {path}")
        except OSError as e:
            logger.warning(f"Could not remove {reason} artifact {path}: {e}")

    # ------------------------------------------------------------------
    # Staging protocol
    # ------------------------------------------------------------------

    def stage(self, artifact_path: str | Path) -> StoreStatus:
        """Stage an artifact as the candidate configuration.

        Steps (each one a separate atomic filesystem operation):
        1. previous := current, if current is present
        2. delete a stale candidate artifact that differs from this one
        3. candidate := artifact_path
        4. clear the current pointer to mark a reload in flight
        """
        artifact_path = Path(artifact_path)

        current = self.deref_slot(Slot.CURRENT)
        if current is not None and not self.set_slot(Slot.PREVIOUS, current):
            return StoreStatus.IO_ERROR

        previous = self.deref_slot(Slot.PREVIOUS)
        stale = self.deref_slot(Slot.CANDIDATE)
        if stale is not None and stale != artifact_path and stale != previous:
            logger.info(f"Discarding stale candidate {stale}")
            self._remove_artifact(stale, "stale candidate")

        if not self.set_slot(Slot.CANDIDATE, artifact_path):
            return StoreStatus.IO_ERROR

        if self.clear_current_on_stage and not self.clear_slot(Slot.CURRENT):
            return StoreStatus.IO_ERROR

        logger.info(f"Staged candidate {artifact_path}")
        return StoreStatus.OK

    def commit(self) -> StoreStatus:
        """Promote the candidate to current and drop the previous artifact."""
        candidate = self.deref_slot(Slot.CANDIDATE)
        if candidate is None:
            logger.debug("Nothing to commit: no candidate staged")
            return StoreStatus.NOTHING_TO_COMMIT

        if not self.set_slot(Slot.CURRENT, candidate):
            return StoreStatus.IO_ERROR

        previous = self.deref_slot(Slot.PREVIOUS)
        if previous is not None and previous != candidate:
            self._remove_artifact(previous, "previous")

        if not self.clear_slot(Slot.CANDIDATE) or not self.clear_slot(Slot.PREVIOUS):
            return StoreStatus.IO_ERROR

        logger.info(f"Committed {candidate}")
        return StoreStatus.OK

    def rollback(self) -> StoreStatus:
        """Discard the candidate and restore previous as current."""
        candidate = self.deref_slot(Slot.CANDIDATE)
        previous = self.deref_slot(Slot.PREVIOUS)

        if candidate is not None and candidate != previous:
            self._remove_artifact(candidate, "candidate")

        if previous is None:
            if candidate is not None:
                logger.warning(f"No previous configuration; clearing candidate pointer to {candidate}")
                self.clear_slot(Slot.CANDIDATE)
            logger.error("Cannot roll back: no previous configuration recorded")
            return StoreStatus.NOTHING_TO_ROLL_BACK

        if not self.set_slot(Slot.CURRENT, previous):
            return StoreStatus.IO_ERROR

        if not self.clear_slot(Slot.CANDIDATE) or not self.clear_slot(Slot.PREVIOUS):
            return StoreStatus.IO_ERROR

        logger.info(f"Rolled back to {previous}")
        return StoreStatus.OK

    def prune_artifacts(self) -> list[Path]:
        """Delete rendered artifacts that no slot references.

        The header fragment and pointer files are never touched.

        Returns:
            Paths that were removed.
        """
        referenced = {p.name for p in self.snapshot().values() if p is not None}
        removed: list[Path] = []

        try:
            entries = list(self.configs_dir.iterdir())
        except OSError as e:
            logger.warning(f"Cannot list {self.configs_dir} for pruning: {e}")
            return removed

        for path in entries:
            if not path.is_file() or not is_artifact_name(path, self.extension):
                continue
            if path.name in referenced:
                continue
            self._remove_artifact(path, "unreferenced")
            if not path.exists():
                removed.append(path)

        if removed:
            logger.info(f"Pruned {len(removed)} unreferenced artifacts")
        return removed
