"""Revision supervisor: polls a remote source and drives the staging store.

Per tick:
1. Issue a reload queued by start-up recovery (and do nothing else)
2. Reconcile a staged candidate against the host's reported reload outcome
3. Poll the remote revision id and compare it with the known revision
4. On change: sync, read and render a new artifact
5. Stage the artifact
6. Request a reload (rolled back immediately if it cannot be initiated)

The reload outcome is never reported back directly; step 2 of a later tick
reads it from HostStatus and the persisted slots.
"""

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from gitreload import __version__
from gitreload.config import GitConfigSettings
from gitreload.events import EventBus, EventType
from gitreload.git import GitError, GitRemoteSource, RemoteSource
from gitreload.reload import HostStatus, ReloadTrigger, ReloadTriggerError
from gitreload.staging import Slot, StagingStore, StoreStatus, revision_from_path, short_revision
from gitreload.staging.store import RECOVERY_ORDER, atomic_write_text
from gitreload.supervisor.stats import SupervisorStats

logger = logging.getLogger(__name__)


class TickOutcome(Enum):
    """What a single supervisor tick did."""

    PAUSED = "paused"
    STARTUP_RELOAD = "startup_reload"
    UNCHANGED = "unchanged"
    REJECTED = "rejected"
    POLL_FAILED = "poll_failed"
    SYNC_FAILED = "sync_failed"
    READ_FAILED = "read_failed"
    RENDER_FAILED = "render_failed"
    STAGE_FAILED = "stage_failed"
    RELOAD_FAILED = "reload_failed"
    RELOAD_REQUESTED = "reload_requested"


def _short_or_none(revision_id: str | None) -> str | None:
    return short_revision(revision_id) if revision_id else None


def _same_path(a: Path, b: Path) -> bool:
    if a == b:
        return True
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return False


class RevisionSupervisor:
    """Stages remote configuration revisions and reconciles reload outcomes.

    Ticks never overlap: the run loop awaits each tick before sleeping, and
    the loop is paused while a reload request is being delivered.
    """

    def __init__(
        self,
        store: StagingStore,
        source: RemoteSource,
        trigger: ReloadTrigger,
        host: HostStatus,
        config_file: str,
        poll_interval: float = 60.0,
        header_source: Path | None = None,
        event_bus: EventBus | None = None,
    ):
        self.store = store
        self.source = source
        self.trigger = trigger
        self.host = host
        self.config_file = config_file
        self.poll_interval = poll_interval
        self.header_source = header_source
        self.event_bus = event_bus

        self.stats = SupervisorStats()

        self._running = False
        self._paused = False
        self._loop_task: asyncio.Task | None = None
        self._initialized = False

        # Reload queued by start-up recovery, issued on the first tick
        self._pending_startup_reload: Path | None = None
        # True between a reload request onto the candidate and its reconciliation
        self._awaiting_outcome = False
        # Revision whose reload failed; not restaged until the remote moves on
        self._rejected_revision: str | None = None

    @classmethod
    def from_settings(
        cls,
        settings: GitConfigSettings,
        trigger: ReloadTrigger,
        host: HostStatus,
        event_bus: EventBus | None = None,
    ) -> "RevisionSupervisor":
        """Build a supervisor backed by git and the on-disk staging store."""
        store = StagingStore(
            settings.configs_path,
            extension=settings.extension,
            clear_current_on_stage=settings.clear_current_on_stage,
        )
        source = GitRemoteSource(settings.repo, settings.ref, settings.repo_path)
        return cls(
            store=store,
            source=source,
            trigger=trigger,
            host=host,
            config_file=settings.path,
            poll_interval=settings.poll_interval,
            header_source=settings.header_source,
            event_bus=event_bus,
        )

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def pending_startup_reload(self) -> Path | None:
        return self._pending_startup_reload

    def pause(self) -> None:
        """Suspend ticking while a reload request is outstanding."""
        self._paused = True

    def resume(self) -> None:
        """Resume ticking. Safe to call from any thread."""
        self._paused = False

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self.event_bus:
            await self.event_bus.emit(event_type, data)

    # ------------------------------------------------------------------
    # Initialization and start-up recovery
    # ------------------------------------------------------------------

    def capture_header(self) -> bool:
        """Copy the header fragment from the startup configuration, once.

        Returns:
            True if a header file was written by this call.
        """
        if self.header_source is None:
            return False

        header_path = self.store.header_path
        if header_path.exists():
            return False

        try:
            content = Path(self.header_source).read_text(encoding="utf-8")
            atomic_write_text(header_path, content)
        except OSError as e:
            logger.warning(f"Could not capture header from {self.header_source}: {e}")
            return False

        logger.info(f"Captured header fragment from {self.header_source}")
        return True

    def recover(self) -> Path | None:
        """Queue a reload left unfinished by a previous process instance.

        If the host is already running one of the slot targets, a previous
        instance got at least that far and nothing is queued. Otherwise the
        first populated slot in current > candidate > previous order whose
        artifact still exists becomes the pending start-up reload.
        """
        slots = self.store.snapshot()
        active = self.host.active_config_path()

        if active is not None:
            for slot, target in slots.items():
                if target is not None and _same_path(target, active):
                    logger.info(f"Host already running {slot.value} configuration {target}")
                    return None

        for slot in RECOVERY_ORDER:
            target = slots[slot]
            if target is None:
                continue
            if not target.exists():
                logger.warning(f"{slot.value} points to missing artifact {target}, skipping")
                continue
            logger.info(f"Queueing start-up reload of {slot.value} configuration {target}")
            self._pending_startup_reload = target
            return target

        logger.info("No staged configuration found, will process next remote revision")
        return None

    def initialize(self) -> None:
        """Prepare the configs directory, header and recovery state."""
        if self._initialized:
            return
        self.store.ensure_layout()
        self.capture_header()
        self.recover()

        current = self.store.deref_slot(Slot.CURRENT)
        self.stats.revision = _short_or_none(revision_from_path(current))
        self._initialized = True

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> TickOutcome:
        """Run one supervisor tick."""
        if self._paused:
            logger.debug("Reload delivery outstanding, skipping tick")
            return TickOutcome.PAUSED

        if self._pending_startup_reload is not None:
            target = self._pending_startup_reload
            self._pending_startup_reload = None
            if not await self._request_reload(target):
                # Retry on the next tick; the slots are unchanged
                self._pending_startup_reload = target
                return TickOutcome.RELOAD_FAILED
            return TickOutcome.STARTUP_RELOAD

        await self.reconcile()
        return await self.poll()

    async def reconcile(self) -> StoreStatus | None:
        """Commit or roll back a staged candidate based on host status.

        Returns:
            The store status of the commit/rollback, or None if nothing
            was decided this tick.
        """
        candidate = self.store.deref_slot(Slot.CANDIDATE)
        if candidate is None:
            return None

        if self.host.is_reloading():
            logger.debug(f"Reload to {candidate} still in progress")
            return None

        active = self.host.active_config_path()
        if active is not None and _same_path(active, candidate):
            return await self._commit(candidate)

        if (
            self._awaiting_outcome
            and self.host.reload_attempted()
            and not self.host.last_reload_succeeded()
        ):
            return await self._rollback(candidate, reason="reload failed", reject=True)

        logger.debug(f"Candidate {candidate} not active yet, leaving it staged")
        return None

    async def _commit(self, candidate: Path) -> StoreStatus:
        self._awaiting_outcome = False
        status = self.store.commit()
        if not status.ok:
            logger.error(f"Commit of {candidate} failed: {status.value}")
            return status

        revision = revision_from_path(candidate)
        self.stats.commits_total += 1
        self.stats.revision = _short_or_none(revision)
        self.store.prune_artifacts()
        logger.info(f"Configuration {short_revision(revision)} committed")
        await self._emit(EventType.REVISION_COMMITTED, {"revision": revision, "path": str(candidate)})
        return status

    async def _rollback(self, candidate: Path | None, reason: str, reject: bool = False) -> StoreStatus:
        self._awaiting_outcome = False
        revision = revision_from_path(candidate)
        if reject:
            self._rejected_revision = revision

        status = self.store.rollback()
        if not status.ok:
            logger.error(f"Rollback of {candidate} ({reason}) failed: {status.value}")
            return status

        restored = self.store.deref_slot(Slot.CURRENT)
        self.stats.rollbacks_total += 1
        self.stats.revision = _short_or_none(revision_from_path(restored))
        self.store.prune_artifacts()
        logger.warning(f"Rolled back {short_revision(revision)} ({reason}), current is {restored}")
        await self._emit(
            EventType.REVISION_ROLLED_BACK,
            {"revision": revision, "reason": reason, "restored": str(restored)},
        )
        return status

    def _known_revision(self) -> str | None:
        """Revision the remote is compared against.

        While this instance awaits a reload outcome the candidate is the
        newest revision; otherwise it is whatever current points to.
        """
        if self._awaiting_outcome:
            candidate = self.store.deref_slot(Slot.CANDIDATE)
            if candidate is not None:
                return revision_from_path(candidate)
        return revision_from_path(self.store.deref_slot(Slot.CURRENT))

    async def poll(self) -> TickOutcome:
        """Check the remote for a new revision and stage it."""
        try:
            remote = await self.source.get_revision_id()
        except GitError as e:
            self.stats.poll_errors_total += 1
            logger.error(f"Failed to get remote revision: {e}")
            await self._emit(EventType.POLL_FAILED, {"error": str(e)})
            return TickOutcome.POLL_FAILED

        self.stats.polls_total += 1
        self.stats.last_poll_at = datetime.now(UTC)

        known = self._known_revision()
        logger.debug(f"Remote revision: {short_revision(remote)}, known: {short_revision(known)}")
        if remote == known:
            return TickOutcome.UNCHANGED
        if remote == self._rejected_revision:
            logger.debug(f"Revision {short_revision(remote)} was rejected, waiting for a new one")
            return TickOutcome.REJECTED

        logger.info(f"New revision detected: {short_revision(remote)} (previous: {short_revision(known)})")
        await self._emit(EventType.REVISION_DETECTED, {"revision": remote, "previous": known})

        try:
            await self.source.sync()
        except GitError as e:
            self.stats.sync_errors_total += 1
            logger.error(f"Failed to sync repository: {e}")
            await self._emit(EventType.SYNC_FAILED, {"revision": remote, "error": str(e)})
            return TickOutcome.SYNC_FAILED

        try:
            content = await self.source.read_file(self.config_file)
        except GitError as e:
            logger.error(f"Failed to extract config file {self.config_file}: {e}")
            return TickOutcome.READ_FAILED

        artifact = self.render(remote, content)
        if artifact is None:
            return TickOutcome.RENDER_FAILED

        status = self.store.stage(artifact)
        if not status.ok:
            logger.error(f"Failed to stage {artifact}: {status.value}")
            return TickOutcome.STAGE_FAILED
        await self._emit(EventType.REVISION_STAGED, {"revision": remote, "path": str(artifact)})

        if not await self._request_reload(artifact):
            await self._rollback(artifact, reason="reload not initiated")
            return TickOutcome.RELOAD_FAILED

        return TickOutcome.RELOAD_REQUESTED

    def render(self, revision_id: str, content: str) -> Path | None:
        """Write the artifact for revision_id: header fragment + fetched content."""
        artifact = self.store.artifact_path(revision_id)

        header = ""
        header_path = self.store.header_path
        if header_path.is_file():
            try:
                header = header_path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning(f"Could not read header {header_path}, rendering without it: {e}")
        if header and not header.endswith("\n"):
            header += "\n"

        try:
            atomic_write_text(artifact, header + content)
        except OSError as e:
            logger.error(f"Failed to write config {artifact}: {e}")
            return None

        logger.info(f"Wrote config to {artifact}")
        return artifact

    async def _request_reload(self, artifact: Path) -> bool:
        """Hand artifact to the reload trigger with the timer paused."""
        self.pause()
        try:
            self.trigger.request_reload(artifact, on_delivered=self.resume)
        except ReloadTriggerError as e:
            self.resume()
            logger.error(f"Failed to trigger configuration reload: {e}")
            return False

        # A start-up reload of current or previous leaves the candidate to the next poll
        candidate = self.store.deref_slot(Slot.CANDIDATE)
        self._awaiting_outcome = candidate is not None and _same_path(artifact, candidate)
        self.stats.reloads_total += 1
        self.stats.last_reload_at = datetime.now(UTC)
        logger.info(f"Triggered hot reload with config {artifact}")
        await self._emit(
            EventType.RELOAD_REQUESTED,
            {"revision": revision_from_path(artifact), "path": str(artifact)},
        )
        return True

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Supervisor tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.poll_interval)

    async def start(self) -> None:
        """Initialize and start ticking every poll_interval seconds."""
        if self._running:
            return
        self.initialize()
        self._running = True
        self._loop_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Supervisor started (gitreload v{__version__}), polling every {self.poll_interval}s")
        await self._emit(EventType.SUPERVISOR_STARTED, {"poll_interval": self.poll_interval})

    async def stop(self) -> None:
        """Stop the run loop; an in-progress tick is cancelled."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        logger.info("Supervisor stopped")
        await self._emit(EventType.SUPERVISOR_STOPPED, self.stats.to_dict())
