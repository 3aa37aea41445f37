"""Reload triggers.

A trigger only initiates a reload. Delivery runs detached from the
supervisor (a thread or an asyncio task) and reports nothing back except
"delivery finished", which the supervisor uses to resume its timer. The
reload outcome is observed later through HostStatus.
"""

import asyncio
import logging
import os
import shlex
import signal
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from gitreload.reload.host import ReloadState

logger = logging.getLogger(__name__)

DeliveredCallback = Callable[[], None]


class ReloadTriggerError(Exception):
    """Raised when a reload request cannot be initiated."""

    def __init__(self, artifact_path: Path, reason: str):
        self.artifact_path = artifact_path
        self.reason = reason
        super().__init__(f"Cannot request reload of {artifact_path}: {reason}")


class ReloadTrigger(Protocol):
    """Initiates a host reload onto a configuration artifact."""

    def request_reload(
        self,
        artifact_path: Path,
        on_delivered: DeliveredCallback | None = None,
    ) -> None:
        """Start delivering a reload request.

        Raises:
            ReloadTriggerError: If delivery could not be started.
        """
        ...


def _notify(on_delivered: DeliveredCallback | None) -> None:
    if on_delivered is None:
        return
    try:
        on_delivered()
    except Exception as e:
        logger.error(f"Reload delivery callback failed: {e}")


class SignalReloadTrigger:
    """Deliver a reload signal (SIGHUP by default) from a detached thread.

    The target process is expected to call ``state.finish_reload()`` once it
    has applied (or failed to apply) the new configuration, for example via
    ReloadState.install_signal_handler(). When signalling an external process
    that cannot report back, set assume_success to treat delivery as success.
    """

    def __init__(
        self,
        state: ReloadState,
        pid: int | None = None,
        signum: int = signal.SIGHUP,
        assume_success: bool = False,
    ):
        self.state = state
        self.pid = pid
        self.signum = signum
        self.assume_success = assume_success

    def _deliver(self, artifact_path: Path, on_delivered: DeliveredCallback | None) -> None:
        pid = self.pid or os.getpid()
        logger.info(f"Sending reload signal {signal.Signals(self.signum).name} to pid {pid} for {artifact_path}")
        try:
            os.kill(pid, self.signum)
            logger.debug("Reload signal sent")
            if self.assume_success:
                self.state.finish_reload(True)
        except OSError as e:
            logger.error(f"Failed to signal pid {pid}: {e}")
            self.state.finish_reload(False)
        finally:
            _notify(on_delivered)

    def request_reload(
        self,
        artifact_path: Path,
        on_delivered: DeliveredCallback | None = None,
    ) -> None:
        self.state.begin_reload(artifact_path)

        thread = threading.Thread(
            target=self._deliver,
            args=(artifact_path, on_delivered),
            name="gitreload-signal",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError as e:
            self.state.abort_reload()
            raise ReloadTriggerError(artifact_path, f"thread start failed: {e}") from e


class CommandReloadTrigger:
    """Run a shell command to apply a configuration artifact.

    ``{path}`` in the command is replaced with the artifact path. Exit code
    0 counts as a successful reload. The command runs as a fire-and-forget
    asyncio task on the caller's running loop.
    """

    def __init__(self, state: ReloadState, command: str, timeout: float = 300.0):
        self.state = state
        self.command = command
        self.timeout = timeout
        self._tasks: set[asyncio.Task] = set()

    def _render_command(self, artifact_path: Path) -> str:
        quoted = shlex.quote(str(artifact_path))
        if "{path}" in self.command:
            return self.command.replace("{path}", quoted)
        return f"{self.command} {quoted}"

    async def _run(self, artifact_path: Path, on_delivered: DeliveredCallback | None) -> None:
        cmd = self._render_command(artifact_path)
        logger.info(f"Running reload command: {cmd}")
        process = None
        try:
            process = await asyncio.create_subprocess_shell(
                cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
            output = stdout.decode(errors="replace").strip() if stdout else ""

            if process.returncode == 0:
                self.state.finish_reload(True)
            else:
                logger.warning(f"Reload command exited with {process.returncode}: {output[-500:]}")
                self.state.finish_reload(False)

        except TimeoutError:
            logger.error(f"Reload command timed out after {self.timeout} seconds")
            if process:
                process.kill()
            self.state.finish_reload(False)

        except Exception as e:
            logger.error(f"Error running reload command: {e}")
            self.state.finish_reload(False)

        finally:
            _notify(on_delivered)

    def request_reload(
        self,
        artifact_path: Path,
        on_delivered: DeliveredCallback | None = None,
    ) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise ReloadTriggerError(artifact_path, "no running event loop") from e

        self.state.begin_reload(artifact_path)
        task = loop.create_task(self._run(artifact_path, on_delivered))
        # Keep a reference so the task is not garbage collected mid-flight
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
