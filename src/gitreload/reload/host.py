"""Host-side reload status.

The supervisor never learns the outcome of a reload directly. It asks a
HostStatus on its next tick whether a reload is still running, whether the
last one succeeded, and which configuration the host is actually running.
"""

import logging
import signal
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class HostStatus(Protocol):
    """Reload status reported by the host process."""

    def is_reloading(self) -> bool: ...

    def reload_attempted(self) -> bool: ...

    def last_reload_succeeded(self) -> bool: ...

    def active_config_path(self) -> Path | None: ...


class ReloadState:
    """In-process HostStatus updated by reload triggers and the host.

    Triggers call begin_reload() before delivering a reload request; the
    component that applies the configuration calls finish_reload() with
    the outcome. Both may run on threads other than the supervisor's.
    """

    def __init__(self, active_config_path: str | Path | None = None):
        self._lock = threading.Lock()
        self._active = Path(active_config_path) if active_config_path else None
        self._target: Path | None = None
        self._reloading = False
        self._attempted = False
        self._succeeded = False

    def begin_reload(self, target: str | Path) -> None:
        """Record that a reload to target has been requested."""
        with self._lock:
            self._target = Path(target)
            self._reloading = True
            self._attempted = True
            self._succeeded = False

    def finish_reload(self, succeeded: bool) -> None:
        """Record the outcome of the in-flight reload."""
        with self._lock:
            if not self._reloading:
                logger.debug("finish_reload() called with no reload in flight")
            self._reloading = False
            self._succeeded = succeeded
            if succeeded and self._target is not None:
                self._active = self._target

        if succeeded:
            logger.info(f"Reload succeeded, host now running {self._active}")
        else:
            logger.warning(f"Reload to {self._target} failed, host still running {self._active}")

    def abort_reload(self) -> None:
        """Forget a reload that was never delivered."""
        with self._lock:
            self._reloading = False
            self._attempted = False
            self._target = None

    @property
    def pending_target(self) -> Path | None:
        """Configuration the in-flight (or last) reload is switching to."""
        return self._target

    def is_reloading(self) -> bool:
        return self._reloading

    def reload_attempted(self) -> bool:
        return self._attempted

    def last_reload_succeeded(self) -> bool:
        return self._succeeded

    def active_config_path(self) -> Path | None:
        return self._active

    def install_signal_handler(
        self,
        apply: Callable[[Path], bool],
        signum: int = signal.SIGHUP,
    ) -> None:
        """Apply the pending target whenever signum is received.

        Must be called from the main thread. ``apply`` loads the given
        configuration into the host and returns whether it succeeded.
        """

        def _handler(received: int, _frame: object) -> None:
            target = self._target
            if target is None:
                logger.warning(f"Received signal {received} with no reload target")
                return
            try:
                ok = apply(target)
            except Exception as e:
                logger.error(f"Applying {target} raised: {e}")
                ok = False
            self.finish_reload(ok)

        signal.signal(signum, _handler)
