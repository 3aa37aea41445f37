"""Reload triggering and host reload status."""

from gitreload.reload.host import HostStatus, ReloadState
from gitreload.reload.trigger import (
    CommandReloadTrigger,
    ReloadTrigger,
    ReloadTriggerError,
    SignalReloadTrigger,
)

__all__ = [
    "CommandReloadTrigger",
    "HostStatus",
    "ReloadState",
    "ReloadTrigger",
    "ReloadTriggerError",
    "SignalReloadTrigger",
]
