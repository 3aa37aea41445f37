"""Revision supervisor: polling, staging and reload reconciliation."""

from gitreload.supervisor.manager import RevisionSupervisor, TickOutcome
from gitreload.supervisor.stats import SupervisorStats

__all__ = ["RevisionSupervisor", "SupervisorStats", "TickOutcome"]
