"""Counters kept by the revision supervisor."""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any


@dataclass
class SupervisorStats:
    """Poll, sync and reconciliation counters."""

    polls_total: int = 0
    poll_errors_total: int = 0
    sync_errors_total: int = 0
    reloads_total: int = 0
    commits_total: int = 0
    rollbacks_total: int = 0
    last_poll_at: datetime | None = None
    last_reload_at: datetime | None = None
    # Short sha of the last committed revision
    revision: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("last_poll_at", "last_reload_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
