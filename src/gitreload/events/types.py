"""Event type definitions for the event bus."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events published by the revision supervisor."""

    # Supervisor lifecycle
    SUPERVISOR_STARTED = "supervisor.started"
    SUPERVISOR_STOPPED = "supervisor.stopped"

    # Remote source
    REVISION_DETECTED = "revision.detected"
    POLL_FAILED = "poll.failed"
    SYNC_FAILED = "sync.failed"

    # Staging protocol
    REVISION_STAGED = "revision.staged"
    RELOAD_REQUESTED = "reload.requested"
    REVISION_COMMITTED = "revision.committed"
    REVISION_ROLLED_BACK = "revision.rolled_back"

    @property
    def is_reconciliation(self) -> bool:
        """True for the events that resolve a staged candidate."""
        return self in (EventType.REVISION_COMMITTED, EventType.REVISION_ROLLED_BACK)


class Event(BaseModel):
    """A supervisor event.

    ``revision`` is the full revision id the event concerns, when there is
    one; ``data`` carries the rest of the payload.
    """

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    revision: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "revision": self.revision,
            "data": self.data,
        }
