"""Durable slot bookkeeping for staged configuration revisions.

Layout under ``<config_dir>/configs``:
- ``<revision-id>.<ext>``: rendered configuration artifacts
- ``cur.ref`` / ``new.ref`` / ``old.ref``: current, candidate and previous slots
"""

from gitreload.staging.revision import (
    REVISION_ID_LENGTH,
    artifact_path_for,
    is_artifact_name,
    revision_from_path,
    short_revision,
)
from gitreload.staging.store import Slot, StagingStore, StoreStatus

__all__ = [
    "REVISION_ID_LENGTH",
    "Slot",
    "StagingStore",
    "StoreStatus",
    "artifact_path_for",
    "is_artifact_name",
    "revision_from_path",
    "short_revision",
]
