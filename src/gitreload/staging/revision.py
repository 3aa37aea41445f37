"""Revision id helpers for rendered configuration artifacts.

An artifact is named ``<configs-dir>/<revision-id>.<ext>`` where the
revision id is the 40-character commit sha of the remote source.
"""

from pathlib import Path
from typing import Final

REVISION_ID_LENGTH: Final = 40
SHORT_REVISION_LENGTH: Final = 7


def artifact_path_for(configs_dir: Path, revision_id: str, extension: str = "yaml") -> Path:
    """Build the artifact path for a revision id."""
    return configs_dir / f"{revision_id}.{extension.lstrip('.')}"


def revision_from_path(path: str | Path | None) -> str | None:
    """Extract the revision id embedded in an artifact filename.

    Args:
        path: Artifact path (absolute or bare filename).

    Returns:
        The revision id, or None if the name before the extension is not
        exactly REVISION_ID_LENGTH characters long.
    """
    if not path:
        return None

    stem = Path(path).name.split(".", 1)[0]
    if len(stem) != REVISION_ID_LENGTH:
        return None
    return stem


def is_artifact_name(path: Path, extension: str = "yaml") -> bool:
    """Check whether a file looks like a rendered artifact (not header or refs)."""
    return path.suffix == f".{extension.lstrip('.')}" and revision_from_path(path) is not None


def short_revision(revision_id: str | None) -> str:
    """Abbreviate a revision id for log output."""
    if not revision_id:
        return "(none)"
    return revision_id[:SHORT_REVISION_LENGTH]
