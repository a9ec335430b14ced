"""Git snapshots of report revisions."""

from .manager import SnapshotManager

__all__ = ["SnapshotManager"]
