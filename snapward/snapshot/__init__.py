"""Snapshot model, deduplication and naming."""

from snapward.snapshot.models import (
    ChangeStatus,
    FileChange,
    FileState,
    SnapshotState,
    content_hash,
    new_snapshot_id,
)

__all__ = [
    "ChangeStatus",
    "FileChange",
    "FileState",
    "SnapshotState",
    "content_hash",
    "new_snapshot_id",
]
