"""Snapward persistence: cooldown/audit database, blobs and snapshot manifests."""

from snapward.storage.blob_store import BlobStore
from snapward.storage.cooldown_store import (
    AuditAction,
    AuditEntry,
    CooldownAction,
    CooldownEntry,
    CooldownStore,
)
from snapward.storage.snapshot_store import SnapshotManifest, SnapshotStore

__all__ = [
    "AuditAction",
    "AuditEntry",
    "BlobStore",
    "CooldownAction",
    "CooldownEntry",
    "CooldownStore",
    "SnapshotManifest",
    "SnapshotStore",
]
