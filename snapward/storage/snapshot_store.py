"""
Snapward Snapshot Store

Snapshot manifests live in ``<snapshots_dir>/<id>.json`` and reference file
contents in the BlobStore by hash:

    {
      "id": "snap_1712000000000_1a2b3c4d",
      "timestamp": 1712000000000,
      "name": "Modified package.json",
      "trigger": "protected_save",
      "is_protected": true,
      "files": {"package.json": {"blob": "<sha256>", "size": 512}},
      "metadata": {}
    }

Manifests are written atomically and never rewritten; deletion only happens
through delete() or the retention limit.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from snapward.errors import BlobIntegrityError, SnapshotCreationError
from snapward.snapshot.models import FileState, SnapshotState
from snapward.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")

# Unreferenced blobs younger than this survive garbage collection.
GC_GRACE_SECONDS = 300.0


@dataclass
class FileEntry:
    blob: str
    size: int


@dataclass
class SnapshotManifest:
    id: str
    timestamp: int
    name: str
    files: Dict[str, FileEntry]
    trigger: str = "auto"
    is_protected: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "name": self.name,
            "trigger": self.trigger,
            "is_protected": self.is_protected,
            "files": {p: {"blob": e.blob, "size": e.size} for p, e in self.files.items()},
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotManifest":
        return cls(
            id=data["id"],
            timestamp=int(data["timestamp"]),
            name=data.get("name", ""),
            trigger=data.get("trigger", "auto"),
            is_protected=bool(data.get("is_protected", False)),
            files={
                p: FileEntry(blob=e["blob"], size=int(e.get("size", 0)))
                for p, e in (data.get("files") or {}).items()
            },
            metadata=data.get("metadata") or {},
        )


class SnapshotStore:
    """Persists SnapshotState objects as manifests plus blobs.

    Args:
        snapshots_dir: Directory for manifest JSON files.
        blob_store: Blob storage for file contents.
        max_snapshots: Keep at most this many unprotected snapshots
            (0 disables the limit). Protected snapshots are never pruned.
    """

    def __init__(self, snapshots_dir: Path, blob_store: BlobStore, max_snapshots: int = 0):
        self.snapshots_dir = Path(snapshots_dir)
        self.blob_store = blob_store
        self.max_snapshots = max(0, max_snapshots)
        self._lock = threading.Lock()

    @classmethod
    def at(cls, data_dir: Path, max_snapshots: int = 0) -> "SnapshotStore":
        """Store with the standard ``snapshots/`` + ``blobs/`` layout."""
        data_dir = Path(data_dir)
        return cls(data_dir / "snapshots", BlobStore(data_dir / "blobs"), max_snapshots)

    def _manifest_path(self, snapshot_id: str) -> Path:
        if not _ID_RE.match(snapshot_id or ""):
            raise ValueError(f"Invalid snapshot id: {snapshot_id!r}")
        return self.snapshots_dir / f"{snapshot_id}.json"

    def _write_manifest(self, manifest: SnapshotManifest) -> None:
        target = self._manifest_path(manifest.id)
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.snapshots_dir), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(manifest.to_dict(), f, indent=2)
            os.replace(tmp_path, str(target))
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    # --- Create ---

    def create(self, state: SnapshotState) -> SnapshotManifest:
        """Persist a snapshot.

        Raises:
            SnapshotCreationError: If any blob or the manifest cannot be
                written, or a snapshot with the same id already exists.
        """
        try:
            target = self._manifest_path(state.id)
        except ValueError as e:
            raise SnapshotCreationError(str(e)) from e
        if target.exists():
            raise SnapshotCreationError(f"Snapshot {state.id} already exists")

        files: Dict[str, FileEntry] = {}
        new_blobs = 0
        # Held until the manifest is on disk so collect_garbage() never sees
        # a reused blob that is not yet referenced.
        with self._lock:
            try:
                for file_state in state.files:
                    blob_hash, is_new = self.blob_store.store(file_state.content)
                    if blob_hash != file_state.hash:
                        raise SnapshotCreationError(
                            f"Hash mismatch for {file_state.path}: "
                            f"expected {file_state.hash[:12]}, stored {blob_hash[:12]}"
                        )
                    new_blobs += int(is_new)
                    files[file_state.path] = FileEntry(blob=blob_hash, size=file_state.size)

                manifest = SnapshotManifest(
                    id=state.id,
                    timestamp=state.timestamp,
                    name=state.name,
                    trigger=state.trigger,
                    is_protected=state.is_protected,
                    files=files,
                    metadata=dict(state.metadata),
                )
                self._write_manifest(manifest)
            except OSError as e:
                raise SnapshotCreationError(f"Failed to persist snapshot {state.id}: {e}") from e

        logger.info(
            "Created snapshot %s %r (%d file(s), %d new blob(s))",
            state.id, state.name, len(files), new_blobs,
        )
        if self.max_snapshots:
            self.enforce_retention()
        return manifest

    # --- Read ---

    def get_manifest(self, snapshot_id: str) -> Optional[SnapshotManifest]:
        try:
            path = self._manifest_path(snapshot_id)
        except ValueError:
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return SnapshotManifest.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError) as e:
            logger.error("Unreadable snapshot manifest %s: %s", path, e)
            return None

    def get(self, snapshot_id: str) -> Optional[SnapshotState]:
        """Load a snapshot with file contents.

        Raises:
            BlobIntegrityError: If a referenced blob is missing or corrupt.
        """
        manifest = self.get_manifest(snapshot_id)
        if manifest is None:
            return None
        files = []
        for path, entry in manifest.files.items():
            content = self.blob_store.retrieve(entry.blob)
            if content is None:
                raise BlobIntegrityError(f"Snapshot {snapshot_id} references missing blob {entry.blob} ({path})")
            files.append(FileState(path=path, content=content, hash=entry.blob))
        return SnapshotState(
            id=manifest.id,
            timestamp=manifest.timestamp,
            name=manifest.name,
            files=tuple(files),
            is_protected=manifest.is_protected,
            trigger=manifest.trigger,
            metadata=dict(manifest.metadata),
        )

    def list(
        self,
        after: Optional[int] = None,
        before: Optional[int] = None,
        trigger: Optional[str] = None,
        limit: int = 100,
    ) -> List[SnapshotManifest]:
        """Manifests newest first, optionally filtered by time and trigger."""
        if not self.snapshots_dir.exists():
            return []
        manifests = []
        for path in self.snapshots_dir.glob("*.json"):
            manifest = self.get_manifest(path.stem)
            if manifest is None:
                continue
            if after is not None and manifest.timestamp <= after:
                continue
            if before is not None and manifest.timestamp >= before:
                continue
            if trigger is not None and manifest.trigger != trigger:
                continue
            manifests.append(manifest)
        manifests.sort(key=lambda m: (m.timestamp, m.id), reverse=True)
        return manifests[:limit] if limit else manifests

    def get_for_file(self, file_path: str, limit: int = 100) -> List[SnapshotManifest]:
        return [m for m in self.list(limit=0) if file_path in m.files][:limit]

    def get_most_recent(self) -> Optional[SnapshotManifest]:
        recent = self.list(limit=1)
        return recent[0] if recent else None

    def exists(self, snapshot_id: str) -> bool:
        try:
            return self._manifest_path(snapshot_id).exists()
        except ValueError:
            return False

    def count(self) -> int:
        if not self.snapshots_dir.exists():
            return 0
        return sum(1 for _ in self.snapshots_dir.glob("*.json"))

    # --- Delete ---

    def delete(self, snapshot_id: str) -> bool:
        """Delete a manifest. Blobs are reclaimed by collect_garbage()."""
        try:
            path = self._manifest_path(snapshot_id)
        except ValueError:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info("Deleted snapshot %s", snapshot_id)
        return True

    def enforce_retention(self) -> List[str]:
        """Delete the oldest unprotected snapshots beyond max_snapshots."""
        if not self.max_snapshots:
            return []
        with self._lock:
            unprotected = [m for m in self.list(limit=0) if not m.is_protected]
            excess = unprotected[self.max_snapshots:]
            removed = [m.id for m in excess if self.delete(m.id)]
        if removed:
            logger.info("Retention removed %d snapshot(s)", len(removed))
        return removed

    def collect_garbage(self, grace_seconds: float = GC_GRACE_SECONDS) -> int:
        """Remove blobs no manifest references. Returns blobs removed.

        Unreferenced blobs written or reused within the last grace_seconds
        are kept: another process may be about to commit a manifest that
        points at them.
        """
        cutoff = time.time() - max(0.0, grace_seconds)
        with self._lock:
            referenced = set()
            for manifest in self.list(limit=0):
                referenced.update(e.blob for e in manifest.files.values())
            removed = 0
            for blob_hash in list(self.blob_store.iter_hashes()):
                if blob_hash in referenced:
                    continue
                modified = self.blob_store.modified_at(blob_hash)
                if grace_seconds > 0 and modified is not None and modified > cutoff:
                    logger.debug("Keeping recent unreferenced blob %s", blob_hash[:12])
                    continue
                if self.blob_store.delete(blob_hash):
                    removed += 1
        return removed
