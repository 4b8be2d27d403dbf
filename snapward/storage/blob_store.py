"""
Content-addressed blob storage.

Each distinct file content is stored once under ``<root>/ab/cd/<sha256>``.
Writes go to a temp file in the target directory followed by os.replace,
so a concurrent reader never sees a partial blob and two writers storing
the same content both end up with the same complete file.
"""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterator, Optional, Tuple

from snapward.errors import BlobIntegrityError
from snapward.snapshot.models import content_hash

logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


def atomic_write_bytes(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, str(target))
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class BlobStore:
    """Stores file contents keyed by SHA-256."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, blob_hash: str) -> Path:
        if not _HASH_RE.match(blob_hash or ""):
            raise ValueError(f"Invalid blob hash: {blob_hash!r}")
        return self.root / blob_hash[:2] / blob_hash[2:4] / blob_hash

    def store(self, content: bytes) -> Tuple[str, bool]:
        """Store content if not already present.

        Reusing an existing blob refreshes its mtime, so a garbage
        collector in another process treats it as recently used.

        Returns:
            (hash, is_new) where is_new is False when the blob existed.
        """
        blob_hash = content_hash(content)
        target = self.path_for(blob_hash)
        if target.exists():
            try:
                os.utime(target)
                return blob_hash, False
            except FileNotFoundError:
                logger.debug("Blob %s vanished before reuse, rewriting", blob_hash[:12])
        atomic_write_bytes(target, content)
        logger.debug("Stored blob %s (%d bytes)", blob_hash[:12], len(content))
        return blob_hash, True

    def retrieve(self, blob_hash: str, verify: bool = True) -> Optional[bytes]:
        """Read a blob, or None if it does not exist.

        Raises:
            BlobIntegrityError: If verify is set and the content no longer
                hashes to blob_hash.
        """
        target = self.path_for(blob_hash)
        try:
            data = target.read_bytes()
        except FileNotFoundError:
            return None
        if verify and content_hash(data) != blob_hash:
            raise BlobIntegrityError(f"Blob {blob_hash} is corrupted ({target})")
        return data

    def exists(self, blob_hash: str) -> bool:
        return self.path_for(blob_hash).exists()

    def modified_at(self, blob_hash: str) -> Optional[float]:
        try:
            return self.path_for(blob_hash).stat().st_mtime
        except FileNotFoundError:
            return None

    def delete(self, blob_hash: str) -> bool:
        target = self.path_for(blob_hash)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True

    def iter_hashes(self) -> Iterator[str]:
        if not self.root.exists():
            return
        for path in self.root.glob("*/*/*"):
            if path.is_file() and _HASH_RE.match(path.name):
                yield path.name

    def count(self) -> int:
        return sum(1 for _ in self.iter_hashes())

    def total_size(self) -> int:
        total = 0
        for blob_hash in self.iter_hashes():
            try:
                total += self.path_for(blob_hash).stat().st_size
            except OSError:
                continue
        return total
