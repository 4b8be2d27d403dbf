"""
Snapshot data model.

FileState and SnapshotState are immutable once built: a snapshot is
created exactly once at commit time and only read afterwards.
"""

from __future__ import annotations

import hashlib
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple, Union


def content_hash(content: bytes) -> str:
    """SHA-256 hex digest of file content."""
    return hashlib.sha256(content).hexdigest()


def _to_bytes(content: Union[bytes, str]) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else bytes(content)


@dataclass(frozen=True)
class FileState:
    """One file's content at snapshot time. hash is computed once."""
    path: str
    content: bytes
    hash: str

    @classmethod
    def from_content(cls, path: str, content: Union[bytes, str]) -> "FileState":
        data = _to_bytes(content)
        return cls(path=path, content=data, hash=content_hash(data))

    @property
    def size(self) -> int:
        return len(self.content)


def new_snapshot_id(now_ms: Optional[int] = None) -> str:
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return f"snap_{now_ms}_{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class SnapshotState:
    """An immutable capture of one or more files."""
    id: str
    timestamp: int  # epoch ms
    name: str
    files: Tuple[FileState, ...]
    is_protected: bool = False
    trigger: str = "auto"
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def create(
        cls,
        files: Iterable[FileState],
        name: str = "",
        is_protected: bool = False,
        trigger: str = "auto",
        timestamp: Optional[int] = None,
        snapshot_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "SnapshotState":
        ts = int(time.time() * 1000) if timestamp is None else timestamp
        return cls(
            id=snapshot_id or new_snapshot_id(ts),
            timestamp=ts,
            name=name,
            files=tuple(files),
            is_protected=is_protected,
            trigger=trigger,
            metadata=dict(metadata or {}),
        )

    def file_map(self) -> Dict[str, FileState]:
        return {f.path: f for f in self.files}

    def get_file(self, path: str) -> Optional[FileState]:
        for f in self.files:
            if f.path == path:
                return f
        return None

    @property
    def paths(self) -> Tuple[str, ...]:
        return tuple(f.path for f in self.files)


class ChangeStatus(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileChange:
    """A changed file as seen by snapshot naming."""
    path: str
    status: ChangeStatus = ChangeStatus.MODIFIED
    lines_added: int = 0
    lines_deleted: int = 0

    @property
    def lines_changed(self) -> int:
        return self.lines_added + self.lines_deleted
