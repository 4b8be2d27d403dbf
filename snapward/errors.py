"""
Snapward error taxonomy.

Validation errors are local (the offending pattern is skipped and logged),
snapshot failures are terminal only for Block-level saves, and restore
failures are collected and raised once with every failing file listed.
"""

from typing import List, Optional, Tuple


class SnapwardError(Exception):
    """Base class for all Snapward errors."""


class InvalidPatternError(SnapwardError, ValueError):
    """A glob pattern was rejected by the safety validator."""

    def __init__(self, pattern: object, message: str = ""):
        self.pattern = pattern
        super().__init__(
            message or "Unsafe glob pattern detected: Pattern violates security constraints"
        )


class SnapshotCreationError(SnapwardError):
    """Persisting a snapshot failed (I/O or hashing)."""


class StorageUnavailableError(SnapwardError):
    """The persistence layer could not be initialized."""


class ConflictApplyError(SnapwardError):
    """One or more files could not be written while applying a restore.

    Attributes:
        failures: (file, message) pairs, one per failed file.
    """

    def __init__(self, failures: List[Tuple[str, str]]):
        self.failures = list(failures)
        lines = [f"  {path}: {msg}" for path, msg in self.failures]
        super().__init__(
            f"Failed to apply {len(self.failures)} resolution(s):\n" + "\n".join(lines)
        )


class SaveCancelled(SnapwardError):
    """Deliberate abort of an in-progress save.

    Not a failure of Snapward itself: raised when a Block-level save is
    declined or its snapshot cannot be taken.
    """

    def __init__(
        self,
        reason: str,
        file_path: Optional[str] = None,
        discarded_content: Optional[bytes] = None,
    ):
        self.reason = reason
        self.file_path = file_path
        # Buffer content that was reverted, so callers can offer it back
        self.discarded_content = discarded_content
        msg = f"Save cancelled ({reason})"
        if file_path:
            msg += f": {file_path}"
        super().__init__(msg)


CancellationSignal = SaveCancelled


class BlobIntegrityError(SnapwardError):
    """A stored blob no longer matches its content hash."""
