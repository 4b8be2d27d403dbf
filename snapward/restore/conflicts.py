"""
Snapward Conflict Resolver

Used when a snapshot is restored over files that have changed since it
was taken. Each target path is compared between disk and snapshot:

    both present, content differs   -> modified
    on disk only                    -> added   (created after the snapshot)
    in snapshot only                -> deleted (removed after the snapshot)
    both present, identical         -> no conflict

A resolution is then chosen per conflict and applied. Files are applied
independently: one failed write does not stop the others, and all
failures are raised together as a single ConflictApplyError.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from snapward.errors import ConflictApplyError
from snapward.snapshot.models import SnapshotState
from snapward.storage.blob_store import atomic_write_bytes

logger = logging.getLogger(__name__)


class ConflictType(str, Enum):
    MODIFIED = "modified"
    ADDED = "added"
    DELETED = "deleted"


class ResolutionStrategy(str, Enum):
    USE_SNAPSHOT = "use_snapshot"  # write snapshot content (delete if absent)
    USE_CURRENT = "use_current"    # leave the file alone
    MERGE = "merge"                # write merged_content, else snapshot content
    SKIP = "skip"                  # delete the file to match the snapshot


@dataclass(frozen=True)
class Conflict:
    file: str
    current_content: Optional[bytes]
    snapshot_content: Optional[bytes]
    conflict_type: ConflictType


@dataclass(frozen=True)
class ConflictResolution:
    """The strategy chosen for one file.

    conflict is attached by ConflictResolver.resolve() and supplies the
    snapshot content that use_snapshot and merge write back.
    """
    file: str
    resolution: ResolutionStrategy
    merged_content: Optional[bytes] = None
    conflict: Optional[Conflict] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ResolutionOption:
    """One choice offered to the user for a conflict."""
    label: str
    detail: str
    resolution: ResolutionStrategy


@dataclass
class ApplyReport:
    written: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.written) + len(self.deleted) + len(self.unchanged)


SelectorResult = Union[ConflictResolution, ResolutionStrategy, str, None]
StrategySelector = Callable[[Conflict, List[ResolutionOption]], SelectorResult]


class ConflictResolver:
    """Detects and resolves differences between disk and a snapshot.

    Args:
        workspace_root: Snapshot paths are relative to this directory.
            Paths that would escape it are refused.
    """

    def __init__(self, workspace_root: Union[str, Path]):
        self.workspace_root = Path(workspace_root).resolve()

    def _disk_path(self, file: str) -> Path:
        candidate = Path(file)
        if not candidate.is_absolute():
            candidate = self.workspace_root / candidate
        resolved = candidate.resolve()
        try:
            resolved.relative_to(self.workspace_root)
        except ValueError:
            raise ValueError(f"Path escapes workspace: {file}") from None
        return resolved

    def _read(self, file: str) -> Optional[bytes]:
        try:
            return self._disk_path(file).read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_conflicts(
        self,
        snapshot: SnapshotState,
        target_paths: Optional[Iterable[str]] = None,
    ) -> List[Conflict]:
        """Conflicts for target_paths (default: every snapshot path), in order."""
        snapshot_files = {f.path: f.content for f in snapshot.files}
        targets = list(target_paths) if target_paths is not None else list(snapshot_files)

        conflicts: List[Conflict] = []
        seen = set()
        for file in targets:
            if file in seen:
                continue
            seen.add(file)
            current = self._read(file)
            in_snapshot = file in snapshot_files
            snap = snapshot_files.get(file)

            if current is not None and in_snapshot:
                if current != snap:
                    conflicts.append(Conflict(file, current, snap, ConflictType.MODIFIED))
            elif current is not None:
                conflicts.append(Conflict(file, current, None, ConflictType.ADDED))
            elif in_snapshot:
                conflicts.append(Conflict(file, None, snap, ConflictType.DELETED))
        logger.debug("Detected %d conflict(s) restoring %s", len(conflicts), snapshot.id)
        return conflicts

    @staticmethod
    def summarize(conflicts: Iterable[Conflict]) -> Dict[str, int]:
        summary = {t.value: 0 for t in ConflictType}
        for conflict in conflicts:
            summary[conflict.conflict_type.value] += 1
        return summary

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    @staticmethod
    def available_resolutions(conflict: Conflict) -> List[ResolutionOption]:
        options = [
            ResolutionOption("Use Snapshot Version", "Restore file to snapshot state", ResolutionStrategy.USE_SNAPSHOT),
            ResolutionOption("Keep Current Version", "Keep current file as is", ResolutionStrategy.USE_CURRENT),
        ]
        if conflict.conflict_type == ConflictType.DELETED:
            options.append(ResolutionOption("Delete File", "Delete the file to match snapshot", ResolutionStrategy.SKIP))
        elif conflict.conflict_type == ConflictType.ADDED:
            options.append(ResolutionOption("Keep File", "Keep the new file that was added", ResolutionStrategy.USE_CURRENT))
        options.append(ResolutionOption("Merge Manually", "Merge both versions by hand", ResolutionStrategy.MERGE))
        return options

    def resolve(
        self,
        conflicts: Iterable[Conflict],
        strategy_selector: StrategySelector,
    ) -> Optional[List[ConflictResolution]]:
        """Ask the selector for a resolution per conflict.

        The selector gets the conflict and its options and returns a
        ConflictResolution, a strategy, or None to cancel the whole
        restore (in which case None is returned).
        """
        resolutions = []
        for conflict in conflicts:
            choice = strategy_selector(conflict, self.available_resolutions(conflict))
            if choice is None:
                logger.info("Restore cancelled at %s", conflict.file)
                return None
            if not isinstance(choice, ConflictResolution):
                choice = ConflictResolution(conflict.file, ResolutionStrategy(choice), conflict=conflict)
            elif choice.conflict is None:
                choice = replace(choice, conflict=conflict)
            resolutions.append(choice)
        return resolutions

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def _write_or_delete(self, file: str, content: Optional[bytes], report: ApplyReport) -> None:
        target = self._disk_path(file)
        if content is None:
            if target.exists():
                target.unlink()
                report.deleted.append(file)
            else:
                report.unchanged.append(file)
            return
        atomic_write_bytes(target, content)
        report.written.append(file)

    def _apply_one(self, resolution: ConflictResolution, conflict: Optional[Conflict], report: ApplyReport) -> None:
        strategy = ResolutionStrategy(resolution.resolution)
        needs_snapshot = strategy == ResolutionStrategy.USE_SNAPSHOT or (
            strategy == ResolutionStrategy.MERGE and resolution.merged_content is None
        )
        if needs_snapshot and conflict is None:
            raise ValueError(f"No conflict recorded for {resolution.file}, snapshot content unknown")
        snapshot_content = conflict.snapshot_content if conflict else None

        if strategy == ResolutionStrategy.USE_CURRENT:
            report.unchanged.append(resolution.file)
        elif strategy == ResolutionStrategy.USE_SNAPSHOT:
            self._write_or_delete(resolution.file, snapshot_content, report)
        elif strategy == ResolutionStrategy.SKIP:
            self._write_or_delete(resolution.file, None, report)
        elif strategy == ResolutionStrategy.MERGE:
            if resolution.merged_content is not None:
                self._write_or_delete(resolution.file, resolution.merged_content, report)
            else:
                logger.warning("No merged content for %s, using snapshot version", resolution.file)
                self._write_or_delete(resolution.file, snapshot_content, report)

    def apply(
        self,
        resolutions: Iterable[ConflictResolution],
        conflicts: Iterable[Conflict] = (),
    ) -> ApplyReport:
        """Apply resolutions file by file.

        Snapshot content comes from the conflict attached to each
        resolution by resolve(), or else from the matching entry in
        conflicts. A resolution that needs snapshot content but has
        neither is reported as a failure and its file is left alone.

        Raises:
            ConflictApplyError: Listing every file that failed, after all
                other files have been processed.
        """
        by_file = {c.file: c for c in conflicts}
        report = ApplyReport()
        failures = []
        for resolution in resolutions:
            conflict = resolution.conflict or by_file.get(resolution.file)
            try:
                self._apply_one(resolution, conflict, report)
            except (OSError, ValueError) as e:
                logger.error("Failed to apply %s to %s: %s", resolution.resolution, resolution.file, e)
                failures.append((resolution.file, str(e)))
        if failures:
            raise ConflictApplyError(failures)
        logger.info(
            "Applied %d resolution(s): %d written, %d deleted, %d unchanged",
            report.total, len(report.written), len(report.deleted), len(report.unchanged),
        )
        return report

    def restore(
        self,
        snapshot: SnapshotState,
        strategy_selector: StrategySelector,
        target_paths: Optional[Iterable[str]] = None,
    ) -> Optional[ApplyReport]:
        """Detect, resolve and apply in one call. None if cancelled."""
        conflicts = self.detect_conflicts(snapshot, target_paths)
        resolutions = self.resolve(conflicts, strategy_selector)
        if resolutions is None:
            return None
        return self.apply(resolutions, conflicts)


def fixed_strategy(strategy: Union[ResolutionStrategy, str]) -> StrategySelector:
    """Selector that answers every conflict with the same strategy."""
    chosen = ResolutionStrategy(strategy)

    def _select(conflict: Conflict, options: List[ResolutionOption]) -> ResolutionStrategy:
        return chosen

    return _select
