"""Restoring snapshots over a changed workspace."""

from snapward.restore.conflicts import (
    ApplyReport,
    Conflict,
    ConflictResolution,
    ConflictResolver,
    ConflictType,
    ResolutionStrategy,
    fixed_strategy,
)

__all__ = [
    "ApplyReport",
    "Conflict",
    "ConflictResolution",
    "ConflictResolver",
    "ConflictType",
    "ResolutionStrategy",
    "fixed_strategy",
]
