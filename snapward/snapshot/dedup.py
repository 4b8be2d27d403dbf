"""
Snapshot deduplication.

The state hash of a snapshot is SHA-256 over its ``path:hash`` pairs,
sorted by path and joined with ``|``. Timestamps, names and ids are left
out, so two captures of identical content map to the same canonical
snapshot no matter when they were taken.
"""

import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Optional

from snapward.snapshot.models import SnapshotState

logger = logging.getLogger(__name__)

DEFAULT_MAX_CACHE_SIZE = 500


def compute_state_hash(state: SnapshotState) -> str:
    """Order-independent digest of a snapshot's file contents."""
    parts = [f"{f.path}:{f.hash}" for f in sorted(state.files, key=lambda f: f.path)]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class SnapshotDeduplicator:
    """Bounded FIFO map from state hash to canonical snapshot id.

    Once an entry is evicted, an identical state is treated as new.
    """

    def __init__(self, max_cache_size: int = DEFAULT_MAX_CACHE_SIZE):
        self.max_cache_size = max(0, int(max_cache_size))
        self._cache: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()

    def find_duplicate(self, state: SnapshotState) -> Optional[str]:
        """Return the canonical id of an identical earlier state.

        If none is cached, state.id becomes the canonical id for its
        content and None is returned.
        """
        state_hash = compute_state_hash(state)
        with self._lock:
            existing = self._cache.get(state_hash)
            if existing is not None:
                logger.debug("Duplicate of snapshot %s: %s", existing, state.id)
                return existing

            if self.max_cache_size == 0:
                return None
            if len(self._cache) >= self.max_cache_size:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug("Dedup cache full, evicted %s", evicted[:12])
            self._cache[state_hash] = state.id
        return None

    def forget(self, snapshot_id: str) -> int:
        """Drop cache entries pointing at a deleted snapshot."""
        with self._lock:
            stale = [h for h, sid in self._cache.items() if sid == snapshot_id]
            for h in stale:
                del self._cache[h]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)
