"""
Snapward timing instrumentation.

with_timing(name, fn) wraps a plain or async callable and records how long
each call takes into a TimingRecorder. Calls are timed whether they return
or raise.
"""

from __future__ import annotations

import functools
import inspect
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class TimingStats:
    """Aggregated durations for one operation name."""
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    last_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


class TimingRecorder:
    """Thread-safe collection of per-operation timing stats."""

    def __init__(self, slow_threshold_ms: Optional[float] = None):
        self.slow_threshold_ms = slow_threshold_ms
        self._stats: Dict[str, TimingStats] = {}
        self._lock = threading.Lock()

    def record(self, name: str, duration_ms: float) -> None:
        with self._lock:
            stats = self._stats.setdefault(name, TimingStats())
            stats.count += 1
            stats.total_ms += duration_ms
            stats.last_ms = duration_ms
            stats.max_ms = max(stats.max_ms, duration_ms)

        if self.slow_threshold_ms is not None and duration_ms > self.slow_threshold_ms:
            logger.warning("%s took %.1fms (threshold %.1fms)",
                           name, duration_ms, self.slow_threshold_ms)
        else:
            logger.debug("%s took %.1fms", name, duration_ms)

    def get(self, name: str) -> Optional[TimingStats]:
        with self._lock:
            return self._stats.get(name)

    def snapshot(self) -> Dict[str, TimingStats]:
        with self._lock:
            return dict(self._stats)

    def clear(self) -> None:
        with self._lock:
            self._stats.clear()


_recorder: Optional[TimingRecorder] = None
_recorder_lock = threading.Lock()


def get_recorder() -> TimingRecorder:
    """Get the process-wide recorder."""
    global _recorder
    if _recorder is None:
        with _recorder_lock:
            if _recorder is None:
                _recorder = TimingRecorder()
    return _recorder


def reset_recorder() -> None:
    """Drop the process-wide recorder (for tests)."""
    global _recorder
    with _recorder_lock:
        _recorder = None


def with_timing(
    name: str,
    fn: Callable[..., Any],
    recorder: Optional[TimingRecorder] = None,
) -> Callable[..., Any]:
    """Wrap fn so each call's duration is recorded under name.

    Args:
        name: Operation name used as the stats key.
        fn: Plain function or coroutine function to wrap.
        recorder: Target recorder. Defaults to the process-wide one,
            resolved at call time.

    Returns:
        A callable with the same signature (and async-ness) as fn.
    """

    def _target() -> TimingRecorder:
        return recorder if recorder is not None else get_recorder()

    if inspect.iscoroutinefunction(fn):
        @functools.wraps(fn)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return await fn(*args, **kwargs)
            finally:
                _target().record(name, (time.perf_counter() - start) * 1000)

        return async_wrapper

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return fn(*args, **kwargs)
        finally:
            _target().record(name, (time.perf_counter() - start) * 1000)

    return wrapper
