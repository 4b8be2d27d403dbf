"""
Snapward Temporary Allowances

A temporary allowance lets the next save of a file skip the Warn/Block
prompt. It does not skip protection: the save is still snapshotted, audited
and put into cooldown.

Allowances are "once" (consumed by the first save) or "duration" (valid
until expiry). Every allowance also carries a TTL so forgotten grants lapse
on their own. With a state_path the allowances are kept in a JSON file so
a grant made from the CLI is seen by a running handler.
"""

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


def _system_clock_ms() -> int:
    return int(time.time() * 1000)


class TemporaryAllowances:
    """Registry of one-shot and time-limited prompt bypasses.

    Args:
        state_path: Optional JSON file for cross-process allowances.
        default_ttl_seconds: Lifetime of an allowance with no explicit TTL.
        clock: Returns epoch milliseconds.
    """

    def __init__(
        self,
        state_path: Optional[Path] = None,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.state_path = Path(state_path) if state_path else None
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock or _system_clock_ms
        self._lock = threading.Lock()
        self._memory: List[Dict] = []

    # --- State ---

    def _load(self) -> List[Dict]:
        if self.state_path is None:
            return self._memory
        if not self.state_path.exists():
            return []
        try:
            with open(self.state_path) as f:
                return json.load(f).get("allowances", [])
        except (json.JSONDecodeError, OSError, AttributeError):
            logger.warning("Unreadable allowance state %s, starting empty", self.state_path)
            return []

    def _save(self, allowances: List[Dict]) -> None:
        if self.state_path is None:
            self._memory = allowances
            return
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.state_path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump({"allowances": allowances}, f, indent=2)
            os.replace(tmp_path, str(self.state_path))
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _is_live(self, allowance: Dict, now: int) -> bool:
        if allowance.get("mode") == "once" and allowance.get("used"):
            return False
        return allowance.get("expires_at", 0) > now

    # --- API ---

    def grant(
        self,
        file_path: str,
        mode: str = "once",
        ttl_seconds: Optional[float] = None,
        reason: str = "",
    ) -> Dict:
        """Allow the next save (mode="once") or all saves until expiry
        (mode="duration") of file_path to skip the prompt."""
        if mode not in ("once", "duration"):
            raise ValueError(f"Unknown allowance mode: {mode!r}")
        now = self._clock()
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        allowance = {
            "file_path": file_path,
            "mode": mode,
            "reason": reason,
            "created_at": now,
            "expires_at": now + int(ttl * 1000),
            "used": False,
            "used_at": None,
        }
        with self._lock:
            allowances = [a for a in self._load() if self._is_live(a, now)]
            allowances.append(allowance)
            self._save(allowances)
        logger.info("Temporary allowance granted for %s (%s, %.0fs)", file_path, mode, ttl)
        return allowance

    def peek(self, file_path: str) -> Optional[Dict]:
        """The live allowance for file_path without consuming it."""
        now = self._clock()
        with self._lock:
            for allowance in self._load():
                if allowance["file_path"] == file_path and self._is_live(allowance, now):
                    return dict(allowance)
        return None

    def consume(self, file_path: str) -> Optional[Dict]:
        """Use the allowance for file_path if one is live.

        "once" allowances are marked used. Returns the allowance or None.
        """
        now = self._clock()
        with self._lock:
            allowances = self._load()
            found = None
            for allowance in allowances:
                if allowance["file_path"] == file_path and self._is_live(allowance, now):
                    found = allowance
                    break
            if found is None:
                return None
            if found["mode"] == "once":
                found["used"] = True
                found["used_at"] = now
            self._save([a for a in allowances if self._is_live(a, now) or a is found])
        logger.debug("Temporary allowance consumed for %s", file_path)
        return dict(found)

    def list_active(self) -> List[Dict]:
        now = self._clock()
        with self._lock:
            return [dict(a) for a in self._load() if self._is_live(a, now)]

    def revoke(self, file_path: str) -> int:
        with self._lock:
            allowances = self._load()
            kept = [a for a in allowances if a["file_path"] != file_path]
            self._save(kept)
        return len(allowances) - len(kept)

    def clear(self) -> int:
        with self._lock:
            count = len(self._load())
            self._save([])
        return count
