"""
Snapward Cooldown Store

SQLite-backed suppression windows and the append-only audit trail.

- cooldowns: one row per protective action, active while expires_at > now
- audit_trail: every save decision, never updated, only pruned explicitly

All writes go through one writer connection guarded by a lock (one writer
per store handle). Reads use per-thread connections and run concurrently
under WAL. If the database cannot be opened the store is marked
unavailable and fails open: nothing is in cooldown and writes are no-ops.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from snapward.config.models import CooldownSettings
from snapward.errors import StorageUnavailableError
from snapward.policy.rules import ProtectionLevel

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def system_clock_ms() -> int:
    return int(time.time() * 1000)


class CooldownAction(str, Enum):
    """What was done when a cooldown started."""
    SNAPSHOT_CREATED = "snapshot_created"
    SAVE_ALLOWED = "save_allowed"
    SAVE_BLOCKED = "save_blocked"
    USER_OVERRIDE = "user_override"


class AuditAction(str, Enum):
    SAVE_ATTEMPT = "save_attempt"
    SAVE_ALLOWED = "save_allowed"
    SAVE_BLOCKED = "save_blocked"
    SNAPSHOT_CREATED = "snapshot_created"
    USER_OVERRIDE = "user_override"


@dataclass
class CooldownEntry:
    id: str
    file_path: str
    protection_level: ProtectionLevel
    triggered_at: int
    expires_at: int
    action_taken: CooldownAction
    snapshot_id: Optional[str] = None

    def is_active(self, now_ms: int) -> bool:
        return self.expires_at > now_ms

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CooldownEntry":
        return cls(
            id=row["id"],
            file_path=row["file_path"],
            protection_level=ProtectionLevel.parse(row["protection_level"]),
            triggered_at=row["triggered_at"],
            expires_at=row["expires_at"],
            action_taken=CooldownAction(row["action_taken"]),
            snapshot_id=row["snapshot_id"],
        )


@dataclass
class AuditEntry:
    id: str
    file_path: str
    protection_level: ProtectionLevel
    action: AuditAction
    timestamp: int
    details: Dict[str, Any] = field(default_factory=dict)
    snapshot_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AuditEntry":
        try:
            details = json.loads(row["details"]) if row["details"] else {}
        except (TypeError, ValueError):
            details = {"raw": row["details"]}
        return cls(
            id=row["id"],
            file_path=row["file_path"],
            protection_level=ProtectionLevel.parse(row["protection_level"]),
            action=AuditAction(row["action"]),
            timestamp=row["timestamp"],
            details=details,
            snapshot_id=row["snapshot_id"],
        )


def _new_id(prefix: str, now_ms: int) -> str:
    return f"{prefix}_{now_ms}_{uuid.uuid4().hex[:9]}"


class CooldownStore:
    """Cooldown windows and audit trail for protected saves.

    Args:
        db_path: SQLite database file. Parent directories are created.
        settings: Cooldown durations. Defaults to CooldownSettings().
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        db_path: Path,
        settings: Optional[CooldownSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self.db_path = Path(db_path)
        self.settings = settings or CooldownSettings()
        self._clock: Clock = clock or system_clock_ms
        self._write_lock = threading.Lock()
        self._writer: Optional[sqlite3.Connection] = None
        self._readers = threading.local()
        # (file_path, level) -> expires_at for cooldowns set through this handle.
        # Mutated only under _write_lock.
        self._active: Dict[Tuple[str, str], int] = {}
        self.available = False
        self.unavailable_reason: Optional[str] = None

        try:
            self._ensure_schema()
            self.available = True
        except (sqlite3.Error, OSError) as e:
            self.unavailable_reason = str(e)
            logger.warning(
                "%s",
                StorageUnavailableError(f"Cooldown store unavailable at {self.db_path}: {e}"),
            )
            logger.warning("Cooldowns disabled; protective actions will not be rate-limited")

    # =========================================================================
    # Connections
    # =========================================================================

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=5.0,
            isolation_level=None,  # explicit BEGIN/COMMIT
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction on the single writer connection."""
        with self._write_lock:
            if self._writer is None:
                self._writer = self._connect()
            conn = self._writer
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _read(self) -> sqlite3.Connection:
        conn = getattr(self._readers, "conn", None)
        if conn is None:
            conn = self._connect()
            self._readers.conn = conn
        return conn

    def close(self) -> None:
        """Close the writer connection and this thread's reader."""
        with self._write_lock:
            if self._writer is not None:
                self._writer.close()
                self._writer = None
        conn = getattr(self._readers, "conn", None)
        if conn is not None:
            conn.close()
            self._readers.conn = None

    def _prune_active(self, now: int) -> None:
        """Drop cached windows that have ended. Caller holds _write_lock."""
        for key in [k for k, exp in self._active.items() if exp <= now]:
            del self._active[key]

    def _ensure_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._write() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cooldowns (
                    id TEXT PRIMARY KEY,
                    file_path TEXT NOT NULL,
                    protection_level TEXT NOT NULL,
                    triggered_at INTEGER NOT NULL,
                    expires_at INTEGER NOT NULL,
                    action_taken TEXT NOT NULL,
                    snapshot_id TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_trail (
                    id TEXT PRIMARY KEY,
                    file_path TEXT NOT NULL,
                    protection_level TEXT NOT NULL,
                    action TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    details TEXT,
                    snapshot_id TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_cooldowns_key "
                "ON cooldowns(file_path, protection_level, expires_at)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_cooldowns_expires ON cooldowns(expires_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_file ON audit_trail(file_path)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_trail(timestamp)")

    def now(self) -> int:
        return self._clock()

    def require_available(self) -> None:
        """Raise StorageUnavailableError if the store is degraded."""
        if not self.available:
            raise StorageUnavailableError(
                f"Cooldown store unavailable: {self.unavailable_reason or 'not initialized'}"
            )

    # =========================================================================
    # Cooldowns
    # =========================================================================

    def duration_for(self, level: ProtectionLevel, action: CooldownAction) -> int:
        """Default window in ms for a level and action."""
        if action == CooldownAction.USER_OVERRIDE:
            return self.settings.duration_ms("override")
        return self.settings.duration_ms(level.cooldown_kind)

    def set_cooldown(
        self,
        file_path: str,
        level: ProtectionLevel,
        action_taken: CooldownAction,
        snapshot_id: Optional[str] = None,
        custom_duration_ms: Optional[int] = None,
    ) -> Optional[CooldownEntry]:
        """Start a cooldown window for (file_path, level).

        Any active window for the same key is replaced in the same
        transaction, so at most one is active at a time.

        Returns:
            The new entry, or None if the store is unavailable or the
            write failed.
        """
        if not self.available:
            return None

        level = ProtectionLevel.parse(level)
        action_taken = CooldownAction(action_taken)
        now = self.now()
        duration = custom_duration_ms if custom_duration_ms is not None else self.duration_for(level, action_taken)
        entry = CooldownEntry(
            id=_new_id("cooldown", now),
            file_path=file_path,
            protection_level=level,
            triggered_at=now,
            expires_at=now + int(duration),
            action_taken=action_taken,
            snapshot_id=snapshot_id,
        )
        key = (file_path, level.value)
        try:
            with self._write() as conn:
                conn.execute(
                    "DELETE FROM cooldowns WHERE file_path = ? AND protection_level = ? AND expires_at > ?",
                    (file_path, level.value, now),
                )
                conn.execute(
                    """
                    INSERT INTO cooldowns
                        (id, file_path, protection_level, triggered_at, expires_at, action_taken, snapshot_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.id, entry.file_path, level.value, entry.triggered_at,
                        entry.expires_at, action_taken.value, snapshot_id,
                    ),
                )
                self._prune_active(now)
                self._active[key] = entry.expires_at
        except sqlite3.Error as e:
            with self._write_lock:
                self._active.pop(key, None)
            logger.warning("Failed to set cooldown for %s: %s", file_path, e)
            return None

        logger.debug("Cooldown set: %s [%s] until %d (%s)", file_path, level.value, entry.expires_at, action_taken.value)
        return entry

    def is_in_cooldown(self, file_path: str, level: ProtectionLevel) -> bool:
        """True iff an entry for (file_path, level) has expires_at > now."""
        if not self.available:
            return False

        level = ProtectionLevel.parse(level)
        now = self.now()
        cached = self._active.get((file_path, level.value))
        if cached is not None and cached > now:
            return True

        try:
            row = self._read().execute(
                """
                SELECT 1 FROM cooldowns
                WHERE file_path = ? AND protection_level = ? AND expires_at > ?
                LIMIT 1
                """,
                (file_path, level.value, now),
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning("Cooldown lookup failed for %s: %s", file_path, e)
            return False
        return row is not None

    def get_active_cooldown(self, file_path: str, level: ProtectionLevel) -> Optional[CooldownEntry]:
        if not self.available:
            return None
        level = ProtectionLevel.parse(level)
        try:
            row = self._read().execute(
                """
                SELECT * FROM cooldowns
                WHERE file_path = ? AND protection_level = ? AND expires_at > ?
                ORDER BY expires_at DESC LIMIT 1
                """,
                (file_path, level.value, self.now()),
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning("Cooldown lookup failed for %s: %s", file_path, e)
            return None
        return CooldownEntry.from_row(row) if row else None

    def remaining_ms(self, file_path: str, level: ProtectionLevel) -> int:
        """Milliseconds left in the active window, 0 if none."""
        entry = self.get_active_cooldown(file_path, level)
        if entry is None:
            return 0
        return max(0, entry.expires_at - self.now())

    def list_active_cooldowns(self, limit: int = 100) -> List[CooldownEntry]:
        if not self.available:
            return []
        try:
            rows = self._read().execute(
                "SELECT * FROM cooldowns WHERE expires_at > ? ORDER BY expires_at ASC LIMIT ?",
                (self.now(), limit),
            ).fetchall()
        except sqlite3.Error as e:
            logger.warning("Failed to list cooldowns: %s", e)
            return []
        return [CooldownEntry.from_row(r) for r in rows]

    def clear_expired_cooldowns(self) -> int:
        """Delete cooldowns that have expired. Returns rows removed.

        Audit rows are never touched.
        """
        if not self.available:
            return 0
        now = self.now()
        try:
            with self._write() as conn:
                cursor = conn.execute("DELETE FROM cooldowns WHERE expires_at < ?", (now,))
                removed = cursor.rowcount
                self._prune_active(now)
        except sqlite3.Error as e:
            logger.warning("Cooldown sweep failed: %s", e)
            return 0

        if removed:
            logger.debug("Cleared %d expired cooldown(s)", removed)
        return removed

    # =========================================================================
    # Audit trail
    # =========================================================================

    def record_audit(
        self,
        file_path: str,
        level: ProtectionLevel,
        action: AuditAction,
        details: Optional[Dict[str, Any]] = None,
        snapshot_id: Optional[str] = None,
    ) -> Optional[str]:
        """Append an audit row. Never raises.

        Returns:
            The new audit id, or None if the row could not be written.
        """
        if not self.available:
            return None
        try:
            level = ProtectionLevel.parse(level)
            action = AuditAction(action)
            now = self.now()
            audit_id = _new_id("audit", now)
            payload = json.dumps(details or {}, default=str)
            with self._write() as conn:
                conn.execute(
                    """
                    INSERT INTO audit_trail
                        (id, file_path, protection_level, action, timestamp, details, snapshot_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (audit_id, file_path, level.value, action.value, now, payload, snapshot_id),
                )
            return audit_id
        except (sqlite3.Error, ValueError, TypeError) as e:
            logger.warning("Failed to record audit entry for %s: %s", file_path, e)
            return None

    def get_audit_trail(
        self,
        file_path: Optional[str] = None,
        limit: int = 50,
        action: Optional[AuditAction] = None,
    ) -> List[AuditEntry]:
        """Audit entries, most recent first."""
        if not self.available:
            return []
        query = "SELECT * FROM audit_trail WHERE 1=1"
        params: List[Any] = []
        if file_path is not None:
            query += " AND file_path = ?"
            params.append(file_path)
        if action is not None:
            query += " AND action = ?"
            params.append(AuditAction(action).value)
        # rowid breaks ties between rows written in the same millisecond
        query += " ORDER BY timestamp DESC, rowid DESC LIMIT ?"
        params.append(limit)
        try:
            rows = self._read().execute(query, params).fetchall()
        except sqlite3.Error as e:
            logger.warning("Failed to read audit trail: %s", e)
            return []
        return [AuditEntry.from_row(r) for r in rows]

    def prune_audit(self, older_than_ms: int) -> int:
        """Retention pruning: delete audit rows older than the given age."""
        self.require_available()
        cutoff = self.now() - older_than_ms
        with self._write() as conn:
            cursor = conn.execute("DELETE FROM audit_trail WHERE timestamp < ?", (cutoff,))
            return cursor.rowcount

    def get_stats(self) -> Dict[str, Any]:
        if not self.available:
            return {"available": False, "reason": self.unavailable_reason}
        conn = self._read()
        now = self.now()
        active = conn.execute("SELECT COUNT(*) FROM cooldowns WHERE expires_at > ?", (now,)).fetchone()[0]
        expired = conn.execute("SELECT COUNT(*) FROM cooldowns WHERE expires_at <= ?", (now,)).fetchone()[0]
        by_action = {
            row["action"]: row["count"]
            for row in conn.execute(
                "SELECT action, COUNT(*) AS count FROM audit_trail GROUP BY action"
            ).fetchall()
        }
        return {
            "available": True,
            "active_cooldowns": active,
            "expired_cooldowns": expired,
            "audit_by_action": by_action,
            "audit_total": sum(by_action.values()),
        }
