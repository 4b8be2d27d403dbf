#!/usr/bin/env python3
"""
Tests for snapward.storage.cooldown_store.

Covers:
- Cooldown windows: boundaries, default durations, replacement
- Audit trail: ordering, filtering, never raising
- Expired-row sweeping
- Fail-open behaviour when the database cannot be opened
"""

import sqlite3
import threading

import pytest

pytestmark = pytest.mark.storage

from snapward.config.models import CooldownSettings
from snapward.errors import StorageUnavailableError
from snapward.policy.rules import ProtectionLevel
from snapward.storage.cooldown_store import AuditAction, CooldownAction, CooldownStore

W, N, B = ProtectionLevel.WATCH, ProtectionLevel.WARN, ProtectionLevel.BLOCK
MINUTE = 60_000


# =============================================================================
# COOLDOWNS
# =============================================================================


class TestCooldownWindow:

    def test_boundary(self, cooldown_store, clock):
        entry = cooldown_store.set_cooldown("a.txt", N, CooldownAction.SNAPSHOT_CREATED, custom_duration_ms=1000)
        assert entry.expires_at == clock.now_ms + 1000

        clock.set(entry.expires_at - 1)
        assert cooldown_store.is_in_cooldown("a.txt", N)
        clock.set(entry.expires_at)
        assert not cooldown_store.is_in_cooldown("a.txt", N)
        clock.set(entry.expires_at + 1)
        assert not cooldown_store.is_in_cooldown("a.txt", N)

    def test_default_durations(self, cooldown_store, clock):
        now = clock.now_ms
        assert cooldown_store.set_cooldown("b", B, CooldownAction.SNAPSHOT_CREATED).expires_at == now + 10 * MINUTE
        assert cooldown_store.set_cooldown("w", N, CooldownAction.SNAPSHOT_CREATED).expires_at == now + 5 * MINUTE
        assert cooldown_store.set_cooldown("v", W, CooldownAction.SAVE_ALLOWED).expires_at == now + 5 * MINUTE
        assert cooldown_store.set_cooldown("o", B, CooldownAction.USER_OVERRIDE).expires_at == now + 60 * MINUTE

    def test_configured_durations(self, tmp_path, clock):
        settings = CooldownSettings(protected_cooldown_minutes=2, other_cooldown_minutes=1)
        store = CooldownStore(tmp_path / "c.db", settings=settings, clock=clock)
        try:
            assert store.duration_for(B, CooldownAction.SNAPSHOT_CREATED) == 2 * MINUTE
            assert store.duration_for(W, CooldownAction.SAVE_ALLOWED) == MINUTE
        finally:
            store.close()

    def test_keyed_by_file_and_level(self, cooldown_store):
        cooldown_store.set_cooldown("a.txt", N, CooldownAction.SNAPSHOT_CREATED)
        assert cooldown_store.is_in_cooldown("a.txt", N)
        assert not cooldown_store.is_in_cooldown("a.txt", B)
        assert not cooldown_store.is_in_cooldown("b.txt", N)

    def test_single_active_entry_per_key(self, cooldown_store, clock):
        cooldown_store.set_cooldown("a.txt", N, CooldownAction.SNAPSHOT_CREATED, snapshot_id="s1")
        clock.advance(1000)
        cooldown_store.set_cooldown("a.txt", N, CooldownAction.SNAPSHOT_CREATED, snapshot_id="s2")
        active = cooldown_store.list_active_cooldowns()
        assert [e.snapshot_id for e in active] == ["s2"]
        assert cooldown_store.get_active_cooldown("a.txt", N).snapshot_id == "s2"

    def test_remaining_ms(self, cooldown_store, clock):
        cooldown_store.set_cooldown("a.txt", N, CooldownAction.SNAPSHOT_CREATED, custom_duration_ms=5000)
        clock.advance(2000)
        assert cooldown_store.remaining_ms("a.txt", N) == 3000
        assert cooldown_store.remaining_ms("other", N) == 0

    def test_visible_to_second_handle(self, tmp_path, clock):
        path = tmp_path / "shared.db"
        first = CooldownStore(path, clock=clock)
        second = CooldownStore(path, clock=clock)
        try:
            first.set_cooldown("a.txt", B, CooldownAction.SNAPSHOT_CREATED)
            assert second.is_in_cooldown("a.txt", B)
        finally:
            first.close()
            second.close()

    def test_concurrent_writers_keep_one_active(self, cooldown_store):
        def worker():
            for _ in range(20):
                cooldown_store.set_cooldown("hot.txt", N, CooldownAction.SNAPSHOT_CREATED)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cooldown_store.list_active_cooldowns()) == 1


class TestSweep:

    def test_clears_only_expired(self, cooldown_store, clock):
        cooldown_store.set_cooldown("old", N, CooldownAction.SNAPSHOT_CREATED, custom_duration_ms=100)
        cooldown_store.set_cooldown("new", N, CooldownAction.SNAPSHOT_CREATED, custom_duration_ms=10_000)
        clock.advance(500)
        assert cooldown_store.clear_expired_cooldowns() == 1
        assert [e.file_path for e in cooldown_store.list_active_cooldowns()] == ["new"]
        assert cooldown_store.get_stats()["expired_cooldowns"] == 0

    def test_sweep_keeps_audit(self, cooldown_store, clock):
        cooldown_store.set_cooldown("a", N, CooldownAction.SNAPSHOT_CREATED, custom_duration_ms=1)
        cooldown_store.record_audit("a", N, AuditAction.SNAPSHOT_CREATED)
        clock.advance(10)
        cooldown_store.clear_expired_cooldowns()
        assert len(cooldown_store.get_audit_trail("a")) == 1

    def test_cached_windows_pruned_on_write(self, cooldown_store, clock):
        cooldown_store.set_cooldown("old", N, CooldownAction.SNAPSHOT_CREATED, custom_duration_ms=100)
        clock.advance(500)
        cooldown_store.set_cooldown("new", N, CooldownAction.SNAPSHOT_CREATED, custom_duration_ms=10_000)
        assert set(cooldown_store._active) == {("new", "warn")}

    def test_sweep_alongside_writers(self, cooldown_store):
        errors = []

        def writer(n):
            try:
                for i in range(25):
                    cooldown_store.set_cooldown(f"w{n}-{i}", N, CooldownAction.SAVE_ALLOWED, custom_duration_ms=0)
            except Exception as e:
                errors.append(e)

        def sweeper():
            try:
                for _ in range(25):
                    cooldown_store.clear_expired_cooldowns()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(3)]
        threads.append(threading.Thread(target=sweeper))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        cooldown_store.clear_expired_cooldowns()
        assert cooldown_store._active == {}


# =============================================================================
# AUDIT
# =============================================================================


class TestAuditTrail:

    def test_most_recent_first(self, cooldown_store, clock):
        cooldown_store.record_audit("a.txt", N, AuditAction.SAVE_ATTEMPT)
        clock.advance(10)
        cooldown_store.record_audit("a.txt", N, AuditAction.SNAPSHOT_CREATED, snapshot_id="s1")
        clock.advance(10)
        cooldown_store.record_audit("a.txt", N, AuditAction.SAVE_ALLOWED, {"reason": "warning_level"})

        trail = cooldown_store.get_audit_trail("a.txt")
        assert [e.action for e in trail] == [
            AuditAction.SAVE_ALLOWED, AuditAction.SNAPSHOT_CREATED, AuditAction.SAVE_ATTEMPT,
        ]
        assert trail[0].details == {"reason": "warning_level"}
        assert trail[1].snapshot_id == "s1"

    def test_same_millisecond_keeps_insert_order(self, cooldown_store):
        for action in (AuditAction.SAVE_ATTEMPT, AuditAction.SAVE_BLOCKED):
            cooldown_store.record_audit("a.txt", B, action)
        trail = cooldown_store.get_audit_trail("a.txt")
        assert [e.action for e in trail] == [AuditAction.SAVE_BLOCKED, AuditAction.SAVE_ATTEMPT]

    def test_filters_and_limit(self, cooldown_store, clock):
        for i in range(5):
            cooldown_store.record_audit("a.txt", N, AuditAction.SAVE_ALLOWED)
            cooldown_store.record_audit("b.txt", B, AuditAction.SAVE_BLOCKED)
            clock.advance(1)
        assert len(cooldown_store.get_audit_trail("a.txt", limit=3)) == 3
        assert len(cooldown_store.get_audit_trail(limit=100)) == 10
        blocked = cooldown_store.get_audit_trail(action=AuditAction.SAVE_BLOCKED)
        assert {e.file_path for e in blocked} == {"b.txt"}

    def test_returns_id(self, cooldown_store):
        audit_id = cooldown_store.record_audit("a.txt", W, AuditAction.SAVE_ALLOWED)
        assert audit_id.startswith("audit_")

    def test_never_raises(self, cooldown_store, caplog):
        assert cooldown_store.record_audit("a.txt", "nonsense-level", AuditAction.SAVE_ALLOWED) is None
        assert cooldown_store.record_audit("a.txt", W, "not-an-action") is None
        assert "Failed to record audit" in caplog.text

    def test_write_failure_is_swallowed(self, cooldown_store, monkeypatch):
        def broken_write():
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(cooldown_store, "_write", broken_write)
        assert cooldown_store.record_audit("a.txt", W, AuditAction.SAVE_ALLOWED) is None

    def test_prune(self, cooldown_store, clock):
        cooldown_store.record_audit("a", W, AuditAction.SAVE_ALLOWED)
        clock.advance(10 * MINUTE)
        cooldown_store.record_audit("b", W, AuditAction.SAVE_ALLOWED)
        assert cooldown_store.prune_audit(older_than_ms=5 * MINUTE) == 1
        assert [e.file_path for e in cooldown_store.get_audit_trail()] == ["b"]

    def test_stats(self, cooldown_store):
        cooldown_store.record_audit("a", W, AuditAction.SAVE_ALLOWED)
        cooldown_store.record_audit("a", W, AuditAction.SAVE_ALLOWED)
        cooldown_store.set_cooldown("a", W, CooldownAction.SAVE_ALLOWED)
        stats = cooldown_store.get_stats()
        assert stats["available"]
        assert stats["active_cooldowns"] == 1
        assert stats["audit_by_action"] == {"save_allowed": 2}
        assert stats["audit_total"] == 2


# =============================================================================
# DEGRADED MODE
# =============================================================================


class TestUnavailableStore:

    @pytest.fixture
    def broken_store(self, tmp_path, clock):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        store = CooldownStore(blocker / "cooldowns.db", clock=clock)
        yield store
        store.close()

    def test_marked_unavailable(self, broken_store, caplog):
        assert not broken_store.available
        assert broken_store.unavailable_reason

    def test_fails_open(self, broken_store):
        assert broken_store.set_cooldown("a", B, CooldownAction.SNAPSHOT_CREATED) is None
        assert not broken_store.is_in_cooldown("a", B)
        assert broken_store.record_audit("a", B, AuditAction.SAVE_BLOCKED) is None
        assert broken_store.get_audit_trail() == []
        assert broken_store.list_active_cooldowns() == []
        assert broken_store.clear_expired_cooldowns() == 0
        assert broken_store.get_stats()["available"] is False

    def test_require_available(self, broken_store):
        with pytest.raises(StorageUnavailableError):
            broken_store.require_available()
        with pytest.raises(StorageUnavailableError):
            broken_store.prune_audit(1)
