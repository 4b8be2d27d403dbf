"""
Tests for snapward.handlers.allowances.TemporaryAllowances.
"""

import json

import pytest

from snapward.handlers.allowances import TemporaryAllowances


@pytest.fixture
def allowances(clock):
    return TemporaryAllowances(default_ttl_seconds=60, clock=clock)


class TestGrant:

    def test_grant_fields(self, allowances, clock):
        allowance = allowances.grant(".env", reason="rotating keys")
        assert allowance["mode"] == "once"
        assert allowance["reason"] == "rotating keys"
        assert allowance["created_at"] == clock()
        assert allowance["expires_at"] == clock() + 60_000
        assert allowance["used"] is False

    def test_explicit_ttl(self, allowances, clock):
        allowance = allowances.grant(".env", mode="duration", ttl_seconds=5)
        assert allowance["expires_at"] == clock() + 5_000

    def test_unknown_mode(self, allowances):
        with pytest.raises(ValueError, match="Unknown allowance mode"):
            allowances.grant(".env", mode="forever")


class TestConsume:

    def test_once_is_single_use(self, allowances):
        allowances.grant(".env")
        first = allowances.consume(".env")
        assert first is not None
        assert first["used"] is True
        assert allowances.consume(".env") is None

    def test_duration_until_expiry(self, allowances, clock):
        allowances.grant(".env", mode="duration", ttl_seconds=10)
        assert allowances.consume(".env") is not None
        assert allowances.consume(".env") is not None
        clock.advance(10_000)
        assert allowances.consume(".env") is None

    def test_once_expires_unused(self, allowances, clock):
        allowances.grant(".env")
        clock.advance(60_001)
        assert allowances.consume(".env") is None

    def test_other_paths_untouched(self, allowances):
        allowances.grant(".env")
        assert allowances.consume("package.json") is None
        assert allowances.consume(".env") is not None

    def test_peek_does_not_consume(self, allowances):
        allowances.grant(".env")
        assert allowances.peek(".env")["file_path"] == ".env"
        assert allowances.consume(".env") is not None
        assert allowances.peek(".env") is None


class TestManagement:

    def test_list_active(self, allowances, clock):
        allowances.grant("a", ttl_seconds=1)
        allowances.grant("b", ttl_seconds=100)
        clock.advance(2_000)
        assert [a["file_path"] for a in allowances.list_active()] == ["b"]

    def test_revoke(self, allowances):
        allowances.grant("a")
        allowances.grant("a", mode="duration")
        allowances.grant("b")
        assert allowances.revoke("a") == 2
        assert allowances.peek("a") is None
        assert allowances.peek("b") is not None

    def test_clear(self, allowances):
        allowances.grant("a")
        allowances.grant("b")
        assert allowances.clear() == 2
        assert allowances.list_active() == []


class TestPersistence:

    def test_shared_state_file(self, tmp_path, clock):
        state = tmp_path / "state" / "allowances.json"
        cli = TemporaryAllowances(state_path=state, clock=clock)
        handler = TemporaryAllowances(state_path=state, clock=clock)

        cli.grant(".env", reason="deploy")
        assert json.loads(state.read_text())["allowances"][0]["reason"] == "deploy"
        assert handler.consume(".env") is not None
        assert cli.peek(".env") is None

    def test_unreadable_state_starts_empty(self, tmp_path, clock):
        state = tmp_path / "allowances.json"
        state.write_text("{not json")
        allowances = TemporaryAllowances(state_path=state, clock=clock)
        assert allowances.list_active() == []
        allowances.grant(".env")
        assert len(json.loads(state.read_text())["allowances"]) == 1
