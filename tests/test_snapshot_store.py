#!/usr/bin/env python3
"""
Tests for snapward.storage.blob_store and snapward.storage.snapshot_store.

Covers:
- Content-addressed blob layout, deduplicated writes and integrity checks
- Snapshot create / get / list / delete
- Retention limits that spare protected snapshots
- Garbage collection of unreferenced blobs
"""

import json
import os
import threading
import time
from unittest.mock import patch

import pytest

pytestmark = pytest.mark.storage

from snapward.errors import BlobIntegrityError, SnapshotCreationError
from snapward.snapshot.models import FileState, SnapshotState, content_hash
from snapward.storage.blob_store import BlobStore
from snapward.storage.snapshot_store import SnapshotStore


def make_state(files, ts=1_000, snapshot_id=None, **kwargs):
    return SnapshotState.create(
        [FileState.from_content(p, c) for p, c in files.items()],
        timestamp=ts,
        snapshot_id=snapshot_id,
        **kwargs,
    )


# =============================================================================
# BLOBS
# =============================================================================


class TestBlobStore:

    def test_store_and_retrieve(self, tmp_path):
        blobs = BlobStore(tmp_path / "blobs")
        blob_hash, is_new = blobs.store(b"hello")
        assert blob_hash == content_hash(b"hello")
        assert is_new
        assert blobs.retrieve(blob_hash) == b"hello"
        assert blobs.path_for(blob_hash) == tmp_path / "blobs" / blob_hash[:2] / blob_hash[2:4] / blob_hash

    def test_identical_content_stored_once(self, tmp_path):
        blobs = BlobStore(tmp_path / "blobs")
        first, _ = blobs.store(b"same")
        second, is_new = blobs.store(b"same")
        assert first == second
        assert not is_new
        assert blobs.count() == 1
        assert blobs.total_size() == 4

    def test_missing_blob(self, tmp_path):
        blobs = BlobStore(tmp_path / "blobs")
        assert blobs.retrieve("0" * 64) is None
        assert not blobs.delete("0" * 64)

    def test_corruption_detected(self, tmp_path):
        blobs = BlobStore(tmp_path / "blobs")
        blob_hash, _ = blobs.store(b"original")
        blobs.path_for(blob_hash).write_bytes(b"tampered")
        with pytest.raises(BlobIntegrityError):
            blobs.retrieve(blob_hash)
        assert blobs.retrieve(blob_hash, verify=False) == b"tampered"

    @pytest.mark.parametrize("bad", ["", "abc", "../" + "a" * 61, "G" * 64])
    def test_invalid_hash(self, tmp_path, bad):
        with pytest.raises(ValueError):
            BlobStore(tmp_path).path_for(bad)

    def test_no_temp_files_left(self, tmp_path):
        blobs = BlobStore(tmp_path / "blobs")
        blobs.store(b"x" * 10_000)
        assert not list((tmp_path / "blobs").rglob("*.tmp"))


# =============================================================================
# SNAPSHOTS
# =============================================================================


class TestSnapshotCreate:

    def test_create_and_get(self, snapshot_store):
        state = make_state({"a.txt": b"one", "src/b.py": "print(1)\n"}, name="Modified 2 files",
                           is_protected=True, trigger="protected_save", metadata={"level": "block"})
        manifest = snapshot_store.create(state)
        assert manifest.id == state.id
        assert set(manifest.files) == {"a.txt", "src/b.py"}

        loaded = snapshot_store.get(state.id)
        assert loaded == state
        assert loaded.file_map()["src/b.py"].content == b"print(1)\n"
        assert loaded.metadata == {"level": "block"}
        assert loaded.is_protected
        assert loaded.trigger == "protected_save"

    def test_manifest_format(self, snapshot_store):
        state = make_state({"a.txt": b"one"}, snapshot_id="snap_1_abc", name="n")
        snapshot_store.create(state)
        data = json.loads((snapshot_store.snapshots_dir / "snap_1_abc.json").read_text())
        assert data["files"] == {"a.txt": {"blob": content_hash(b"one"), "size": 3}}
        assert data["timestamp"] == 1_000

    def test_shared_content_shares_blobs(self, snapshot_store):
        snapshot_store.create(make_state({"a.txt": b"same"}, ts=1))
        snapshot_store.create(make_state({"b.txt": b"same"}, ts=2))
        assert snapshot_store.blob_store.count() == 1

    def test_duplicate_id_rejected(self, snapshot_store):
        state = make_state({"a.txt": b"1"}, snapshot_id="snap_fixed")
        snapshot_store.create(state)
        with pytest.raises(SnapshotCreationError, match="already exists"):
            snapshot_store.create(state)

    def test_hash_mismatch_rejected(self, snapshot_store):
        bad = FileState(path="a.txt", content=b"real", hash=content_hash(b"claimed"))
        state = SnapshotState.create([bad], timestamp=1)
        with pytest.raises(SnapshotCreationError, match="Hash mismatch"):
            snapshot_store.create(state)
        assert not snapshot_store.exists(state.id)

    def test_invalid_id_rejected(self, snapshot_store):
        state = make_state({"a.txt": b"1"}, snapshot_id="../escape")
        with pytest.raises(SnapshotCreationError):
            snapshot_store.create(state)

    def test_io_failure_wrapped(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = SnapshotStore(blocker / "snapshots", BlobStore(blocker / "blobs"))
        with pytest.raises(SnapshotCreationError, match="Failed to persist"):
            store.create(make_state({"a.txt": b"1"}))

    def test_missing_blob_on_read(self, snapshot_store):
        state = make_state({"a.txt": b"gone"})
        snapshot_store.create(state)
        snapshot_store.blob_store.delete(content_hash(b"gone"))
        with pytest.raises(BlobIntegrityError, match="missing blob"):
            snapshot_store.get(state.id)


class TestSnapshotQueries:

    @pytest.fixture
    def populated(self, snapshot_store):
        snapshot_store.create(make_state({"a.txt": b"1"}, ts=100, snapshot_id="s100", trigger="warn_save"))
        snapshot_store.create(make_state({"b.txt": b"2"}, ts=200, snapshot_id="s200", trigger="protected_save"))
        snapshot_store.create(make_state({"a.txt": b"3"}, ts=300, snapshot_id="s300", trigger="warn_save"))
        return snapshot_store

    def test_list_newest_first(self, populated):
        assert [m.id for m in populated.list()] == ["s300", "s200", "s100"]
        assert [m.id for m in populated.list(limit=2)] == ["s300", "s200"]

    def test_list_filters(self, populated):
        assert [m.id for m in populated.list(after=100)] == ["s300", "s200"]
        assert [m.id for m in populated.list(before=300)] == ["s200", "s100"]
        assert [m.id for m in populated.list(trigger="warn_save")] == ["s300", "s100"]

    def test_for_file_and_recent(self, populated):
        assert [m.id for m in populated.get_for_file("a.txt")] == ["s300", "s100"]
        assert populated.get_most_recent().id == "s300"
        assert populated.count() == 3

    def test_unknown(self, populated):
        assert populated.get("nope") is None
        assert populated.get_manifest("../../etc/passwd") is None
        assert not populated.exists("nope")

    def test_delete(self, populated):
        assert populated.delete("s200")
        assert not populated.delete("s200")
        assert populated.count() == 2

    def test_corrupt_manifest_skipped(self, populated):
        (populated.snapshots_dir / "broken.json").write_text("{not json")
        assert populated.get_manifest("broken") is None
        assert len(populated.list()) == 3

    def test_empty_store(self, tmp_path):
        store = SnapshotStore.at(tmp_path / "fresh")
        assert store.list() == []
        assert store.count() == 0
        assert store.get_most_recent() is None


class TestRetention:

    def test_oldest_unprotected_removed(self, tmp_path):
        store = SnapshotStore.at(tmp_path, max_snapshots=2)
        store.create(make_state({"p": b"p"}, ts=1, snapshot_id="protected", is_protected=True))
        for ts in (2, 3, 4):
            store.create(make_state({"f": str(ts)}, ts=ts, snapshot_id=f"s{ts}"))
        assert {m.id for m in store.list()} == {"protected", "s3", "s4"}

    def test_garbage_collection(self, snapshot_store):
        snapshot_store.create(make_state({"a": b"keep"}, snapshot_id="keep"))
        snapshot_store.create(make_state({"a": b"drop"}, snapshot_id="drop"))
        snapshot_store.delete("drop")
        assert snapshot_store.collect_garbage(grace_seconds=0) == 1
        assert snapshot_store.blob_store.count() == 1
        assert snapshot_store.get("keep").files[0].content == b"keep"

    def test_gc_keeps_recent_unreferenced_blobs(self, snapshot_store):
        snapshot_store.create(make_state({"a": b"fresh"}, snapshot_id="fresh"))
        snapshot_store.delete("fresh")
        assert snapshot_store.collect_garbage() == 0
        assert snapshot_store.blob_store.count() == 1

    def test_gc_removes_stale_unreferenced_blobs(self, snapshot_store):
        blob_hash, _ = snapshot_store.blob_store.store(b"stale")
        old = time.time() - 3600
        os.utime(snapshot_store.blob_store.path_for(blob_hash), (old, old))
        assert snapshot_store.collect_garbage() == 1

    def test_reused_blob_is_touched(self, snapshot_store):
        blobs = snapshot_store.blob_store
        blob_hash, _ = blobs.store(b"shared")
        old = time.time() - 3600
        os.utime(blobs.path_for(blob_hash), (old, old))

        _, is_new = blobs.store(b"shared")

        assert is_new is False
        assert blobs.modified_at(blob_hash) > old + 60
        assert snapshot_store.collect_garbage() == 0

    def test_gc_waits_for_create_in_progress(self, snapshot_store):
        snapshot_store.create(make_state({"a": b"shared"}, snapshot_id="first"))
        snapshot_store.delete("first")

        blobs = snapshot_store.blob_store
        store_blob = blobs.store
        collected = []
        collectors = []

        def store_then_collect(content):
            result = store_blob(content)
            collector = threading.Thread(
                target=lambda: collected.append(snapshot_store.collect_garbage(grace_seconds=0))
            )
            collector.start()
            collector.join(timeout=0.2)
            collectors.append(collector)
            return result

        with patch.object(blobs, "store", side_effect=store_then_collect):
            snapshot_store.create(make_state({"a": b"shared"}, snapshot_id="second"))
        for collector in collectors:
            collector.join()

        assert collected == [0]
        assert snapshot_store.get("second").files[0].content == b"shared"
