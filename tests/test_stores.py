"""
Tests for the batch store and record repository.
"""

import hashlib
import shutil
import tempfile
from pathlib import Path

import pytest

from recordanchor.merkle.tree import MerkleTreeBuilder, verify_merkle_proof
from recordanchor.protocol.errors import (
    InvariantViolationError,
    RecordNotFoundError,
    StorageError,
)
from recordanchor.store.batches import InMemoryBatchStore, JsonFileBatchStore
from recordanchor.store.records import JsonFileRecordRepository, RecordRepository


def sha(data: str) -> bytes:
    return hashlib.sha256(data.encode()).digest()


def batch_inputs(*identities):
    leaves = [sha(i) for i in identities]
    root = MerkleTreeBuilder().build(leaves).root
    return list(identities), leaves, root


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp(prefix="recordanchor_store_test_")
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


class TestBatchStore:
    """Tests for BatchStore write and read APIs."""

    def test_create_batch(self):
        store = InMemoryBatchStore()
        ids, leaves, root = batch_inputs("p-1", "p-2", "p-3")

        batch = store.create_batch(ids, leaves, root, "sha256", "0xabc", "meta://1", timestamp=1700000000)

        assert batch.batch_id == 1
        assert batch.record_count == 3
        assert batch.root_hash_hex == root.hex()
        assert batch.is_committed
        assert batch.to_wire() == {
            "batch_id": 1,
            "root_hash_hex": root.hex(),
            "algo_id": "sha256",
            "record_count": 3,
            "timestamp": 1700000000,
            "meta_uri": "meta://1",
        }

    def test_every_record_gets_a_valid_proof(self):
        store = InMemoryBatchStore()
        ids, leaves, root = batch_inputs("p-1", "p-2", "p-3", "p-4", "p-5")
        store.create_batch(ids, leaves, root, "sha256", "0xabc", "meta://1")

        for index, identity in enumerate(ids):
            proof = store.find_proof_for(identity)
            assert proof.leaf_index == index
            assert proof.leaf_hash == leaves[index].hex()
            assert proof.root_hash == root.hex()
            assert proof.batch_id == 1
            assert verify_merkle_proof(proof.to_merkle_proof())

    def test_batch_ids_increase(self):
        store = InMemoryBatchStore()
        first = store.create_batch(*batch_inputs("p-1"), "sha256", "0x1", "m")
        second = store.create_batch(*batch_inputs("p-2"), "sha256", "0x2", "m")

        assert (first.batch_id, second.batch_id) == (1, 2)
        assert store.next_batch_id() == 3
        assert store.total_batches() == 2
        assert [b.batch_id for b in store.list_batches()] == [1, 2]

    def test_stale_batch_id_rejected(self):
        store = InMemoryBatchStore()
        store.create_batch(*batch_inputs("p-1"), "sha256", "0x1", "m")

        with pytest.raises(InvariantViolationError):
            store.create_batch(*batch_inputs("p-2"), "sha256", "0x2", "m", batch_id=1)

    def test_root_mismatch_rejected(self):
        store = InMemoryBatchStore()
        ids, leaves, _ = batch_inputs("p-1", "p-2")

        with pytest.raises(InvariantViolationError):
            store.create_batch(ids, leaves, sha("wrong"), "sha256", "0x1", "m")

        assert store.total_batches() == 0
        assert store.find_proof_for("p-1") is None

    def test_length_mismatch_rejected(self):
        store = InMemoryBatchStore()
        ids, leaves, root = batch_inputs("p-1", "p-2")

        with pytest.raises(InvariantViolationError):
            store.create_batch(ids + ["p-3"], leaves, root, "sha256", "0x1", "m")

    def test_duplicate_identity_rejected(self):
        store = InMemoryBatchStore()
        leaves = [sha("a"), sha("b")]
        root = MerkleTreeBuilder().build(leaves).root

        with pytest.raises(InvariantViolationError):
            store.create_batch(["p-1", "p-1"], leaves, root, "sha256", "0x1", "m")

    def test_latest_batch_wins_and_history_kept(self):
        store = InMemoryBatchStore()
        store.create_batch(*batch_inputs("p-1", "p-2"), "sha256", "0x1", "m")
        store.create_batch(*batch_inputs("p-3", "p-1"), "sha256", "0x2", "m")

        latest = store.find_proof_for("p-1")
        history = store.proof_history("p-1")

        assert latest.batch_id == 2
        assert latest.leaf_index == 1
        assert [p.batch_id for p in history] == [1, 2]
        assert store.find_proof_for("p-2").batch_id == 1

    def test_unknown_identity(self):
        store = InMemoryBatchStore()

        assert store.find_proof_for("nobody") is None
        assert store.proof_history("nobody") == []
        assert store.get_batch(1) is None


class TestJsonFileBatchStore:
    """Tests for JSON persistence of batches."""

    def test_reload(self, tmp_dir):
        path = tmp_dir / "batches.json"
        store = JsonFileBatchStore(path, sync=False)
        batch = store.create_batch(*batch_inputs("p-1", "p-2", "p-3"), "sha256", "0xabc", "meta://1")
        store.create_batch(*batch_inputs("p-2"), "sha256", "0xdef", "meta://2")

        reloaded = JsonFileBatchStore(path, sync=False)

        assert reloaded.get_batch(1) == batch
        assert reloaded.total_batches() == 2
        assert reloaded.find_proof_for("p-3") == store.find_proof_for("p-3")
        assert reloaded.find_proof_for("p-2").batch_id == 2
        assert reloaded.next_batch_id() == 3

    def test_failed_write_publishes_nothing(self, tmp_dir, monkeypatch):
        store = JsonFileBatchStore(tmp_dir / "batches.json", sync=False)

        def broken_write(*args, **kwargs):
            raise OSError("read-only file system")

        monkeypatch.setattr("recordanchor.store.batches.atomic_write_json", broken_write)

        with pytest.raises(StorageError):
            store.create_batch(*batch_inputs("p-1"), "sha256", "0x1", "m")

        assert store.total_batches() == 0
        assert store.find_proof_for("p-1") is None
        assert store.next_batch_id() == 1

    def test_corrupt_file(self, tmp_dir):
        path = tmp_dir / "batches.json"
        path.write_text("[")

        with pytest.raises(StorageError):
            JsonFileBatchStore(path)


class TestRecordRepository:

    def test_save_get_delete(self):
        repo = RecordRepository()
        repo.save({"id": "p-1", "name": "Ada"})

        assert repo.get("p-1") == {"id": "p-1", "name": "Ada"}
        assert repo.count() == 1
        assert repo.delete("p-1")["name"] == "Ada"
        assert repo.get("p-1") is None

    def test_returned_records_are_copies(self):
        repo = RecordRepository()
        repo.save({"id": "p-1", "demographics": {"name": "Ada"}})

        fetched = repo.get("p-1")
        fetched["demographics"]["name"] = "Mallory"

        assert repo.get("p-1")["demographics"]["name"] == "Ada"

    def test_missing_record(self):
        repo = RecordRepository()

        with pytest.raises(RecordNotFoundError):
            repo.require("p-1")
        with pytest.raises(RecordNotFoundError):
            repo.delete("p-1")

    def test_json_reload(self, tmp_dir):
        path = tmp_dir / "records.json"
        repo = JsonFileRecordRepository(path, sync=False)
        repo.save({"id": "p-1", "name": "Ada", "score": 1.5})
        repo.save({"id": "p-2", "name": "Grace"})
        repo.delete("p-2")

        reloaded = JsonFileRecordRepository(path, sync=False)

        assert reloaded.list() == [{"id": "p-1", "name": "Ada", "score": 1.5}]
