"""
Tests for the anchoring lifecycle and proof verification.

Test coverage:
1. Batch creation end to end (queue -> tree -> ledger -> store)
2. Queue restoration on failed attempts
3. Concurrent record intake and batch creation
4. Proof verification outcomes (verified, tampered, not found, ledger mismatch)
5. File-backed runtime surviving a restart
"""

import hashlib
import logging
import shutil
import tempfile
import threading
import time
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization

from recordanchor.anchor.committer import AnchorCommitter, RetryPolicy
from recordanchor.anchor.ledger import CommitRequest, InMemoryLedger
from recordanchor.anchor.queue import PendingQueue
from recordanchor.anchor.signing import Ed25519AnchorSigner, Ed25519AnchorVerifier
from recordanchor.core.runtime import AnchorRuntime
from recordanchor.core.service import AnchorService
from recordanchor.core.settings import AnchorSettings, LedgerSettings, StorageSettings
from recordanchor.merkle.codec import HashCodec
from recordanchor.proof.service import ProofService, VerificationStatus
from recordanchor.protocol.errors import (
    CommitFailedError,
    LedgerRejectedError,
    RecordEncodingError,
    StorageError,
)
from recordanchor.store.batches import InMemoryBatchStore


def sha(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def no_sleep(seconds):
    return None


def record(identity, **fields):
    data = {"id": identity, "name": f"Patient {identity}"}
    data.update(fields)
    return data


# ===========================================================================
# Test fixtures
# ===========================================================================


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp(prefix="recordanchor_service_test_")
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def store():
    return InMemoryBatchStore()


@pytest.fixture
def service(ledger, store):
    committer = AnchorCommitter(ledger, retry_policy=RetryPolicy(max_attempts=3), sleep=no_sleep)
    return AnchorService(PendingQueue(), committer, store)


@pytest.fixture
def proofs(store, ledger):
    return ProofService(store, HashCodec(), ledger=ledger)


# ===========================================================================
# Batch creation
# ===========================================================================


class TestCreateBatch:
    """Tests for AnchorService.create_batch."""

    def test_empty_queue_returns_none(self, service, ledger, store):
        assert service.create_batch() is None
        assert ledger.publish_calls == 0
        assert store.total_batches() == 0

    def test_three_records_end_to_end(self, service, ledger, store):
        records = [record("r1"), record("r2"), record("r3")]
        for r in records:
            service.record_saved(r)
        h1, h2, h3 = (HashCodec().digest(r) for r in records)

        result = service.create_batch()

        batch = result.batch
        assert batch.batch_id == 1
        assert batch.record_count == 3
        assert batch.root_digest == sha(sha(h1 + h2) + sha(h3 + h3))
        assert batch.algo_id == "sha256"
        assert batch.meta_uri == "reduct://anima-patients/batch-1"
        assert result.tx_hash.startswith("0x")
        assert result.identities == ["r1", "r2", "r3"]
        assert service.pending_count() == 0

        proof = store.find_proof_for("r3")
        assert proof.leaf_index == 2
        assert proof.leaf_hash == h3.hex()
        assert list(proof.proof_hashes) == [h3.hex(), sha(h1 + h2).hex()]

        published = ledger.lookup(result.tx_hash)
        assert published["root_hash"] == batch.root_hash_hex
        assert published["record_count"] == 3

    def test_single_record_batch(self, service, store):
        r = record("solo")
        service.record_saved(r)

        result = service.create_batch()

        assert result.batch.root_digest == HashCodec().digest(r)
        assert store.find_proof_for("solo").proof_hashes == ()

    def test_result_wire_shape(self, service):
        service.record_saved(record("r1"))

        body = service.create_batch().to_dict()

        assert set(body) == {"batch", "tx_hash", "patient_ids"}
        assert set(body["batch"]) == {
            "batch_id", "root_hash_hex", "algo_id", "record_count", "timestamp", "meta_uri",
        }
        assert body["patient_ids"] == ["r1"]

    def test_resaved_record_is_anchored_once_with_latest_content(self, service, store):
        service.record_saved(record("r1", version=1))
        service.record_saved(record("r2"))
        service.record_saved(record("r1", version=2))

        result = service.create_batch()

        assert result.identities == ["r2", "r1"]
        assert store.find_proof_for("r1").leaf_hash == HashCodec().digest_hex(record("r1", version=2))

    def test_batch_ids_are_sequential(self, service):
        service.record_saved(record("r1"))
        first = service.create_batch()
        service.record_saved(record("r2"))
        second = service.create_batch()

        assert (first.batch.batch_id, second.batch.batch_id) == (1, 2)
        assert second.batch.meta_uri.endswith("batch-2")

    def test_invalid_record_is_not_queued(self, service):
        with pytest.raises(RecordEncodingError):
            service.record_saved({"name": "no identity"})

        assert service.pending_count() == 0


class TestFailedBatches:
    """Failed attempts leave no batch behind and restore the queue."""

    def test_commit_failure_restores_queue(self, service, ledger, store):
        for name in ("r1", "r2", "r3"):
            service.record_saved(record(name))
        ledger.fail_next(10)

        with pytest.raises(CommitFailedError):
            service.create_batch()

        assert service.pending_count() == 3
        assert [e.identity for e in service.queue.snapshot()] == ["r1", "r2", "r3"]
        assert store.total_batches() == 0
        assert store.find_proof_for("r1") is None

    def test_rejection_restores_queue(self, service, ledger, store):
        service.record_saved(record("r1"))
        ledger.reject_next("schema")

        with pytest.raises(LedgerRejectedError):
            service.create_batch()

        assert service.pending_count() == 1
        assert ledger.publish_calls == 1

    def test_failed_attempt_does_not_consume_batch_id(self, service, ledger):
        service.record_saved(record("r1"))
        ledger.fail_next(10)
        with pytest.raises(CommitFailedError):
            service.create_batch()

        result = service.create_batch()

        assert result.batch.batch_id == 1
        assert result.identities == ["r1"]

    def test_storage_failure_restores_queue(self, service, store, monkeypatch):
        service.record_saved(record("r1"))

        def broken_persist(state):
            raise StorageError("disk full")

        monkeypatch.setattr(store, "_persist", broken_persist)

        with pytest.raises(StorageError):
            service.create_batch()

        assert service.pending_count() == 1
        assert store.total_batches() == 0

    def test_storage_failure_logs_orphaned_commitment(self, service, ledger, store, monkeypatch, caplog):
        service.record_saved(record("r1"))
        committed = []
        publish = ledger.publish

        def recording_publish(request):
            tx_ref = publish(request)
            committed.append(tx_ref.tx_hash)
            return tx_ref

        def broken_persist(state):
            raise StorageError("disk full")

        monkeypatch.setattr(ledger, "publish", recording_publish)
        monkeypatch.setattr(store, "_persist", broken_persist)

        with caplog.at_level(logging.ERROR, logger="recordanchor.service"):
            with pytest.raises(StorageError):
                service.create_batch()

        orphaned = [r for r in caplog.records if "orphaned" in r.getMessage()]
        assert len(committed) == 1
        assert len(orphaned) == 1
        assert orphaned[0].levelno == logging.ERROR
        assert committed[0] in orphaned[0].getMessage()
        assert "batch-1" in orphaned[0].getMessage()

    def test_update_during_failed_attempt_keeps_newer_digest(self, ledger, store):
        queue = PendingQueue()
        committer = AnchorCommitter(ledger, retry_policy=RetryPolicy(max_attempts=2), sleep=no_sleep)
        service = AnchorService(queue, committer, store)
        service.record_saved(record("r1", version=1))

        def failing_publish(request):
            service.record_saved(record("r1", version=2))
            raise LedgerRejectedError("down for maintenance")

        ledger.publish = failing_publish

        with pytest.raises(LedgerRejectedError):
            service.create_batch()

        snapshot = queue.snapshot()
        assert len(snapshot) == 1
        assert snapshot[0].digest == HashCodec().digest(record("r1", version=2))


class TestConcurrentIntake:

    def test_no_record_lost_or_duplicated(self, service, store):
        def writer(prefix):
            for i in range(50):
                service.record_saved(record(f"{prefix}-{i}"))

        writers = [threading.Thread(target=writer, args=(p,)) for p in ("a", "b", "c")]
        for t in writers:
            t.start()
        results = []
        while any(t.is_alive() for t in writers):
            result = service.create_batch()
            if result is not None:
                results.append(result)
        for t in writers:
            t.join()
        final = service.create_batch()
        if final is not None:
            results.append(final)

        anchored = [i for r in results for i in r.identities]
        assert len(anchored) == 150
        assert len(set(anchored)) == 150
        assert service.pending_count() == 0
        assert [r.batch.batch_id for r in results] == list(range(1, len(results) + 1))

    def test_concurrent_batch_creation_is_serialized(self, store):
        class GaugedLedger(InMemoryLedger):
            def __init__(self):
                super().__init__()
                self._gauge = threading.Lock()
                self.in_flight = 0
                self.max_in_flight = 0

            def publish(self, request):
                with self._gauge:
                    self.in_flight += 1
                    self.max_in_flight = max(self.max_in_flight, self.in_flight)
                try:
                    time.sleep(0.002)
                    return super().publish(request)
                finally:
                    with self._gauge:
                        self.in_flight -= 1

        ledger = GaugedLedger()
        service = AnchorService(PendingQueue(), AnchorCommitter(ledger, sleep=no_sleep), store)
        results = []
        errors = []
        writing = threading.Event()
        writing.set()

        def writer(prefix):
            for i in range(40):
                service.record_saved(record(f"{prefix}-{i}"))
                time.sleep(0.001)

        def batcher():
            try:
                while writing.is_set():
                    result = service.create_batch()
                    if result is not None:
                        results.append(result)
            except Exception as ex:
                errors.append(ex)

        writers = [threading.Thread(target=writer, args=(p,)) for p in ("a", "b", "c")]
        batchers = [threading.Thread(target=batcher) for _ in range(4)]
        for t in batchers + writers:
            t.start()
        for t in writers:
            t.join()
        writing.clear()
        for t in batchers:
            t.join()
        final = service.create_batch()
        if final is not None:
            results.append(final)

        assert errors == []
        assert ledger.max_in_flight == 1
        assert ledger.publish_calls == len(results)

        batch_ids = sorted(r.batch.batch_id for r in results)
        assert batch_ids == list(range(1, len(results) + 1))
        assert store.total_batches() == len(results)

        anchored = [i for r in results for i in r.identities]
        assert len(anchored) == 120
        assert len(set(anchored)) == 120
        assert service.pending_count() == 0


# ===========================================================================
# Proof verification
# ===========================================================================


class TestProofService:
    """Tests for ProofService.verify."""

    def test_unchanged_record_verifies(self, service, proofs):
        r = record("r1", diagnosis="none")
        service.record_saved(r)
        service.record_saved(record("r2"))
        service.create_batch()

        result = proofs.verify("r1", r)

        assert result.status is VerificationStatus.VERIFIED
        assert result.verified
        assert result.proof.leaf_index == 0

    def test_modified_record_is_tampered(self, service, proofs):
        r = record("r1", diagnosis="none")
        service.record_saved(r)
        service.create_batch()

        result = proofs.verify("r1", dict(r, diagnosis="altered"))

        assert result.status is VerificationStatus.TAMPERED
        assert not result.verified
        assert result.proof_exists

    def test_unknown_record_is_not_found(self, proofs):
        result = proofs.verify("ghost", record("ghost"))

        assert result.status is VerificationStatus.NOT_FOUND
        assert not result.proof_exists
        assert result.proof is None

    def test_deleted_record_is_tampered(self, service, proofs):
        service.record_saved(record("r1"))
        service.create_batch()

        result = proofs.verify("r1", None)

        assert result.status is VerificationStatus.TAMPERED

    def test_identity_mismatch_is_tampered(self, service, proofs):
        service.record_saved(record("r1"))
        service.create_batch()

        assert proofs.verify("r1", record("r2")).status is VerificationStatus.TAMPERED

    def test_reanchored_record_verifies_against_latest_batch(self, service, proofs):
        service.record_saved(record("r1", version=1))
        service.create_batch()
        service.record_saved(record("r1", version=2))
        service.create_batch()

        assert proofs.verify("r1", record("r1", version=2)).verified
        assert proofs.verify("r1", record("r1", version=1)).status is VerificationStatus.TAMPERED
        assert proofs.generate("r1").batch_id == 2

    def test_ledger_mismatch(self, store):
        class ForgedLedger(InMemoryLedger):
            def lookup(self, tx_hash):
                found = super().lookup(tx_hash)
                if found is not None:
                    found["root_hash"] = "00" * 32
                return found

        ledger = ForgedLedger()
        service = AnchorService(PendingQueue(), AnchorCommitter(ledger), store)
        r = record("r1")
        service.record_saved(r)
        service.create_batch()

        result = ProofService(store, ledger=ledger).verify("r1", r)

        assert result.status is VerificationStatus.LEDGER_MISMATCH
        assert not result.verified

    def test_non_object_ledger_answer_is_ignored(self, store):
        class ListLedger(InMemoryLedger):
            def lookup(self, tx_hash):
                return [tx_hash]

        ledger = ListLedger()
        service = AnchorService(PendingQueue(), AnchorCommitter(ledger), store)
        r = record("r1")
        service.record_saved(r)
        service.create_batch()

        result = ProofService(store, ledger=ledger).verify("r1", r)

        assert result.status is VerificationStatus.VERIFIED

    def test_verify_proof_offline(self, service, proofs):
        r = record("r1")
        service.record_saved(r)
        service.record_saved(record("r2"))
        service.create_batch()
        proof = proofs.generate("r1")

        assert proofs.verify_proof(proof)
        assert proofs.verify_proof(proof, r)
        assert not proofs.verify_proof(proof, dict(r, name="changed"))

    def test_result_to_dict(self, service, proofs):
        r = record("r1")
        service.record_saved(r)
        service.create_batch()

        data = proofs.verify("r1", r).to_dict()

        assert data["status"] == "verified"
        assert data["verified"] is True
        assert data["proof"]["patient_id"] == "r1"
        assert data["proof"]["batch_id"] == 1


# ===========================================================================
# Runtime wiring
# ===========================================================================


def file_settings(tmp_dir, **ledger_fields):
    return AnchorSettings(
        ledger=LedgerSettings(**ledger_fields),
        storage=StorageSettings(mode="file", data_dir=str(tmp_dir), sync=False),
    )


class TestAnchorRuntime:

    def test_file_runtime_survives_restart(self, tmp_dir):
        ledger = InMemoryLedger()
        runtime = AnchorRuntime(file_settings(tmp_dir), ledger=ledger)
        r = runtime.records.save(record("r1"))
        runtime.service.record_saved(r)
        runtime.records.save(record("r2"))
        runtime.service.record_saved(record("r2"))
        runtime.service.create_batch()
        runtime.service.record_saved(runtime.records.save(record("r3")))

        restarted = AnchorRuntime(file_settings(tmp_dir), ledger=ledger)

        assert restarted.store.total_batches() == 1
        assert restarted.service.pending_count() == 1
        assert restarted.proofs.verify("r1", restarted.records.get("r1")).verified
        assert restarted.service.create_batch().batch.batch_id == 2

    def test_signed_commitments(self, tmp_dir):
        signer = Ed25519AnchorSigner.generate()
        key_path = tmp_dir / "anchor_key.pem"
        key_path.write_bytes(
            signer._private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        ledger = InMemoryLedger()
        runtime = AnchorRuntime(file_settings(tmp_dir, signing_key_file=str(key_path)), ledger=ledger)

        runtime.service.record_saved(record("r1"))
        runtime.service.create_batch()

        verifier = Ed25519AnchorVerifier()
        verifier.add_from_signer(signer)
        assert verifier.verify_request(CommitRequest(**ledger.commitments[0]))

    def test_memory_runtime_defaults(self):
        runtime = AnchorRuntime(AnchorSettings(
            ledger=LedgerSettings(),
            storage=StorageSettings(mode="memory"),
        ))

        assert runtime.ledger.name == "memory"
        assert runtime.codec.algo_id == "sha256"
        assert runtime.committer.retry_policy.max_attempts == 3
