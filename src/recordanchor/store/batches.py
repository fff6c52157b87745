"""
Batch Store

Owns every committed batch and the per-record inclusion proofs derived
from it.

CRITICAL INVARIANTS:
1. root_digest is the Merkle root of the ordered leaf digests
2. record_count == len(identities) == len(leaf_digests)
3. A committed batch (tx_ref present) is never modified
4. create_batch publishes the batch and all of its proofs at once, or nothing
5. Lookup by identity returns the most recent batch containing it
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from recordanchor.merkle.codec import HashAlgorithm
from recordanchor.merkle.tree import MerkleProof, MerkleTreeBuilder
from recordanchor.protocol.errors import InvariantViolationError, StorageError
from recordanchor.utils.fs import atomic_write_json, read_json
from recordanchor.utils.timestamps import now_iso, now_unix

logger = logging.getLogger(__name__)


# ===========================================================================
# Batch
# ===========================================================================


@dataclass(frozen=True)
class Batch:
    """
    One committed anchoring unit.

    Attributes:
        batch_id: Monotonically increasing identifier
        identities: Record identities in leaf order
        leaf_digests: Leaf digests in leaf order
        root_digest: Merkle root
        algo_id: Hash algorithm identifier
        record_count: Number of leaves
        timestamp: Creation time (unix seconds)
        tx_ref: Ledger transaction reference
        meta_uri: Locator of auxiliary off-ledger metadata
    """
    batch_id: int
    identities: Tuple[str, ...]
    leaf_digests: Tuple[bytes, ...]
    root_digest: bytes
    algo_id: str
    record_count: int
    timestamp: int
    tx_ref: Optional[str]
    meta_uri: str

    @property
    def root_hash_hex(self) -> str:
        return self.root_digest.hex()

    @property
    def is_committed(self) -> bool:
        return self.tx_ref is not None

    def to_wire(self) -> Dict[str, Any]:
        """Public batch summary (field names are part of the HTTP contract)."""
        return {
            "batch_id": self.batch_id,
            "root_hash_hex": self.root_hash_hex,
            "algo_id": self.algo_id,
            "record_count": self.record_count,
            "timestamp": self.timestamp,
            "meta_uri": self.meta_uri,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_wire()
        data["identities"] = list(self.identities)
        data["leaf_digests"] = [d.hex() for d in self.leaf_digests]
        data["tx_ref"] = self.tx_ref
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Batch":
        return cls(
            batch_id=int(data["batch_id"]),
            identities=tuple(data["identities"]),
            leaf_digests=tuple(bytes.fromhex(d) for d in data["leaf_digests"]),
            root_digest=bytes.fromhex(data["root_hash_hex"]),
            algo_id=data["algo_id"],
            record_count=int(data["record_count"]),
            timestamp=int(data["timestamp"]),
            tx_ref=data.get("tx_ref"),
            meta_uri=data.get("meta_uri", ""),
        )


# ===========================================================================
# Inclusion Proof
# ===========================================================================


@dataclass(frozen=True)
class InclusionProof:
    """
    Proof that a record's leaf is part of a committed batch.

    Derived once at batch creation and cached.
    """
    identity: str
    batch_id: int
    leaf_hash: str
    leaf_index: int
    proof_hashes: Tuple[str, ...]
    root_hash: str
    algo_id: str = HashAlgorithm.SHA256.value

    def to_merkle_proof(self) -> MerkleProof:
        return MerkleProof(
            leaf_hash=self.leaf_hash,
            leaf_index=self.leaf_index,
            proof_hashes=self.proof_hashes,
            root_hash=self.root_hash,
            algo_id=self.algo_id,
        )

    def to_wire(self) -> Dict[str, Any]:
        """Proof body of the verify response."""
        return {
            "leaf_hash": self.leaf_hash,
            "leaf_index": self.leaf_index,
            "proof_hashes": list(self.proof_hashes),
            "root_hash": self.root_hash,
            "patient_id": self.identity,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_wire()
        data["batch_id"] = self.batch_id
        data["algo_id"] = self.algo_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InclusionProof":
        return cls(
            identity=data["patient_id"],
            batch_id=int(data["batch_id"]),
            leaf_hash=data["leaf_hash"],
            leaf_index=int(data["leaf_index"]),
            proof_hashes=tuple(data.get("proof_hashes") or ()),
            root_hash=data["root_hash"],
            algo_id=data.get("algo_id", HashAlgorithm.SHA256.value),
        )


# ===========================================================================
# Store State
# ===========================================================================


@dataclass
class _StoreState:
    batches: Dict[int, Batch]
    proofs: Dict[int, Dict[str, InclusionProof]]
    # identity -> batch ids containing it, oldest first
    history: Dict[str, List[int]]

    def copy(self) -> "_StoreState":
        return _StoreState(
            batches=dict(self.batches),
            proofs=dict(self.proofs),
            history={k: list(v) for k, v in self.history.items()},
        )

    def add(self, batch: Batch, proofs: Dict[str, InclusionProof]) -> None:
        self.batches[batch.batch_id] = batch
        self.proofs[batch.batch_id] = proofs
        for identity in batch.identities:
            self.history.setdefault(identity, []).append(batch.batch_id)

    @classmethod
    def empty(cls) -> "_StoreState":
        return cls(batches={}, proofs={}, history={})


# ===========================================================================
# Batch Store
# ===========================================================================


class BatchStore(ABC):
    """
    Base batch store.

    Subclasses decide durability through _persist(), which receives the
    complete next state before it becomes visible.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = _StoreState.empty()

    @abstractmethod
    def _persist(self, state: _StoreState) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------
    def create_batch(
        self,
        ordered_identities: Sequence[str],
        leaf_digests: Sequence[bytes],
        root_digest: bytes,
        algo_id: str,
        tx_ref: Optional[str],
        meta_uri: str,
        *,
        batch_id: Optional[int] = None,
        timestamp: Optional[int] = None,
    ) -> Batch:
        """
        Persist a batch and every record's inclusion proof atomically.

        Raises:
            InvariantViolationError: Inconsistent batch contents
            StorageError: The batch could not be made durable
        """
        identities = tuple(ordered_identities)
        leaves = tuple(bytes(d) for d in leaf_digests)

        if len(identities) != len(leaves):
            raise InvariantViolationError(
                f"{len(identities)} identities but {len(leaves)} leaf digests"
            )
        if len(set(identities)) != len(identities):
            raise InvariantViolationError("Duplicate record identity in batch")

        algorithm = HashAlgorithm.from_id(algo_id)
        tree = MerkleTreeBuilder(algorithm).build(leaves)
        if tree.root != bytes(root_digest):
            raise InvariantViolationError(
                f"Root {bytes(root_digest).hex()} does not match leaves (expected {tree.root_hex})"
            )

        with self._lock:
            expected_id = self._next_batch_id_locked()
            if batch_id is None:
                batch_id = expected_id
            elif batch_id < expected_id:
                raise InvariantViolationError(
                    f"Batch id {batch_id} is not greater than the last committed id"
                )

            batch = Batch(
                batch_id=batch_id,
                identities=identities,
                leaf_digests=leaves,
                root_digest=tree.root,
                algo_id=algorithm.value,
                record_count=len(leaves),
                timestamp=timestamp if timestamp is not None else now_unix(),
                tx_ref=tx_ref,
                meta_uri=meta_uri,
            )
            proofs: Dict[str, InclusionProof] = {}
            for index, identity in enumerate(identities):
                merkle_proof = tree.proof(index)
                proofs[identity] = InclusionProof(
                    identity=identity,
                    batch_id=batch_id,
                    leaf_hash=merkle_proof.leaf_hash,
                    leaf_index=index,
                    proof_hashes=merkle_proof.proof_hashes,
                    root_hash=merkle_proof.root_hash,
                    algo_id=algorithm.value,
                )

            next_state = self._state.copy()
            next_state.add(batch, proofs)
            self._persist(next_state)
            self._state = next_state

        logger.info(
            "Stored batch=%d records=%d root=%s", batch.batch_id, batch.record_count, batch.root_hash_hex
        )
        return batch

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------
    def _next_batch_id_locked(self) -> int:
        return max(self._state.batches, default=0) + 1

    def next_batch_id(self) -> int:
        with self._lock:
            return self._next_batch_id_locked()

    def find_proof_for(self, identity: str) -> Optional[InclusionProof]:
        """Proof from the most recent batch containing `identity`."""
        with self._lock:
            batch_ids = self._state.history.get(identity)
            if not batch_ids:
                return None
            return self._state.proofs[batch_ids[-1]][identity]

    def proof_history(self, identity: str) -> List[InclusionProof]:
        """Every proof for `identity`, oldest batch first."""
        with self._lock:
            return [
                self._state.proofs[batch_id][identity]
                for batch_id in self._state.history.get(identity, [])
            ]

    def get_batch(self, batch_id: int) -> Optional[Batch]:
        with self._lock:
            return self._state.batches.get(batch_id)

    def list_batches(self) -> List[Batch]:
        with self._lock:
            return [self._state.batches[k] for k in sorted(self._state.batches)]

    def total_batches(self) -> int:
        with self._lock:
            return len(self._state.batches)


class InMemoryBatchStore(BatchStore):
    """Process-local store. State is lost on restart."""

    def _persist(self, state: _StoreState) -> None:
        return None


class JsonFileBatchStore(BatchStore):
    """
    Batch store backed by a JSON file.

    The full state is written to a temp file, fsynced and renamed over the
    previous file before the in-memory state is swapped, so a failed write
    leaves the previous state visible everywhere.
    """

    def __init__(self, path: Union[str, Path], *, sync: bool = True) -> None:
        super().__init__()
        self._path = Path(path)
        self._sync = sync
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        try:
            data = read_json(self._path)
        except (OSError, ValueError) as ex:
            raise StorageError(f"Cannot read batch store {self._path}: {ex}") from ex
        if not data:
            return

        state = _StoreState.empty()
        for entry in sorted(data.get("batches", []), key=lambda b: int(b["batch"]["batch_id"])):
            batch = Batch.from_dict(entry["batch"])
            proofs = {
                p["patient_id"]: InclusionProof.from_dict(p) for p in entry.get("proofs", [])
            }
            state.add(batch, proofs)
        self._state = state
        logger.info("Loaded %d batches from %s", len(state.batches), self._path)

    def _persist(self, state: _StoreState) -> None:
        data = {
            "updated_at": now_iso(),
            "count": len(state.batches),
            "batches": [
                {
                    "batch": state.batches[batch_id].to_dict(),
                    "proofs": [p.to_dict() for p in state.proofs[batch_id].values()],
                }
                for batch_id in sorted(state.batches)
            ],
        }
        try:
            atomic_write_json(self._path, data, sync=self._sync)
        except OSError as ex:
            raise StorageError(f"Cannot write batch store {self._path}: {ex}") from ex
