"""
Proof Service

Generates and verifies inclusion proofs for anchored records.

Verification requires BOTH:
  1. the stored sibling path reconstructs the stored root, and
  2. the leaf recomputed from the record's CURRENT content equals the
     stored leaf.

An unknown identity is reported as NOT_FOUND, never as a failed
verification. A failed verification is a normal result, not an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from recordanchor.anchor.ledger import LedgerClient
from recordanchor.merkle.codec import HashCodec
from recordanchor.merkle.tree import verify_merkle_proof
from recordanchor.protocol.errors import RecordEncodingError
from recordanchor.store.batches import BatchStore, InclusionProof

logger = logging.getLogger(__name__)


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    TAMPERED = "tampered"
    NOT_FOUND = "not_found"
    LEDGER_MISMATCH = "ledger_mismatch"


@dataclass(frozen=True)
class VerificationResult:
    identity: str
    status: VerificationStatus
    proof: Optional[InclusionProof] = None
    reason: str = ""

    @property
    def verified(self) -> bool:
        return self.status == VerificationStatus.VERIFIED

    @property
    def proof_exists(self) -> bool:
        return self.status != VerificationStatus.NOT_FOUND

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "status": self.status.value,
            "verified": self.verified,
            "proof": self.proof.to_dict() if self.proof else None,
            "reason": self.reason,
        }


class ProofService:
    """
    Read-only view over committed batches.

    Safe to call from many threads at once; the store only locks to read
    references.
    """

    def __init__(
        self,
        store: BatchStore,
        codec: Optional[HashCodec] = None,
        *,
        ledger: Optional[LedgerClient] = None,
    ) -> None:
        self._store = store
        self._codec = codec or HashCodec()
        self._ledger = ledger

    def generate(self, identity: str) -> Optional[InclusionProof]:
        return self._store.find_proof_for(identity)

    def verify(self, identity: str, current_record: Optional[Mapping[str, Any]]) -> VerificationResult:
        """
        Check that `current_record` is exactly what was anchored for `identity`.
        """
        proof = self._store.find_proof_for(identity)
        if proof is None:
            return VerificationResult(
                identity=identity,
                status=VerificationStatus.NOT_FOUND,
                reason="No anchored batch contains this record",
            )

        if current_record is None:
            return self._tampered(identity, proof, "Record content is no longer available")

        try:
            if self._codec.identity_of(current_record) != identity:
                return self._tampered(identity, proof, "Record identity does not match")
            recomputed_leaf = self._codec.digest(current_record)
        except RecordEncodingError as ex:
            return self._tampered(identity, proof, f"Record cannot be encoded: {ex}")

        if not self._path_matches(proof):
            return self._tampered(identity, proof, "Proof path does not reconstruct the batch root")

        if recomputed_leaf.hex() != proof.leaf_hash:
            return self._tampered(identity, proof, "Record content differs from anchored content")

        mismatch = self._ledger_mismatch(proof)
        if mismatch:
            logger.warning("Ledger mismatch for %s in batch %d: %s", identity, proof.batch_id, mismatch)
            return VerificationResult(
                identity=identity,
                status=VerificationStatus.LEDGER_MISMATCH,
                proof=proof,
                reason=mismatch,
            )

        logger.info("Verified %s in batch %d", identity, proof.batch_id)
        return VerificationResult(
            identity=identity,
            status=VerificationStatus.VERIFIED,
            proof=proof,
            reason="Record matches anchored content",
        )

    def verify_proof(self, proof: InclusionProof, record: Optional[Mapping[str, Any]] = None) -> bool:
        """
        Stateless check of a proof, optionally against record content.

        Needs nothing but the proof (and the record): usable by third
        parties holding only the published root.
        """
        if not self._path_matches(proof):
            return False
        if record is None:
            return True
        try:
            return self._codec.digest(record).hex() == proof.leaf_hash
        except RecordEncodingError:
            return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _tampered(self, identity: str, proof: InclusionProof, reason: str) -> VerificationResult:
        logger.info("Verification failed for %s: %s", identity, reason)
        return VerificationResult(
            identity=identity,
            status=VerificationStatus.TAMPERED,
            proof=proof,
            reason=reason,
        )

    @staticmethod
    def _path_matches(proof: InclusionProof) -> bool:
        return verify_merkle_proof(proof.to_merkle_proof())

    def _ledger_mismatch(self, proof: InclusionProof) -> Optional[str]:
        if self._ledger is None:
            return None
        batch = self._store.get_batch(proof.batch_id)
        if batch is None or batch.tx_ref is None:
            return None
        published = self._ledger.lookup(batch.tx_ref)
        if not isinstance(published, dict):
            return None
        published_root = str(published.get("root_hash", "")).lower()
        if published_root != proof.root_hash:
            return f"Ledger root {published_root or '<none>'} differs from stored root {proof.root_hash}"
        return None
