# recordanchor/core/service.py

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from recordanchor.anchor.committer import AnchorCommitter
from recordanchor.anchor.queue import PendingEntry, PendingQueue
from recordanchor.merkle.codec import HashCodec
from recordanchor.merkle.tree import MerkleTreeBuilder
from recordanchor.protocol.errors import InvariantViolationError
from recordanchor.store.batches import Batch, BatchStore

logger = logging.getLogger("recordanchor.service")

DEFAULT_META_URI_TEMPLATE = "reduct://anima-patients/batch-{batch_id}"


@dataclass(frozen=True)
class BatchResult:
    batch: Batch
    tx_hash: str

    @property
    def identities(self) -> List[str]:
        return list(self.batch.identities)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch": self.batch.to_wire(),
            "tx_hash": self.tx_hash,
            "patient_ids": self.identities,
        }


class AnchorService:
    """
    Batch lifecycle: queue records, then drain -> build -> commit -> persist.

    Responsibilities:
      - Digest saved records and queue them (synchronously, before the
        caller's create/update returns)
      - Serialize batch creation: one drain..persist sequence at a time
      - Restore drained entries when any step after the drain fails
    """

    def __init__(
        self,
        queue: PendingQueue,
        committer: AnchorCommitter,
        store: BatchStore,
        *,
        codec: Optional[HashCodec] = None,
        meta_uri_template: str = DEFAULT_META_URI_TEMPLATE,
    ) -> None:
        self._queue = queue
        self._committer = committer
        self._store = store
        self._codec = codec or HashCodec()
        self._builder = MerkleTreeBuilder(self._codec.algorithm)
        self._meta_uri_template = meta_uri_template
        self._batch_lock = threading.Lock()

    @property
    def queue(self) -> PendingQueue:
        return self._queue

    @property
    def store(self) -> BatchStore:
        return self._store

    @property
    def codec(self) -> HashCodec:
        return self._codec

    # ===========================================================
    # Record intake
    # ===========================================================
    def record_saved(self, record: Mapping[str, Any]) -> PendingEntry:
        """
        Digest a freshly saved record and queue it for anchoring.

        Raises:
            RecordEncodingError: If the record cannot be digested
        """
        identity = self._codec.identity_of(record)
        digest = self._codec.digest(record)
        entry = self._queue.append(identity, digest)
        logger.debug("Queued %s leaf=%s", identity, digest.hex())
        return entry

    def pending_count(self) -> int:
        return self._queue.count()

    # ===========================================================
    # Batch creation
    # ===========================================================
    def create_batch(self) -> Optional[BatchResult]:
        """
        Anchor everything currently queued.

        Returns None when there is nothing to anchor.

        Raises:
            InvariantViolationError, LedgerRejectedError, CommitFailedError,
            StorageError: the attempt was abandoned and the queue restored
        """
        with self._batch_lock:
            entries = self._queue.drain_snapshot()
            if not entries:
                logger.info("No pending records to anchor")
                return None

            try:
                return self._anchor(entries)
            except Exception:
                self._queue.restore(entries)
                logger.exception("Batch creation failed; %d entries restored", len(entries))
                raise

    def _anchor(self, entries: List[PendingEntry]) -> BatchResult:
        self._check_entries(entries)

        identities = [e.identity for e in entries]
        leaves = [e.digest for e in entries]
        tree = self._builder.build(leaves)
        if tree.leaf_count != len(entries):
            raise InvariantViolationError(
                f"Tree has {tree.leaf_count} leaves for {len(entries)} entries"
            )

        batch_id = self._store.next_batch_id()
        meta_uri = self._meta_uri_template.format(batch_id=batch_id)

        tx_ref = self._committer.commit(
            tree.root,
            self._codec.algo_id,
            tree.leaf_count,
            meta_uri,
            batch_id=batch_id,
        )

        try:
            batch = self._store.create_batch(
                identities,
                leaves,
                tree.root,
                self._codec.algo_id,
                tx_ref.tx_hash,
                meta_uri,
                batch_id=batch_id,
            )
        except Exception:
            # The root is already on the ledger; this commitment has no stored batch.
            logger.error(
                "Batch #%d committed as %s (%s) but not stored; ledger commitment is orphaned",
                batch_id, tx_ref.tx_hash, meta_uri,
            )
            raise

        logger.info(
            "Created batch #%d with %d records root=%s tx=%s",
            batch.batch_id, batch.record_count, batch.root_hash_hex, tx_ref.tx_hash,
        )
        return BatchResult(batch=batch, tx_hash=tx_ref.tx_hash)

    @staticmethod
    def _check_entries(entries: List[PendingEntry]) -> None:
        seen = set()
        last_seq = 0
        for entry in entries:
            if entry.identity in seen:
                raise InvariantViolationError(f"Duplicate leaf for identity {entry.identity}")
            if entry.seq <= last_seq:
                raise InvariantViolationError(
                    f"Out-of-order leaf for identity {entry.identity} (seq {entry.seq})"
                )
            seen.add(entry.identity)
            last_seq = entry.seq
