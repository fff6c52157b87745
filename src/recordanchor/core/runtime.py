from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from recordanchor.anchor.committer import AnchorCommitter, RetryPolicy
from recordanchor.anchor.ledger import HTTPLedgerClient, InMemoryLedger, LedgerClient
from recordanchor.anchor.queue import PendingQueue
from recordanchor.anchor.signing import Ed25519AnchorSigner
from recordanchor.core.service import AnchorService
from recordanchor.core.settings import AnchorSettings, get_settings
from recordanchor.merkle.codec import HashCodec
from recordanchor.proof.service import ProofService
from recordanchor.protocol.enums import LedgerMode, StorageMode
from recordanchor.store.batches import BatchStore, InMemoryBatchStore, JsonFileBatchStore
from recordanchor.store.records import JsonFileRecordRepository, RecordRepository

logger = logging.getLogger("recordanchor.runtime")


class AnchorRuntime:
    """
    Wires the anchoring components from AnchorSettings.

    Every collaborator can be overridden, which is how tests inject
    in-memory ledgers and temporary stores.
    """

    def __init__(
        self,
        settings: Optional[AnchorSettings] = None,
        *,
        ledger: Optional[LedgerClient] = None,
        queue: Optional[PendingQueue] = None,
        store: Optional[BatchStore] = None,
        records: Optional[RecordRepository] = None,
        committer: Optional[AnchorCommitter] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.codec = HashCodec(self.settings.runtime.hash_algo)

        storage = self.settings.storage
        data_dir = Path(storage.data_dir)
        file_mode = storage.mode is StorageMode.FILE

        self.queue = queue or (
            PendingQueue(data_dir / "queue.json", sync=storage.sync) if file_mode else PendingQueue()
        )
        self.store = store or (
            JsonFileBatchStore(data_dir / "batches.json", sync=storage.sync)
            if file_mode
            else InMemoryBatchStore()
        )
        self.records = records or (
            JsonFileRecordRepository(data_dir / "records.json", sync=storage.sync)
            if file_mode
            else RecordRepository()
        )

        self.ledger = ledger or self._build_ledger()
        self.committer = committer or self._build_committer()
        self.service = AnchorService(
            self.queue,
            self.committer,
            self.store,
            codec=self.codec,
            meta_uri_template=self.settings.ledger.meta_uri_template,
        )
        self.proofs = ProofService(self.store, self.codec, ledger=self.ledger)
        # Held across a record write and the queueing of its digest.
        self.record_lock = threading.Lock()

        logger.info(
            "Anchor runtime ready (ledger=%s, storage=%s, algo=%s)",
            self.ledger.name, storage.mode.value, self.codec.algo_id,
        )

    def _build_ledger(self) -> LedgerClient:
        cfg = self.settings.ledger
        if cfg.mode is LedgerMode.HTTP:
            return HTTPLedgerClient(cfg.url, timeout=cfg.timeout)
        logger.warning("Using in-memory ledger (development mode)")
        return InMemoryLedger()

    def _build_committer(self) -> AnchorCommitter:
        cfg = self.settings.ledger
        signer = None
        if cfg.signing_key_file:
            signer = Ed25519AnchorSigner.from_pem_file(cfg.signing_key_file)
            logger.info("Signing commitments with key %s", signer.key_id)
        return AnchorCommitter(
            self.ledger,
            retry_policy=RetryPolicy(
                max_attempts=cfg.commit_attempts,
                initial_delay=cfg.commit_backoff,
                max_delay=cfg.commit_max_backoff,
            ),
            signer=signer,
        )
