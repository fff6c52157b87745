"""
Anchor Committer

Publishes a batch root to the ledger collaborator.

Policy:
- One publish call per attempt, attempts bounded by RetryPolicy
- TransientLedgerError -> exponential backoff, then CommitFailedError
- LedgerRejectedError  -> surfaced immediately, never retried
- No cancellation: once started, commit() runs to a definitive outcome
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from recordanchor.anchor.ledger import CommitRequest, LedgerClient, TransactionReference
from recordanchor.anchor.signing import Ed25519AnchorSigner
from recordanchor.merkle.codec import HashAlgorithm
from recordanchor.protocol.errors import (
    CommitFailedError,
    InvariantViolationError,
    LedgerRejectedError,
    TransientLedgerError,
    UnsupportedAlgorithmError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Delay before attempt n+1 is initial_delay * multiplier**(n-1),
    capped at max_delay.
    """
    max_attempts: int = 3
    initial_delay: float = 0.2
    multiplier: float = 2.0
    max_delay: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")

    def next_delay(self, attempt: int) -> float:
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


class AnchorCommitter:
    """Commits Merkle roots through a LedgerClient."""

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        signer: Optional[Ed25519AnchorSigner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._ledger = ledger
        self._retry = retry_policy or RetryPolicy()
        self._signer = signer
        self._sleep = sleep

    @property
    def ledger(self) -> LedgerClient:
        return self._ledger

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    def build_request(
        self,
        root_digest: bytes,
        algo_id: str,
        record_count: int,
        meta_uri: str,
        batch_id: Optional[int] = None,
    ) -> CommitRequest:
        """
        Validate and assemble the ledger payload.

        Raises:
            InvariantViolationError: If root, algorithm or record count is missing or inconsistent
        """
        try:
            algorithm = HashAlgorithm.from_id(algo_id)
        except UnsupportedAlgorithmError as ex:
            raise InvariantViolationError(f"Refusing to commit: {ex}") from ex
        if not isinstance(root_digest, (bytes, bytearray)) or len(root_digest) != algorithm.digest_size:
            raise InvariantViolationError(
                f"Refusing to commit: root is not a {algorithm.digest_size}-byte digest"
            )
        if not isinstance(record_count, int) or record_count <= 0:
            raise InvariantViolationError(
                f"Refusing to commit: record_count must be positive, got {record_count!r}"
            )

        request = CommitRequest(
            root_hash=bytes(root_digest).hex(),
            algo_id=algorithm.value,
            record_count=record_count,
            meta_uri=meta_uri,
            batch_id=batch_id,
        )
        if self._signer is not None:
            request = self._signer.sign_request(request)
        return request

    def commit(
        self,
        root_digest: bytes,
        algo_id: str,
        record_count: int,
        meta_uri: str,
        batch_id: Optional[int] = None,
    ) -> TransactionReference:
        """
        Publish a root and return the ledger's transaction reference.

        Raises:
            InvariantViolationError: Invalid commit payload (nothing is sent)
            LedgerRejectedError: Ledger refused the payload
            CommitFailedError: Transient failures exhausted the retry budget
        """
        request = self.build_request(root_digest, algo_id, record_count, meta_uri, batch_id)

        attempt = 0
        while True:
            attempt += 1
            try:
                tx_ref = self._ledger.publish(request)
            except LedgerRejectedError as ex:
                logger.error(
                    "Ledger rejected batch=%s root=%s: %s", batch_id, request.root_hash, ex
                )
                raise
            except TransientLedgerError as ex:
                if attempt >= self._retry.max_attempts:
                    logger.error(
                        "Commit failed batch=%s after %d attempts: %s", batch_id, attempt, ex
                    )
                    raise CommitFailedError(
                        f"Ledger commit failed after {attempt} attempts: {ex}",
                        attempts=attempt,
                    ) from ex
                delay = self._retry.next_delay(attempt)
                logger.warning(
                    "Transient ledger failure batch=%s attempt=%d retry_in=%.3fs: %s",
                    batch_id, attempt, delay, ex,
                )
                self._sleep(delay)
                continue

            logger.info(
                "Anchored batch=%s root=%s records=%d tx=%s",
                batch_id, request.root_hash, record_count, tx_ref.tx_hash,
            )
            return tx_ref
