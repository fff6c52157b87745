from __future__ import annotations

"""
Ledger collaborator interface.

The ledger durably records a committed Merkle root and returns an opaque
transaction reference. This layer does not know about consensus, finality
or the network's wire protocol:

    CommitRequest  → [LedgerClient.publish] → TransactionReference
    tx_hash        → [LedgerClient.lookup]  → published commitment | None

Failure contract for publish():
  - TransientLedgerError: timeout, connection loss, server-side failure.
    The caller may retry.
  - LedgerRejectedError: the ledger refused this payload. Retrying the
    same payload will not help.
"""

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from recordanchor.protocol.errors import LedgerRejectedError, TransientLedgerError
from recordanchor.utils.json import canonical_json
from recordanchor.utils.timestamps import now_iso

logger = logging.getLogger(__name__)


# ===========================================================================
# Wire types
# ===========================================================================


@dataclass(frozen=True)
class CommitRequest:
    """
    Payload published to the ledger for one batch.

    root_hash, algo_id and record_count are always present: a root alone
    does not say what it attests to.
    """
    root_hash: str
    algo_id: str
    record_count: int
    meta_uri: str
    batch_id: Optional[int] = None
    signature: Optional[str] = None
    key_id: Optional[str] = None

    def signing_payload(self) -> Dict[str, Any]:
        return {
            "root_hash": self.root_hash,
            "algo_id": self.algo_id,
            "record_count": self.record_count,
            "meta_uri": self.meta_uri,
            "batch_id": self.batch_id,
        }

    def signing_bytes(self) -> bytes:
        return canonical_json(self.signing_payload()).encode("utf-8")

    def to_dict(self) -> Dict[str, Any]:
        data = self.signing_payload()
        if self.signature is not None:
            data["signature"] = self.signature
            data["key_id"] = self.key_id
        return data


@dataclass(frozen=True)
class TransactionReference:
    """Opaque reference to a ledger commitment."""
    tx_hash: str
    ledger: str
    submitted_at: str = field(default_factory=now_iso)

    def __str__(self) -> str:
        return self.tx_hash


# ===========================================================================
# Ledger Client
# ===========================================================================


class LedgerClient(ABC):
    """Abstract ledger collaborator."""

    name: str = "ledger"

    @abstractmethod
    def publish(self, request: CommitRequest) -> TransactionReference:
        raise NotImplementedError

    def lookup(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """
        Return the commitment published under `tx_hash`.

        None means the ledger cannot answer (unknown reference or no
        read support); callers must not treat it as a mismatch.
        """
        return None


class InMemoryLedger(LedgerClient):
    """
    Development ledger.

    Commitments live in process memory and transaction hashes are derived
    from the payload. Failure injection is available for tests and demos:

        ledger = InMemoryLedger()
        ledger.fail_next(2)          # two transient failures, then success
        ledger.reject_next("bad")    # one definitive rejection
    """

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._commitments: Dict[str, Dict[str, Any]] = {}
        self._order: List[str] = []
        self._transient_failures = 0
        self._reject_reason: Optional[str] = None
        self.publish_calls = 0

    def fail_next(self, count: int = 1) -> None:
        with self._lock:
            self._transient_failures = count

    def reject_next(self, reason: str = "rejected") -> None:
        with self._lock:
            self._reject_reason = reason

    @property
    def commitments(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(self._commitments[tx]) for tx in self._order]

    def publish(self, request: CommitRequest) -> TransactionReference:
        with self._lock:
            self.publish_calls += 1
            if self._reject_reason is not None:
                reason, self._reject_reason = self._reject_reason, None
                raise LedgerRejectedError(f"Ledger rejected commitment: {reason}")
            if self._transient_failures > 0:
                self._transient_failures -= 1
                raise TransientLedgerError("Ledger temporarily unavailable")

            payload = request.to_dict()
            nonce = len(self._order)
            digest = hashlib.sha256(
                canonical_json({"payload": payload, "nonce": nonce}).encode("utf-8")
            ).hexdigest()
            tx_hash = f"0x{digest}"
            self._commitments[tx_hash] = payload
            self._order.append(tx_hash)

        logger.info("Committed root %s to in-memory ledger as %s", request.root_hash, tx_hash)
        return TransactionReference(tx_hash=tx_hash, ledger=self.name)

    def lookup(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            found = self._commitments.get(tx_hash)
            return dict(found) if found is not None else None


class HTTPLedgerClient(LedgerClient):
    """
    Ledger gateway reached over HTTP.

    Contract:

        POST {base_url}/anchor
          body:  CommitRequest.to_dict()
          200:   {"tx_hash": "..."}
          4xx:   rejection (not retried)
          5xx:   transient failure

        GET {base_url}/anchor/{tx_hash}
          200:   published commitment
          404:   unknown reference
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def publish(self, request: CommitRequest) -> TransactionReference:
        url = f"{self._base_url}/anchor"
        try:
            response = self._session.post(
                url,
                json=request.to_dict(),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as ex:
            raise TransientLedgerError(f"Ledger unreachable at {url}: {ex}") from ex

        if response.status_code >= 500:
            raise TransientLedgerError(
                f"Ledger returned {response.status_code}: {response.text[:200]}"
            )
        if response.status_code >= 400:
            raise LedgerRejectedError(
                f"Ledger rejected commitment ({response.status_code}): {response.text[:200]}"
            )

        try:
            tx_hash = response.json()["tx_hash"]
        except (ValueError, KeyError, TypeError) as ex:
            raise LedgerRejectedError(f"Ledger response has no tx_hash: {ex}") from ex
        if not isinstance(tx_hash, str) or not tx_hash:
            raise LedgerRejectedError("Ledger returned an empty tx_hash")

        return TransactionReference(tx_hash=tx_hash, ledger=self.name)

    def lookup(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        url = f"{self._base_url}/anchor/{tx_hash}"
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as ex:
            logger.warning("Ledger lookup for %s failed: %s", tx_hash, ex)
            return None
        if response.status_code != 200:
            return None
        try:
            published = response.json()
        except ValueError:
            return None
        if not isinstance(published, dict):
            logger.warning("Ledger lookup for %s returned %s, expected an object", tx_hash, type(published).__name__)
            return None
        return published
