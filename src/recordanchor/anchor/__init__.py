"""
Batch anchoring: pending queue, ledger collaborator and root commitment.
"""

from recordanchor.anchor.queue import PendingEntry, PendingQueue
from recordanchor.anchor.ledger import (
    CommitRequest,
    HTTPLedgerClient,
    InMemoryLedger,
    LedgerClient,
    TransactionReference,
)
from recordanchor.anchor.signing import Ed25519AnchorSigner, Ed25519AnchorVerifier
from recordanchor.anchor.committer import AnchorCommitter, RetryPolicy

__all__ = [
    "PendingEntry",
    "PendingQueue",
    "CommitRequest",
    "HTTPLedgerClient",
    "InMemoryLedger",
    "LedgerClient",
    "TransactionReference",
    "Ed25519AnchorSigner",
    "Ed25519AnchorVerifier",
    "AnchorCommitter",
    "RetryPolicy",
]
