from .core.runtime import AnchorRuntime
from .core.service import AnchorService, BatchResult
from .core.settings import AnchorSettings, get_settings
from .merkle import HashAlgorithm, HashCodec, MerkleTreeBuilder, MerkleProof, verify_merkle_proof
from .anchor import AnchorCommitter, PendingQueue, InMemoryLedger, HTTPLedgerClient
from .store import Batch, InclusionProof, InMemoryBatchStore, JsonFileBatchStore
from .proof import ProofService, VerificationResult, VerificationStatus

__version__ = "0.3.0"

__all__ = [
    "AnchorRuntime",
    "AnchorService",
    "BatchResult",
    "AnchorSettings",
    "get_settings",
    "HashAlgorithm",
    "HashCodec",
    "MerkleTreeBuilder",
    "MerkleProof",
    "verify_merkle_proof",
    "AnchorCommitter",
    "PendingQueue",
    "InMemoryLedger",
    "HTTPLedgerClient",
    "Batch",
    "InclusionProof",
    "InMemoryBatchStore",
    "JsonFileBatchStore",
    "ProofService",
    "VerificationResult",
    "VerificationStatus",
]
