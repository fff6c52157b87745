"""
Merkle primitives for record anchoring.

- HashCodec: record -> fixed-length leaf digest
- MerkleTreeBuilder: ordered leaves -> root + per-leaf sibling paths
- verify_merkle_proof / reconstruct_root: offline proof checking
"""

from recordanchor.merkle.codec import (
    HashAlgorithm,
    HashCodec,
    canonical_bytes,
)

from recordanchor.merkle.tree import (
    MerkleTree,
    MerkleTreeBuilder,
    MerkleProof,
    compute_merkle_root,
    reconstruct_root,
    verify_merkle_proof,
)

__all__ = [
    # Leaf hashing
    "HashAlgorithm",
    "HashCodec",
    "canonical_bytes",
    # Merkle primitives
    "MerkleTree",
    "MerkleTreeBuilder",
    "MerkleProof",
    "compute_merkle_root",
    "reconstruct_root",
    "verify_merkle_proof",
]
