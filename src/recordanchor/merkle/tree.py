"""
Merkle Tree Implementation

Binary Merkle tree over an ordered list of leaf digests.

Construction rules (shared by building and verification):
- Leaves are the input digests, in order, at index 0..n-1
- parent = H(left || right)
- An odd level duplicates its last node: parent = H(node || node)
- A single leaf is its own root and has an empty proof path
- Left/right position at each level follows the index parity
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from recordanchor.merkle.codec import HashAlgorithm
from recordanchor.protocol.errors import InvariantViolationError


# ===========================================================================
# Merkle Proof
# ===========================================================================


@dataclass(frozen=True)
class MerkleProof:
    """
    Inclusion proof for a leaf in a Merkle tree.

    Attributes:
        leaf_hash: Hex digest of the leaf being proved
        leaf_index: Index of the leaf
        proof_hashes: Hex sibling digests, from leaf level up to the root
        root_hash: Expected hex root digest
        algo_id: Hash algorithm of the tree
    """
    leaf_hash: str
    leaf_index: int
    proof_hashes: Tuple[str, ...]
    root_hash: str
    algo_id: str = HashAlgorithm.SHA256.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leaf_hash": self.leaf_hash,
            "leaf_index": self.leaf_index,
            "proof_hashes": list(self.proof_hashes),
            "root_hash": self.root_hash,
            "algo_id": self.algo_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MerkleProof":
        return cls(
            leaf_hash=data["leaf_hash"],
            leaf_index=int(data["leaf_index"]),
            proof_hashes=tuple(data.get("proof_hashes") or ()),
            root_hash=data["root_hash"],
            algo_id=data.get("algo_id", HashAlgorithm.SHA256.value),
        )


# ===========================================================================
# Hash Functions
# ===========================================================================


def _hash_pair(algorithm: HashAlgorithm, left: bytes, right: bytes) -> bytes:
    return algorithm.digest(left + right)


def _next_level(algorithm: HashAlgorithm, level: Sequence[bytes]) -> List[bytes]:
    parents: List[bytes] = []
    for i in range(0, len(level), 2):
        left = level[i]
        # Odd count: the last node pairs with itself
        right = level[i + 1] if i + 1 < len(level) else left
        parents.append(_hash_pair(algorithm, left, right))
    return parents


# ===========================================================================
# Merkle Tree
# ===========================================================================


class MerkleTree:
    """
    A built, immutable Merkle tree.

    Keeps every level (leaves first, root last) so that sibling paths
    can be read off in O(log n).
    """

    def __init__(self, levels: List[List[bytes]], algorithm: HashAlgorithm):
        self._levels = levels
        self._algorithm = algorithm

    @property
    def algorithm(self) -> HashAlgorithm:
        return self._algorithm

    @property
    def root(self) -> bytes:
        return self._levels[-1][0]

    @property
    def root_hex(self) -> str:
        return self.root.hex()

    @property
    def leaf_count(self) -> int:
        return len(self._levels[0])

    @property
    def leaves(self) -> List[bytes]:
        return list(self._levels[0])

    @property
    def depth(self) -> int:
        return len(self._levels) - 1

    def path(self, index: int) -> List[bytes]:
        """
        Sibling digests from the leaf at `index` up to the root.

        Raises:
            IndexError: If index is out of range
        """
        if index < 0 or index >= self.leaf_count:
            raise IndexError(f"Invalid leaf index: {index}")

        siblings: List[bytes] = []
        current_index = index
        for level in self._levels[:-1]:
            if current_index % 2 == 0:
                sibling_index = current_index + 1
                if sibling_index >= len(level):
                    sibling_index = current_index  # Duplicate
            else:
                sibling_index = current_index - 1
            siblings.append(level[sibling_index])
            current_index //= 2
        return siblings

    def proof(self, index: int) -> MerkleProof:
        """Inclusion proof for the leaf at `index`."""
        siblings = self.path(index)
        return MerkleProof(
            leaf_hash=self._levels[0][index].hex(),
            leaf_index=index,
            proof_hashes=tuple(s.hex() for s in siblings),
            root_hash=self.root_hex,
            algo_id=self._algorithm.value,
        )


class MerkleTreeBuilder:
    """
    Builds MerkleTree instances from ordered leaf digests.

    Identical leaf order always yields an identical root and identical paths.
    """

    def __init__(self, algorithm: HashAlgorithm = HashAlgorithm.SHA256):
        self._algorithm = algorithm

    @property
    def algorithm(self) -> HashAlgorithm:
        return self._algorithm

    def build(self, leaves: Sequence[bytes]) -> MerkleTree:
        """
        Build the tree bottom-up.

        Raises:
            InvariantViolationError: If there are no leaves or a leaf has the wrong size
        """
        if len(leaves) == 0:
            raise InvariantViolationError("Cannot build tree with no leaves")

        size = self._algorithm.digest_size
        for i, leaf in enumerate(leaves):
            if not isinstance(leaf, (bytes, bytearray)) or len(leaf) != size:
                raise InvariantViolationError(
                    f"Leaf {i} is not a {size}-byte {self._algorithm.value} digest"
                )

        levels: List[List[bytes]] = [[bytes(leaf) for leaf in leaves]]
        while len(levels[-1]) > 1:
            levels.append(_next_level(self._algorithm, levels[-1]))

        return MerkleTree(levels, self._algorithm)


# ===========================================================================
# Verification Functions
# ===========================================================================


def reconstruct_root(
    leaf: bytes,
    index: int,
    path: Sequence[bytes],
    algorithm: HashAlgorithm = HashAlgorithm.SHA256,
) -> bytes:
    """
    Walk a sibling path from a leaf to a candidate root.

    Even index: current node is on the left. Odd index: on the right.
    """
    current = leaf
    current_index = index
    for sibling in path:
        if current_index % 2 == 0:
            current = _hash_pair(algorithm, current, sibling)
        else:
            current = _hash_pair(algorithm, sibling, current)
        current_index //= 2
    return current


def verify_merkle_proof(proof: MerkleProof) -> bool:
    """
    Verify a Merkle inclusion proof.

    Malformed proofs (bad hex, unknown algorithm, an index that cannot
    fit in a tree of this depth) are reported as invalid.
    """
    try:
        algorithm = HashAlgorithm(proof.algo_id)
        if proof.leaf_index < 0 or proof.leaf_index >> len(proof.proof_hashes) != 0:
            return False
        leaf = bytes.fromhex(proof.leaf_hash)
        path = [bytes.fromhex(h) for h in proof.proof_hashes]
        root = reconstruct_root(leaf, proof.leaf_index, path, algorithm)
        return root == bytes.fromhex(proof.root_hash)
    except (ValueError, TypeError):
        return False


def compute_merkle_root(
    leaves: Sequence[bytes],
    algorithm: HashAlgorithm = HashAlgorithm.SHA256,
) -> bytes:
    """
    Compute the Merkle root without keeping the tree.

    Raises:
        InvariantViolationError: If there are no leaves
    """
    if len(leaves) == 0:
        raise InvariantViolationError("Cannot compute root with no leaves")

    current_level = list(leaves)
    while len(current_level) > 1:
        current_level = _next_level(algorithm, current_level)
    return current_level[0]
