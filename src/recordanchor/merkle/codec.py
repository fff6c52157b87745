"""
Record Hash Codec

Turns one record into its fixed-length leaf digest.

Key properties:
- Canonical serialization (sorted keys at every level, compact separators)
- The record's identity field is part of the hashed content
- Hash function selected by a tagged algorithm identifier (algo_id)
- Malformed input raises; it never hashes to a degenerate value
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any, Mapping

from recordanchor.protocol.errors import RecordEncodingError, UnsupportedAlgorithmError
from recordanchor.utils.json import canonical_json


# ===========================================================================
# Hash Algorithm
# ===========================================================================


class HashAlgorithm(str, Enum):
    """
    Hash function used for leaves and internal nodes.

    The value is the algo_id committed to the ledger with every root.
    Rotating algorithms means adding a member here.
    """
    SHA256 = "sha256"

    @property
    def digest_size(self) -> int:
        return _CONSTRUCTORS[self]().digest_size

    def digest(self, data: bytes) -> bytes:
        hasher = _CONSTRUCTORS[self]()
        hasher.update(data)
        return hasher.digest()

    @classmethod
    def from_id(cls, algo_id: str) -> "HashAlgorithm":
        try:
            return cls((algo_id or "").lower())
        except ValueError:
            raise UnsupportedAlgorithmError(algo_id) from None


_CONSTRUCTORS = {
    HashAlgorithm.SHA256: hashlib.sha256,
}


# ===========================================================================
# Canonical Serialization
# ===========================================================================


def canonical_bytes(record: Mapping[str, Any]) -> bytes:
    """
    Canonical byte form of a record.

    Field order is fixed by key sorting, never by insertion order.
    """
    try:
        return canonical_json(dict(record)).encode("utf-8")
    except (TypeError, ValueError) as ex:
        raise RecordEncodingError(f"Record is not canonically serializable: {ex}") from ex


# ===========================================================================
# Hash Codec
# ===========================================================================


class HashCodec:
    """
    Computes leaf digests for records.

    Usage:
        codec = HashCodec()
        leaf = codec.digest({"id": "p-1", "name": "Ada"})
    """

    def __init__(
        self,
        algorithm: HashAlgorithm = HashAlgorithm.SHA256,
        *,
        identity_field: str = "id",
    ) -> None:
        self._algorithm = algorithm
        self._identity_field = identity_field

    @property
    def algorithm(self) -> HashAlgorithm:
        return self._algorithm

    @property
    def algo_id(self) -> str:
        return self._algorithm.value

    @property
    def identity_field(self) -> str:
        return self._identity_field

    def identity_of(self, record: Mapping[str, Any]) -> str:
        """
        Return the record's identity.

        Raises:
            RecordEncodingError: If the identity field is missing or empty
        """
        if not isinstance(record, Mapping):
            raise RecordEncodingError(
                f"Record must be a mapping, got {type(record).__name__}"
            )
        identity = record.get(self._identity_field)
        if not isinstance(identity, str) or not identity.strip():
            raise RecordEncodingError(
                f"Record is missing required identity field '{self._identity_field}'"
            )
        return identity

    def digest(self, record: Mapping[str, Any]) -> bytes:
        """
        Compute the leaf digest of a record.

        Raises:
            RecordEncodingError: If the record has no identity or cannot be serialized
        """
        self.identity_of(record)
        return self._algorithm.digest(canonical_bytes(record))

    def digest_hex(self, record: Mapping[str, Any]) -> str:
        return self.digest(record).hex()
