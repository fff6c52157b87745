"""
Commitment signing.

Ed25519 signatures over the canonical commit payload, so a ledger gateway
(or an auditor) can check which custodian key published a root.

- Key IDs are the first 16 hex chars of SHA-256 over the raw public key
- Verification is offline (public keys are pre-loaded)
- Keys are supplied by the operator; issuing and rotating them is
  outside this package
"""

from __future__ import annotations

import base64
import hashlib
from typing import Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from recordanchor.anchor.ledger import CommitRequest


def _key_id(public_key: Ed25519PublicKey) -> str:
    raw = public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return hashlib.sha256(raw).hexdigest()[:16]


class Ed25519AnchorSigner:
    """
    Signs CommitRequest payloads.

    Usage:
        signer = Ed25519AnchorSigner.from_pem_file("/path/to/key.pem")
        signed = signer.sign_request(request)
    """

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self._public_key = private_key.public_key()
        self._key_id = _key_id(self._public_key)

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def public_key_bytes(self) -> bytes:
        return self._public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def sign(self, data: bytes) -> bytes:
        """Sign data using Ed25519. Returns 64-byte signature."""
        return self._private_key.sign(data)

    def sign_request(self, request: CommitRequest) -> CommitRequest:
        """Return a copy of `request` carrying signature and key id."""
        signature = self.sign(request.signing_bytes())
        return CommitRequest(
            root_hash=request.root_hash,
            algo_id=request.algo_id,
            record_count=request.record_count,
            meta_uri=request.meta_uri,
            batch_id=request.batch_id,
            signature=base64.b64encode(signature).decode("ascii"),
            key_id=self._key_id,
        )

    @classmethod
    def generate(cls) -> "Ed25519AnchorSigner":
        """
        Generate a new key pair.

        WARNING: Use only for testing and local development.
        """
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_bytes(cls, key_bytes: bytes) -> "Ed25519AnchorSigner":
        return cls(Ed25519PrivateKey.from_private_bytes(key_bytes))

    @classmethod
    def from_pem_file(cls, path: str, password: Optional[bytes] = None) -> "Ed25519AnchorSigner":
        """Load signer from PEM-encoded private key file."""
        with open(path, "rb") as f:
            private_key = serialization.load_pem_private_key(
                f.read(),
                password=password,
            )
        if not isinstance(private_key, Ed25519PrivateKey):
            raise TypeError(f"Expected Ed25519 private key, got {type(private_key)}")
        return cls(private_key)


class Ed25519AnchorVerifier:
    """Offline verifier for signed CommitRequest payloads."""

    def __init__(self):
        self._public_keys: Dict[str, Ed25519PublicKey] = {}

    def add_public_key(self, public_key_bytes: bytes) -> str:
        """Register a raw 32-byte public key. Returns its key id."""
        public_key = Ed25519PublicKey.from_public_bytes(public_key_bytes)
        key_id = _key_id(public_key)
        self._public_keys[key_id] = public_key
        return key_id

    def add_from_signer(self, signer: Ed25519AnchorSigner) -> str:
        return self.add_public_key(signer.public_key_bytes)

    def verify_request(self, request: CommitRequest) -> bool:
        """
        Check the request signature.

        Returns:
            True if valid, False if unsigned, unknown key or bad signature
        """
        if request.signature is None or request.key_id not in self._public_keys:
            return False
        try:
            signature = base64.b64decode(request.signature, validate=True)
            self._public_keys[request.key_id].verify(signature, request.signing_bytes())
            return True
        except (InvalidSignature, ValueError):
            return False
