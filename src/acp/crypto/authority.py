"""Ed25519 authority for admin-only registry operations.

The registry stores the authority's raw 32-byte public key. Each admin
operation carries an ``AdminAuth`` whose signature covers::

    ADMIN_DOMAIN || op || admin_nonce (u64 LE) || canonical_json(payload)

The registry's ``admin_nonce`` advances on every accepted admin op, so a
captured signature cannot be replayed.
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from ..core.exceptions import (
    ProtocolError,
    RejectReason,
    TransientKind,
    TransientLedgerError,
    ValidationException,
)
from .field import ensure_bytes32

ADMIN_DOMAIN = b"acp.admin.v1"
SIGNATURE_SIZE = 64


def canonical_json(payload: dict[str, Any]) -> bytes:
    """Deterministic JSON encoding; bytes are hex-encoded."""

    def _default(value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value).hex()
        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")

    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=_default).encode()


def admin_message(op: str, admin_nonce: int, payload: dict[str, Any]) -> bytes:
    return ADMIN_DOMAIN + op.encode() + struct.pack("<Q", admin_nonce) + canonical_json(payload)


def _public_key_bytes(pub: Ed25519PublicKey) -> bytes:
    return pub.public_bytes(Encoding.Raw, PublicFormat.Raw)


@dataclass(frozen=True)
class AdminAuth:
    """Authority public key plus its signature over one admin message."""

    public_key: bytes
    nonce: int
    signature: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "public_key": self.public_key.hex(),
            "nonce": self.nonce,
            "signature": self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AdminAuth:
        return cls(
            public_key=bytes.fromhex(data["public_key"]),
            nonce=int(data["nonce"]),
            signature=bytes.fromhex(data["signature"]),
        )


class AdminSigner:
    """Holds the authority's private key and signs admin operations."""

    def __init__(self, private_key: Ed25519PrivateKey | None = None) -> None:
        self._private_key = private_key or Ed25519PrivateKey.generate()

    @classmethod
    def from_seed(cls, seed: bytes) -> AdminSigner:
        return cls(Ed25519PrivateKey.from_private_bytes(ensure_bytes32(seed, "seed")))

    @property
    def public_key(self) -> bytes:
        return _public_key_bytes(self._private_key.public_key())

    def seed(self) -> bytes:
        return self._private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())

    def sign(self, op: str, admin_nonce: int, payload: dict[str, Any]) -> AdminAuth:
        signature = self._private_key.sign(admin_message(op, admin_nonce, payload))
        return AdminAuth(public_key=self.public_key, nonce=admin_nonce, signature=signature)


def verify_admin(
    authority: bytes,
    auth: AdminAuth,
    op: str,
    admin_nonce: int,
    payload: dict[str, Any],
) -> None:
    """Raise unless ``auth`` is the registry authority signing this exact op.

    Raises:
        ValidationException: If the key or signature is malformed.
        ProtocolError: UNAUTHORIZED on wrong key or bad signature.
        TransientLedgerError: STALE_STATE if the signer saw an older nonce;
            re-reading the registry and signing again can succeed.
    """
    ensure_bytes32(auth.public_key, "public_key")
    if len(auth.signature) != SIGNATURE_SIZE:
        raise ValidationException(
            f"signature must be {SIGNATURE_SIZE} bytes", field="signature", value=len(auth.signature)
        )
    if auth.public_key != authority:
        raise ProtocolError(RejectReason.UNAUTHORIZED, f"{op}: signer is not the registry authority")
    if auth.nonce != admin_nonce:
        raise TransientLedgerError(
            TransientKind.STALE_STATE,
            f"{op}: signed for admin nonce {auth.nonce}, registry is at {admin_nonce}",
        )
    try:
        Ed25519PublicKey.from_public_bytes(auth.public_key).verify(
            auth.signature, admin_message(op, admin_nonce, payload)
        )
    except InvalidSignature:
        raise ProtocolError(RejectReason.UNAUTHORIZED, f"{op}: invalid authority signature")
