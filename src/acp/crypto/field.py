"""Finite-field encoding and the fixed-arity hash used for commitments.

Every commitment and nullifier is an element of the BN254 scalar field,
serialized big-endian into 32 bytes. Integer inputs are reduced modulo
the field order before hashing so that any value the proving circuit
accepts hashes identically here.

The hash itself is pluggable: ``Sha256FieldHasher`` is the default and a
host that needs circuit-native commitments can pass its own
``FieldHasher`` to every function in :mod:`acp.crypto.commitments`.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from typing import Protocol

from ..core.exceptions import ValidationException

# BN254 scalar field order
FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

BYTES32 = 32
MAX_HASH_ARITY = 16
HASH_DOMAIN = b"acp.field-hash.v1"


def reduce(value: int) -> int:
    """Reduce an integer into the field (negative values wrap)."""
    return value % FIELD_MODULUS


def to_bytes32(value: int) -> bytes:
    """Encode a field element as 32 big-endian bytes."""
    return reduce(value).to_bytes(BYTES32, "big")


def from_bytes32(data: bytes) -> int:
    """Decode 32 big-endian bytes into a field element."""
    return reduce(int.from_bytes(ensure_bytes32(data), "big"))


def ensure_bytes32(value: bytes | bytearray, field: str = "value") -> bytes:
    """Reject anything that is not exactly 32 bytes."""
    if not isinstance(value, (bytes, bytearray)):
        raise ValidationException(f"{field} must be bytes", field=field, value=type(value).__name__)
    if len(value) != BYTES32:
        raise ValidationException(
            f"{field} must be exactly {BYTES32} bytes, got {len(value)}",
            field=field,
            value=len(value),
        )
    return bytes(value)


def as_field_element(value: int | bool | bytes | bytearray) -> int:
    """Interpret a hash input as a field element.

    Byte strings are read big-endian; booleans become 0/1.
    """
    if isinstance(value, (bytes, bytearray)):
        return reduce(int.from_bytes(value, "big"))
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return reduce(value)
    raise ValidationException("hash inputs must be integers or bytes", value=type(value).__name__)


class FieldHasher(Protocol):
    """Collision-resistant hash of field elements into one field element."""

    def hash(self, inputs: Sequence[int]) -> int: ...


class Sha256FieldHasher:
    """Domain-separated SHA-256 over 32-byte field words.

    The input count is part of the preimage, so H(a, b) and H(a, b, 0)
    never collide.
    """

    def __init__(self, domain: bytes = HASH_DOMAIN) -> None:
        self.domain = domain

    def hash(self, inputs: Sequence[int]) -> int:
        if not 1 <= len(inputs) <= MAX_HASH_ARITY:
            raise ValidationException(
                f"hash arity must be between 1 and {MAX_HASH_ARITY}",
                field="inputs",
                value=len(inputs),
            )
        h = hashlib.sha256()
        h.update(self.domain)
        h.update(bytes([len(inputs)]))
        for element in inputs:
            h.update(to_bytes32(element))
        return reduce(int.from_bytes(h.digest(), "big"))


DEFAULT_HASHER: FieldHasher = Sha256FieldHasher()


def field_hash(*inputs: int | bool | bytes, hasher: FieldHasher | None = None) -> bytes:
    """Hash inputs into a 32-byte big-endian field element."""
    elements = [as_field_element(v) for v in inputs]
    return to_bytes32((hasher or DEFAULT_HASHER).hash(elements))
