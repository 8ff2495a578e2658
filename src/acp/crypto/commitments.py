# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Commit-reveal primitives for identities, signals, votes and sealed bids.

Two-phase protocol:

1. Commit: the agent publishes H(private fields..., blinding)
2. Reveal: the agent publishes the fields and blinding; the protocol
   recomputes the hash and compares it byte-for-byte

Nullifiers are derived client-side from the agent's secret identity and
round-specific data. The protocol only ever sees the resulting 32 bytes.
"""

from __future__ import annotations

import hmac
import secrets

from ..core.exceptions import ValidationException
from .field import FIELD_MODULUS, FieldHasher, ensure_bytes32, field_hash, to_bytes32

VOTE_YES = 1
VOTE_NO = 0


def generate_salt() -> bytes:
    """Fresh random blinding factor, already a valid field element."""
    return to_bytes32(secrets.randbelow(FIELD_MODULUS))


def commit(*fields: int | bytes, blinding: bytes, hasher: FieldHasher | None = None) -> bytes:
    """Generic commitment H(fields..., blinding)."""
    return field_hash(*fields, ensure_bytes32(blinding, "blinding"), hasher=hasher)


def commitments_equal(expected: bytes, actual: bytes) -> bool:
    """Byte-for-byte comparison in constant time."""
    return hmac.compare_digest(bytes(expected), bytes(actual))


def identity_commitment(
    owner_secret: bytes,
    agent_id: bytes,
    registration_secret: bytes,
    hasher: FieldHasher | None = None,
) -> bytes:
    """H(owner_secret, agent_id, registration_secret): the agent's public identity."""
    return field_hash(
        ensure_bytes32(owner_secret, "owner_secret"),
        ensure_bytes32(agent_id, "agent_id"),
        ensure_bytes32(registration_secret, "registration_secret"),
        hasher=hasher,
    )


def epoch_nullifier(
    owner_secret: bytes,
    agent_id: bytes,
    registration_secret: bytes,
    epoch: int,
    hasher: FieldHasher | None = None,
) -> bytes:
    """Nullifier for one action per identity per epoch (signals, proposals)."""
    if epoch < 0:
        raise ValidationException("epoch must be non-negative", field="epoch", value=epoch)
    return field_hash(
        ensure_bytes32(owner_secret, "owner_secret"),
        ensure_bytes32(agent_id, "agent_id"),
        ensure_bytes32(registration_secret, "registration_secret"),
        epoch,
        hasher=hasher,
    )


def vote_nullifier(
    owner_secret: bytes,
    agent_id: bytes,
    registration_secret: bytes,
    action_hash: bytes,
    hasher: FieldHasher | None = None,
) -> bytes:
    """Nullifier for one vote per identity per swarm action."""
    return field_hash(
        ensure_bytes32(owner_secret, "owner_secret"),
        ensure_bytes32(agent_id, "agent_id"),
        ensure_bytes32(registration_secret, "registration_secret"),
        ensure_bytes32(action_hash, "action_hash"),
        hasher=hasher,
    )


def vote_commitment(
    vote: bool,
    salt: bytes,
    action_hash: bytes,
    hasher: FieldHasher | None = None,
) -> bytes:
    """H(vote_bit, salt, action_hash); binding the action stops cross-action replay."""
    return field_hash(
        VOTE_YES if vote else VOTE_NO,
        ensure_bytes32(salt, "salt"),
        ensure_bytes32(action_hash, "action_hash"),
        hasher=hasher,
    )


def bid_commitment(
    bid_amount: int,
    salt: bytes,
    action_hash: bytes,
    hasher: FieldHasher | None = None,
) -> bytes:
    """H(bid_amount, salt, action_hash)."""
    if bid_amount < 0:
        raise ValidationException("bid_amount must be non-negative", field="bid_amount", value=bid_amount)
    return field_hash(
        bid_amount,
        ensure_bytes32(salt, "salt"),
        ensure_bytes32(action_hash, "action_hash"),
        hasher=hasher,
    )


def signal_commitment(
    signal_type: int,
    direction: int,
    confidence: int,
    magnitude: int,
    stake_amount: int,
    blinding: bytes,
    nullifier: bytes,
    hasher: FieldHasher | None = None,
) -> bytes:
    """H(type, direction, confidence, magnitude, stake, blinding, nullifier)."""
    return field_hash(
        int(signal_type),
        int(direction),
        confidence,
        magnitude,
        stake_amount,
        ensure_bytes32(blinding, "blinding"),
        ensure_bytes32(nullifier, "nullifier"),
        hasher=hasher,
    )


ACTION_DATA_PREFIX = 31


def action_hash(action_type: int, data: bytes, hasher: FieldHasher | None = None) -> bytes:
    """H(action_type, H(data[:31])): the id a swarm action is proposed under.

    Only the first 31 bytes of ``data`` are bound, so the prefix always
    fits in one field element.
    """
    if action_type < 0:
        raise ValidationException("action_type must be non-negative", field="action_type", value=action_type)
    if not isinstance(data, (bytes, bytearray)):
        raise ValidationException("action data must be bytes", field="data", value=type(data).__name__)
    data_hash = field_hash(int.from_bytes(data[:ACTION_DATA_PREFIX], "big"), hasher=hasher)
    return field_hash(action_type, data_hash, hasher=hasher)
