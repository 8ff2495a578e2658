"""Deterministic account addresses.

An address is ``sha256(program_id || 0x00 || tag || keys...)``. Callers
reproduce the derivation to locate any account without an index.
Integer keys (epochs) are encoded as u64 little-endian.
"""

from __future__ import annotations

import hashlib
import struct

from ..core.exceptions import ValidationException
from ..crypto.field import ensure_bytes32
from .models import NullifierScope

TAG_REGISTRY = b"registry"
TAG_AGENT = b"agent"
TAG_STAKE_VAULT = b"stake_vault"
TAG_SIGNAL = b"signal"
TAG_NULLIFIER = b"nullifier"
TAG_SWARM_ACTION = b"swarm_action"
TAG_VOTE = b"vote"
TAG_VOTE_RECORD = b"vote_record"
TAG_SWARM_ACTION_BID = b"swarm_action_bid"
TAG_VOTE_BID = b"vote_bid"
TAG_VOTE_BID_RECORD = b"vote_bid_record"
TAG_AGGREGATOR = b"aggregator"
TAG_WITHDRAWAL = b"withdrawal"
TAG_IDENTITY_LINK = b"identity_link"
TAG_COLLATERAL_VAULT = b"collateral_vault"
TAG_COLLATERAL_WITHDRAWAL = b"collateral_withdrawal"
TAG_TREASURY = b"treasury"
TAG_TOKEN = b"token"

# Epoch-scoped nullifiers keep one record per (scope, nullifier)
_EPOCH_SCOPE_TAGS = {
    NullifierScope.SIGNAL: b"signal",
    NullifierScope.PROPOSE: b"propose",
}


def derive_address(program_id: str, tag: bytes, *keys: bytes | int) -> bytes:
    h = hashlib.sha256()
    h.update(program_id.encode())
    h.update(b"\x00")
    h.update(tag)
    for key in keys:
        if isinstance(key, int):
            h.update(struct.pack("<Q", key))
        else:
            h.update(key)
    return h.digest()


class AddressBook:
    """Address derivation bound to one program id.

    Example:
        book = AddressBook("acp-program-v1")
        action = book.swarm_action(action_hash)
        record = book.vote_record(action, vote_nullifier)
    """

    def __init__(self, program_id: str) -> None:
        self.program_id = program_id

    def _derive(self, tag: bytes, *keys: bytes | int) -> bytes:
        return derive_address(self.program_id, tag, *keys)

    def registry(self) -> bytes:
        return self._derive(TAG_REGISTRY)

    def stake_vault(self) -> bytes:
        return self._derive(TAG_STAKE_VAULT, self.registry())

    def treasury(self) -> bytes:
        return self._derive(TAG_TREASURY, self.registry())

    def agent(self, identity_commitment: bytes) -> bytes:
        return self._derive(TAG_AGENT, ensure_bytes32(identity_commitment, "identity_commitment"))

    def signal(self, commitment: bytes) -> bytes:
        return self._derive(TAG_SIGNAL, ensure_bytes32(commitment, "commitment"))

    def nullifier(self, scope: NullifierScope, nullifier: bytes) -> bytes:
        """Epoch-scoped nullifier (SIGNAL or PROPOSE)."""
        if scope not in _EPOCH_SCOPE_TAGS:
            raise ValidationException(f"scope {scope} is not epoch-scoped", field="scope", value=scope)
        return self._derive(TAG_NULLIFIER, _EPOCH_SCOPE_TAGS[scope], ensure_bytes32(nullifier, "nullifier"))

    def swarm_action(self, action_hash: bytes) -> bytes:
        return self._derive(TAG_SWARM_ACTION, ensure_bytes32(action_hash, "action_hash"))

    def vote_nullifier(self, swarm_action: bytes, nullifier: bytes) -> bytes:
        return self._derive(TAG_VOTE, swarm_action, ensure_bytes32(nullifier, "vote_nullifier"))

    def vote_record(self, swarm_action: bytes, vote_nullifier: bytes) -> bytes:
        return self._derive(TAG_VOTE_RECORD, swarm_action, ensure_bytes32(vote_nullifier, "vote_nullifier"))

    def swarm_action_bid(self, action_hash: bytes) -> bytes:
        return self._derive(TAG_SWARM_ACTION_BID, self.registry(), ensure_bytes32(action_hash, "action_hash"))

    def vote_bid_nullifier(self, swarm_action_bid: bytes, nullifier: bytes) -> bytes:
        return self._derive(TAG_VOTE_BID, swarm_action_bid, ensure_bytes32(nullifier, "vote_nullifier"))

    def vote_bid_record(self, swarm_action_bid: bytes, vote_nullifier: bytes) -> bytes:
        return self._derive(
            TAG_VOTE_BID_RECORD, swarm_action_bid, ensure_bytes32(vote_nullifier, "vote_nullifier")
        )

    def aggregator(self, epoch: int) -> bytes:
        return self._derive(TAG_AGGREGATOR, self.registry(), epoch)

    def withdrawal(self, agent: bytes) -> bytes:
        return self._derive(TAG_WITHDRAWAL, agent)

    def identity_link(self, owner: bytes) -> bytes:
        return self._derive(TAG_IDENTITY_LINK, ensure_bytes32(owner, "owner"))

    def collateral_vault(self, agent: bytes) -> bytes:
        return self._derive(TAG_COLLATERAL_VAULT, agent)

    def collateral_withdrawal(self, agent: bytes) -> bytes:
        return self._derive(TAG_COLLATERAL_WITHDRAWAL, agent)

    def token_account(self, owner: bytes) -> bytes:
        return self._derive(TAG_TOKEN, ensure_bytes32(owner, "owner"))

    def by_name(self, kind: str, *keys: bytes | int) -> bytes:
        """Resolve an address from a kind name, as used by the CLI."""
        method = getattr(self, kind.replace("-", "_"), None)
        if method is None or kind.startswith("_") or kind in ("by_name", "program_id"):
            raise ValidationException(f"unknown account kind: {kind}", field="kind", value=kind)
        return method(*keys)
