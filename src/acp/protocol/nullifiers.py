"""Nullifier ledger: the shared replay guard.

Two kinds of scope:

- Epoch-scoped (signals, proposals): one record per nullifier holding
  the epoch it was last used in. Reuse in the same epoch is rejected; a
  later epoch overwrites the record.
- Action-scoped (votes, vote+bids): one record per (action, nullifier),
  never reusable.

Checks and writes happen in the same atomic operation as the record they
guard, so a replayed submission fails here instead of double-applying.
"""

from __future__ import annotations

import logging

from ..core.exceptions import ProtocolError, RejectReason, ValidationException
from ..crypto.field import ensure_bytes32
from .models import NullifierRecord, NullifierScope
from .state import ProtocolEnv

logger = logging.getLogger(__name__)

EPOCH_SCOPES = frozenset({NullifierScope.SIGNAL, NullifierScope.PROPOSE})
ACTION_SCOPES = frozenset({NullifierScope.VOTE, NullifierScope.VOTE_BID})


class NullifierLedger:
    def __init__(self, env: ProtocolEnv) -> None:
        self.env = env

    def _address(self, scope: NullifierScope, nullifier: bytes, action: bytes | None) -> bytes:
        book = self.env.addresses
        if scope in EPOCH_SCOPES:
            return book.nullifier(scope, nullifier)
        if action is None:
            raise ValidationException(f"{scope.name} nullifiers are action-scoped", field="action")
        if scope == NullifierScope.VOTE:
            return book.vote_nullifier(action, nullifier)
        return book.vote_bid_nullifier(action, nullifier)

    def is_used(
        self,
        scope: NullifierScope,
        nullifier: bytes,
        epoch: int,
        action: bytes | None = None,
    ) -> bool:
        record = self.env.load(self._address(scope, ensure_bytes32(nullifier, "nullifier"), action), NullifierRecord)
        if record is None:
            return False
        if scope in EPOCH_SCOPES:
            return record.epoch == epoch
        return True

    def consume(
        self,
        scope: NullifierScope,
        nullifier: bytes,
        epoch: int,
        action: bytes | None = None,
    ) -> NullifierRecord:
        """Mark a nullifier used, or raise NULLIFIER_USED."""
        nullifier = ensure_bytes32(nullifier, "nullifier")
        if self.is_used(scope, nullifier, epoch, action):
            logger.warning(f"Rejected reused {scope.name.lower()} nullifier {nullifier.hex()[:16]} in epoch {epoch}")
            raise ProtocolError(
                RejectReason.NULLIFIER_USED,
                f"{scope.name.lower()} nullifier already used",
                nullifier=nullifier.hex(),
                epoch=epoch,
            )
        record = NullifierRecord(
            nullifier=nullifier,
            epoch=epoch,
            scope=scope,
            action=action if action is not None else bytes(32),
        )
        self.env.save(self._address(scope, nullifier, action), record)
        return record
