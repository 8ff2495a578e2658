"""Ledger transport boundary.

A transport carries one operation to a ledger and reports the outcome.
It is also where ledger failures are classified: anything that might
succeed on a later attempt surfaces as ``TransientLedgerError``.

``InProcessLedger`` is a single-writer ledger over a ``ProtocolEngine``,
with a manually driven clock. It serves tests, local simulations and
hosts that embed the protocol directly.
"""

from __future__ import annotations

import hashlib
import logging
import struct
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Protocol

from ..core.exceptions import TransientKind, TransientLedgerError, ValidationException
from ..crypto.authority import AdminAuth
from ..crypto.proof import Groth16Proof
from ..protocol.engine import ProtocolEngine, result_to_dict
from ..protocol.models import RegistryConfig
from ..protocol.state import LedgerContext

logger = logging.getLogger(__name__)

# Argument names carrying 32-byte values; hex-encoded on the wire
BYTES_ARGS = frozenset(
    {
        "identity_commitment",
        "new_root",
        "nullifier",
        "commitment",
        "blinding",
        "action_hash",
        "vote_nullifier",
        "vote_commitment",
        "bid_commitment",
        "salt",
        "vote_salt",
        "bid_salt",
        "reputation_agent",
        "identity_link_owner",
    }
)


def _encode_arg(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, (Groth16Proof, AdminAuth, RegistryConfig)):
        return value.to_dict()
    if isinstance(value, IntEnum):
        return int(value)
    if isinstance(value, dict):
        return {k: _encode_arg(v) for k, v in value.items()}
    return value


def _decode_arg(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in BYTES_ARGS:
        return bytes.fromhex(value)
    if name == "proof":
        return Groth16Proof.from_dict(value)
    if name == "auth":
        return AdminAuth.from_dict(value)
    if name == "config":
        return RegistryConfig.from_dict(value)
    return value


@dataclass
class Operation:
    """One state transition request: an engine operation name plus arguments."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {"operation": self.name, "args": {k: _encode_arg(v) for k, v in self.args.items()}}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Operation:
        try:
            name = data["operation"]
            args = data.get("args", {})
        except (KeyError, TypeError, AttributeError):
            raise ValidationException("malformed operation payload")
        try:
            return cls(name=name, args={k: _decode_arg(k, v) for k, v in args.items()})
        except (ValueError, KeyError, TypeError) as e:
            raise ValidationException(f"malformed arguments for {name}: {e}", field="args")


@dataclass
class Receipt:
    """What the ledger reports after applying an operation."""

    operation: str
    slot: int
    signature: str
    result: dict[str, Any] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "slot": self.slot,
            "signature": self.signature,
            "result": self.result,
            "events": self.events,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Receipt:
        return cls(
            operation=data["operation"],
            slot=int(data["slot"]),
            signature=data["signature"],
            result=data.get("result", {}),
            events=data.get("events", []),
        )


class LedgerTransport(Protocol):
    def submit(self, operation: Operation, caller: bytes) -> Receipt: ...

    def get_account(self, address: bytes) -> bytes | None: ...

    def get_slot(self) -> int: ...

    def close(self) -> None: ...


@dataclass
class ManualClock:
    """Ledger clock advanced explicitly; slots and seconds move independently."""

    slot: int = 0
    unix_time: int = 1_700_000_000

    def advance_slots(self, n: int) -> int:
        if n < 0:
            raise ValueError("cannot move the clock backwards")
        self.slot += n
        return self.slot

    def advance_seconds(self, n: int) -> int:
        if n < 0:
            raise ValueError("cannot move the clock backwards")
        self.unix_time += n
        return self.unix_time


class InProcessLedger:
    """Serializes operations against one engine, as a real ledger would."""

    def __init__(self, engine: ProtocolEngine, clock: ManualClock | None = None) -> None:
        self.engine = engine
        self.clock = clock or ManualClock()
        self._lock = threading.Lock()
        self._tx_count = 0
        self._closed = False

    def _signature(self, operation: Operation, caller: bytes) -> str:
        data = b"acp.tx" + struct.pack("<QQ", self._tx_count, self.clock.slot) + caller + operation.name.encode()
        return hashlib.sha256(data).hexdigest()

    def _require_open(self) -> None:
        if self._closed:
            raise TransientLedgerError(TransientKind.CONNECTION, "ledger transport is closed")

    def submit(self, operation: Operation, caller: bytes) -> Receipt:
        self._require_open()
        with self._lock:
            ctx = LedgerContext(slot=self.clock.slot, unix_time=self.clock.unix_time, caller=caller)
            result = self.engine.apply(operation.name, operation.args, ctx)
            self._tx_count += 1
            receipt = Receipt(
                operation=operation.name,
                slot=ctx.slot,
                signature=self._signature(operation, caller),
                result=result_to_dict(result),
                events=self.engine.events,
            )
        logger.debug(f"Applied {operation.name} at slot {receipt.slot} ({receipt.signature[:16]})")
        return receipt

    def get_account(self, address: bytes) -> bytes | None:
        self._require_open()
        return self.engine.store.get_raw(address)

    def get_slot(self) -> int:
        return self.clock.slot

    def airdrop(self, owner: bytes, amount: int) -> int:
        """Fund an owner's token account; returns the new balance."""
        self._require_open()
        with self._lock:
            return self.engine.mint(owner, amount)

    def close(self) -> None:
        self._closed = True
