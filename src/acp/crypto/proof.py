"""Opaque Groth16 proof payloads and the verifier capability.

The protocol never inspects a proof. It checks the three segments have
the sizes the verifier expects, assembles the public inputs for the
circuit in question, and asks an injected ``ProofVerifier`` for a yes/no.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from ..core.exceptions import ValidationException
from .field import ensure_bytes32, to_bytes32

PROOF_A_SIZE = 64
PROOF_B_SIZE = 128
PROOF_C_SIZE = 64
PROOF_SIZE = PROOF_A_SIZE + PROOF_B_SIZE + PROOF_C_SIZE


class Circuit(StrEnum):
    """Circuits whose proofs the protocol accepts."""

    SIGNAL = "private_signal"
    CREATE_ACTION = "agent_identity"
    VOTE = "swarm_vote"
    VOTE_BID = "swarm_vote_bid"


@dataclass(frozen=True)
class Groth16Proof:
    """A proof as three opaque curve-point encodings."""

    a: bytes
    b: bytes
    c: bytes

    def __post_init__(self) -> None:
        for name, segment, size in (
            ("a", self.a, PROOF_A_SIZE),
            ("b", self.b, PROOF_B_SIZE),
            ("c", self.c, PROOF_C_SIZE),
        ):
            if not isinstance(segment, (bytes, bytearray)) or len(segment) != size:
                got = len(segment) if isinstance(segment, (bytes, bytearray)) else type(segment).__name__
                raise ValidationException(
                    f"proof segment {name} must be {size} bytes, got {got}",
                    field=f"proof.{name}",
                    value=got,
                )

    def to_bytes(self) -> bytes:
        return bytes(self.a) + bytes(self.b) + bytes(self.c)

    @classmethod
    def from_bytes(cls, data: bytes) -> Groth16Proof:
        if len(data) != PROOF_SIZE:
            raise ValidationException(
                f"proof must be {PROOF_SIZE} bytes, got {len(data)}", field="proof", value=len(data)
            )
        return cls(
            a=data[:PROOF_A_SIZE],
            b=data[PROOF_A_SIZE : PROOF_A_SIZE + PROOF_B_SIZE],
            c=data[PROOF_A_SIZE + PROOF_B_SIZE :],
        )

    def to_dict(self) -> dict[str, str]:
        return {"a": self.a.hex(), "b": self.b.hex(), "c": self.c.hex()}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> Groth16Proof:
        return cls(a=bytes.fromhex(data["a"]), b=bytes.fromhex(data["b"]), c=bytes.fromhex(data["c"]))


@dataclass(frozen=True)
class PublicInputs:
    """Ordered public inputs of one circuit, each a 32-byte field word."""

    circuit: Circuit
    values: tuple[bytes, ...]

    @classmethod
    def for_signal(
        cls,
        agents_root: bytes,
        nullifier: bytes,
        epoch: int,
        min_stake: int,
        min_signal_collateral: int,
    ) -> PublicInputs:
        return cls(
            Circuit.SIGNAL,
            (
                ensure_bytes32(agents_root, "agents_root"),
                ensure_bytes32(nullifier, "nullifier"),
                to_bytes32(epoch),
                to_bytes32(min_stake),
                to_bytes32(min_signal_collateral),
            ),
        )

    @classmethod
    def for_create_action(
        cls,
        agents_root: bytes,
        nullifier: bytes,
        action_hash: bytes,
        min_stake: int,
    ) -> PublicInputs:
        return cls(
            Circuit.CREATE_ACTION,
            (
                ensure_bytes32(agents_root, "agents_root"),
                ensure_bytes32(nullifier, "nullifier"),
                ensure_bytes32(action_hash, "action_hash"),
                to_bytes32(min_stake),
            ),
        )

    @classmethod
    def for_vote(
        cls,
        agents_root: bytes,
        vote_nullifier: bytes,
        vote_commitment: bytes,
        action_hash: bytes,
    ) -> PublicInputs:
        return cls(
            Circuit.VOTE,
            (
                ensure_bytes32(agents_root, "agents_root"),
                ensure_bytes32(vote_nullifier, "vote_nullifier"),
                ensure_bytes32(vote_commitment, "vote_commitment"),
                ensure_bytes32(action_hash, "action_hash"),
            ),
        )

    @classmethod
    def for_vote_bid(
        cls,
        agents_root: bytes,
        vote_nullifier: bytes,
        vote_commitment: bytes,
        bid_commitment: bytes,
        action_hash: bytes,
        min_bid: int,
    ) -> PublicInputs:
        return cls(
            Circuit.VOTE_BID,
            (
                ensure_bytes32(agents_root, "agents_root"),
                ensure_bytes32(vote_nullifier, "vote_nullifier"),
                ensure_bytes32(vote_commitment, "vote_commitment"),
                ensure_bytes32(bid_commitment, "bid_commitment"),
                ensure_bytes32(action_hash, "action_hash"),
                to_bytes32(min_bid),
            ),
        )


class ProofVerifier(Protocol):
    """External verifier collaborator."""

    def verify(self, proof: Groth16Proof, public_inputs: PublicInputs) -> bool: ...
