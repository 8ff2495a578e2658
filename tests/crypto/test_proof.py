"""Tests for Groth16 proof payloads and public inputs."""

from __future__ import annotations

import pytest

from acp.core.exceptions import ValidationException
from acp.crypto.field import to_bytes32
from acp.crypto.proof import PROOF_SIZE, Circuit, Groth16Proof, PublicInputs

ROOT = b"\x01" * 32
NULL = b"\x02" * 32
ACTION = b"\x03" * 32


def _proof() -> Groth16Proof:
    return Groth16Proof(a=b"\x0a" * 64, b=b"\x0b" * 128, c=b"\x0c" * 64)


class TestGroth16Proof:
    @pytest.mark.parametrize(
        ("a", "b", "c", "segment"),
        [
            (b"\x00" * 63, b"\x00" * 128, b"\x00" * 64, "proof.a"),
            (b"\x00" * 64, b"\x00" * 64, b"\x00" * 64, "proof.b"),
            (b"\x00" * 64, b"\x00" * 128, b"\x00" * 65, "proof.c"),
        ],
    )
    def test_segment_sizes(self, a, b, c, segment):
        with pytest.raises(ValidationException) as exc_info:
            Groth16Proof(a=a, b=b, c=c)
        assert exc_info.value.field == segment

    def test_from_bytes_splits_segments(self):
        proof = _proof()
        raw = proof.to_bytes()
        assert len(raw) == PROOF_SIZE
        assert Groth16Proof.from_bytes(raw) == proof

    def test_from_bytes_wrong_length(self):
        with pytest.raises(ValidationException):
            Groth16Proof.from_bytes(b"\x00" * 255)

    def test_dict_form_is_hex(self):
        proof = _proof()
        data = proof.to_dict()
        assert data["a"] == "0a" * 64
        assert Groth16Proof.from_dict(data) == proof


class TestPublicInputs:
    def test_for_signal(self):
        inputs = PublicInputs.for_signal(ROOT, NULL, 3, 1000, 50)
        assert inputs.circuit == Circuit.SIGNAL
        assert inputs.values == (ROOT, NULL, to_bytes32(3), to_bytes32(1000), to_bytes32(50))

    def test_for_create_action(self):
        inputs = PublicInputs.for_create_action(ROOT, NULL, ACTION, 1000)
        assert inputs.circuit == Circuit.CREATE_ACTION
        assert inputs.values[2] == ACTION

    def test_for_vote(self):
        commitment = b"\x04" * 32
        inputs = PublicInputs.for_vote(ROOT, NULL, commitment, ACTION)
        assert inputs.values == (ROOT, NULL, commitment, ACTION)

    def test_for_vote_bid(self):
        inputs = PublicInputs.for_vote_bid(ROOT, NULL, b"\x04" * 32, b"\x05" * 32, ACTION, 100)
        assert inputs.circuit == Circuit.VOTE_BID
        assert len(inputs.values) == 6
        assert inputs.values[-1] == to_bytes32(100)

    def test_rejects_short_root(self):
        with pytest.raises(ValidationException):
            PublicInputs.for_vote(ROOT[:16], NULL, NULL, ACTION)
