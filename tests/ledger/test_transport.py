"""Tests for operation payloads and the in-process ledger."""

from __future__ import annotations

import pytest
from conftest import ALICE, DEFAULT_CONFIG, TOKEN, VALID_PROOF, make_identity

from acp.core.exceptions import ProtocolError, TransientKind, TransientLedgerError, ValidationException
from acp.ledger.transport import ManualClock, Operation, Receipt
from acp.protocol.models import SlashReason


class TestOperationPayload:
    def test_bytes_and_objects_encoded(self, signer):
        auth = signer.sign("initialize", 0, DEFAULT_CONFIG.to_dict())
        op = Operation(
            "create_swarm_action",
            {"nullifier": b"\x01" * 32, "threshold": 60, "proof": VALID_PROOF, "auth": auth},
        )
        payload = op.to_payload()
        assert payload["operation"] == "create_swarm_action"
        assert payload["args"]["nullifier"] == "01" * 32
        assert payload["args"]["proof"]["a"] == "01" * 64
        assert payload["args"]["auth"]["nonce"] == 0

    def test_payload_round_trip(self, signer):
        op = Operation(
            "slash",
            {
                "identity_commitment": b"\x02" * 32,
                "amount": 5,
                "reason": SlashReason.ADMIN_REPORTED_ABUSE,
                "auth": signer.sign("slash", 1, {}),
                "evidence": None,
            },
        )
        decoded = Operation.from_payload(op.to_payload())
        assert decoded.args["identity_commitment"] == b"\x02" * 32
        assert decoded.args["reason"] == 3
        assert decoded.args["auth"] == op.args["auth"]
        assert decoded.args["evidence"] is None

    def test_config_decoded(self):
        decoded = Operation.from_payload(Operation("initialize", {"config": DEFAULT_CONFIG}).to_payload())
        assert decoded.args["config"] == DEFAULT_CONFIG

    @pytest.mark.parametrize(
        "payload",
        [{}, {"operation": "x", "args": {"salt": "zz"}}, {"operation": "x", "args": {"proof": {"a": "00"}}}],
    )
    def test_malformed(self, payload):
        with pytest.raises(ValidationException):
            Operation.from_payload(payload)

    def test_receipt_dict(self):
        receipt = Receipt("pause", 10, "ab" * 32, {"paused": True}, [{"event": "x"}])
        assert Receipt.from_dict(receipt.to_dict()) == receipt


class TestManualClock:
    def test_advance(self):
        clock = ManualClock(slot=5, unix_time=100)
        assert clock.advance_slots(3) == 8
        assert clock.advance_seconds(10) == 110

    def test_no_going_back(self):
        with pytest.raises(ValueError):
            ManualClock().advance_slots(-1)


class TestInProcessLedger:
    def test_submit_returns_receipt(self, ledger, initialized, clock):
        identity = make_identity(2)
        receipt = ledger.submit(
            Operation("register_agent", {"identity_commitment": identity.commitment, "stake": 1_000 * TOKEN}),
            ALICE,
        )
        assert receipt.operation == "register_agent"
        assert receipt.slot == clock.slot
        assert len(receipt.signature) == 64
        assert receipt.result["stake"] == 1_000 * TOKEN
        assert receipt.events[0]["event"] == "agent_registered"

    def test_signatures_unique_per_tx(self, ledger, initialized):
        first = ledger.submit(Operation("init_aggregator", {"epoch": 0}), ALICE)
        second = ledger.submit(Operation("init_aggregator", {"epoch": 1}), ALICE)
        assert first.signature != second.signature

    def test_airdrop(self, ledger):
        assert ledger.airdrop(ALICE, 10) == 10
        assert ledger.airdrop(ALICE, 5) == 15

    def test_protocol_errors_propagate(self, ledger, initialized):
        with pytest.raises(ProtocolError):
            ledger.submit(Operation("execute_swarm_action", {"action_hash": b"\x01" * 32}), ALICE)

    def test_get_account_and_slot(self, ledger, initialized, clock):
        assert ledger.get_account(initialized.addresses.registry()) is not None
        assert ledger.get_account(b"\x00" * 32) is None
        clock.advance_slots(7)
        assert ledger.get_slot() == 1_007

    def test_closed_ledger_is_transient(self, ledger):
        ledger.close()
        with pytest.raises(TransientLedgerError) as exc_info:
            ledger.get_account(b"\x00" * 32)
        assert exc_info.value.kind == TransientKind.CONNECTION
