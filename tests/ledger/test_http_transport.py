"""Tests for the HTTP ledger transport, using httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest
from conftest import ALICE

from acp.core.exceptions import (
    CommitmentMismatchError,
    NotFoundError,
    ProtocolError,
    RejectReason,
    TransientKind,
    TransientLedgerError,
    ValidationException,
)
from acp.ledger.http import HttpLedgerTransport, error_from_body
from acp.ledger.transport import Operation
from acp.protocol.models import SlashReason

BASE_URL = "http://ledger.test"


def make_transport(handler) -> HttpLedgerTransport:
    return HttpLedgerTransport(BASE_URL, timeout=1.0, transport=httpx.MockTransport(handler))


def receipt_body(**overrides):
    body = {"operation": "pause", "slot": 12, "signature": "ab" * 32, "result": {}, "events": []}
    body.update(overrides)
    return body


class TestSubmit:
    def test_posts_operation(self, clean_env):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=receipt_body(operation="execute_swarm_action"))

        transport = make_transport(handler)
        receipt = transport.submit(Operation("execute_swarm_action", {"action_hash": b"\x01" * 32}), ALICE)

        assert seen["method"] == "POST"
        assert seen["path"] == "/v1/operations"
        assert seen["body"]["caller"] == ALICE.hex()
        assert seen["body"]["args"]["action_hash"] == "01" * 32
        assert receipt.slot == 12

    def test_protocol_rejection_rebuilt(self, clean_env):
        body = {
            "error": {
                "category": "protocol_state",
                "message": "voting closed",
                "details": {"reason": "voting_closed"},
            }
        }
        transport = make_transport(lambda request: httpx.Response(409, json=body))
        with pytest.raises(ProtocolError) as exc_info:
            transport.submit(Operation("vote_swarm_action"), ALICE)
        assert exc_info.value.reason == RejectReason.VOTING_CLOSED

    def test_stale_state_rebuilt(self, clean_env):
        body = {"error": {"category": "transient", "message": "nonce moved", "details": {"kind": "stale_state"}}}
        transport = make_transport(lambda request: httpx.Response(409, json=body))
        with pytest.raises(TransientLedgerError) as exc_info:
            transport.submit(Operation("pause"), ALICE)
        assert exc_info.value.kind == TransientKind.STALE_STATE


class TestStatusClassification:
    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (429, TransientKind.RATE_LIMITED),
            (502, TransientKind.CONGESTION),
            (503, TransientKind.CONGESTION),
            (504, TransientKind.CONGESTION),
            (500, TransientKind.CONGESTION),
        ],
    )
    def test_transient_statuses(self, clean_env, status, kind):
        transport = make_transport(lambda request: httpx.Response(status, text=""))
        with pytest.raises(TransientLedgerError) as exc_info:
            transport.get_slot()
        assert exc_info.value.kind == kind

    def test_validation_error(self, clean_env):
        body = {"error": {"category": "validation", "message": "bad salt", "details": {"field": "salt"}}}
        transport = make_transport(lambda request: httpx.Response(400, json=body))
        with pytest.raises(ValidationException) as exc_info:
            transport.get_slot()
        assert exc_info.value.field == "salt"

    def test_timeout(self, clean_env):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientLedgerError) as exc_info:
            make_transport(handler).get_slot()
        assert exc_info.value.kind == TransientKind.TIMEOUT

    @pytest.mark.parametrize(
        "error_type",
        [httpx.ConnectError, httpx.ReadError, httpx.WriteError, httpx.CloseError, httpx.RemoteProtocolError],
    )
    def test_network_failures(self, clean_env, error_type):
        def handler(request):
            raise error_type("broken", request=request)

        with pytest.raises(TransientLedgerError) as exc_info:
            make_transport(handler).get_slot()
        assert exc_info.value.kind == TransientKind.CONNECTION


class TestReads:
    def test_get_account(self, clean_env):
        def handler(request):
            assert request.url.path == f"/v1/accounts/{'0a' * 32}"
            return httpx.Response(200, json={"address": "0a" * 32, "data": "beef"})

        assert make_transport(handler).get_account(b"\x0a" * 32) == b"\xbe\xef"

    def test_missing_account(self, clean_env):
        transport = make_transport(lambda request: httpx.Response(404))
        assert transport.get_account(b"\x0a" * 32) is None

    def test_get_slot(self, clean_env):
        transport = make_transport(lambda request: httpx.Response(200, json={"slot": 99}))
        assert transport.get_slot() == 99

    def test_base_url_from_config(self, clean_env, monkeypatch):
        monkeypatch.setenv("ACP_LEDGER_URL", "http://node.test:1234/")
        transport = HttpLedgerTransport()
        assert transport.base_url == "http://node.test:1234"
        transport.close()


class TestErrorFromBody:
    def test_missing_body(self):
        assert isinstance(error_from_body(400, {}), ValidationException)

    def test_unknown_reason(self):
        body = {"error": {"category": "protocol_state", "message": "?", "details": {"reason": "nope"}}}
        assert isinstance(error_from_body(409, body), ValidationException)

    def test_unknown_transient_kind_defaults_to_congestion(self):
        body = {"error": {"category": "transient", "message": "?", "details": {}}}
        assert error_from_body(503, body).kind == TransientKind.CONGESTION

    def test_commitment_mismatch_keeps_slash_evidence(self):
        reported = CommitmentMismatchError(
            RejectReason.VOTE_COMMITMENT_MISMATCH,
            SlashReason.VOTE_COMMITMENT_MISMATCH,
            action_hash="aa" * 32,
            vote_nullifier="bb" * 32,
        )
        error = error_from_body(409, {"error": reported.to_dict()})

        assert isinstance(error, CommitmentMismatchError)
        assert error.reason == RejectReason.VOTE_COMMITMENT_MISMATCH
        assert error.slash_reason == SlashReason.VOTE_COMMITMENT_MISMATCH
        assert error.evidence() == reported.evidence()

    def test_signal_mismatch_without_slash_category(self):
        body = {
            "error": {
                "category": "protocol_state",
                "message": "signal commitment mismatch",
                "details": {"reason": "signal_commitment_mismatch", "commitment": "cc" * 32},
            }
        }
        error = error_from_body(409, body)
        assert isinstance(error, CommitmentMismatchError)
        assert error.slash_reason == SlashReason.SIGNAL_COMMITMENT_MISMATCH
        assert error.evidence()["commitment"] == "cc" * 32

    def test_not_found_rebuilt(self):
        error = error_from_body(404, {"error": NotFoundError("SwarmAction", "abcd").to_dict()})
        assert isinstance(error, NotFoundError)
        assert error.resource_type == "SwarmAction"
        assert error.resource_id == "abcd"

    def test_mismatch_over_the_wire(self, clean_env):
        reported = CommitmentMismatchError(RejectReason.BID_COMMITMENT_MISMATCH, SlashReason.VOTE_COMMITMENT_MISMATCH)
        transport = make_transport(lambda request: httpx.Response(409, json={"error": reported.to_dict()}))
        with pytest.raises(CommitmentMismatchError) as exc_info:
            transport.submit(Operation("reveal_vote_bid"), ALICE)
        assert exc_info.value.slash_reason == SlashReason.VOTE_COMMITMENT_MISMATCH
