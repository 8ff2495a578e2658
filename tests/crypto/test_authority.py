"""Tests for admin authority signing and verification."""

from __future__ import annotations

import pytest

from acp.core.exceptions import (
    ProtocolError,
    RejectReason,
    TransientKind,
    TransientLedgerError,
    ValidationException,
)
from acp.crypto.authority import (
    ADMIN_DOMAIN,
    AdminAuth,
    AdminSigner,
    admin_message,
    canonical_json,
    verify_admin,
)


@pytest.fixture
def authority() -> AdminSigner:
    return AdminSigner.from_seed(b"\x07" * 32)


class TestCanonicalJson:
    def test_sorted_compact_hex(self):
        assert canonical_json({"b": 1, "a": b"\x01\x02"}) == b'{"a":"0102","b":1}'

    def test_rejects_unknown_types(self):
        with pytest.raises(TypeError):
            canonical_json({"x": object()})

    def test_admin_message_layout(self):
        msg = admin_message("pause", 5, {})
        assert msg == ADMIN_DOMAIN + b"pause" + (5).to_bytes(8, "little") + b"{}"


class TestAdminSigner:
    def test_seed_round_trip(self, authority):
        assert authority.seed() == b"\x07" * 32
        assert AdminSigner.from_seed(authority.seed()).public_key == authority.public_key

    def test_sign_carries_nonce(self, authority):
        auth = authority.sign("pause", 3, {})
        assert auth.nonce == 3
        assert len(auth.signature) == 64
        assert AdminAuth.from_dict(auth.to_dict()) == auth


class TestVerifyAdmin:
    def test_valid_signature(self, authority):
        payload = {"amount": 10}
        auth = authority.sign("burn_from_treasury", 2, payload)
        verify_admin(authority.public_key, auth, "burn_from_treasury", 2, payload)

    def test_wrong_key_unauthorized(self, authority):
        intruder = AdminSigner.from_seed(b"\x08" * 32)
        auth = intruder.sign("pause", 1, {})
        with pytest.raises(ProtocolError) as exc_info:
            verify_admin(authority.public_key, auth, "pause", 1, {})
        assert exc_info.value.reason == RejectReason.UNAUTHORIZED

    def test_wrong_key_checked_before_nonce(self, authority):
        intruder = AdminSigner.from_seed(b"\x08" * 32)
        with pytest.raises(ProtocolError):
            verify_admin(authority.public_key, intruder.sign("pause", 0, {}), "pause", 1, {})

    def test_stale_nonce_is_transient(self, authority):
        auth = authority.sign("pause", 1, {})
        with pytest.raises(TransientLedgerError) as exc_info:
            verify_admin(authority.public_key, auth, "pause", 2, {})
        assert exc_info.value.kind == TransientKind.STALE_STATE

    def test_signature_binds_payload(self, authority):
        auth = authority.sign("update_min_signal_collateral", 1, {"amount": 5})
        with pytest.raises(ProtocolError):
            verify_admin(authority.public_key, auth, "update_min_signal_collateral", 1, {"amount": 6})

    def test_signature_binds_op(self, authority):
        auth = authority.sign("pause", 1, {})
        with pytest.raises(ProtocolError):
            verify_admin(authority.public_key, auth, "unpause", 1, {})

    def test_malformed_signature(self, authority):
        auth = AdminAuth(public_key=authority.public_key, nonce=1, signature=b"\x00" * 10)
        with pytest.raises(ValidationException):
            verify_admin(authority.public_key, auth, "pause", 1, {})
