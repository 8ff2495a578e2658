# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""HTTP transport for a remote ledger node.

Endpoints (JSON):

    POST /v1/operations        {"operation", "args", "caller"} -> receipt
    GET  /v1/accounts/{hex}    {"address", "data"} or 404
    GET  /v1/slot              {"slot"}

Failures are classified here, once, from status codes and the structured
error body ``{"error": {"category", "message", "details"}}``. Message
text is never inspected.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..core.config import get_config
from ..core.exceptions import (
    ACPException,
    CommitmentMismatchError,
    ErrorCategory,
    NotFoundError,
    ProtocolError,
    RejectReason,
    TransientKind,
    TransientLedgerError,
    ValidationException,
)
from ..crypto.field import ensure_bytes32
from ..protocol.models import SlashReason
from .transport import Operation, Receipt

logger = logging.getLogger(__name__)

TRANSIENT_STATUS = {
    429: TransientKind.RATE_LIMITED,
    502: TransientKind.CONGESTION,
    503: TransientKind.CONGESTION,
    504: TransientKind.CONGESTION,
}

# Fallback slash category when a node omits it from the details.
MISMATCH_SLASH_REASONS = {
    RejectReason.SIGNAL_COMMITMENT_MISMATCH: SlashReason.SIGNAL_COMMITMENT_MISMATCH,
    RejectReason.VOTE_COMMITMENT_MISMATCH: SlashReason.VOTE_COMMITMENT_MISMATCH,
    RejectReason.BID_COMMITMENT_MISMATCH: SlashReason.VOTE_COMMITMENT_MISMATCH,
}


def error_from_body(status_code: int, body: dict[str, Any]) -> ACPException:
    """Rebuild the protocol exception a ledger node reported."""
    error = body.get("error")
    if not isinstance(error, dict):
        return ValidationException(f"ledger returned HTTP {status_code} without an error body")
    category = error.get("category")
    message = error.get("message") or f"HTTP {status_code}"
    details = dict(error.get("details") or {})

    if category == ErrorCategory.TRANSIENT:
        try:
            kind = TransientKind(details.get("kind", ""))
        except ValueError:
            kind = TransientKind.CONGESTION
        return TransientLedgerError(kind, message)
    if category == ErrorCategory.PROTOCOL_STATE:
        try:
            reason = RejectReason(details.pop("reason", ""))
        except ValueError:
            return ValidationException(f"unrecognized ledger rejection: {message}")
        if reason in MISMATCH_SLASH_REASONS:
            try:
                slash_reason = SlashReason(int(details.pop("slash_reason", MISMATCH_SLASH_REASONS[reason])))
            except (TypeError, ValueError):
                slash_reason = MISMATCH_SLASH_REASONS[reason]
            return CommitmentMismatchError(reason, slash_reason, **details)
        if reason == RejectReason.NOT_FOUND and "resource_type" in details:
            return NotFoundError(str(details["resource_type"]), str(details.get("resource_id", "")))
        return ProtocolError(reason, message, **details)
    return ValidationException(message, field=details.get("field"), value=details.get("value"))


class HttpLedgerTransport:
    """Ledger transport over HTTP, using one pooled ``httpx.Client``."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        config = get_config()
        self.base_url = (base_url if base_url is not None else config.ledger_url).rstrip("/")
        self.timeout = timeout if timeout is not None else config.ledger_timeout
        self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=transport)

    def _classify(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        if resp.status_code in TRANSIENT_STATUS:
            raise TransientLedgerError(TRANSIENT_STATUS[resp.status_code], f"HTTP {resp.status_code} from ledger")
        try:
            body = resp.json()
        except json.JSONDecodeError:
            body = {}
        if resp.status_code >= 500 and not body:
            raise TransientLedgerError(TransientKind.CONGESTION, f"HTTP {resp.status_code} from ledger")
        raise error_from_body(resp.status_code, body)

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> httpx.Response:
        try:
            return self._client.request(method, path, json=body)
        except httpx.TimeoutException:
            raise TransientLedgerError(TransientKind.TIMEOUT, f"ledger at {self.base_url} timed out")
        except (httpx.NetworkError, httpx.RemoteProtocolError) as e:
            raise TransientLedgerError(TransientKind.CONNECTION, f"cannot reach ledger at {self.base_url}: {e}")

    def submit(self, operation: Operation, caller: bytes) -> Receipt:
        payload = operation.to_payload()
        payload["caller"] = ensure_bytes32(caller, "caller").hex()
        resp = self._request("POST", "/v1/operations", payload)
        self._classify(resp)
        receipt = Receipt.from_dict(resp.json())
        logger.debug(f"{operation.name} landed at slot {receipt.slot} ({receipt.signature[:16]})")
        return receipt

    def get_account(self, address: bytes) -> bytes | None:
        resp = self._request("GET", f"/v1/accounts/{address.hex()}")
        if resp.status_code == 404:
            return None
        self._classify(resp)
        data = resp.json().get("data")
        return bytes.fromhex(data) if data is not None else None

    def get_slot(self) -> int:
        resp = self._request("GET", "/v1/slot")
        self._classify(resp)
        return int(resp.json()["slot"])

    def close(self) -> None:
        self._client.close()
