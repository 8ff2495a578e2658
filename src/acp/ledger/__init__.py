"""Ledger boundary: transports, retry, and the protocol client."""

from acp.ledger.client import ACPClient
from acp.ledger.client_registry import ClientRegistry
from acp.ledger.http import HttpLedgerTransport
from acp.ledger.retry import RetryPolicy, with_retry
from acp.ledger.transport import InProcessLedger, LedgerTransport, ManualClock, Operation, Receipt

__all__ = [
    "ACPClient",
    "ClientRegistry",
    "HttpLedgerTransport",
    "InProcessLedger",
    "LedgerTransport",
    "ManualClock",
    "Operation",
    "Receipt",
    "RetryPolicy",
    "with_retry",
]
