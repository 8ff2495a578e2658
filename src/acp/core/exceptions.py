# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Exception hierarchy for the Agent Collaboration Protocol.

Every failure the protocol can produce falls into exactly one of three
categories:

- validation: malformed or out-of-range input, detected locally
- protocol_state: a well-formed operation the current state rejects
- transient: the ledger could not apply the operation right now

Only transient failures are retried. The category is a property of the
exception type, never of its message text.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    VALIDATION = "validation"
    PROTOCOL_STATE = "protocol_state"
    TRANSIENT = "transient"


class RejectReason(StrEnum):
    """Specific reason a protocol-state error was raised."""

    NOT_FOUND = "not_found"
    ALREADY_INITIALIZED = "already_initialized"
    NOT_INITIALIZED = "not_initialized"
    PAUSED = "paused"
    UNAUTHORIZED = "unauthorized"
    ADMIN_NONCE_CONSUMED = "admin_nonce_consumed"
    AGENT_EXISTS = "agent_exists"
    AGENT_INACTIVE = "agent_inactive"
    STAKE_BELOW_MINIMUM = "stake_below_minimum"
    TOTAL_STAKE_CAP = "total_stake_cap"
    AGENT_STAKE_CAP = "agent_stake_cap"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_PROOF = "invalid_proof"
    NULLIFIER_USED = "nullifier_used"
    ALREADY_REVEALED = "already_revealed"
    SIGNAL_EXISTS = "signal_exists"
    SIGNAL_COMMITMENT_MISMATCH = "signal_commitment_mismatch"
    VOTE_COMMITMENT_MISMATCH = "vote_commitment_mismatch"
    BID_COMMITMENT_MISMATCH = "bid_commitment_mismatch"
    CONFIDENCE_TOO_LOW = "confidence_too_low"
    EPOCH_FINALIZED = "epoch_finalized"
    AGGREGATOR_EXISTS = "aggregator_exists"
    ACTION_EXISTS = "action_exists"
    VOTING_CLOSED = "voting_closed"
    VOTING_OPEN = "voting_open"
    REVEAL_NOT_OPEN = "reveal_not_open"
    REVEAL_CLOSED = "reveal_closed"
    REVEAL_OPEN = "reveal_open"
    ALREADY_EXECUTED = "already_executed"
    ACTION_CLOSED = "action_closed"
    THRESHOLD_NOT_MET = "threshold_not_met"
    NO_QUALIFYING_BID = "no_qualifying_bid"
    WITHDRAWAL_PENDING = "withdrawal_pending"
    WITHDRAWAL_LOCKED = "withdrawal_locked"
    WITHDRAWAL_CLAIMED = "withdrawal_claimed"
    INSUFFICIENT_COLLATERAL = "insufficient_collateral"
    LINK_EXISTS = "link_exists"
    LINK_INACTIVE = "link_inactive"


class TransientKind(StrEnum):
    """Transient ledger conditions that are worth retrying."""

    STALE_STATE = "stale_state"
    RATE_LIMITED = "rate_limited"
    CONNECTION = "connection"
    CONGESTION = "congestion"
    TIMEOUT = "timeout"


class ACPException(Exception):  # noqa: N818
    """Base exception for all protocol errors.

    Subclasses set ``category``; callers decide whether to retry from the
    category alone.
    """

    category: ErrorCategory = ErrorCategory.VALIDATION

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(ACPException):
    """Exception for malformed input.

    Raised when:
    - A fixed-size field has the wrong length
    - A threshold or percentage is out of range
    - An amount is not positive
    - A proof segment has the wrong size
    """

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class ConfigException(ACPException):
    """Exception for configuration errors."""

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, missing_vars: list[str] | None = None):
        details = {}
        if missing_vars:
            details["missing_vars"] = missing_vars
        super().__init__(message, details)
        self.missing_vars = missing_vars or []


class ProtocolError(ACPException):
    """A well-formed operation rejected by the current protocol state."""

    category = ErrorCategory.PROTOCOL_STATE

    def __init__(self, reason: RejectReason, message: str | None = None, **details: Any):
        self.reason = reason
        super().__init__(message or reason.value.replace("_", " "), {"reason": reason.value, **details})


class NotFoundError(ProtocolError):
    """Raised when an account the operation needs does not exist."""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            RejectReason.NOT_FOUND,
            f"{resource_type} not found: {resource_id}",
            resource_type=resource_type,
            resource_id=resource_id,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class CommitmentMismatchError(ProtocolError):
    """A reveal whose inputs do not hash to the stored commitment.

    Carries the slashing category so the evidence can be forwarded to the
    collateral layer.
    """

    def __init__(self, reason: RejectReason, slash_reason: Any, **details: Any):
        super().__init__(reason, slash_reason=int(slash_reason), **details)
        self.slash_reason = slash_reason

    def evidence(self) -> dict[str, Any]:
        return {"reason": self.reason.value, **{k: v for k, v in self.details.items() if k != "reason"}}


class TransientLedgerError(ACPException):
    """The ledger could not apply the operation right now."""

    category = ErrorCategory.TRANSIENT

    def __init__(self, kind: TransientKind, message: str | None = None):
        super().__init__(message or kind.value.replace("_", " "), {"kind": kind.value})
        self.kind = kind


class RetriesExhaustedError(ACPException):
    """Terminal failure after every retry of a transient error was spent."""

    category = ErrorCategory.TRANSIENT

    def __init__(self, last_error: TransientLedgerError, attempts: int):
        super().__init__(
            f"gave up after {attempts} attempts: {last_error.message}",
            {"attempts": attempts, "kind": last_error.kind.value},
        )
        self.last_error = last_error
        self.attempts = attempts


def classify(exc: ACPException) -> ErrorCategory:
    """Return the single category an error belongs to."""
    return exc.category


def is_retryable(exc: BaseException) -> bool:
    """Whether retrying the failed operation can possibly succeed."""
    return isinstance(exc, TransientLedgerError)
