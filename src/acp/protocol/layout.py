"""Versioned binary account layouts.

Every account is serialized as::

    discriminator (8 bytes) | version (u8) | fixed-width fields, little-endian

The discriminator is the first 8 bytes of ``sha256("account:<Name>")``.
Each record kind is a tagged union over schema versions. Decoding reads
the fields of the stored version, then walks the upgrade chain to the
latest version, so an older, shorter account decodes with its newer
fields defaulted. Encoding always writes the latest version.

Trailing bytes past the declared fields are ignored (ledgers may
over-allocate account space).
"""

from __future__ import annotations

import hashlib
import logging
import struct
from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from ..core.exceptions import ValidationException
from .models import (
    ActionStatus,
    Agent,
    CollateralWithdrawal,
    IdentityLink,
    NullifierRecord,
    NullifierScope,
    Registry,
    Signal,
    SignalAggregator,
    SwarmAction,
    SwarmActionBid,
    TokenAccount,
    VoteBidRecord,
    VoteRecord,
    VoteValue,
    WithdrawalRequest,
)

logger = logging.getLogger(__name__)

DISCRIMINATOR_SIZE = 8
HEADER_SIZE = DISCRIMINATOR_SIZE + 1

Upgrade = Callable[[dict[str, Any]], dict[str, Any]]


@dataclass(frozen=True)
class FieldSpec:
    """One fixed-width field: struct format plus optional enum on decode."""

    name: str
    fmt: str
    enum: type[IntEnum] | None = None


def _f(name: str, fmt: str, enum: type[IntEnum] | None = None) -> FieldSpec:
    return FieldSpec(name, fmt, enum)


B32 = "32s"


def discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:DISCRIMINATOR_SIZE]


class AccountSchema:
    """All known versions of one record kind, plus the upgrade chain."""

    def __init__(
        self,
        record_type: type,
        versions: dict[int, tuple[FieldSpec, ...]],
        upgrades: dict[int, Upgrade] | None = None,
    ) -> None:
        self.record_type = record_type
        self.name = record_type.__name__
        self.discriminator = discriminator(self.name)
        self.versions = versions
        self.latest = max(versions)
        # upgrades[v] turns a version-v field dict into version v+1
        self.upgrades = upgrades or {}
        self._structs = {v: struct.Struct("<" + "".join(f.fmt for f in specs)) for v, specs in versions.items()}
        for v in range(min(versions), self.latest):
            if v not in self.upgrades:
                raise ValueError(f"{self.name}: missing upgrade from v{v}")

    def size(self, version: int | None = None) -> int:
        return HEADER_SIZE + self._structs[self.latest if version is None else version].size

    def encode(self, record: Any, version: int | None = None) -> bytes:
        version = self.latest if version is None else version
        values = [getattr(record, f.name) for f in self.versions[version]]
        values = [int(v) if isinstance(v, IntEnum) else v for v in values]
        return self.discriminator + bytes([version]) + self._structs[version].pack(*values)

    def decode(self, data: bytes) -> Any:
        version = data[DISCRIMINATOR_SIZE]
        if version not in self.versions:
            raise ValidationException(
                f"{self.name}: unknown layout version {version}", field="version", value=version
            )
        body = data[HEADER_SIZE:]
        layout = self._structs[version]
        if len(body) < layout.size:
            raise ValidationException(
                f"{self.name} v{version}: need {layout.size} bytes, got {len(body)}",
                field="data",
                value=len(body),
            )
        raw = layout.unpack_from(body)
        values: dict[str, Any] = {}
        for field_spec, value in zip(self.versions[version], raw):
            values[field_spec.name] = field_spec.enum(value) if field_spec.enum is not None else value
        while version < self.latest:
            values = self.upgrades[version](values)
            version += 1
        return self.record_type(**values)


def _registry_v1_to_v2(values: dict[str, Any]) -> dict[str, Any]:
    # v1 predates stake caps, token economics and the admin nonce
    return {
        **values,
        "max_total_stake": 0,
        "max_stake_per_agent": 0,
        "total_stake": 0,
        "total_burned": 0,
        "total_fees_collected": 0,
        "min_signal_collateral": 0,
        "admin_nonce": 0,
    }


def _agent_v1_to_v2(values: dict[str, Any]) -> dict[str, Any]:
    # v1 predates collateral
    return {
        **values,
        "collateral_amount": 0,
        "collateral_locked_at": 0,
        "slashed_amount": 0,
        "violation_count": 0,
    }


_REGISTRY_V1 = (
    _f("authority", B32),
    _f("agents_root", B32),
    _f("agent_count", "I"),
    _f("signal_count", "I"),
    _f("swarm_action_count", "I"),
    _f("epoch", "Q"),
    _f("min_stake", "Q"),
    _f("min_signal_confidence", "B"),
    _f("paused", "?"),
)

_AGENT_V1 = (
    _f("identity_commitment", B32),
    _f("owner", B32),
    _f("stake", "Q"),
    _f("registered_slot", "Q"),
    _f("signal_count", "I"),
    _f("swarm_votes", "I"),
    _f("active", "?"),
)

SCHEMAS: tuple[AccountSchema, ...] = (
    AccountSchema(
        Registry,
        {
            1: _REGISTRY_V1,
            2: _REGISTRY_V1
            + (
                _f("max_total_stake", "Q"),
                _f("max_stake_per_agent", "Q"),
                _f("total_stake", "Q"),
                _f("total_burned", "Q"),
                _f("total_fees_collected", "Q"),
                _f("min_signal_collateral", "Q"),
                _f("admin_nonce", "Q"),
            ),
        },
        {1: _registry_v1_to_v2},
    ),
    AccountSchema(
        Agent,
        {
            1: _AGENT_V1,
            2: _AGENT_V1
            + (
                _f("collateral_amount", "Q"),
                _f("collateral_locked_at", "q"),
                _f("slashed_amount", "Q"),
                _f("violation_count", "I"),
            ),
        },
        {1: _agent_v1_to_v2},
    ),
    AccountSchema(
        Signal,
        {
            1: (
                _f("nullifier", B32),
                _f("commitment", B32),
                _f("submitted_slot", "Q"),
                _f("epoch", "Q"),
                _f("revealed", "?"),
            )
        },
    ),
    AccountSchema(
        NullifierRecord,
        {
            1: (
                _f("nullifier", B32),
                _f("epoch", "Q"),
                _f("scope", "B", NullifierScope),
                _f("action", B32),
            )
        },
    ),
    AccountSchema(
        SwarmAction,
        {
            1: (
                _f("proposer_nullifier", B32),
                _f("action_hash", B32),
                _f("threshold", "B"),
                _f("created_slot", "Q"),
                _f("deadline_slot", "Q"),
                _f("vote_count", "I"),
                _f("votes_for", "I"),
                _f("votes_against", "I"),
                _f("weighted_votes_for", "Q"),
                _f("weighted_votes_against", "Q"),
                _f("status", "B", ActionStatus),
            )
        },
    ),
    AccountSchema(
        VoteRecord,
        {
            1: (
                _f("swarm_action", B32),
                _f("vote_nullifier", B32),
                _f("vote_commitment", B32),
                _f("revealed", "?"),
                _f("vote_value", "B", VoteValue),
                _f("weighted_vote", "Q"),
            )
        },
    ),
    AccountSchema(
        SwarmActionBid,
        {
            1: (
                _f("proposer_nullifier", B32),
                _f("action_hash", B32),
                _f("threshold", "B"),
                _f("min_bid", "Q"),
                _f("created_slot", "Q"),
                _f("vote_deadline_slot", "Q"),
                _f("reveal_deadline_slot", "Q"),
                _f("vote_count", "I"),
                _f("revealed_count", "I"),
                _f("yes_votes", "I"),
                _f("no_votes", "I"),
                _f("status", "B", ActionStatus),
                _f("highest_yes_bid", "Q"),
                _f("highest_yes_bidder_nullifier", B32),
            )
        },
    ),
    AccountSchema(
        VoteBidRecord,
        {
            1: (
                _f("swarm_action", B32),
                _f("vote_nullifier", B32),
                _f("vote_commitment", B32),
                _f("bid_commitment", B32),
                _f("revealed", "?"),
                _f("vote_value", "B", VoteValue),
                _f("bid_amount", "Q"),
            )
        },
    ),
    AccountSchema(
        SignalAggregator,
        {
            1: (
                _f("epoch", "Q"),
                _f("total_signals", "I"),
                _f("long_count", "I"),
                _f("short_count", "I"),
                _f("neutral_count", "I"),
                _f("total_confidence", "Q"),
                _f("total_magnitude", "Q"),
                _f("last_updated_slot", "Q"),
                _f("finalized", "?"),
            )
        },
    ),
    AccountSchema(
        WithdrawalRequest,
        {
            1: (
                _f("agent", B32),
                _f("requester", B32),
                _f("amount", "Q"),
                _f("request_slot", "Q"),
                _f("unlock_slot", "Q"),
                _f("claimed", "?"),
            )
        },
    ),
    AccountSchema(
        CollateralWithdrawal,
        {
            1: (
                _f("agent", B32),
                _f("requester", B32),
                _f("amount", "Q"),
                _f("request_time", "q"),
                _f("unlock_time", "q"),
                _f("claimed", "?"),
            )
        },
    ),
    AccountSchema(
        IdentityLink,
        {
            1: (
                _f("zk_agent", B32),
                _f("reputation_agent", B32),
                _f("owner", B32),
                _f("staked_amount", "Q"),
                _f("stake_multiplier", "Q"),
                _f("linked_slot", "Q"),
                _f("active", "?"),
            )
        },
    ),
    AccountSchema(
        TokenAccount,
        {1: (_f("owner", B32), _f("amount", "Q"))},
    ),
)

_BY_TYPE: dict[type, AccountSchema] = {s.record_type: s for s in SCHEMAS}
_BY_DISCRIMINATOR: dict[bytes, AccountSchema] = {s.discriminator: s for s in SCHEMAS}
_BY_NAME: dict[str, AccountSchema] = {s.name: s for s in SCHEMAS}


def schema_for(record_type: type) -> AccountSchema:
    return _BY_TYPE[record_type]


def schema_by_name(name: str) -> AccountSchema:
    try:
        return _BY_NAME[name]
    except KeyError:
        raise ValidationException(f"unknown account type: {name}", field="type", value=name)


def encode_account(record: Any) -> bytes:
    """Serialize a record at the latest layout version."""
    try:
        schema = _BY_TYPE[type(record)]
    except KeyError:
        raise ValidationException(f"not an account record: {type(record).__name__}")
    try:
        return schema.encode(record)
    except struct.error as e:
        raise ValidationException(f"{schema.name}: field out of range ({e})")


def decode_account(data: bytes, expected: type | None = None) -> Any:
    """Decode any account, upgrading older layouts.

    Args:
        data: Raw account bytes.
        expected: If given, reject accounts of any other kind.

    Raises:
        ValidationException: Unknown discriminator or version, truncated
            data, or a kind other than ``expected``.
    """
    if len(data) < HEADER_SIZE:
        raise ValidationException(f"account data too short: {len(data)} bytes", field="data", value=len(data))
    schema = _BY_DISCRIMINATOR.get(bytes(data[:DISCRIMINATOR_SIZE]))
    if schema is None:
        raise ValidationException("unknown account discriminator", field="discriminator", value=data[:8].hex())
    if expected is not None and schema.record_type is not expected:
        raise ValidationException(
            f"expected {expected.__name__} account, found {schema.name}", field="type", value=schema.name
        )
    record = schema.decode(data)
    if data[DISCRIMINATOR_SIZE] != schema.latest:
        logger.debug(f"Upgraded {schema.name} from v{data[DISCRIMINATOR_SIZE]} to v{schema.latest}")
    return record


def encode_legacy(record: Any, version: int) -> bytes:
    """Serialize at an older version (migration tooling and tests)."""
    return schema_for(type(record)).encode(record, version)


__all__ = [
    "AccountSchema",
    "FieldSpec",
    "SCHEMAS",
    "decode_account",
    "discriminator",
    "encode_account",
    "encode_legacy",
    "schema_by_name",
    "schema_for",
]
