# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Account records and protocol constants.

Every record here is what the ledger stores at one derived address (see
:mod:`acp.protocol.addresses`) and what :mod:`acp.protocol.layout`
serializes. Fields are declared in on-ledger order.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import IntEnum
from typing import Any

ZERO32 = bytes(32)

# Token amounts are raw units with 6 decimals
TOKEN_DECIMALS = 6
REGISTER_AGENT_FEE = 1_000 * 10**TOKEN_DECIMALS
SUBMIT_SIGNAL_FEE = 100 * 10**TOKEN_DECIMALS
CREATE_SWARM_ACTION_FEE = 500 * 10**TOKEN_DECIMALS

BPS_DENOMINATOR = 10_000
BURN_RATE_BPS = 5_000  # 50% of every fee

# Slashing
BASE_SLASH_RATE_BPS = 1_000  # 10%
SLASH_ESCALATION_BPS = 500  # +5% per prior violation
MAX_SLASH_RATE_BPS = 5_000  # 50%

COLLATERAL_WITHDRAWAL_TIMELOCK = 7 * 24 * 60 * 60

# Stake multiplier tiers: (minimum days staked, multiplier bps), highest first
STAKE_MULTIPLIER_TIERS: tuple[tuple[int, int], ...] = (
    (180, 20_000),
    (90, 15_000),
    (30, 12_000),
    (0, 10_000),
)

MAX_PERCENT = 100
SECONDS_PER_DAY = 86_400


class SignalType(IntEnum):
    BUY = 0
    SELL = 1
    HOLD = 2
    ALERT = 3


class Direction(IntEnum):
    SHORT = 0
    LONG = 1
    NEUTRAL = 2


class SlashReason(IntEnum):
    SIGNAL_COMMITMENT_MISMATCH = 0
    VOTE_COMMITMENT_MISMATCH = 1
    CONSENSUS_DEVIATION = 2
    ADMIN_REPORTED_ABUSE = 3


class VoteValue(IntEnum):
    UNREVEALED = 0
    YES = 1
    NO = 2


class ActionStatus(IntEnum):
    """Lifecycle of a swarm action; EXECUTED and EXPIRED are terminal."""

    OPEN = 0
    EXECUTED = 1
    EXPIRED = 2


class NullifierScope(IntEnum):
    """Which replay domain a nullifier record guards."""

    SIGNAL = 0
    PROPOSE = 1
    VOTE = 2
    VOTE_BID = 3


def record_to_dict(record: Any) -> dict[str, Any]:
    """Shallow JSON-friendly view of a record: bytes as hex, enums as ints."""
    result: dict[str, Any] = {}
    for f in fields(record):
        value = getattr(record, f.name)
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).hex()
        elif isinstance(value, IntEnum):
            value = int(value)
        result[f.name] = value
    return result


@dataclass
class RegistryConfig:
    """Admin-tunable thresholds and caps. A cap of 0 means unlimited."""

    min_stake: int
    min_signal_confidence: int
    max_total_stake: int = 0
    max_stake_per_agent: int = 0
    min_signal_collateral: int = 0

    def to_dict(self) -> dict[str, Any]:
        return record_to_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegistryConfig:
        return cls(
            min_stake=int(data["min_stake"]),
            min_signal_confidence=int(data["min_signal_confidence"]),
            max_total_stake=int(data.get("max_total_stake", 0)),
            max_stake_per_agent=int(data.get("max_stake_per_agent", 0)),
            min_signal_collateral=int(data.get("min_signal_collateral", 0)),
        )


@dataclass
class Registry:
    """Global protocol configuration and counters."""

    authority: bytes
    agents_root: bytes = ZERO32
    agent_count: int = 0
    signal_count: int = 0
    swarm_action_count: int = 0
    epoch: int = 0
    min_stake: int = 0
    min_signal_confidence: int = 0
    paused: bool = False
    # Added with stake caps and token economics
    max_total_stake: int = 0
    max_stake_per_agent: int = 0
    total_stake: int = 0
    total_burned: int = 0
    total_fees_collected: int = 0
    min_signal_collateral: int = 0
    admin_nonce: int = 0

    def config(self) -> RegistryConfig:
        return RegistryConfig(
            min_stake=self.min_stake,
            min_signal_confidence=self.min_signal_confidence,
            max_total_stake=self.max_total_stake,
            max_stake_per_agent=self.max_stake_per_agent,
            min_signal_collateral=self.min_signal_collateral,
        )

    def apply_config(self, config: RegistryConfig) -> None:
        self.min_stake = config.min_stake
        self.min_signal_confidence = config.min_signal_confidence
        self.max_total_stake = config.max_total_stake
        self.max_stake_per_agent = config.max_stake_per_agent
        self.min_signal_collateral = config.min_signal_collateral


@dataclass
class Agent:
    identity_commitment: bytes
    owner: bytes
    stake: int
    registered_slot: int
    signal_count: int = 0
    swarm_votes: int = 0
    active: bool = True
    # Added with collateral
    collateral_amount: int = 0
    collateral_locked_at: int = 0
    slashed_amount: int = 0
    violation_count: int = 0


@dataclass
class Signal:
    nullifier: bytes
    commitment: bytes
    submitted_slot: int
    epoch: int
    revealed: bool = False


@dataclass
class NullifierRecord:
    """Replay guard. For epoch scopes, a record from an older epoch is reusable."""

    nullifier: bytes
    epoch: int
    scope: NullifierScope
    action: bytes = ZERO32


@dataclass
class SwarmAction:
    proposer_nullifier: bytes
    action_hash: bytes
    threshold: int
    created_slot: int
    deadline_slot: int
    vote_count: int = 0
    votes_for: int = 0
    votes_against: int = 0
    weighted_votes_for: int = 0
    weighted_votes_against: int = 0
    status: ActionStatus = ActionStatus.OPEN

    @property
    def executed(self) -> bool:
        return self.status == ActionStatus.EXECUTED

    @property
    def approval_ratio(self) -> float:
        total = self.votes_for + self.votes_against
        return self.votes_for / total if total else 0.0


@dataclass
class VoteRecord:
    swarm_action: bytes
    vote_nullifier: bytes
    vote_commitment: bytes
    revealed: bool = False
    vote_value: VoteValue = VoteValue.UNREVEALED
    weighted_vote: int = 0


@dataclass
class SwarmActionBid:
    proposer_nullifier: bytes
    action_hash: bytes
    threshold: int
    min_bid: int
    created_slot: int
    vote_deadline_slot: int
    reveal_deadline_slot: int
    vote_count: int = 0
    revealed_count: int = 0
    yes_votes: int = 0
    no_votes: int = 0
    status: ActionStatus = ActionStatus.OPEN
    highest_yes_bid: int = 0
    highest_yes_bidder_nullifier: bytes = ZERO32

    @property
    def executed(self) -> bool:
        return self.status == ActionStatus.EXECUTED

    @property
    def winner(self) -> bytes | None:
        """Nullifier of the winning bidder, once executed."""
        return self.highest_yes_bidder_nullifier if self.executed else None


@dataclass
class VoteBidRecord:
    swarm_action: bytes
    vote_nullifier: bytes
    vote_commitment: bytes
    bid_commitment: bytes
    revealed: bool = False
    vote_value: VoteValue = VoteValue.UNREVEALED
    bid_amount: int = 0


@dataclass
class SignalAggregator:
    """Per-epoch rollup of revealed signals."""

    epoch: int
    total_signals: int = 0
    long_count: int = 0
    short_count: int = 0
    neutral_count: int = 0
    total_confidence: int = 0
    total_magnitude: int = 0
    last_updated_slot: int = 0
    finalized: bool = False

    def fold(self, direction: Direction, confidence: int, magnitude: int, slot: int) -> None:
        if direction == Direction.LONG:
            self.long_count += 1
        elif direction == Direction.SHORT:
            self.short_count += 1
        else:
            self.neutral_count += 1
        self.total_signals += 1
        self.total_confidence += confidence
        self.total_magnitude += magnitude
        self.last_updated_slot = slot

    @property
    def average_confidence(self) -> float:
        return self.total_confidence / self.total_signals if self.total_signals else 0.0

    @property
    def average_magnitude(self) -> float:
        return self.total_magnitude / self.total_signals if self.total_signals else 0.0

    @property
    def long_ratio(self) -> float:
        directional = self.long_count + self.short_count
        return self.long_count / directional if directional else 0.0

    @property
    def majority_direction(self) -> Direction | None:
        """Direction with the most signals; None when empty or tied at the top."""
        counts = {
            Direction.LONG: self.long_count,
            Direction.SHORT: self.short_count,
            Direction.NEUTRAL: self.neutral_count,
        }
        best = max(counts.values())
        leaders = [d for d, c in counts.items() if c == best]
        if best == 0 or len(leaders) > 1:
            return None
        return leaders[0]

    def statistics(self) -> dict[str, Any]:
        majority = self.majority_direction
        return {
            "epoch": self.epoch,
            "total_signals": self.total_signals,
            "long_count": self.long_count,
            "short_count": self.short_count,
            "neutral_count": self.neutral_count,
            "average_confidence": self.average_confidence,
            "average_magnitude": self.average_magnitude,
            "long_ratio": self.long_ratio,
            "majority_direction": majority.name if majority is not None else None,
            "finalized": self.finalized,
        }


@dataclass
class WithdrawalRequest:
    """Pending exit of an agent's whole stake, timelocked in slots."""

    agent: bytes
    requester: bytes
    amount: int
    request_slot: int
    unlock_slot: int
    claimed: bool = False


@dataclass
class CollateralWithdrawal:
    """Pending collateral exit, timelocked in unix seconds."""

    agent: bytes
    requester: bytes
    amount: int
    request_time: int
    unlock_time: int
    claimed: bool = False


@dataclass
class IdentityLink:
    """Binds a protocol identity to an external stake position."""

    zk_agent: bytes
    reputation_agent: bytes
    owner: bytes
    staked_amount: int
    stake_multiplier: int
    linked_slot: int
    active: bool = True


@dataclass
class TokenAccount:
    owner: bytes
    amount: int = 0


@dataclass(frozen=True)
class StakePosition:
    """External stake position as reported by a ``StakePositionSource``."""

    owner: bytes
    amount: int
    staked_at: int  # unix seconds


@dataclass
class SlashResult:
    agent: bytes
    requested: int
    rate_bps: int
    slashed: int
    violation_count: int
    reason: SlashReason
    evidence: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return record_to_dict(self)
