"""Protocol state transitions over an injected account store.

Use :class:`ProtocolEngine` for atomic, logged operations; the per-module
functions (``registry``, ``signals``, ``swarm``, ``bidding``,
``collateral``) are the raw transitions it wraps.
"""

from acp.protocol.addresses import AddressBook, derive_address
from acp.protocol.collateral import (
    days_staked,
    slash_amount,
    slash_rate_bps,
    stake_multiplier_bps,
    weighted_vote,
)
from acp.protocol.engine import ProtocolEngine, result_to_dict
from acp.protocol.layout import decode_account, encode_account
from acp.protocol.models import (
    ActionStatus,
    Agent,
    CollateralWithdrawal,
    Direction,
    IdentityLink,
    NullifierScope,
    Registry,
    RegistryConfig,
    Signal,
    SignalAggregator,
    SignalType,
    SlashReason,
    SlashResult,
    SwarmAction,
    SwarmActionBid,
    VoteBidRecord,
    VoteRecord,
    VoteValue,
    WithdrawalRequest,
)
from acp.protocol.state import (
    AccountStore,
    InMemoryAccountStore,
    InMemoryStakePositions,
    LedgerContext,
    ProtocolEnv,
    StakePositionSource,
)

__all__ = [
    "AccountStore",
    "ActionStatus",
    "AddressBook",
    "Agent",
    "CollateralWithdrawal",
    "Direction",
    "IdentityLink",
    "InMemoryAccountStore",
    "InMemoryStakePositions",
    "LedgerContext",
    "NullifierScope",
    "ProtocolEngine",
    "ProtocolEnv",
    "Registry",
    "RegistryConfig",
    "Signal",
    "SignalAggregator",
    "SignalType",
    "SlashReason",
    "SlashResult",
    "StakePositionSource",
    "SwarmAction",
    "SwarmActionBid",
    "VoteBidRecord",
    "VoteRecord",
    "VoteValue",
    "WithdrawalRequest",
    "days_staked",
    "decode_account",
    "derive_address",
    "encode_account",
    "result_to_dict",
    "slash_amount",
    "slash_rate_bps",
    "stake_multiplier_bps",
    "weighted_vote",
]
