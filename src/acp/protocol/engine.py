# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""ProtocolEngine - one object binding store, verifier and settings.

Each mutating method runs its state transition inside ``store.atomic()``:
either every account change lands or none does. Read methods decode
accounts straight from the store.

``apply()`` dispatches by operation name, which is how ledger transports
drive the engine.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import is_dataclass
from typing import Any, TypeVar

from ..core.config import ACPSettings, get_config
from ..core.exceptions import ACPException, ValidationException
from ..core.logging import operation_logger
from ..crypto.authority import AdminAuth
from ..crypto.field import FieldHasher, ensure_bytes32
from ..crypto.proof import Groth16Proof, ProofVerifier
from . import bidding, collateral, registry, signals, swarm
from .addresses import AddressBook
from .models import (
    Agent,
    CollateralWithdrawal,
    IdentityLink,
    NullifierScope,
    Registry,
    RegistryConfig,
    Signal,
    SignalAggregator,
    SlashReason,
    SlashResult,
    SwarmAction,
    SwarmActionBid,
    VoteBidRecord,
    VoteRecord,
    WithdrawalRequest,
    record_to_dict,
)
from .nullifiers import NullifierLedger
from .state import AccountStore, InMemoryAccountStore, LedgerContext, ProtocolEnv, StakePositionSource

logger = logging.getLogger(__name__)

T = TypeVar("T")


def result_to_dict(result: Any) -> dict[str, Any]:
    """JSON-friendly view of whatever an operation returned."""
    if result is None:
        return {}
    if isinstance(result, tuple):
        record, is_highest = result
        return {"record": result_to_dict(record), "is_highest": is_highest}
    if isinstance(result, int):
        return {"amount": result}
    if is_dataclass(result):
        return record_to_dict(result)
    raise TypeError(f"unexpected operation result: {type(result).__name__}")


class ProtocolEngine:
    """Pure protocol core over an injected account store.

    Example:
        engine = ProtocolEngine(verifier=my_verifier)
        ctx = LedgerContext(slot=10, unix_time=1_700_000_000, caller=owner)
        engine.register_agent(ctx, identity_commitment, stake=5_000_000)
    """

    def __init__(
        self,
        verifier: ProofVerifier,
        store: AccountStore | None = None,
        settings: ACPSettings | None = None,
        stake_positions: StakePositionSource | None = None,
        hasher: FieldHasher | None = None,
    ) -> None:
        self.settings = settings or get_config()
        self.store = store if store is not None else InMemoryAccountStore()
        self.addresses = AddressBook(self.settings.program_id)
        self.env = ProtocolEnv(
            store=self.store,
            addresses=self.addresses,
            verifier=verifier,
            settings=self.settings,
            stake_positions=stake_positions,
            hasher=hasher,
        )
        self._operations: dict[str, Callable[..., Any]] = {
            "initialize": self.initialize,
            "register_agent": self.register_agent,
            "update_root": self.update_root,
            "pause": self.pause,
            "unpause": self.unpause,
            "update_config": self.update_config,
            "update_min_signal_collateral": self.update_min_signal_collateral,
            "advance_epoch": self.advance_epoch,
            "burn_from_treasury": self.burn_from_treasury,
            "submit_signal": self.submit_signal,
            "reveal_signal": self.reveal_signal,
            "init_aggregator": self.init_aggregator,
            "create_swarm_action": self.create_swarm_action,
            "vote_swarm_action": self.vote_swarm_action,
            "reveal_vote": self.reveal_vote,
            "execute_swarm_action": self.execute_swarm_action,
            "close_swarm_action": self.close_swarm_action,
            "create_swarm_action_bid": self.create_swarm_action_bid,
            "vote_swarm_action_bid": self.vote_swarm_action_bid,
            "reveal_vote_bid": self.reveal_vote_bid,
            "execute_swarm_action_bid": self.execute_swarm_action_bid,
            "close_swarm_action_bid": self.close_swarm_action_bid,
            "link_identity": self.link_identity,
            "refresh_stake": self.refresh_stake,
            "unlink_identity": self.unlink_identity,
            "deposit_collateral": self.deposit_collateral,
            "request_collateral_withdrawal": self.request_collateral_withdrawal,
            "claim_collateral_withdrawal": self.claim_collateral_withdrawal,
            "cancel_collateral_withdrawal": self.cancel_collateral_withdrawal,
            "request_stake_withdrawal": self.request_stake_withdrawal,
            "claim_stake_withdrawal": self.claim_stake_withdrawal,
            "cancel_stake_withdrawal": self.cancel_stake_withdrawal,
            "slash": self.slash,
        }

    @property
    def operations(self) -> tuple[str, ...]:
        return tuple(self._operations)

    @property
    def events(self) -> list[dict[str, Any]]:
        """Events emitted by the most recent operation."""
        return list(self.env.events)

    def apply(self, name: str, args: dict[str, Any], ctx: LedgerContext) -> Any:
        try:
            operation = self._operations[name]
        except KeyError:
            raise ValidationException(f"unknown operation: {name}", field="operation", value=name)
        return operation(ctx, **args)

    def _run(self, name: str, fn: Callable[..., T], ctx: LedgerContext, *args: Any, **kwargs: Any) -> T:
        start = time.perf_counter()
        self.env.events = []
        try:
            with self.store.atomic():
                result = fn(self.env, ctx, *args, **kwargs)
        except ACPException as e:
            self.env.events = []
            logger.warning(f"{name} rejected [{e.category.value}]: {e.message}")
            operation_logger.log_result(name, False, (time.perf_counter() - start) * 1000)
            raise
        operation_logger.log_result(name, True, (time.perf_counter() - start) * 1000)
        return result

    # -- registry --------------------------------------------------------------

    def initialize(self, ctx: LedgerContext, config: RegistryConfig, auth: AdminAuth) -> Registry:
        return self._run("initialize", registry.initialize_registry, ctx, config, auth)

    def register_agent(self, ctx: LedgerContext, identity_commitment: bytes, stake: int) -> Agent:
        return self._run("register_agent", registry.register_agent, ctx, identity_commitment, stake)

    def update_root(self, ctx: LedgerContext, new_root: bytes, agent_count: int, auth: AdminAuth) -> Registry:
        return self._run("update_root", registry.update_root, ctx, new_root, agent_count, auth)

    def pause(self, ctx: LedgerContext, auth: AdminAuth) -> Registry:
        return self._run("pause", registry.set_paused, ctx, True, auth)

    def unpause(self, ctx: LedgerContext, auth: AdminAuth) -> Registry:
        return self._run("unpause", registry.set_paused, ctx, False, auth)

    def update_config(self, ctx: LedgerContext, config: RegistryConfig, auth: AdminAuth) -> Registry:
        return self._run("update_config", registry.update_config, ctx, config, auth)

    def update_min_signal_collateral(self, ctx: LedgerContext, amount: int, auth: AdminAuth) -> Registry:
        return self._run("update_min_signal_collateral", registry.update_min_signal_collateral, ctx, amount, auth)

    def advance_epoch(self, ctx: LedgerContext, auth: AdminAuth) -> Registry:
        return self._run("advance_epoch", registry.advance_epoch, ctx, auth)

    def burn_from_treasury(self, ctx: LedgerContext, amount: int, auth: AdminAuth) -> Registry:
        return self._run("burn_from_treasury", registry.burn_from_treasury, ctx, amount, auth)

    # -- signals ---------------------------------------------------------------

    def submit_signal(self, ctx: LedgerContext, nullifier: bytes, commitment: bytes, proof: Groth16Proof) -> Signal:
        return self._run("submit_signal", signals.submit_signal, ctx, nullifier, commitment, proof)

    def reveal_signal(
        self,
        ctx: LedgerContext,
        commitment: bytes,
        signal_type: int,
        direction: int,
        confidence: int,
        magnitude: int,
        stake_amount: int,
        blinding: bytes,
    ) -> SignalAggregator:
        return self._run(
            "reveal_signal",
            signals.reveal_signal,
            ctx,
            commitment,
            signal_type,
            direction,
            confidence,
            magnitude,
            stake_amount,
            blinding,
        )

    def init_aggregator(self, ctx: LedgerContext, epoch: int) -> SignalAggregator:
        return self._run("init_aggregator", signals.init_aggregator, ctx, epoch)

    # -- swarm actions ---------------------------------------------------------

    def create_swarm_action(
        self,
        ctx: LedgerContext,
        nullifier: bytes,
        action_hash: bytes,
        threshold: int,
        proof: Groth16Proof,
    ) -> SwarmAction:
        return self._run("create_swarm_action", swarm.create_swarm_action, ctx, nullifier, action_hash, threshold, proof)

    def vote_swarm_action(
        self,
        ctx: LedgerContext,
        action_hash: bytes,
        vote_nullifier: bytes,
        vote_commitment: bytes,
        proof: Groth16Proof,
    ) -> VoteRecord:
        return self._run(
            "vote_swarm_action", swarm.vote_swarm_action, ctx, action_hash, vote_nullifier, vote_commitment, proof
        )

    def reveal_vote(
        self,
        ctx: LedgerContext,
        action_hash: bytes,
        vote_nullifier: bytes,
        vote: bool,
        salt: bytes,
        identity_link_owner: bytes | None = None,
    ) -> VoteRecord:
        return self._run(
            "reveal_vote", swarm.reveal_vote, ctx, action_hash, vote_nullifier, vote, salt, identity_link_owner
        )

    def execute_swarm_action(self, ctx: LedgerContext, action_hash: bytes) -> SwarmAction:
        return self._run("execute_swarm_action", swarm.execute_swarm_action, ctx, action_hash)

    def close_swarm_action(self, ctx: LedgerContext, action_hash: bytes) -> SwarmAction:
        return self._run("close_swarm_action", swarm.close_swarm_action, ctx, action_hash)

    # -- sealed-bid swarm actions ----------------------------------------------

    def create_swarm_action_bid(
        self,
        ctx: LedgerContext,
        nullifier: bytes,
        action_hash: bytes,
        threshold: int,
        min_bid: int,
        vote_window_slots: int,
        reveal_window_slots: int,
        proof: Groth16Proof,
    ) -> SwarmActionBid:
        return self._run(
            "create_swarm_action_bid",
            bidding.create_swarm_action_bid,
            ctx,
            nullifier,
            action_hash,
            threshold,
            min_bid,
            vote_window_slots,
            reveal_window_slots,
            proof,
        )

    def vote_swarm_action_bid(
        self,
        ctx: LedgerContext,
        action_hash: bytes,
        vote_nullifier: bytes,
        vote_commitment: bytes,
        bid_commitment: bytes,
        proof: Groth16Proof,
    ) -> VoteBidRecord:
        return self._run(
            "vote_swarm_action_bid",
            bidding.vote_swarm_action_bid,
            ctx,
            action_hash,
            vote_nullifier,
            vote_commitment,
            bid_commitment,
            proof,
        )

    def reveal_vote_bid(
        self,
        ctx: LedgerContext,
        action_hash: bytes,
        vote_nullifier: bytes,
        vote: bool,
        vote_salt: bytes,
        bid_amount: int,
        bid_salt: bytes,
    ) -> tuple[VoteBidRecord, bool]:
        return self._run(
            "reveal_vote_bid",
            bidding.reveal_vote_bid,
            ctx,
            action_hash,
            vote_nullifier,
            vote,
            vote_salt,
            bid_amount,
            bid_salt,
        )

    def execute_swarm_action_bid(self, ctx: LedgerContext, action_hash: bytes) -> SwarmActionBid:
        return self._run("execute_swarm_action_bid", bidding.execute_swarm_action_bid, ctx, action_hash)

    def close_swarm_action_bid(self, ctx: LedgerContext, action_hash: bytes) -> SwarmActionBid:
        return self._run("close_swarm_action_bid", bidding.close_swarm_action_bid, ctx, action_hash)

    # -- identity links, collateral, stake, slashing -----------------------------

    def link_identity(self, ctx: LedgerContext, identity_commitment: bytes, reputation_agent: bytes) -> IdentityLink:
        return self._run("link_identity", collateral.link_identity, ctx, identity_commitment, reputation_agent)

    def refresh_stake(self, ctx: LedgerContext) -> IdentityLink:
        return self._run("refresh_stake", collateral.refresh_stake, ctx)

    def unlink_identity(self, ctx: LedgerContext) -> IdentityLink:
        return self._run("unlink_identity", collateral.unlink_identity, ctx)

    def deposit_collateral(self, ctx: LedgerContext, identity_commitment: bytes, amount: int) -> Agent:
        return self._run("deposit_collateral", collateral.deposit_collateral, ctx, identity_commitment, amount)

    def request_collateral_withdrawal(
        self, ctx: LedgerContext, identity_commitment: bytes, amount: int
    ) -> CollateralWithdrawal:
        return self._run(
            "request_collateral_withdrawal",
            collateral.request_collateral_withdrawal,
            ctx,
            identity_commitment,
            amount,
        )

    def claim_collateral_withdrawal(self, ctx: LedgerContext, identity_commitment: bytes) -> int:
        return self._run(
            "claim_collateral_withdrawal", collateral.claim_collateral_withdrawal, ctx, identity_commitment
        )

    def cancel_collateral_withdrawal(self, ctx: LedgerContext, identity_commitment: bytes) -> None:
        return self._run(
            "cancel_collateral_withdrawal", collateral.cancel_collateral_withdrawal, ctx, identity_commitment
        )

    def request_stake_withdrawal(self, ctx: LedgerContext, identity_commitment: bytes) -> WithdrawalRequest:
        return self._run("request_stake_withdrawal", collateral.request_stake_withdrawal, ctx, identity_commitment)

    def claim_stake_withdrawal(self, ctx: LedgerContext, identity_commitment: bytes) -> int:
        return self._run("claim_stake_withdrawal", collateral.claim_stake_withdrawal, ctx, identity_commitment)

    def cancel_stake_withdrawal(self, ctx: LedgerContext, identity_commitment: bytes) -> None:
        return self._run("cancel_stake_withdrawal", collateral.cancel_stake_withdrawal, ctx, identity_commitment)

    def slash(
        self,
        ctx: LedgerContext,
        identity_commitment: bytes,
        amount: int,
        reason: SlashReason,
        auth: AdminAuth,
        evidence: dict[str, Any] | None = None,
    ) -> SlashResult:
        return self._run("slash", collateral.slash_agent, ctx, identity_commitment, amount, reason, auth, evidence)

    # -- reads -----------------------------------------------------------------

    def get_registry(self) -> Registry | None:
        return self.env.load(self.addresses.registry(), Registry)

    def get_agent(self, identity_commitment: bytes) -> Agent | None:
        return self.env.load(self.addresses.agent(identity_commitment), Agent)

    def get_signal(self, commitment: bytes) -> Signal | None:
        return self.env.load(self.addresses.signal(commitment), Signal)

    def get_swarm_action(self, action_hash: bytes) -> SwarmAction | None:
        return self.env.load(self.addresses.swarm_action(action_hash), SwarmAction)

    def get_vote_record(self, action_hash: bytes, vote_nullifier: bytes) -> VoteRecord | None:
        action = self.addresses.swarm_action(action_hash)
        return self.env.load(self.addresses.vote_record(action, vote_nullifier), VoteRecord)

    def get_swarm_action_bid(self, action_hash: bytes) -> SwarmActionBid | None:
        return self.env.load(self.addresses.swarm_action_bid(action_hash), SwarmActionBid)

    def get_vote_bid_record(self, action_hash: bytes, vote_nullifier: bytes) -> VoteBidRecord | None:
        action = self.addresses.swarm_action_bid(action_hash)
        return self.env.load(self.addresses.vote_bid_record(action, vote_nullifier), VoteBidRecord)

    def get_aggregator(self, epoch: int) -> SignalAggregator | None:
        return self.env.load(self.addresses.aggregator(epoch), SignalAggregator)

    def get_withdrawal(self, identity_commitment: bytes) -> WithdrawalRequest | None:
        agent = self.addresses.agent(identity_commitment)
        return self.env.load(self.addresses.withdrawal(agent), WithdrawalRequest)

    def get_collateral_withdrawal(self, identity_commitment: bytes) -> CollateralWithdrawal | None:
        agent = self.addresses.agent(identity_commitment)
        return self.env.load(self.addresses.collateral_withdrawal(agent), CollateralWithdrawal)

    def get_identity_link(self, owner: bytes) -> IdentityLink | None:
        return self.env.load(self.addresses.identity_link(owner), IdentityLink)

    def balance_of(self, owner: bytes) -> int:
        return self.env.balance(self.addresses.token_account(ensure_bytes32(owner, "owner")))

    def treasury_balance(self) -> int:
        return self.env.balance(self.addresses.treasury())

    def stake_vault_balance(self) -> int:
        return self.env.balance(self.addresses.stake_vault())

    def collateral_vault_balance(self, identity_commitment: bytes) -> int:
        return self.env.balance(self.addresses.collateral_vault(self.addresses.agent(identity_commitment)))

    def is_nullifier_used(
        self,
        nullifier: bytes,
        epoch: int,
        scope: NullifierScope = NullifierScope.SIGNAL,
        action: bytes | None = None,
    ) -> bool:
        return NullifierLedger(self.env).is_used(scope, nullifier, epoch, action)

    def mint(self, owner: bytes, amount: int) -> int:
        """Credit tokens to an owner; host faucet for local ledgers and tests."""
        if amount <= 0:
            raise ValidationException("amount must be positive", field="amount", value=amount)
        owner = ensure_bytes32(owner, "owner")
        with self.store.atomic():
            self.env.credit(self.addresses.token_account(owner), owner, amount)
        return self.balance_of(owner)
