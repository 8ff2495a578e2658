# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""ACPClient - what an agent or operator uses to drive the protocol.

Every mutating call validates its inputs locally, then submits through
the retry layer. Admin calls are signed once and the same signed op is
resubmitted, so an admin op whose response was lost cannot land twice.
``deposit_collateral`` has no replay guard and is retried only after
failures the ledger reports before touching state.

Example:
    ledger = InProcessLedger(ProtocolEngine(verifier))
    client = ACPClient(ledger, caller=owner_key)
    salt = generate_salt()
    client.vote_swarm_action(action_hash, vote_nullifier, vote_commitment(True, salt, action_hash), proof)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Collection
from typing import Any, TypeVar

from ..core.config import ACPSettings, get_config
from ..core.exceptions import (
    ConfigException,
    ProtocolError,
    RejectReason,
    TransientKind,
    TransientLedgerError,
    ValidationException,
)
from ..core.logging import correlation_context, operation_logger
from ..crypto.authority import AdminAuth, AdminSigner
from ..crypto.field import ensure_bytes32
from ..crypto.proof import Groth16Proof
from ..protocol.addresses import AddressBook
from ..protocol.layout import decode_account
from ..protocol.models import (
    MAX_PERCENT,
    Agent,
    CollateralWithdrawal,
    IdentityLink,
    NullifierRecord,
    NullifierScope,
    Registry,
    RegistryConfig,
    Signal,
    SignalAggregator,
    SlashReason,
    SwarmAction,
    SwarmActionBid,
    TokenAccount,
    VoteBidRecord,
    VoteRecord,
    WithdrawalRequest,
)
from ..protocol.registry import (
    OP_ADVANCE_EPOCH,
    OP_BURN_FROM_TREASURY,
    OP_INITIALIZE,
    OP_PAUSE,
    OP_SLASH,
    OP_UNPAUSE,
    OP_UPDATE_CONFIG,
    OP_UPDATE_MIN_SIGNAL_COLLATERAL,
    OP_UPDATE_ROOT,
    validate_config,
)
from ..protocol.swarm import validate_threshold
from .retry import NOT_APPLIED_KINDS, RetryPolicy, with_retry
from .transport import LedgerTransport, Operation, Receipt

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Every other operation is rejected on replay (nullifier, existence,
# status or admin nonce checks), so a blind retry cannot apply it twice.
REPLAY_UNSAFE_OPERATIONS = frozenset({"deposit_collateral"})


def _positive(name: str, value: int) -> int:
    if value <= 0:
        raise ValidationException(f"{name} must be positive", field=name, value=value)
    return value


def _percent(name: str, value: int) -> int:
    if not 0 <= value <= MAX_PERCENT:
        raise ValidationException(f"{name} must be between 0 and 100", field=name, value=value)
    return value


def _proof(proof: Groth16Proof) -> Groth16Proof:
    if not isinstance(proof, Groth16Proof):
        raise ValidationException("proof must be a Groth16Proof", field="proof")
    return proof


class ACPClient:
    """Protocol client bound to one transport and one caller identity."""

    def __init__(
        self,
        transport: LedgerTransport,
        caller: bytes,
        signer: AdminSigner | None = None,
        policy: RetryPolicy | None = None,
        settings: ACPSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_config()
        self.transport = transport
        self.caller = ensure_bytes32(caller, "caller")
        self.signer = signer
        self.policy = policy or RetryPolicy.from_settings(self.settings)
        self.addresses = AddressBook(self.settings.program_id)
        self._sleep = sleep

    # -- submission ------------------------------------------------------------

    def _retry(
        self,
        fn: Callable[[], T],
        op_name: str,
        retry_on: Collection[TransientKind] | None = None,
    ) -> T:
        with correlation_context():
            return with_retry(fn, self.policy, sleep=self._sleep, op_name=op_name, retry_on=retry_on)

    def _submit(self, name: str, **args: Any) -> Receipt:
        operation = Operation(name, args)
        operation_logger.log_submit(name, args)
        retry_on = NOT_APPLIED_KINDS if name in REPLAY_UNSAFE_OPERATIONS else None
        return self._retry(lambda: self.transport.submit(operation, self.caller), name, retry_on)

    def _submit_admin(
        self,
        name: str,
        op: str,
        payload: Callable[[Registry | None], dict[str, Any]],
        **args: Any,
    ) -> Receipt:
        """Sign once and resubmit the same signed op on retry.

        A replay of an op that already landed fails the ledger's nonce
        check. The op is re-signed against a fresh nonce only while no
        earlier attempt can have been applied.
        """
        if self.signer is None:
            raise ConfigException(f"{name} is an admin operation and needs an AdminSigner")
        signer = self.signer
        auth: AdminAuth | None = None
        in_doubt = False

        def sign() -> AdminAuth:
            registry = None
            if op != OP_INITIALIZE:
                registry = self._fetch(self.addresses.registry(), Registry)
                if registry is None:
                    raise ProtocolError(RejectReason.NOT_INITIALIZED, "registry not initialized")
            nonce = registry.admin_nonce if registry is not None else 0
            return signer.sign(op, nonce, payload(registry))

        def attempt() -> Receipt:
            nonlocal auth, in_doubt
            if auth is None:
                auth = sign()
            try:
                return self.transport.submit(Operation(name, {**args, "auth": auth}), self.caller)
            except TransientLedgerError as e:
                if e.kind == TransientKind.STALE_STATE:
                    if in_doubt:
                        raise ProtocolError(
                            RejectReason.ADMIN_NONCE_CONSUMED,
                            f"admin nonce {auth.nonce} was consumed after an unconfirmed {name}; "
                            "it may already have been applied",
                            nonce=auth.nonce,
                        ) from e
                    auth = None
                elif e.kind not in NOT_APPLIED_KINDS:
                    in_doubt = True
                raise

        operation_logger.log_submit(name, args)
        return self._retry(attempt, name)

    # -- registry (admin) --------------------------------------------------------

    def initialize(self, config: RegistryConfig) -> Receipt:
        validate_config(config)
        return self._submit_admin("initialize", OP_INITIALIZE, lambda _: config.to_dict(), config=config)

    def update_root(self, new_root: bytes, agent_count: int) -> Receipt:
        new_root = ensure_bytes32(new_root, "new_root")
        if agent_count < 0:
            raise ValidationException("agent_count must be non-negative", field="agent_count", value=agent_count)
        return self._submit_admin(
            "update_root",
            OP_UPDATE_ROOT,
            lambda _: {"new_root": new_root, "agent_count": agent_count},
            new_root=new_root,
            agent_count=agent_count,
        )

    def pause(self) -> Receipt:
        return self._submit_admin("pause", OP_PAUSE, lambda _: {})

    def unpause(self) -> Receipt:
        return self._submit_admin("unpause", OP_UNPAUSE, lambda _: {})

    def update_config(self, config: RegistryConfig) -> Receipt:
        validate_config(config)
        return self._submit_admin("update_config", OP_UPDATE_CONFIG, lambda _: config.to_dict(), config=config)

    def update_min_signal_collateral(self, amount: int) -> Receipt:
        if amount < 0:
            raise ValidationException("min_signal_collateral must be non-negative", field="amount", value=amount)
        return self._submit_admin(
            "update_min_signal_collateral",
            OP_UPDATE_MIN_SIGNAL_COLLATERAL,
            lambda _: {"amount": amount},
            amount=amount,
        )

    def advance_epoch(self) -> Receipt:
        return self._submit_admin("advance_epoch", OP_ADVANCE_EPOCH, lambda registry: {"epoch": registry.epoch})

    def burn_from_treasury(self, amount: int) -> Receipt:
        _positive("amount", amount)
        return self._submit_admin(
            "burn_from_treasury", OP_BURN_FROM_TREASURY, lambda _: {"amount": amount}, amount=amount
        )

    def slash(
        self,
        identity_commitment: bytes,
        amount: int,
        reason: SlashReason,
        evidence: dict[str, Any] | None = None,
    ) -> Receipt:
        identity_commitment = ensure_bytes32(identity_commitment, "identity_commitment")
        _positive("amount", amount)
        try:
            reason = SlashReason(reason)
        except ValueError:
            raise ValidationException(f"invalid slash reason: {reason}", field="reason", value=reason)
        return self._submit_admin(
            "slash",
            OP_SLASH,
            lambda _: {"identity_commitment": identity_commitment, "amount": amount, "reason": int(reason)},
            identity_commitment=identity_commitment,
            amount=amount,
            reason=reason,
            evidence=evidence,
        )

    # -- agents ----------------------------------------------------------------

    def register_agent(self, identity_commitment: bytes, stake: int) -> Receipt:
        return self._submit(
            "register_agent",
            identity_commitment=ensure_bytes32(identity_commitment, "identity_commitment"),
            stake=_positive("stake", stake),
        )

    # -- signals ---------------------------------------------------------------

    def submit_signal(self, nullifier: bytes, commitment: bytes, proof: Groth16Proof) -> Receipt:
        return self._submit(
            "submit_signal",
            nullifier=ensure_bytes32(nullifier, "nullifier"),
            commitment=ensure_bytes32(commitment, "commitment"),
            proof=_proof(proof),
        )

    def reveal_signal(
        self,
        commitment: bytes,
        signal_type: int,
        direction: int,
        confidence: int,
        magnitude: int,
        stake_amount: int,
        blinding: bytes,
    ) -> Receipt:
        if stake_amount < 0:
            raise ValidationException("stake_amount must be non-negative", field="stake_amount", value=stake_amount)
        return self._submit(
            "reveal_signal",
            commitment=ensure_bytes32(commitment, "commitment"),
            signal_type=int(signal_type),
            direction=int(direction),
            confidence=_percent("confidence", confidence),
            magnitude=_percent("magnitude", magnitude),
            stake_amount=stake_amount,
            blinding=ensure_bytes32(blinding, "blinding"),
        )

    def init_aggregator(self, epoch: int) -> Receipt:
        if epoch < 0:
            raise ValidationException("epoch must be non-negative", field="epoch", value=epoch)
        return self._submit("init_aggregator", epoch=epoch)

    # -- swarm actions ---------------------------------------------------------

    def create_swarm_action(
        self, nullifier: bytes, action_hash: bytes, threshold: int, proof: Groth16Proof
    ) -> Receipt:
        return self._submit(
            "create_swarm_action",
            nullifier=ensure_bytes32(nullifier, "nullifier"),
            action_hash=ensure_bytes32(action_hash, "action_hash"),
            threshold=validate_threshold(threshold),
            proof=_proof(proof),
        )

    def vote_swarm_action(
        self, action_hash: bytes, vote_nullifier: bytes, vote_commitment: bytes, proof: Groth16Proof
    ) -> Receipt:
        return self._submit(
            "vote_swarm_action",
            action_hash=ensure_bytes32(action_hash, "action_hash"),
            vote_nullifier=ensure_bytes32(vote_nullifier, "vote_nullifier"),
            vote_commitment=ensure_bytes32(vote_commitment, "vote_commitment"),
            proof=_proof(proof),
        )

    def reveal_vote(
        self,
        action_hash: bytes,
        vote_nullifier: bytes,
        vote: bool,
        salt: bytes,
        identity_link_owner: bytes | None = None,
    ) -> Receipt:
        return self._submit(
            "reveal_vote",
            action_hash=ensure_bytes32(action_hash, "action_hash"),
            vote_nullifier=ensure_bytes32(vote_nullifier, "vote_nullifier"),
            vote=bool(vote),
            salt=ensure_bytes32(salt, "salt"),
            identity_link_owner=(
                ensure_bytes32(identity_link_owner, "identity_link_owner") if identity_link_owner is not None else None
            ),
        )

    def execute_swarm_action(self, action_hash: bytes) -> Receipt:
        return self._submit("execute_swarm_action", action_hash=ensure_bytes32(action_hash, "action_hash"))

    def close_swarm_action(self, action_hash: bytes) -> Receipt:
        return self._submit("close_swarm_action", action_hash=ensure_bytes32(action_hash, "action_hash"))

    # -- sealed-bid swarm actions ----------------------------------------------

    def create_swarm_action_bid(
        self,
        nullifier: bytes,
        action_hash: bytes,
        threshold: int,
        min_bid: int,
        vote_window_slots: int,
        reveal_window_slots: int,
        proof: Groth16Proof,
    ) -> Receipt:
        _positive("min_bid", min_bid)
        _positive("vote_window_slots", vote_window_slots)
        if reveal_window_slots <= vote_window_slots:
            raise ValidationException(
                "reveal deadline must come after vote deadline",
                field="reveal_window_slots",
                value=reveal_window_slots,
            )
        return self._submit(
            "create_swarm_action_bid",
            nullifier=ensure_bytes32(nullifier, "nullifier"),
            action_hash=ensure_bytes32(action_hash, "action_hash"),
            threshold=validate_threshold(threshold),
            min_bid=min_bid,
            vote_window_slots=vote_window_slots,
            reveal_window_slots=reveal_window_slots,
            proof=_proof(proof),
        )

    def vote_swarm_action_bid(
        self,
        action_hash: bytes,
        vote_nullifier: bytes,
        vote_commitment: bytes,
        bid_commitment: bytes,
        proof: Groth16Proof,
    ) -> Receipt:
        return self._submit(
            "vote_swarm_action_bid",
            action_hash=ensure_bytes32(action_hash, "action_hash"),
            vote_nullifier=ensure_bytes32(vote_nullifier, "vote_nullifier"),
            vote_commitment=ensure_bytes32(vote_commitment, "vote_commitment"),
            bid_commitment=ensure_bytes32(bid_commitment, "bid_commitment"),
            proof=_proof(proof),
        )

    def reveal_vote_bid(
        self,
        action_hash: bytes,
        vote_nullifier: bytes,
        vote: bool,
        vote_salt: bytes,
        bid_amount: int,
        bid_salt: bytes,
    ) -> Receipt:
        if bid_amount < 0:
            raise ValidationException("bid_amount must be non-negative", field="bid_amount", value=bid_amount)
        return self._submit(
            "reveal_vote_bid",
            action_hash=ensure_bytes32(action_hash, "action_hash"),
            vote_nullifier=ensure_bytes32(vote_nullifier, "vote_nullifier"),
            vote=bool(vote),
            vote_salt=ensure_bytes32(vote_salt, "vote_salt"),
            bid_amount=bid_amount,
            bid_salt=ensure_bytes32(bid_salt, "bid_salt"),
        )

    def execute_swarm_action_bid(self, action_hash: bytes) -> Receipt:
        return self._submit("execute_swarm_action_bid", action_hash=ensure_bytes32(action_hash, "action_hash"))

    def close_swarm_action_bid(self, action_hash: bytes) -> Receipt:
        return self._submit("close_swarm_action_bid", action_hash=ensure_bytes32(action_hash, "action_hash"))

    # -- identity links, collateral, stake ---------------------------------------

    def link_identity(self, identity_commitment: bytes, reputation_agent: bytes) -> Receipt:
        return self._submit(
            "link_identity",
            identity_commitment=ensure_bytes32(identity_commitment, "identity_commitment"),
            reputation_agent=ensure_bytes32(reputation_agent, "reputation_agent"),
        )

    def refresh_stake(self) -> Receipt:
        return self._submit("refresh_stake")

    def unlink_identity(self) -> Receipt:
        return self._submit("unlink_identity")

    def deposit_collateral(self, identity_commitment: bytes, amount: int) -> Receipt:
        return self._submit(
            "deposit_collateral",
            identity_commitment=ensure_bytes32(identity_commitment, "identity_commitment"),
            amount=_positive("amount", amount),
        )

    def request_collateral_withdrawal(self, identity_commitment: bytes, amount: int) -> Receipt:
        return self._submit(
            "request_collateral_withdrawal",
            identity_commitment=ensure_bytes32(identity_commitment, "identity_commitment"),
            amount=_positive("amount", amount),
        )

    def claim_collateral_withdrawal(self, identity_commitment: bytes) -> Receipt:
        return self._submit(
            "claim_collateral_withdrawal",
            identity_commitment=ensure_bytes32(identity_commitment, "identity_commitment"),
        )

    def cancel_collateral_withdrawal(self, identity_commitment: bytes) -> Receipt:
        return self._submit(
            "cancel_collateral_withdrawal",
            identity_commitment=ensure_bytes32(identity_commitment, "identity_commitment"),
        )

    def request_stake_withdrawal(self, identity_commitment: bytes) -> Receipt:
        return self._submit(
            "request_stake_withdrawal",
            identity_commitment=ensure_bytes32(identity_commitment, "identity_commitment"),
        )

    def claim_stake_withdrawal(self, identity_commitment: bytes) -> Receipt:
        return self._submit(
            "claim_stake_withdrawal",
            identity_commitment=ensure_bytes32(identity_commitment, "identity_commitment"),
        )

    def cancel_stake_withdrawal(self, identity_commitment: bytes) -> Receipt:
        return self._submit(
            "cancel_stake_withdrawal",
            identity_commitment=ensure_bytes32(identity_commitment, "identity_commitment"),
        )

    # -- reads -----------------------------------------------------------------

    def _fetch(self, address: bytes, record_type: type[T]) -> T | None:
        data = self.transport.get_account(address)
        if data is None:
            return None
        return decode_account(data, expected=record_type)

    def _read(self, address: bytes, record_type: type[T]) -> T | None:
        return self._retry(lambda: self._fetch(address, record_type), f"read {record_type.__name__}")

    def get_registry(self) -> Registry | None:
        return self._read(self.addresses.registry(), Registry)

    def get_agent(self, identity_commitment: bytes) -> Agent | None:
        return self._read(self.addresses.agent(identity_commitment), Agent)

    def get_signal(self, commitment: bytes) -> Signal | None:
        return self._read(self.addresses.signal(commitment), Signal)

    def get_aggregator(self, epoch: int) -> SignalAggregator | None:
        return self._read(self.addresses.aggregator(epoch), SignalAggregator)

    def get_swarm_action(self, action_hash: bytes) -> SwarmAction | None:
        return self._read(self.addresses.swarm_action(action_hash), SwarmAction)

    def get_vote_record(self, action_hash: bytes, vote_nullifier: bytes) -> VoteRecord | None:
        action = self.addresses.swarm_action(action_hash)
        return self._read(self.addresses.vote_record(action, vote_nullifier), VoteRecord)

    def get_swarm_action_bid(self, action_hash: bytes) -> SwarmActionBid | None:
        return self._read(self.addresses.swarm_action_bid(action_hash), SwarmActionBid)

    def get_vote_bid_record(self, action_hash: bytes, vote_nullifier: bytes) -> VoteBidRecord | None:
        action = self.addresses.swarm_action_bid(action_hash)
        return self._read(self.addresses.vote_bid_record(action, vote_nullifier), VoteBidRecord)

    def get_withdrawal(self, identity_commitment: bytes) -> WithdrawalRequest | None:
        return self._read(self.addresses.withdrawal(self.addresses.agent(identity_commitment)), WithdrawalRequest)

    def get_collateral_withdrawal(self, identity_commitment: bytes) -> CollateralWithdrawal | None:
        agent = self.addresses.agent(identity_commitment)
        return self._read(self.addresses.collateral_withdrawal(agent), CollateralWithdrawal)

    def get_identity_link(self, owner: bytes | None = None) -> IdentityLink | None:
        return self._read(self.addresses.identity_link(owner or self.caller), IdentityLink)

    def balance_of(self, owner: bytes | None = None) -> int:
        token = self._read(self.addresses.token_account(owner or self.caller), TokenAccount)
        return token.amount if token is not None else 0

    def treasury_balance(self) -> int:
        token = self._read(self.addresses.treasury(), TokenAccount)
        return token.amount if token is not None else 0

    def is_nullifier_used(
        self,
        nullifier: bytes,
        epoch: int,
        scope: NullifierScope = NullifierScope.SIGNAL,
        action_hash: bytes | None = None,
    ) -> bool:
        """Whether ``nullifier`` would be rejected as a replay.

        Epoch scopes compare against ``epoch``; vote scopes need the
        ``action_hash`` and ignore the epoch.
        """
        if scope in (NullifierScope.SIGNAL, NullifierScope.PROPOSE):
            address = self.addresses.nullifier(scope, nullifier)
        elif action_hash is None:
            raise ValidationException(f"{scope.name} nullifiers need an action_hash", field="action_hash")
        elif scope == NullifierScope.VOTE:
            address = self.addresses.vote_nullifier(self.addresses.swarm_action(action_hash), nullifier)
        else:
            address = self.addresses.vote_bid_nullifier(self.addresses.swarm_action_bid(action_hash), nullifier)
        record = self._read(address, NullifierRecord)
        if record is None:
            return False
        if scope in (NullifierScope.SIGNAL, NullifierScope.PROPOSE):
            return record.epoch == epoch
        return True

    def close(self) -> None:
        self.transport.close()
