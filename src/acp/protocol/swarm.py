# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Swarm action: propose -> vote (hidden) -> reveal -> execute.

Votes are stored as commitments and tallied only on reveal. Execution
is permitted once the deadline has passed and the unweighted tally meets
the threshold::

    votes_for * 100 >= threshold * (votes_for + votes_against)

with at least one revealed vote. Weighted tallies from identity links
are recorded alongside but do not gate execution.

Terminal states are EXECUTED and EXPIRED; after either, no votes or
reveals are accepted.
"""

from __future__ import annotations

import logging

from ..core.exceptions import CommitmentMismatchError, ProtocolError, RejectReason, ValidationException
from ..crypto import commitments
from ..crypto.field import ensure_bytes32
from ..crypto.proof import Groth16Proof, PublicInputs
from .collateral import linked_vote_weight
from .models import (
    CREATE_SWARM_ACTION_FEE,
    MAX_PERCENT,
    ActionStatus,
    NullifierScope,
    Registry,
    SlashReason,
    SwarmAction,
    VoteRecord,
    VoteValue,
)
from .nullifiers import NullifierLedger
from .registry import charge_fee, load_registry, require_not_paused, save_registry
from .state import LedgerContext, ProtocolEnv

logger = logging.getLogger(__name__)


def validate_threshold(threshold: int) -> int:
    if not 1 <= threshold <= MAX_PERCENT:
        raise ValidationException("threshold must be between 1 and 100", field="threshold", value=threshold)
    return threshold


def is_approved(votes_for: int, votes_against: int, threshold: int) -> bool:
    total = votes_for + votes_against
    return total > 0 and votes_for * MAX_PERCENT >= threshold * total


def require_open(status: ActionStatus) -> None:
    if status == ActionStatus.EXECUTED:
        raise ProtocolError(RejectReason.ALREADY_EXECUTED, "action already executed")
    if status == ActionStatus.EXPIRED:
        raise ProtocolError(RejectReason.ACTION_CLOSED, "action expired")


def verify_proposal(
    env: ProtocolEnv,
    ctx: LedgerContext,
    nullifier: bytes,
    action_hash: bytes,
    proof: Groth16Proof,
) -> Registry:
    """Shared proposer checks for both action kinds; returns the registry."""
    registry = load_registry(env)
    require_not_paused(registry)
    public_inputs = PublicInputs.for_create_action(registry.agents_root, nullifier, action_hash, registry.min_stake)
    if not env.verifier.verify(proof, public_inputs):
        logger.warning(f"Rejected proposer proof for action {action_hash.hex()[:16]}")
        raise ProtocolError(RejectReason.INVALID_PROOF, "proposer proof rejected")
    NullifierLedger(env).consume(NullifierScope.PROPOSE, nullifier, registry.epoch)
    charge_fee(env, registry, ctx.caller, CREATE_SWARM_ACTION_FEE, "swarm action")
    registry.swarm_action_count += 1
    return registry


def create_swarm_action(
    env: ProtocolEnv,
    ctx: LedgerContext,
    nullifier: bytes,
    action_hash: bytes,
    threshold: int,
    proof: Groth16Proof,
) -> SwarmAction:
    nullifier = ensure_bytes32(nullifier, "nullifier")
    action_hash = ensure_bytes32(action_hash, "action_hash")
    validate_threshold(threshold)

    address = env.addresses.swarm_action(action_hash)
    if env.exists(address):
        raise ProtocolError(RejectReason.ACTION_EXISTS, "an action with this hash already exists")

    registry = verify_proposal(env, ctx, nullifier, action_hash, proof)
    action = SwarmAction(
        proposer_nullifier=nullifier,
        action_hash=action_hash,
        threshold=threshold,
        created_slot=ctx.slot,
        deadline_slot=ctx.slot + env.settings.voting_window_slots,
    )
    env.save(address, action)
    save_registry(env, registry)

    env.emit("swarm_action_created", action_hash=action_hash.hex(), threshold=threshold, deadline_slot=action.deadline_slot)
    logger.info(f"Swarm action {action_hash.hex()[:16]} created (threshold {threshold}%, deadline {action.deadline_slot})")
    return action


def vote_swarm_action(
    env: ProtocolEnv,
    ctx: LedgerContext,
    action_hash: bytes,
    vote_nullifier: bytes,
    vote_commitment: bytes,
    proof: Groth16Proof,
) -> VoteRecord:
    """Store a hidden vote. The tally is untouched until reveal."""
    action_hash = ensure_bytes32(action_hash, "action_hash")
    vote_nullifier = ensure_bytes32(vote_nullifier, "vote_nullifier")
    vote_commitment = ensure_bytes32(vote_commitment, "vote_commitment")

    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.swarm_action(action_hash)
    action = env.require(address, SwarmAction, action_hash)
    require_open(action.status)
    if ctx.slot > action.deadline_slot:
        raise ProtocolError(RejectReason.VOTING_CLOSED, f"voting closed at slot {action.deadline_slot}")

    public_inputs = PublicInputs.for_vote(registry.agents_root, vote_nullifier, vote_commitment, action_hash)
    if not env.verifier.verify(proof, public_inputs):
        logger.warning(f"Rejected vote proof on action {action_hash.hex()[:16]}")
        raise ProtocolError(RejectReason.INVALID_PROOF, "vote proof rejected")

    NullifierLedger(env).consume(NullifierScope.VOTE, vote_nullifier, registry.epoch, action=address)
    record_address = env.addresses.vote_record(address, vote_nullifier)
    if env.exists(record_address):
        raise ProtocolError(RejectReason.NULLIFIER_USED, "a vote with this nullifier is already recorded")
    record = VoteRecord(
        swarm_action=address,
        vote_nullifier=vote_nullifier,
        vote_commitment=vote_commitment,
    )
    env.save(record_address, record)
    action.vote_count += 1
    env.save(address, action)

    env.emit("swarm_vote_cast", action=address.hex(), nullifier=vote_nullifier.hex(), vote_count=action.vote_count)
    logger.info(f"Vote {action.vote_count} cast on action {action_hash.hex()[:16]}")
    return record


def reveal_vote(
    env: ProtocolEnv,
    ctx: LedgerContext,
    action_hash: bytes,
    vote_nullifier: bytes,
    vote: bool,
    salt: bytes,
    identity_link_owner: bytes | None = None,
) -> VoteRecord:
    """Open a vote and add it to the tally.

    When ``identity_link_owner`` is given (and is the caller), the link's
    stake times its duration multiplier is added to the weighted tally.
    """
    action_hash = ensure_bytes32(action_hash, "action_hash")
    vote_nullifier = ensure_bytes32(vote_nullifier, "vote_nullifier")
    salt = ensure_bytes32(salt, "salt")

    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.swarm_action(action_hash)
    action = env.require(address, SwarmAction, action_hash)
    require_open(action.status)

    record_address = env.addresses.vote_record(address, vote_nullifier)
    record = env.require(record_address, VoteRecord, vote_nullifier)
    if record.revealed:
        raise ProtocolError(RejectReason.ALREADY_REVEALED, "vote already revealed")

    expected = commitments.vote_commitment(vote, salt, action_hash, hasher=env.hasher)
    if not commitments.commitments_equal(expected, record.vote_commitment):
        logger.warning(
            f"Vote commitment mismatch on action {action_hash.hex()[:16]} "
            f"(slash category {SlashReason.VOTE_COMMITMENT_MISMATCH.name})"
        )
        raise CommitmentMismatchError(
            RejectReason.VOTE_COMMITMENT_MISMATCH,
            SlashReason.VOTE_COMMITMENT_MISMATCH,
            action_hash=action_hash.hex(),
            vote_nullifier=vote_nullifier.hex(),
        )

    weight = linked_vote_weight(env, ctx, identity_link_owner) if identity_link_owner is not None else 0
    if vote:
        action.votes_for += 1
        action.weighted_votes_for += weight
    else:
        action.votes_against += 1
        action.weighted_votes_against += weight
    record.revealed = True
    record.vote_value = VoteValue.YES if vote else VoteValue.NO
    record.weighted_vote = weight
    env.save(record_address, record)
    env.save(address, action)

    env.emit("swarm_vote_revealed", action=address.hex(), vote=vote, votes_for=action.votes_for, votes_against=action.votes_against)
    logger.info(f"Vote revealed on {action_hash.hex()[:16]}: {action.votes_for} for / {action.votes_against} against")
    return record


def execute_swarm_action(env: ProtocolEnv, ctx: LedgerContext, action_hash: bytes) -> SwarmAction:
    action_hash = ensure_bytes32(action_hash, "action_hash")
    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.swarm_action(action_hash)
    action = env.require(address, SwarmAction, action_hash)
    require_open(action.status)
    if ctx.slot <= action.deadline_slot:
        raise ProtocolError(RejectReason.VOTING_OPEN, f"voting open until slot {action.deadline_slot}")
    if not is_approved(action.votes_for, action.votes_against, action.threshold):
        raise ProtocolError(
            RejectReason.THRESHOLD_NOT_MET,
            f"approval {action.approval_ratio:.1%} below threshold {action.threshold}%",
            votes_for=action.votes_for,
            votes_against=action.votes_against,
        )

    action.status = ActionStatus.EXECUTED
    env.save(address, action)
    env.emit("swarm_action_executed", action_hash=action_hash.hex(), votes_for=action.votes_for, votes_against=action.votes_against)
    logger.info(f"Swarm action {action_hash.hex()[:16]} executed ({action.approval_ratio:.1%} approval)")
    return action


def close_swarm_action(env: ProtocolEnv, ctx: LedgerContext, action_hash: bytes) -> SwarmAction:
    """Record EXPIRED for an action past its deadline that was not executed."""
    action_hash = ensure_bytes32(action_hash, "action_hash")
    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.swarm_action(action_hash)
    action = env.require(address, SwarmAction, action_hash)
    require_open(action.status)
    if ctx.slot <= action.deadline_slot:
        raise ProtocolError(RejectReason.VOTING_OPEN, f"voting open until slot {action.deadline_slot}")
    action.status = ActionStatus.EXPIRED
    env.save(address, action)
    logger.info(f"Swarm action {action_hash.hex()[:16]} expired")
    return action
