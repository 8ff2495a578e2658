"""Swarm action with sealed bidding.

Phases, by slot::

    created .. vote_deadline            vote + bid commitments accepted
    vote_deadline+1 .. reveal_deadline  reveals accepted
    > reveal_deadline                   execute or close

The winner is tracked as a running maximum over reveals: a YES reveal
whose bid is at least ``min_bid`` and strictly greater than the current
highest takes the lead, so ties go to the earliest reveal.
"""

from __future__ import annotations

import logging

from ..core.exceptions import CommitmentMismatchError, ProtocolError, RejectReason, ValidationException
from ..crypto import commitments
from ..crypto.field import ensure_bytes32
from ..crypto.proof import Groth16Proof, PublicInputs
from .models import (
    ActionStatus,
    NullifierScope,
    SlashReason,
    SwarmActionBid,
    VoteBidRecord,
    VoteValue,
)
from .nullifiers import NullifierLedger
from .registry import load_registry, require_not_paused, save_registry
from .state import LedgerContext, ProtocolEnv
from .swarm import is_approved, require_open, validate_threshold, verify_proposal

logger = logging.getLogger(__name__)


def create_swarm_action_bid(
    env: ProtocolEnv,
    ctx: LedgerContext,
    nullifier: bytes,
    action_hash: bytes,
    threshold: int,
    min_bid: int,
    vote_window_slots: int,
    reveal_window_slots: int,
    proof: Groth16Proof,
) -> SwarmActionBid:
    """Propose a sealed-bid action.

    Both windows are counted from the creation slot, so
    ``reveal_window_slots`` must exceed ``vote_window_slots``.
    """
    nullifier = ensure_bytes32(nullifier, "nullifier")
    action_hash = ensure_bytes32(action_hash, "action_hash")
    validate_threshold(threshold)
    if min_bid <= 0:
        raise ValidationException("min_bid must be positive", field="min_bid", value=min_bid)
    if vote_window_slots <= 0:
        raise ValidationException("vote window must be positive", field="vote_window_slots", value=vote_window_slots)
    if reveal_window_slots <= vote_window_slots:
        raise ValidationException(
            "reveal deadline must come after vote deadline",
            field="reveal_window_slots",
            value=reveal_window_slots,
        )

    address = env.addresses.swarm_action_bid(action_hash)
    if env.exists(address):
        raise ProtocolError(RejectReason.ACTION_EXISTS, "a bid action with this hash already exists")

    registry = verify_proposal(env, ctx, nullifier, action_hash, proof)
    action = SwarmActionBid(
        proposer_nullifier=nullifier,
        action_hash=action_hash,
        threshold=threshold,
        min_bid=min_bid,
        created_slot=ctx.slot,
        vote_deadline_slot=ctx.slot + vote_window_slots,
        reveal_deadline_slot=ctx.slot + reveal_window_slots,
    )
    env.save(address, action)
    save_registry(env, registry)

    env.emit(
        "swarm_action_bid_created",
        action_hash=action_hash.hex(),
        threshold=threshold,
        min_bid=min_bid,
        vote_deadline_slot=action.vote_deadline_slot,
        reveal_deadline_slot=action.reveal_deadline_slot,
    )
    logger.info(
        f"Bid action {action_hash.hex()[:16]} created (min bid {min_bid}, "
        f"votes until {action.vote_deadline_slot}, reveals until {action.reveal_deadline_slot})"
    )
    return action


def vote_swarm_action_bid(
    env: ProtocolEnv,
    ctx: LedgerContext,
    action_hash: bytes,
    vote_nullifier: bytes,
    vote_commitment: bytes,
    bid_commitment: bytes,
    proof: Groth16Proof,
) -> VoteBidRecord:
    action_hash = ensure_bytes32(action_hash, "action_hash")
    vote_nullifier = ensure_bytes32(vote_nullifier, "vote_nullifier")
    vote_commitment = ensure_bytes32(vote_commitment, "vote_commitment")
    bid_commitment = ensure_bytes32(bid_commitment, "bid_commitment")

    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.swarm_action_bid(action_hash)
    action = env.require(address, SwarmActionBid, action_hash)
    require_open(action.status)
    if ctx.slot > action.vote_deadline_slot:
        raise ProtocolError(RejectReason.VOTING_CLOSED, f"voting closed at slot {action.vote_deadline_slot}")

    public_inputs = PublicInputs.for_vote_bid(
        registry.agents_root,
        vote_nullifier,
        vote_commitment,
        bid_commitment,
        action_hash,
        action.min_bid,
    )
    if not env.verifier.verify(proof, public_inputs):
        logger.warning(f"Rejected vote+bid proof on action {action_hash.hex()[:16]}")
        raise ProtocolError(RejectReason.INVALID_PROOF, "vote+bid proof rejected")

    NullifierLedger(env).consume(NullifierScope.VOTE_BID, vote_nullifier, registry.epoch, action=address)
    record_address = env.addresses.vote_bid_record(address, vote_nullifier)
    if env.exists(record_address):
        raise ProtocolError(RejectReason.NULLIFIER_USED, "a vote with this nullifier is already recorded")
    record = VoteBidRecord(
        swarm_action=address,
        vote_nullifier=vote_nullifier,
        vote_commitment=vote_commitment,
        bid_commitment=bid_commitment,
    )
    env.save(record_address, record)
    action.vote_count += 1
    env.save(address, action)

    env.emit("swarm_vote_bid_cast", action=address.hex(), nullifier=vote_nullifier.hex(), vote_count=action.vote_count)
    return record


def reveal_vote_bid(
    env: ProtocolEnv,
    ctx: LedgerContext,
    action_hash: bytes,
    vote_nullifier: bytes,
    vote: bool,
    vote_salt: bytes,
    bid_amount: int,
    bid_salt: bytes,
) -> tuple[VoteBidRecord, bool]:
    """Open a vote and bid.

    Returns:
        The updated record and whether this reveal now holds the highest
        qualifying bid.

    Raises:
        CommitmentMismatchError: VOTE_COMMITMENT_MISMATCH or
            BID_COMMITMENT_MISMATCH; both carry the vote slash category.
    """
    action_hash = ensure_bytes32(action_hash, "action_hash")
    vote_nullifier = ensure_bytes32(vote_nullifier, "vote_nullifier")
    vote_salt = ensure_bytes32(vote_salt, "vote_salt")
    bid_salt = ensure_bytes32(bid_salt, "bid_salt")
    if bid_amount < 0:
        raise ValidationException("bid_amount must be non-negative", field="bid_amount", value=bid_amount)

    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.swarm_action_bid(action_hash)
    action = env.require(address, SwarmActionBid, action_hash)
    require_open(action.status)
    if ctx.slot <= action.vote_deadline_slot:
        raise ProtocolError(RejectReason.REVEAL_NOT_OPEN, f"reveals open after slot {action.vote_deadline_slot}")
    if ctx.slot > action.reveal_deadline_slot:
        raise ProtocolError(RejectReason.REVEAL_CLOSED, f"reveals closed at slot {action.reveal_deadline_slot}")

    record_address = env.addresses.vote_bid_record(address, vote_nullifier)
    record = env.require(record_address, VoteBidRecord, vote_nullifier)
    if record.revealed:
        raise ProtocolError(RejectReason.ALREADY_REVEALED, "vote+bid already revealed")

    evidence = {"action_hash": action_hash.hex(), "vote_nullifier": vote_nullifier.hex()}
    expected_vote = commitments.vote_commitment(vote, vote_salt, action_hash, hasher=env.hasher)
    if not commitments.commitments_equal(expected_vote, record.vote_commitment):
        logger.warning(f"Vote commitment mismatch on bid action {action_hash.hex()[:16]}")
        raise CommitmentMismatchError(
            RejectReason.VOTE_COMMITMENT_MISMATCH, SlashReason.VOTE_COMMITMENT_MISMATCH, **evidence
        )
    expected_bid = commitments.bid_commitment(bid_amount, bid_salt, action_hash, hasher=env.hasher)
    if not commitments.commitments_equal(expected_bid, record.bid_commitment):
        logger.warning(f"Bid commitment mismatch on bid action {action_hash.hex()[:16]}")
        raise CommitmentMismatchError(
            RejectReason.BID_COMMITMENT_MISMATCH, SlashReason.VOTE_COMMITMENT_MISMATCH, **evidence
        )

    is_highest = False
    if vote:
        action.yes_votes += 1
        if bid_amount >= action.min_bid and bid_amount > action.highest_yes_bid:
            action.highest_yes_bid = bid_amount
            action.highest_yes_bidder_nullifier = vote_nullifier
            is_highest = True
    else:
        action.no_votes += 1
    action.revealed_count += 1

    record.revealed = True
    record.vote_value = VoteValue.YES if vote else VoteValue.NO
    record.bid_amount = bid_amount
    env.save(record_address, record)
    env.save(address, action)

    env.emit(
        "vote_bid_revealed",
        action=address.hex(),
        vote_nullifier=vote_nullifier.hex(),
        vote=vote,
        bid_amount=bid_amount,
        is_highest_yes=is_highest,
    )
    logger.info(
        f"Vote+bid revealed on {action_hash.hex()[:16]}: {'YES' if vote else 'NO'} {bid_amount}"
        + (" (new highest)" if is_highest else "")
    )
    return record, is_highest


def execute_swarm_action_bid(env: ProtocolEnv, ctx: LedgerContext, action_hash: bytes) -> SwarmActionBid:
    """Approve the action and award it to the highest qualifying YES bid."""
    action_hash = ensure_bytes32(action_hash, "action_hash")
    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.swarm_action_bid(action_hash)
    action = env.require(address, SwarmActionBid, action_hash)
    require_open(action.status)
    if ctx.slot <= action.reveal_deadline_slot:
        raise ProtocolError(RejectReason.REVEAL_OPEN, f"reveals open until slot {action.reveal_deadline_slot}")
    if not is_approved(action.yes_votes, action.no_votes, action.threshold):
        raise ProtocolError(
            RejectReason.THRESHOLD_NOT_MET,
            f"{action.yes_votes} yes / {action.no_votes} no is below threshold {action.threshold}%",
            yes_votes=action.yes_votes,
            no_votes=action.no_votes,
        )
    if action.highest_yes_bid == 0:
        raise ProtocolError(RejectReason.NO_QUALIFYING_BID, f"no YES bid reached the minimum {action.min_bid}")

    action.status = ActionStatus.EXECUTED
    env.save(address, action)
    env.emit(
        "swarm_action_bid_executed",
        action_hash=action_hash.hex(),
        yes_votes=action.yes_votes,
        no_votes=action.no_votes,
        winning_nullifier=action.highest_yes_bidder_nullifier.hex(),
        winning_bid=action.highest_yes_bid,
    )
    logger.info(
        f"Bid action {action_hash.hex()[:16]} executed; winner {action.highest_yes_bidder_nullifier.hex()[:16]} "
        f"at {action.highest_yes_bid}"
    )
    return action


def close_swarm_action_bid(env: ProtocolEnv, ctx: LedgerContext, action_hash: bytes) -> SwarmActionBid:
    action_hash = ensure_bytes32(action_hash, "action_hash")
    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.swarm_action_bid(action_hash)
    action = env.require(address, SwarmActionBid, action_hash)
    require_open(action.status)
    if ctx.slot <= action.reveal_deadline_slot:
        raise ProtocolError(RejectReason.REVEAL_OPEN, f"reveals open until slot {action.reveal_deadline_slot}")
    action.status = ActionStatus.EXPIRED
    env.save(address, action)
    logger.info(f"Bid action {action_hash.hex()[:16]} expired")
    return action
