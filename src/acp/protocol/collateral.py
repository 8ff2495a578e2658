"""Collateral, stake withdrawal, identity links and slashing.

Slash percentages escalate with each violation:
- first violation: 10%
- each prior violation adds 5%
- capped at 50% (reached at the ninth violation)

Slashed funds always move from the agent's collateral vault to the
treasury, never to the admin who reported the violation.
"""

from __future__ import annotations

import logging
from typing import Any

from ..core.exceptions import ProtocolError, RejectReason, ValidationException
from ..crypto.authority import AdminAuth
from ..crypto.field import ensure_bytes32
from .models import (
    BASE_SLASH_RATE_BPS,
    BPS_DENOMINATOR,
    MAX_SLASH_RATE_BPS,
    SECONDS_PER_DAY,
    SLASH_ESCALATION_BPS,
    STAKE_MULTIPLIER_TIERS,
    Agent,
    CollateralWithdrawal,
    IdentityLink,
    SlashReason,
    SlashResult,
    WithdrawalRequest,
)
from .registry import OP_SLASH, authorize, load_registry, require_not_paused, save_registry
from .state import LedgerContext, ProtocolEnv

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------


def stake_multiplier_bps(days_staked: int) -> int:
    """Vote multiplier for a stake position held ``days_staked`` full days."""
    for min_days, multiplier in STAKE_MULTIPLIER_TIERS:
        if days_staked >= min_days:
            return multiplier
    return STAKE_MULTIPLIER_TIERS[-1][1]


def days_staked(staked_at: int, now: int) -> int:
    return max(0, now - staked_at) // SECONDS_PER_DAY


def weighted_vote(staked_amount: int, multiplier_bps: int) -> int:
    return staked_amount * multiplier_bps // BPS_DENOMINATOR


def slash_rate_bps(violation_count: int) -> int:
    """min(base + violations * step, max), in basis points."""
    return min(BASE_SLASH_RATE_BPS + violation_count * SLASH_ESCALATION_BPS, MAX_SLASH_RATE_BPS)


def slash_amount(amount: int, violation_count: int, collateral: int) -> int:
    return min(amount * slash_rate_bps(violation_count) // BPS_DENOMINATOR, collateral)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _positive(name: str, value: int) -> None:
    if value <= 0:
        raise ValidationException(f"{name} must be positive", field=name, value=value)


def _owned_agent(env: ProtocolEnv, ctx: LedgerContext, identity_commitment: bytes) -> tuple[bytes, Agent]:
    identity_commitment = ensure_bytes32(identity_commitment, "identity_commitment")
    address = env.addresses.agent(identity_commitment)
    agent = env.require(address, Agent, identity_commitment)
    if agent.owner != ctx.caller:
        raise ProtocolError(RejectReason.UNAUTHORIZED, "caller does not own this agent")
    return address, agent


# ---------------------------------------------------------------------------
# Identity links
# ---------------------------------------------------------------------------


def _position_weight(env: ProtocolEnv, ctx: LedgerContext) -> tuple[int, int]:
    position = env.stake_positions.get_position(ctx.caller) if env.stake_positions is not None else None
    if position is None:
        return 0, stake_multiplier_bps(0)
    return position.amount, stake_multiplier_bps(days_staked(position.staked_at, ctx.unix_time))


def link_identity(
    env: ProtocolEnv,
    ctx: LedgerContext,
    identity_commitment: bytes,
    reputation_agent: bytes,
) -> IdentityLink:
    """Bind the caller's agent to their external stake position."""
    reputation_agent = ensure_bytes32(reputation_agent, "reputation_agent")
    _, agent = _owned_agent(env, ctx, identity_commitment)
    if not agent.active:
        raise ProtocolError(RejectReason.AGENT_INACTIVE, "agent is inactive")

    address = env.addresses.identity_link(ctx.caller)
    existing = env.load(address, IdentityLink)
    if existing is not None and existing.active:
        raise ProtocolError(RejectReason.LINK_EXISTS, "identity already linked")

    staked, multiplier = _position_weight(env, ctx)
    link = IdentityLink(
        zk_agent=agent.identity_commitment,
        reputation_agent=reputation_agent,
        owner=ctx.caller,
        staked_amount=staked,
        stake_multiplier=multiplier,
        linked_slot=ctx.slot,
    )
    env.save(address, link)
    logger.info(f"Linked agent {agent.identity_commitment.hex()[:16]} (stake {staked}, x{multiplier / 10_000:.2f})")
    return link


def refresh_stake(env: ProtocolEnv, ctx: LedgerContext) -> IdentityLink:
    """Re-read the caller's stake position and recompute the multiplier."""
    address = env.addresses.identity_link(ctx.caller)
    link = env.require(address, IdentityLink, ctx.caller)
    if not link.active:
        raise ProtocolError(RejectReason.LINK_INACTIVE, "identity link is inactive")
    link.staked_amount, link.stake_multiplier = _position_weight(env, ctx)
    env.save(address, link)
    return link


def unlink_identity(env: ProtocolEnv, ctx: LedgerContext) -> IdentityLink:
    address = env.addresses.identity_link(ctx.caller)
    link = env.require(address, IdentityLink, ctx.caller)
    if not link.active:
        raise ProtocolError(RejectReason.LINK_INACTIVE, "identity link is inactive")
    link.active = False
    env.save(address, link)
    return link


def linked_vote_weight(env: ProtocolEnv, ctx: LedgerContext, identity_link_owner: bytes) -> int:
    """Weighted vote for a reveal that names an identity link."""
    identity_link_owner = ensure_bytes32(identity_link_owner, "identity_link_owner")
    if identity_link_owner != ctx.caller:
        raise ProtocolError(RejectReason.UNAUTHORIZED, "only the link owner can apply its weight")
    link = env.require(env.addresses.identity_link(identity_link_owner), IdentityLink, identity_link_owner)
    if not link.active:
        raise ProtocolError(RejectReason.LINK_INACTIVE, "identity link is inactive")
    return weighted_vote(link.staked_amount, link.stake_multiplier)


# ---------------------------------------------------------------------------
# Collateral
# ---------------------------------------------------------------------------


def deposit_collateral(env: ProtocolEnv, ctx: LedgerContext, identity_commitment: bytes, amount: int) -> Agent:
    _positive("amount", amount)
    identity_commitment = ensure_bytes32(identity_commitment, "identity_commitment")
    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.agent(identity_commitment)
    agent = env.require(address, Agent, identity_commitment)
    vault = env.addresses.collateral_vault(address)
    env.transfer(env.addresses.token_account(ctx.caller), vault, vault, amount, "collateral deposit")

    agent.collateral_amount += amount
    agent.collateral_locked_at = ctx.unix_time
    env.save(address, agent)
    env.emit("collateral_deposited", agent=identity_commitment.hex(), amount=amount, total=agent.collateral_amount)
    logger.info(f"Deposited {amount} collateral for {identity_commitment.hex()[:16]} (total {agent.collateral_amount})")
    return agent


def request_collateral_withdrawal(
    env: ProtocolEnv,
    ctx: LedgerContext,
    identity_commitment: bytes,
    amount: int,
) -> CollateralWithdrawal:
    _positive("amount", amount)
    address, agent = _owned_agent(env, ctx, identity_commitment)
    if amount > agent.collateral_amount:
        raise ProtocolError(
            RejectReason.INSUFFICIENT_COLLATERAL,
            f"requested {amount}, collateral is {agent.collateral_amount}",
        )

    request_address = env.addresses.collateral_withdrawal(address)
    existing = env.load(request_address, CollateralWithdrawal)
    if existing is not None and not existing.claimed:
        raise ProtocolError(RejectReason.WITHDRAWAL_PENDING, "a collateral withdrawal is already pending")

    request = CollateralWithdrawal(
        agent=agent.identity_commitment,
        requester=ctx.caller,
        amount=amount,
        request_time=ctx.unix_time,
        unlock_time=ctx.unix_time + env.settings.collateral_timelock_seconds,
    )
    env.save(request_address, request)
    env.emit("collateral_withdrawal_requested", agent=agent.identity_commitment.hex(), amount=amount, unlock_time=request.unlock_time)
    return request


def claim_collateral_withdrawal(env: ProtocolEnv, ctx: LedgerContext, identity_commitment: bytes) -> int:
    """Pay out a matured request; returns the amount transferred.

    Pays the lesser of the requested amount and the collateral left after
    any slashing since the request.
    """
    address, agent = _owned_agent(env, ctx, identity_commitment)
    request_address = env.addresses.collateral_withdrawal(address)
    request = env.require(request_address, CollateralWithdrawal, identity_commitment)
    if request.claimed:
        raise ProtocolError(RejectReason.WITHDRAWAL_CLAIMED, "withdrawal already claimed")
    if ctx.unix_time < request.unlock_time:
        raise ProtocolError(
            RejectReason.WITHDRAWAL_LOCKED,
            f"withdrawal unlocks at {request.unlock_time}",
            unlock_time=request.unlock_time,
            now=ctx.unix_time,
        )

    amount = min(request.amount, agent.collateral_amount)
    env.transfer(
        env.addresses.collateral_vault(address),
        env.addresses.token_account(ctx.caller),
        ctx.caller,
        amount,
        "collateral vault",
    )
    agent.collateral_amount -= amount
    env.save(address, agent)
    request.claimed = True
    env.save(request_address, request)
    env.emit("collateral_withdrawal_claimed", agent=agent.identity_commitment.hex(), amount=amount)
    logger.info(f"Collateral withdrawal of {amount} claimed for {agent.identity_commitment.hex()[:16]}")
    return amount


def cancel_collateral_withdrawal(env: ProtocolEnv, ctx: LedgerContext, identity_commitment: bytes) -> None:
    address, _ = _owned_agent(env, ctx, identity_commitment)
    request_address = env.addresses.collateral_withdrawal(address)
    request = env.require(request_address, CollateralWithdrawal, identity_commitment)
    if request.claimed:
        raise ProtocolError(RejectReason.WITHDRAWAL_CLAIMED, "withdrawal already claimed")
    env.store.delete(request_address)


# ---------------------------------------------------------------------------
# Stake withdrawal
# ---------------------------------------------------------------------------


def request_stake_withdrawal(env: ProtocolEnv, ctx: LedgerContext, identity_commitment: bytes) -> WithdrawalRequest:
    """Request exit of the agent's whole stake after the slot timelock."""
    address, agent = _owned_agent(env, ctx, identity_commitment)
    if not agent.active:
        raise ProtocolError(RejectReason.AGENT_INACTIVE, "agent is inactive")

    request_address = env.addresses.withdrawal(address)
    existing = env.load(request_address, WithdrawalRequest)
    if existing is not None and not existing.claimed:
        raise ProtocolError(RejectReason.WITHDRAWAL_PENDING, "a stake withdrawal is already pending")

    request = WithdrawalRequest(
        agent=agent.identity_commitment,
        requester=ctx.caller,
        amount=agent.stake,
        request_slot=ctx.slot,
        unlock_slot=ctx.slot + env.settings.stake_withdrawal_delay_slots,
    )
    env.save(request_address, request)
    return request


def claim_stake_withdrawal(env: ProtocolEnv, ctx: LedgerContext, identity_commitment: bytes) -> int:
    address, agent = _owned_agent(env, ctx, identity_commitment)
    request_address = env.addresses.withdrawal(address)
    request = env.require(request_address, WithdrawalRequest, identity_commitment)
    if request.claimed:
        raise ProtocolError(RejectReason.WITHDRAWAL_CLAIMED, "withdrawal already claimed")
    if ctx.slot < request.unlock_slot:
        raise ProtocolError(
            RejectReason.WITHDRAWAL_LOCKED,
            f"withdrawal unlocks at slot {request.unlock_slot}",
            unlock_slot=request.unlock_slot,
            slot=ctx.slot,
        )

    registry = load_registry(env)
    amount = agent.stake
    env.transfer(
        env.addresses.stake_vault(),
        env.addresses.token_account(ctx.caller),
        ctx.caller,
        amount,
        "stake vault",
    )
    agent.stake = 0
    agent.active = False
    env.save(address, agent)
    registry.total_stake -= amount
    save_registry(env, registry)
    request.claimed = True
    env.save(request_address, request)
    logger.info(f"Agent {agent.identity_commitment.hex()[:16]} withdrew stake {amount} and is now inactive")
    return amount


def cancel_stake_withdrawal(env: ProtocolEnv, ctx: LedgerContext, identity_commitment: bytes) -> None:
    address, _ = _owned_agent(env, ctx, identity_commitment)
    request_address = env.addresses.withdrawal(address)
    request = env.require(request_address, WithdrawalRequest, identity_commitment)
    if request.claimed:
        raise ProtocolError(RejectReason.WITHDRAWAL_CLAIMED, "withdrawal already claimed")
    env.store.delete(request_address)


# ---------------------------------------------------------------------------
# Slashing
# ---------------------------------------------------------------------------


def slash_agent(
    env: ProtocolEnv,
    ctx: LedgerContext,
    identity_commitment: bytes,
    amount: int,
    reason: SlashReason,
    auth: AdminAuth,
    evidence: dict[str, Any] | None = None,
) -> SlashResult:
    """Forfeit part of an agent's collateral to the treasury.

    The applied amount is ``amount`` times the escalating rate, capped at
    the collateral held. A slash that would move nothing is rejected and
    does not count as a violation. ``evidence`` is typically
    ``CommitmentMismatchError.evidence()``.
    """
    identity_commitment = ensure_bytes32(identity_commitment, "identity_commitment")
    _positive("amount", amount)
    try:
        reason = SlashReason(reason)
    except ValueError:
        raise ValidationException(f"invalid slash reason: {reason}", field="reason", value=reason)

    registry = load_registry(env)
    authorize(
        env,
        registry,
        auth,
        OP_SLASH,
        {"identity_commitment": identity_commitment, "amount": amount, "reason": int(reason)},
    )

    address = env.addresses.agent(identity_commitment)
    agent = env.require(address, Agent, identity_commitment)
    if agent.collateral_amount == 0:
        raise ProtocolError(RejectReason.INSUFFICIENT_COLLATERAL, "agent has no collateral to slash")

    rate = slash_rate_bps(agent.violation_count)
    slashed = slash_amount(amount, agent.violation_count, agent.collateral_amount)
    if slashed == 0:
        raise ValidationException(
            f"slash of {amount} at {rate} bps rounds to zero; no violation recorded", field="amount", value=amount
        )
    env.transfer(
        env.addresses.collateral_vault(address),
        env.addresses.treasury(),
        env.addresses.treasury(),
        slashed,
        "collateral vault",
    )
    agent.collateral_amount -= slashed
    agent.slashed_amount += slashed
    agent.violation_count += 1
    env.save(address, agent)
    save_registry(env, registry)

    env.emit(
        "agent_slashed",
        agent=identity_commitment.hex(),
        amount=slashed,
        reason=reason.name,
        violation_count=agent.violation_count,
    )
    logger.warning(
        f"Slashed agent {identity_commitment.hex()[:16]}: {slashed} at {rate / 100:.0f}% "
        f"({reason.name}, violation #{agent.violation_count})"
    )
    return SlashResult(
        agent=identity_commitment,
        requested=amount,
        rate_bps=rate,
        slashed=slashed,
        violation_count=agent.violation_count,
        reason=reason,
        evidence=evidence or {},
    )
