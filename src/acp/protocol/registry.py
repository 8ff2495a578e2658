# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Registry and agent registrar.

The registry holds global configuration and monotonic counters. Agents
register with an identity commitment and a stake that moves into the
pooled stake vault. Admin operations are authorized by an Ed25519
signature from the registry authority over a nonce that advances with
each admin op.

Every protocol fee is split: BURN_RATE_BPS of it is burned, the rest
goes to the treasury.
"""

from __future__ import annotations

import logging
from typing import Any

from ..core.exceptions import ProtocolError, RejectReason, ValidationException
from ..crypto.authority import AdminAuth, verify_admin
from ..crypto.field import ensure_bytes32
from .models import (
    BPS_DENOMINATOR,
    BURN_RATE_BPS,
    MAX_PERCENT,
    REGISTER_AGENT_FEE,
    Agent,
    Registry,
    RegistryConfig,
    SignalAggregator,
)
from .state import LedgerContext, ProtocolEnv

logger = logging.getLogger(__name__)

OP_INITIALIZE = "initialize"
OP_UPDATE_ROOT = "update_root"
OP_PAUSE = "pause"
OP_UNPAUSE = "unpause"
OP_UPDATE_CONFIG = "update_config"
OP_UPDATE_MIN_SIGNAL_COLLATERAL = "update_min_signal_collateral"
OP_ADVANCE_EPOCH = "advance_epoch"
OP_BURN_FROM_TREASURY = "burn_from_treasury"
OP_SLASH = "slash"


def validate_config(config: RegistryConfig) -> None:
    for name in ("min_stake", "max_total_stake", "max_stake_per_agent", "min_signal_collateral"):
        value = getattr(config, name)
        if value < 0:
            raise ValidationException(f"{name} must be non-negative", field=name, value=value)
    if not 0 <= config.min_signal_confidence <= MAX_PERCENT:
        raise ValidationException(
            "min_signal_confidence must be between 0 and 100",
            field="min_signal_confidence",
            value=config.min_signal_confidence,
        )
    if config.max_stake_per_agent and config.max_total_stake and config.max_stake_per_agent > config.max_total_stake:
        raise ValidationException(
            "max_stake_per_agent cannot exceed max_total_stake",
            field="max_stake_per_agent",
            value=config.max_stake_per_agent,
        )


def load_registry(env: ProtocolEnv) -> Registry:
    registry = env.load(env.addresses.registry(), Registry)
    if registry is None:
        raise ProtocolError(RejectReason.NOT_INITIALIZED, "registry not initialized")
    return registry


def save_registry(env: ProtocolEnv, registry: Registry) -> None:
    env.save(env.addresses.registry(), registry)


def require_not_paused(registry: Registry) -> None:
    if registry.paused:
        raise ProtocolError(RejectReason.PAUSED, "protocol is paused")


def authorize(env: ProtocolEnv, registry: Registry, auth: AdminAuth, op: str, payload: dict[str, Any]) -> None:
    """Verify an admin signature and advance the admin nonce."""
    verify_admin(registry.authority, auth, op, registry.admin_nonce, payload)
    registry.admin_nonce += 1


def charge_fee(env: ProtocolEnv, registry: Registry, payer: bytes, fee: int, what: str) -> int:
    """Collect a protocol fee from ``payer``; returns the burned portion."""
    env.debit(env.addresses.token_account(payer), fee, f"{what} fee")
    burned = fee * BURN_RATE_BPS // BPS_DENOMINATOR
    env.credit(env.addresses.treasury(), env.addresses.treasury(), fee - burned)
    registry.total_burned += burned
    registry.total_fees_collected += fee
    return burned


def initialize_registry(
    env: ProtocolEnv,
    ctx: LedgerContext,
    config: RegistryConfig,
    auth: AdminAuth,
) -> Registry:
    """Create the registry; ``auth`` proves possession of the authority key."""
    validate_config(config)
    if env.exists(env.addresses.registry()):
        raise ProtocolError(RejectReason.ALREADY_INITIALIZED, "registry already initialized")
    authority = ensure_bytes32(auth.public_key, "authority")
    verify_admin(authority, auth, OP_INITIALIZE, 0, config.to_dict())

    registry = Registry(authority=authority, admin_nonce=1)
    registry.apply_config(config)
    save_registry(env, registry)
    env.emit("registry_initialized", authority=authority.hex(), min_stake=config.min_stake)
    logger.info(f"Initialized registry (min_stake={config.min_stake}, authority={authority.hex()[:16]})")
    return registry


def register_agent(env: ProtocolEnv, ctx: LedgerContext, identity_commitment: bytes, stake: int) -> Agent:
    """Register an agent, pooling its stake and charging the registration fee."""
    identity_commitment = ensure_bytes32(identity_commitment, "identity_commitment")
    if stake <= 0:
        raise ValidationException("stake must be positive", field="stake", value=stake)

    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.agent(identity_commitment)
    if env.exists(address):
        raise ProtocolError(RejectReason.AGENT_EXISTS, "identity commitment already registered")
    if stake < registry.min_stake:
        raise ProtocolError(
            RejectReason.STAKE_BELOW_MINIMUM,
            f"stake {stake} below minimum {registry.min_stake}",
            stake=stake,
            min_stake=registry.min_stake,
        )
    if registry.max_stake_per_agent and stake > registry.max_stake_per_agent:
        raise ProtocolError(
            RejectReason.AGENT_STAKE_CAP,
            f"stake {stake} exceeds per-agent cap {registry.max_stake_per_agent}",
        )
    if registry.max_total_stake and registry.total_stake + stake > registry.max_total_stake:
        raise ProtocolError(
            RejectReason.TOTAL_STAKE_CAP,
            f"total stake would exceed cap {registry.max_total_stake}",
        )

    charge_fee(env, registry, ctx.caller, REGISTER_AGENT_FEE, "registration")
    env.transfer(
        env.addresses.token_account(ctx.caller),
        env.addresses.stake_vault(),
        env.addresses.stake_vault(),
        stake,
        "stake",
    )

    agent = Agent(
        identity_commitment=identity_commitment,
        owner=ctx.caller,
        stake=stake,
        registered_slot=ctx.slot,
    )
    env.save(address, agent)
    registry.agent_count += 1
    registry.total_stake += stake
    save_registry(env, registry)

    env.emit("agent_registered", identity_commitment=identity_commitment.hex(), stake=stake)
    logger.info(f"Registered agent {identity_commitment.hex()[:16]} with stake {stake}")
    return agent


def update_root(
    env: ProtocolEnv,
    ctx: LedgerContext,
    new_root: bytes,
    agent_count: int,
    auth: AdminAuth,
) -> Registry:
    """Advance the membership root tracked by an external accumulator."""
    new_root = ensure_bytes32(new_root, "new_root")
    if agent_count < 0:
        raise ValidationException("agent_count must be non-negative", field="agent_count", value=agent_count)
    registry = load_registry(env)
    authorize(env, registry, auth, OP_UPDATE_ROOT, {"new_root": new_root, "agent_count": agent_count})
    registry.agents_root = new_root
    registry.agent_count = agent_count
    save_registry(env, registry)
    env.emit("agents_root_updated", new_root=new_root.hex(), agent_count=agent_count, epoch=registry.epoch)
    logger.info(f"Agents root updated to {new_root.hex()[:16]} ({agent_count} agents)")
    return registry


def set_paused(env: ProtocolEnv, ctx: LedgerContext, paused: bool, auth: AdminAuth) -> Registry:
    registry = load_registry(env)
    authorize(env, registry, auth, OP_PAUSE if paused else OP_UNPAUSE, {})
    registry.paused = paused
    save_registry(env, registry)
    logger.warning(f"Protocol {'paused' if paused else 'unpaused'}")
    return registry


def update_config(env: ProtocolEnv, ctx: LedgerContext, config: RegistryConfig, auth: AdminAuth) -> Registry:
    validate_config(config)
    registry = load_registry(env)
    authorize(env, registry, auth, OP_UPDATE_CONFIG, config.to_dict())
    if config.max_total_stake and registry.total_stake > config.max_total_stake:
        raise ProtocolError(
            RejectReason.TOTAL_STAKE_CAP,
            f"total stake {registry.total_stake} already exceeds the new cap {config.max_total_stake}",
            total_stake=registry.total_stake,
            max_total_stake=config.max_total_stake,
        )
    registry.apply_config(config)
    save_registry(env, registry)
    logger.info(f"Registry config updated: {config.to_dict()}")
    return registry


def update_min_signal_collateral(env: ProtocolEnv, ctx: LedgerContext, amount: int, auth: AdminAuth) -> Registry:
    if amount < 0:
        raise ValidationException("min_signal_collateral must be non-negative", field="amount", value=amount)
    registry = load_registry(env)
    authorize(env, registry, auth, OP_UPDATE_MIN_SIGNAL_COLLATERAL, {"amount": amount})
    registry.min_signal_collateral = amount
    save_registry(env, registry)
    env.emit("min_signal_collateral_updated", min_signal_collateral=amount)
    return registry


def advance_epoch(env: ProtocolEnv, ctx: LedgerContext, auth: AdminAuth) -> Registry:
    """Finalize the current epoch's aggregator and move to the next epoch."""
    registry = load_registry(env)
    authorize(env, registry, auth, OP_ADVANCE_EPOCH, {"epoch": registry.epoch})

    address = env.addresses.aggregator(registry.epoch)
    aggregator = env.load(address, SignalAggregator) or SignalAggregator(epoch=registry.epoch)
    aggregator.finalized = True
    aggregator.last_updated_slot = ctx.slot
    env.save(address, aggregator)

    registry.epoch += 1
    save_registry(env, registry)
    logger.info(f"Epoch {aggregator.epoch} finalized with {aggregator.total_signals} signals; now epoch {registry.epoch}")
    return registry


def burn_from_treasury(env: ProtocolEnv, ctx: LedgerContext, amount: int, auth: AdminAuth) -> Registry:
    if amount <= 0:
        raise ValidationException("amount must be positive", field="amount", value=amount)
    registry = load_registry(env)
    authorize(env, registry, auth, OP_BURN_FROM_TREASURY, {"amount": amount})
    env.debit(env.addresses.treasury(), amount, "treasury")
    registry.total_burned += amount
    save_registry(env, registry)
    logger.info(f"Burned {amount} from treasury (total burned {registry.total_burned})")
    return registry
