"""Signal channel: hidden directional claims aggregated per epoch.

States: Submitted -> Revealed (terminal).

Submission stores only the nullifier and commitment. Reveal recomputes
the commitment from the opened fields and the signal's own nullifier,
then folds the fields into the aggregator of the epoch the signal was
submitted in. Once that epoch is finalized by ``advance_epoch`` no more
reveals are accepted into it.
"""

from __future__ import annotations

import logging

from ..core.exceptions import CommitmentMismatchError, ProtocolError, RejectReason, ValidationException
from ..crypto.commitments import commitments_equal, signal_commitment
from ..crypto.field import ensure_bytes32
from ..crypto.proof import Groth16Proof, PublicInputs
from .models import (
    MAX_PERCENT,
    SUBMIT_SIGNAL_FEE,
    Direction,
    NullifierScope,
    Signal,
    SignalAggregator,
    SignalType,
    SlashReason,
)
from .nullifiers import NullifierLedger
from .registry import charge_fee, load_registry, require_not_paused, save_registry
from .state import LedgerContext, ProtocolEnv

logger = logging.getLogger(__name__)


def _percent(name: str, value: int) -> int:
    if not 0 <= value <= MAX_PERCENT:
        raise ValidationException(f"{name} must be between 0 and 100", field=name, value=value)
    return value


def _enum(enum_type: type, name: str, value: int):
    try:
        return enum_type(value)
    except ValueError:
        raise ValidationException(f"invalid {name}: {value}", field=name, value=value)


def submit_signal(
    env: ProtocolEnv,
    ctx: LedgerContext,
    nullifier: bytes,
    commitment: bytes,
    proof: Groth16Proof,
) -> Signal:
    """Record a hidden signal for the current epoch.

    The proof attests membership under ``agents_root`` with stake and
    collateral at or above the registry minimums.
    """
    nullifier = ensure_bytes32(nullifier, "nullifier")
    commitment = ensure_bytes32(commitment, "commitment")

    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.signal(commitment)
    if env.exists(address):
        raise ProtocolError(RejectReason.SIGNAL_EXISTS, "signal commitment already submitted")

    public_inputs = PublicInputs.for_signal(
        registry.agents_root,
        nullifier,
        registry.epoch,
        registry.min_stake,
        registry.min_signal_collateral,
    )
    if not env.verifier.verify(proof, public_inputs):
        logger.warning(f"Rejected signal proof for nullifier {nullifier.hex()[:16]}")
        raise ProtocolError(RejectReason.INVALID_PROOF, "signal proof rejected")

    NullifierLedger(env).consume(NullifierScope.SIGNAL, nullifier, registry.epoch)
    charge_fee(env, registry, ctx.caller, SUBMIT_SIGNAL_FEE, "signal")

    signal = Signal(
        nullifier=nullifier,
        commitment=commitment,
        submitted_slot=ctx.slot,
        epoch=registry.epoch,
    )
    env.save(address, signal)
    registry.signal_count += 1
    save_registry(env, registry)

    env.emit("signal_submitted", nullifier=nullifier.hex(), commitment=commitment.hex(), slot=ctx.slot)
    logger.info(f"Signal {commitment.hex()[:16]} submitted in epoch {registry.epoch}")
    return signal


def reveal_signal(
    env: ProtocolEnv,
    ctx: LedgerContext,
    commitment: bytes,
    signal_type: int,
    direction: int,
    confidence: int,
    magnitude: int,
    stake_amount: int,
    blinding: bytes,
) -> SignalAggregator:
    """Open a signal and fold it into its epoch's aggregator.

    Raises:
        CommitmentMismatchError: The opened fields do not hash to the
            stored commitment (slashable evidence).
        ProtocolError: ALREADY_REVEALED, CONFIDENCE_TOO_LOW or
            EPOCH_FINALIZED.
    """
    commitment = ensure_bytes32(commitment, "commitment")
    blinding = ensure_bytes32(blinding, "blinding")
    signal_type = _enum(SignalType, "signal_type", signal_type)
    direction = _enum(Direction, "direction", direction)
    _percent("confidence", confidence)
    _percent("magnitude", magnitude)
    if stake_amount < 0:
        raise ValidationException("stake_amount must be non-negative", field="stake_amount", value=stake_amount)

    registry = load_registry(env)
    require_not_paused(registry)

    address = env.addresses.signal(commitment)
    signal = env.require(address, Signal, commitment)
    if signal.revealed:
        raise ProtocolError(RejectReason.ALREADY_REVEALED, "signal already revealed")

    expected = signal_commitment(
        signal_type,
        direction,
        confidence,
        magnitude,
        stake_amount,
        blinding,
        signal.nullifier,
        hasher=env.hasher,
    )
    if not commitments_equal(expected, signal.commitment):
        logger.warning(
            f"Signal commitment mismatch for {commitment.hex()[:16]} "
            f"(slash category {SlashReason.SIGNAL_COMMITMENT_MISMATCH.name})"
        )
        raise CommitmentMismatchError(
            RejectReason.SIGNAL_COMMITMENT_MISMATCH,
            SlashReason.SIGNAL_COMMITMENT_MISMATCH,
            commitment=commitment.hex(),
            nullifier=signal.nullifier.hex(),
        )

    if confidence < registry.min_signal_confidence:
        raise ProtocolError(
            RejectReason.CONFIDENCE_TOO_LOW,
            f"confidence {confidence} below minimum {registry.min_signal_confidence}",
        )

    aggregator_address = env.addresses.aggregator(signal.epoch)
    aggregator = env.load(aggregator_address, SignalAggregator) or SignalAggregator(epoch=signal.epoch)
    if aggregator.finalized:
        raise ProtocolError(RejectReason.EPOCH_FINALIZED, f"epoch {signal.epoch} is finalized")

    aggregator.fold(direction, confidence, magnitude, ctx.slot)
    env.save(aggregator_address, aggregator)
    signal.revealed = True
    env.save(address, signal)

    env.emit("signal_revealed", commitment=commitment.hex(), direction=int(direction), epoch=signal.epoch)
    logger.info(f"Signal {commitment.hex()[:16]} revealed: {signal_type.name} {direction.name} @ {confidence}")
    return aggregator


def init_aggregator(env: ProtocolEnv, ctx: LedgerContext, epoch: int) -> SignalAggregator:
    if epoch < 0:
        raise ValidationException("epoch must be non-negative", field="epoch", value=epoch)
    load_registry(env)
    address = env.addresses.aggregator(epoch)
    if env.exists(address):
        raise ProtocolError(RejectReason.AGGREGATOR_EXISTS, f"aggregator for epoch {epoch} exists")
    aggregator = SignalAggregator(epoch=epoch, last_updated_slot=ctx.slot)
    env.save(address, aggregator)
    return aggregator
