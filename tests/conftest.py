"""Global test fixtures for the ACP test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass

import pytest

from acp.core.config import ACPSettings, clear_config_cache
from acp.crypto.authority import AdminSigner
from acp.crypto.commitments import identity_commitment
from acp.crypto.proof import Groth16Proof, PublicInputs
from acp.ledger.transport import InProcessLedger, ManualClock
from acp.protocol.engine import ProtocolEngine
from acp.protocol.models import RegistryConfig
from acp.protocol.state import InMemoryAccountStore, InMemoryStakePositions, LedgerContext

TOKEN = 10**6

ALICE = bytes([0xA1]) * 32
BOB = bytes([0xB0]) * 32
CAROL = bytes([0xC0]) * 32
DAVE = bytes([0xD0]) * 32

VALID_PROOF = Groth16Proof(a=b"\x01" * 64, b=b"\x02" * 128, c=b"\x03" * 64)
BAD_PROOF = Groth16Proof(a=bytes(64), b=b"\x02" * 128, c=b"\x03" * 64)

DEFAULT_CONFIG = RegistryConfig(min_stake=1_000 * TOKEN, min_signal_confidence=10)

VOTING_WINDOW = 100
STAKE_DELAY = 50
COLLATERAL_TIMELOCK = 7 * 24 * 60 * 60


# ============================================================================
# Environment
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all ACP_ environment variables and the cached config."""
    for key in list(os.environ.keys()):
        if key.startswith("ACP_"):
            monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def settings(clean_env, monkeypatch) -> ACPSettings:
    """Settings with short windows so tests can step past deadlines."""
    monkeypatch.setenv("ACP_VOTING_WINDOW_SLOTS", str(VOTING_WINDOW))
    monkeypatch.setenv("ACP_STAKE_WITHDRAWAL_DELAY_SLOTS", str(STAKE_DELAY))
    monkeypatch.setenv("ACP_COLLATERAL_TIMELOCK_SECONDS", str(COLLATERAL_TIMELOCK))
    monkeypatch.setenv("ACP_RETRY_BASE_DELAY_MS", "1")
    monkeypatch.setenv("ACP_RETRY_MAX_DELAY_MS", "4")
    return ACPSettings()


# ============================================================================
# Protocol fixtures
# ============================================================================


class MockVerifier:
    """Accepts every proof except one whose A point is all zeros."""

    def __init__(self) -> None:
        self.calls: list[tuple[Groth16Proof, PublicInputs]] = []

    def verify(self, proof: Groth16Proof, public_inputs: PublicInputs) -> bool:
        self.calls.append((proof, public_inputs))
        return proof.a != bytes(64)


@dataclass
class Identity:
    owner_secret: bytes
    agent_id: bytes
    registration_secret: bytes

    @property
    def commitment(self) -> bytes:
        return identity_commitment(self.owner_secret, self.agent_id, self.registration_secret)


def make_identity(n: int) -> Identity:
    return Identity(bytes([n]) * 32, bytes([n + 1]) * 32, bytes([n + 2]) * 32)


@pytest.fixture
def verifier() -> MockVerifier:
    return MockVerifier()


@pytest.fixture
def store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(slot=1_000, unix_time=1_700_000_000)


@pytest.fixture
def stake_positions() -> InMemoryStakePositions:
    return InMemoryStakePositions()


@pytest.fixture
def engine(settings, store, verifier, stake_positions) -> ProtocolEngine:
    return ProtocolEngine(verifier, store=store, settings=settings, stake_positions=stake_positions)


@pytest.fixture
def signer() -> AdminSigner:
    return AdminSigner.from_seed(bytes([0x5E]) * 32)


@pytest.fixture
def at(clock) -> Callable[[bytes], LedgerContext]:
    """Build a LedgerContext for ``caller`` at the current clock."""

    def make(caller: bytes = ALICE) -> LedgerContext:
        return LedgerContext(slot=clock.slot, unix_time=clock.unix_time, caller=caller)

    return make


@pytest.fixture
def admin(engine, signer):
    """Sign an admin op against the registry's current nonce."""

    def sign(op: str, payload: dict):
        registry = engine.get_registry()
        return signer.sign(op, registry.admin_nonce if registry else 0, payload)

    return sign


@pytest.fixture
def initialized(engine, signer, at):
    """Initialized registry with funded callers."""
    engine.initialize(at(signer.public_key), DEFAULT_CONFIG, signer.sign("initialize", 0, DEFAULT_CONFIG.to_dict()))
    for owner in (ALICE, BOB, CAROL, DAVE):
        engine.mint(owner, 100_000 * TOKEN)
    return engine


@pytest.fixture
def registered(initialized, at):
    """Alice owns a registered agent; returns its identity."""
    identity = make_identity(1)
    initialized.register_agent(at(ALICE), identity.commitment, 2_000 * TOKEN)
    return identity


@pytest.fixture
def ledger(engine, clock) -> InProcessLedger:
    return InProcessLedger(engine, clock)
