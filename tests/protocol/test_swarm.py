"""Tests for swarm action proposal, hidden voting, reveal and execution."""

from __future__ import annotations

import pytest
from conftest import ALICE, BAD_PROOF, BOB, CAROL, DAVE, TOKEN, VALID_PROOF, VOTING_WINDOW

from acp.core.exceptions import CommitmentMismatchError, ProtocolError, RejectReason, ValidationException
from acp.crypto.commitments import vote_commitment
from acp.protocol.models import CREATE_SWARM_ACTION_FEE, ActionStatus, SlashReason, VoteValue
from acp.protocol.swarm import is_approved

ACTION = b"\xac" * 32
PROPOSER = b"\x9a" * 32


def _salt(n: int) -> bytes:
    return bytes([0x30 + n]) * 32


def _voter(n: int) -> bytes:
    return bytes([0x60 + n]) * 32


@pytest.fixture
def action(initialized, at):
    return initialized.create_swarm_action(at(), PROPOSER, ACTION, 60, VALID_PROOF)


def cast(engine, at, n: int, vote: bool, caller: bytes = ALICE):
    return engine.vote_swarm_action(
        at(caller), ACTION, _voter(n), vote_commitment(vote, _salt(n), ACTION), VALID_PROOF
    )


def reveal(engine, at, n: int, vote: bool, caller: bytes = ALICE, **kwargs):
    return engine.reveal_vote(at(caller), ACTION, _voter(n), vote, _salt(n), **kwargs)


class TestApproval:
    @pytest.mark.parametrize(
        ("votes_for", "votes_against", "threshold", "expected"),
        [
            (2, 1, 60, True),
            (3, 2, 60, True),
            (1, 1, 51, False),
            (1, 1, 50, True),
            (0, 0, 1, False),
            (1, 0, 100, True),
        ],
    )
    def test_is_approved(self, votes_for, votes_against, threshold, expected):
        assert is_approved(votes_for, votes_against, threshold) is expected


class TestCreateSwarmAction:
    def test_create(self, initialized, action):
        assert action.threshold == 60
        assert action.created_slot == 1_000
        assert action.deadline_slot == 1_000 + VOTING_WINDOW
        assert action.status == ActionStatus.OPEN
        assert initialized.get_registry().swarm_action_count == 1
        assert initialized.treasury_balance() == CREATE_SWARM_ACTION_FEE // 2

    @pytest.mark.parametrize("threshold", [0, 101])
    def test_threshold_range(self, initialized, at, threshold):
        with pytest.raises(ValidationException):
            initialized.create_swarm_action(at(), PROPOSER, ACTION, threshold, VALID_PROOF)

    def test_duplicate_action_hash(self, initialized, action, at):
        with pytest.raises(ProtocolError) as exc_info:
            initialized.create_swarm_action(at(), b"\x9b" * 32, ACTION, 60, VALID_PROOF)
        assert exc_info.value.reason == RejectReason.ACTION_EXISTS

    def test_one_proposal_per_epoch(self, initialized, action, at):
        with pytest.raises(ProtocolError) as exc_info:
            initialized.create_swarm_action(at(), PROPOSER, b"\xad" * 32, 60, VALID_PROOF)
        assert exc_info.value.reason == RejectReason.NULLIFIER_USED

    def test_invalid_proof_charges_nothing(self, initialized, at):
        with pytest.raises(ProtocolError):
            initialized.create_swarm_action(at(), PROPOSER, ACTION, 60, BAD_PROOF)
        assert initialized.balance_of(ALICE) == 100_000 * TOKEN
        assert initialized.get_swarm_action(ACTION) is None


class TestVoting:
    def test_vote_is_hidden_until_reveal(self, initialized, action, at):
        record = cast(initialized, at, 1, True)
        assert not record.revealed
        stored = initialized.get_swarm_action(ACTION)
        assert stored.vote_count == 1
        assert stored.votes_for == 0

    def test_double_vote(self, initialized, action, at):
        cast(initialized, at, 1, True)
        with pytest.raises(ProtocolError) as exc_info:
            cast(initialized, at, 1, False, caller=BOB)
        assert exc_info.value.reason == RejectReason.NULLIFIER_USED

    def test_existing_vote_record_never_overwritten(self, initialized, action, at, store):
        cast(initialized, at, 1, True)
        action_address = initialized.addresses.swarm_action(ACTION)
        store.delete(initialized.addresses.vote_nullifier(action_address, _voter(1)))

        with pytest.raises(ProtocolError) as exc_info:
            cast(initialized, at, 1, False, caller=BOB)
        assert exc_info.value.reason == RejectReason.NULLIFIER_USED
        assert initialized.get_swarm_action(ACTION).vote_count == 1
        assert initialized.get_vote_record(ACTION, _voter(1)).vote_commitment == vote_commitment(
            True, _salt(1), ACTION
        )

    def test_voting_closes_after_deadline(self, initialized, action, at, clock):
        clock.advance_slots(VOTING_WINDOW)
        cast(initialized, at, 1, True)
        clock.advance_slots(1)
        with pytest.raises(ProtocolError) as exc_info:
            cast(initialized, at, 2, True)
        assert exc_info.value.reason == RejectReason.VOTING_CLOSED

    def test_unknown_action(self, initialized, at):
        with pytest.raises(ProtocolError) as exc_info:
            cast(initialized, at, 1, True)
        assert exc_info.value.reason == RejectReason.NOT_FOUND


class TestReveal:
    def test_reveal_updates_tally(self, initialized, action, at):
        cast(initialized, at, 1, True)
        record = reveal(initialized, at, 1, True)
        assert record.revealed
        assert record.vote_value == VoteValue.YES
        assert initialized.get_swarm_action(ACTION).votes_for == 1

    def test_double_reveal(self, initialized, action, at):
        cast(initialized, at, 1, False)
        reveal(initialized, at, 1, False)
        with pytest.raises(ProtocolError) as exc_info:
            reveal(initialized, at, 1, False)
        assert exc_info.value.reason == RejectReason.ALREADY_REVEALED

    def test_mismatch(self, initialized, action, at):
        cast(initialized, at, 1, True)
        with pytest.raises(CommitmentMismatchError) as exc_info:
            reveal(initialized, at, 1, False)
        assert exc_info.value.reason == RejectReason.VOTE_COMMITMENT_MISMATCH
        assert exc_info.value.slash_reason == SlashReason.VOTE_COMMITMENT_MISMATCH
        assert initialized.get_swarm_action(ACTION).votes_against == 0

    def test_reveal_after_deadline_allowed(self, initialized, action, at, clock):
        cast(initialized, at, 1, True)
        clock.advance_slots(VOTING_WINDOW + 10)
        reveal(initialized, at, 1, True)
        assert initialized.get_swarm_action(ACTION).votes_for == 1


class TestExecute:
    def test_threshold_met_executes_once(self, initialized, action, at, clock):
        for n, (vote, caller) in enumerate(((True, ALICE), (True, BOB), (False, CAROL)), start=1):
            cast(initialized, at, n, vote, caller)
            reveal(initialized, at, n, vote, caller)

        with pytest.raises(ProtocolError) as exc_info:
            initialized.execute_swarm_action(at(DAVE), ACTION)
        assert exc_info.value.reason == RejectReason.VOTING_OPEN

        clock.advance_slots(VOTING_WINDOW + 1)
        executed = initialized.execute_swarm_action(at(DAVE), ACTION)
        assert executed.status == ActionStatus.EXECUTED
        assert executed.approval_ratio == pytest.approx(2 / 3)

        with pytest.raises(ProtocolError) as exc_info:
            initialized.execute_swarm_action(at(DAVE), ACTION)
        assert exc_info.value.reason == RejectReason.ALREADY_EXECUTED

    def test_threshold_not_met(self, initialized, action, at, clock):
        cast(initialized, at, 1, True)
        cast(initialized, at, 2, False)
        reveal(initialized, at, 1, True)
        reveal(initialized, at, 2, False)
        clock.advance_slots(VOTING_WINDOW + 1)
        with pytest.raises(ProtocolError) as exc_info:
            initialized.execute_swarm_action(at(), ACTION)
        assert exc_info.value.reason == RejectReason.THRESHOLD_NOT_MET

    def test_no_reveals_never_approves(self, initialized, action, at, clock):
        cast(initialized, at, 1, True)
        clock.advance_slots(VOTING_WINDOW + 1)
        with pytest.raises(ProtocolError) as exc_info:
            initialized.execute_swarm_action(at(), ACTION)
        assert exc_info.value.reason == RejectReason.THRESHOLD_NOT_MET

    def test_executed_action_rejects_votes_and_reveals(self, initialized, action, at, clock):
        cast(initialized, at, 1, True)
        cast(initialized, at, 2, True)
        reveal(initialized, at, 1, True)
        clock.advance_slots(VOTING_WINDOW + 1)
        initialized.execute_swarm_action(at(), ACTION)
        with pytest.raises(ProtocolError) as exc_info:
            reveal(initialized, at, 2, True)
        assert exc_info.value.reason == RejectReason.ALREADY_EXECUTED


class TestClose:
    def test_close_after_deadline(self, initialized, action, at, clock):
        with pytest.raises(ProtocolError):
            initialized.close_swarm_action(at(), ACTION)
        clock.advance_slots(VOTING_WINDOW + 1)
        closed = initialized.close_swarm_action(at(), ACTION)
        assert closed.status == ActionStatus.EXPIRED
        with pytest.raises(ProtocolError) as exc_info:
            initialized.execute_swarm_action(at(), ACTION)
        assert exc_info.value.reason == RejectReason.ACTION_CLOSED


class TestWeightedReveal:
    def test_linked_weight_recorded(self, initialized, registered, stake_positions, action, at, clock):
        stake_positions.set_position(ALICE, 1_000 * TOKEN, clock.unix_time - 90 * 86_400)
        initialized.link_identity(at(), registered.commitment, b"\x88" * 32)

        cast(initialized, at, 1, True)
        record = reveal(initialized, at, 1, True, identity_link_owner=ALICE)
        assert record.weighted_vote == 1_500 * TOKEN
        stored = initialized.get_swarm_action(ACTION)
        assert stored.weighted_votes_for == 1_500 * TOKEN
        assert stored.votes_for == 1

    def test_only_owner_applies_weight(self, initialized, registered, action, at):
        initialized.link_identity(at(), registered.commitment, b"\x88" * 32)
        cast(initialized, at, 1, True)
        with pytest.raises(ProtocolError) as exc_info:
            reveal(initialized, at, 1, True, caller=BOB, identity_link_owner=ALICE)
        assert exc_info.value.reason == RejectReason.UNAUTHORIZED
