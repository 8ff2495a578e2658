"""Tests for sealed-bid swarm actions."""

from __future__ import annotations

import pytest
from conftest import ALICE, BOB, CAROL, VALID_PROOF

from acp.core.exceptions import CommitmentMismatchError, ProtocolError, RejectReason, ValidationException
from acp.crypto.commitments import bid_commitment, vote_commitment
from acp.protocol.models import ActionStatus, VoteValue

ACTION = b"\xbd" * 32
PROPOSER = b"\x9c" * 32
MIN_BID = 100
VOTE_WINDOW = 10
REVEAL_WINDOW = 20


def _voter(n: int) -> bytes:
    return bytes([0x70 + n]) * 32


def _vote_salt(n: int) -> bytes:
    return bytes([0x20 + n]) * 32


def _bid_salt(n: int) -> bytes:
    return bytes([0x40 + n]) * 32


@pytest.fixture
def bid_action(initialized, at):
    return initialized.create_swarm_action_bid(
        at(), PROPOSER, ACTION, 50, MIN_BID, VOTE_WINDOW, REVEAL_WINDOW, VALID_PROOF
    )


def cast(engine, at, n: int, vote: bool, bid: int, caller: bytes = ALICE):
    return engine.vote_swarm_action_bid(
        at(caller),
        ACTION,
        _voter(n),
        vote_commitment(vote, _vote_salt(n), ACTION),
        bid_commitment(bid, _bid_salt(n), ACTION),
        VALID_PROOF,
    )


def reveal(engine, at, n: int, vote: bool, bid: int, caller: bytes = ALICE):
    return engine.reveal_vote_bid(at(caller), ACTION, _voter(n), vote, _vote_salt(n), bid, _bid_salt(n))


class TestCreate:
    def test_deadlines_from_creation(self, bid_action):
        assert bid_action.vote_deadline_slot == 1_000 + VOTE_WINDOW
        assert bid_action.reveal_deadline_slot == 1_000 + REVEAL_WINDOW
        assert bid_action.min_bid == MIN_BID

    @pytest.mark.parametrize(
        ("min_bid", "vote_window", "reveal_window"),
        [(0, 10, 20), (100, 0, 20), (100, 10, 10), (100, 10, 5)],
    )
    def test_invalid_parameters(self, initialized, at, min_bid, vote_window, reveal_window):
        with pytest.raises(ValidationException):
            initialized.create_swarm_action_bid(
                at(), PROPOSER, ACTION, 50, min_bid, vote_window, reveal_window, VALID_PROOF
            )

    def test_shares_proposer_nullifier_with_plain_actions(self, initialized, at):
        initialized.create_swarm_action(at(), PROPOSER, b"\x01" * 32, 50, VALID_PROOF)
        with pytest.raises(ProtocolError) as exc_info:
            initialized.create_swarm_action_bid(
                at(), PROPOSER, ACTION, 50, MIN_BID, VOTE_WINDOW, REVEAL_WINDOW, VALID_PROOF
            )
        assert exc_info.value.reason == RejectReason.NULLIFIER_USED


class TestPhases:
    def test_reveal_not_open_during_voting(self, initialized, bid_action, at):
        cast(initialized, at, 1, True, 150)
        with pytest.raises(ProtocolError) as exc_info:
            reveal(initialized, at, 1, True, 150)
        assert exc_info.value.reason == RejectReason.REVEAL_NOT_OPEN

    def test_voting_closed_after_vote_deadline(self, initialized, bid_action, at, clock):
        clock.advance_slots(VOTE_WINDOW + 1)
        with pytest.raises(ProtocolError) as exc_info:
            cast(initialized, at, 1, True, 150)
        assert exc_info.value.reason == RejectReason.VOTING_CLOSED

    def test_reveal_closed_after_reveal_deadline(self, initialized, bid_action, at, clock):
        cast(initialized, at, 1, True, 150)
        clock.advance_slots(REVEAL_WINDOW + 1)
        with pytest.raises(ProtocolError) as exc_info:
            reveal(initialized, at, 1, True, 150)
        assert exc_info.value.reason == RejectReason.REVEAL_CLOSED

    def test_execute_waits_for_reveal_deadline(self, initialized, bid_action, at, clock):
        clock.advance_slots(REVEAL_WINDOW)
        with pytest.raises(ProtocolError) as exc_info:
            initialized.execute_swarm_action_bid(at(), ACTION)
        assert exc_info.value.reason == RejectReason.REVEAL_OPEN


class TestSealedBids:
    def test_highest_yes_bid_wins(self, initialized, bid_action, at, clock):
        bids = ((1, True, 150, ALICE), (2, False, 500, BOB), (3, True, 300, CAROL))
        for n, vote, bid, caller in bids:
            cast(initialized, at, n, vote, bid, caller)

        clock.advance_slots(VOTE_WINDOW + 1)
        highest = [reveal(initialized, at, n, vote, bid, caller)[1] for n, vote, bid, caller in bids]
        assert highest == [True, False, True]

        clock.advance_slots(REVEAL_WINDOW)
        executed = initialized.execute_swarm_action_bid(at(), ACTION)
        assert executed.status == ActionStatus.EXECUTED
        assert executed.highest_yes_bid == 300
        assert executed.winner == _voter(3)
        assert executed.yes_votes == 2
        assert executed.no_votes == 1

    def test_tie_goes_to_earliest_reveal(self, initialized, bid_action, at, clock):
        cast(initialized, at, 1, True, 200)
        cast(initialized, at, 2, True, 200)
        clock.advance_slots(VOTE_WINDOW + 1)
        assert reveal(initialized, at, 2, True, 200)[1] is True
        assert reveal(initialized, at, 1, True, 200)[1] is False
        assert initialized.get_swarm_action_bid(ACTION).highest_yes_bidder_nullifier == _voter(2)

    def test_no_qualifying_bid(self, initialized, bid_action, at, clock):
        cast(initialized, at, 1, True, MIN_BID - 1)
        clock.advance_slots(VOTE_WINDOW + 1)
        record, is_highest = reveal(initialized, at, 1, True, MIN_BID - 1)
        assert record.vote_value == VoteValue.YES
        assert not is_highest

        clock.advance_slots(REVEAL_WINDOW)
        with pytest.raises(ProtocolError) as exc_info:
            initialized.execute_swarm_action_bid(at(), ACTION)
        assert exc_info.value.reason == RejectReason.NO_QUALIFYING_BID
        assert initialized.close_swarm_action_bid(at(), ACTION).status == ActionStatus.EXPIRED

    def test_threshold_not_met(self, initialized, bid_action, at, clock):
        cast(initialized, at, 1, True, 150)
        cast(initialized, at, 2, False, 0)
        cast(initialized, at, 3, False, 0)
        clock.advance_slots(VOTE_WINDOW + 1)
        for n, vote, bid in ((1, True, 150), (2, False, 0), (3, False, 0)):
            reveal(initialized, at, n, vote, bid)
        clock.advance_slots(REVEAL_WINDOW)
        with pytest.raises(ProtocolError) as exc_info:
            initialized.execute_swarm_action_bid(at(), ACTION)
        assert exc_info.value.reason == RejectReason.THRESHOLD_NOT_MET

    def test_bid_mismatch(self, initialized, bid_action, at, clock):
        cast(initialized, at, 1, True, 150)
        clock.advance_slots(VOTE_WINDOW + 1)
        with pytest.raises(CommitmentMismatchError) as exc_info:
            reveal(initialized, at, 1, True, 151)
        assert exc_info.value.reason == RejectReason.BID_COMMITMENT_MISMATCH

    def test_vote_mismatch_checked_first(self, initialized, bid_action, at, clock):
        cast(initialized, at, 1, True, 150)
        clock.advance_slots(VOTE_WINDOW + 1)
        with pytest.raises(CommitmentMismatchError) as exc_info:
            reveal(initialized, at, 1, False, 151)
        assert exc_info.value.reason == RejectReason.VOTE_COMMITMENT_MISMATCH

    def test_double_vote(self, initialized, bid_action, at):
        cast(initialized, at, 1, True, 150)
        with pytest.raises(ProtocolError) as exc_info:
            cast(initialized, at, 1, True, 160)
        assert exc_info.value.reason == RejectReason.NULLIFIER_USED

    def test_existing_record_never_overwritten(self, initialized, bid_action, at, store):
        cast(initialized, at, 1, True, 150)
        action_address = initialized.addresses.swarm_action_bid(ACTION)
        store.delete(initialized.addresses.vote_bid_nullifier(action_address, _voter(1)))

        with pytest.raises(ProtocolError) as exc_info:
            cast(initialized, at, 1, True, 900)
        assert exc_info.value.reason == RejectReason.NULLIFIER_USED
        assert initialized.get_swarm_action_bid(ACTION).vote_count == 1
        record = initialized.get_vote_bid_record(ACTION, _voter(1))
        assert record.bid_commitment == bid_commitment(150, _bid_salt(1), ACTION)
