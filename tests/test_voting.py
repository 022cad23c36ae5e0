"""
Tests for the expense approval protocol.
"""

import pytest

from planpal.errors import AuthorizationError, StateConflictError
from planpal.ledger import ExpenseStatus, Vote
from planpal.voting import ApprovalPolicy, apply_vote, initial_status, remaining_votes, tally

SPLIT = ("alice", "bob", "carol")


class TestPolicy:
    @pytest.mark.parametrize("n, expected", [(1, 1), (2, 1), (3, 2), (4, 2), (5, 3)])
    def test_majority_threshold(self, n, expected):
        """Majority needs ceil(n / 2) agree votes."""
        assert ApprovalPolicy.MAJORITY.required_agrees(n) == expected

    def test_unanimous_threshold(self):
        assert ApprovalPolicy.UNANIMOUS.required_agrees(4) == 4


class TestInitialStatus:
    def test_single_participant_auto_confirms(self):
        assert initial_status(("alice",)) is ExpenseStatus.CONFIRMED

    def test_group_expense_starts_pending(self):
        assert initial_status(SPLIT) is ExpenseStatus.PENDING


class TestApplyVote:
    def test_majority_confirms(self):
        """Two agrees out of three confirm under majority."""
        votes, status = apply_vote(ExpenseStatus.PENDING, {}, SPLIT, "alice", Vote.AGREE, ApprovalPolicy.MAJORITY)
        assert status is ExpenseStatus.PENDING
        votes, status = apply_vote(status, votes, SPLIT, "@bob", Vote.AGREE, ApprovalPolicy.MAJORITY)
        assert status is ExpenseStatus.CONFIRMED
        assert votes == {"alice": Vote.AGREE, "bob": Vote.AGREE}

    def test_unanimous_waits_for_everybody(self):
        votes = {"alice": Vote.AGREE, "bob": Vote.AGREE}
        _, status = apply_vote(ExpenseStatus.PENDING, {}, SPLIT, "alice", Vote.AGREE, ApprovalPolicy.UNANIMOUS)
        assert status is ExpenseStatus.PENDING
        _, status = apply_vote(ExpenseStatus.PENDING, votes, SPLIT, "carol", Vote.AGREE, ApprovalPolicy.UNANIMOUS)
        assert status is ExpenseStatus.CONFIRMED

    def test_single_disagree_rejects(self):
        """Rejection is unilateral, whatever the agree count."""
        _, status = apply_vote(ExpenseStatus.PENDING, {}, SPLIT, "carol", Vote.DISAGREE, ApprovalPolicy.MAJORITY)
        assert status is ExpenseStatus.REJECTED

    def test_revote_last_write_wins(self):
        """A participant's later vote replaces the earlier one."""
        split = ("alice", "bob", "carol", "dave")
        votes, _ = apply_vote(ExpenseStatus.PENDING, {}, split, "alice", Vote.AGREE, ApprovalPolicy.MAJORITY)
        votes, status = apply_vote(ExpenseStatus.PENDING, votes, split, "alice", Vote.AGREE, ApprovalPolicy.MAJORITY)
        assert status is ExpenseStatus.PENDING
        assert votes == {"alice": Vote.AGREE}
        votes, status = apply_vote(ExpenseStatus.PENDING, votes, split, "alice", Vote.DISAGREE, ApprovalPolicy.MAJORITY)
        assert votes == {"alice": Vote.DISAGREE}
        assert status is ExpenseStatus.REJECTED

    def test_input_votes_not_modified(self):
        votes = {"alice": Vote.AGREE}
        apply_vote(ExpenseStatus.PENDING, votes, SPLIT, "bob", Vote.DISAGREE, ApprovalPolicy.MAJORITY)
        assert votes == {"alice": Vote.AGREE}

    @pytest.mark.parametrize("status", [ExpenseStatus.CONFIRMED, ExpenseStatus.REJECTED])
    def test_resolved_expense_refuses_votes(self, status):
        with pytest.raises(StateConflictError):
            apply_vote(status, {}, SPLIT, "alice", Vote.AGREE, ApprovalPolicy.MAJORITY)

    def test_outsider_cannot_vote(self):
        with pytest.raises(AuthorizationError, match="@mallory"):
            apply_vote(ExpenseStatus.PENDING, {}, SPLIT, "mallory", Vote.AGREE, ApprovalPolicy.MAJORITY)


class TestTally:
    def test_outsider_votes_ignored(self):
        status = tally({"mallory": Vote.DISAGREE, "alice": Vote.AGREE}, SPLIT, ApprovalPolicy.MAJORITY)
        assert status is ExpenseStatus.PENDING

    def test_remaining_votes(self):
        assert remaining_votes({"alice": Vote.AGREE}, SPLIT) == 2
