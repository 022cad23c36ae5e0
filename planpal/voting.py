"""Expense approval protocol.

Rejection is unilateral: one "disagree" rejects. Approval is collective and
depends on the configured policy. The payer is not counted automatically and
votes like any other participant.
"""

import math
from enum import Enum

from planpal.errors import AuthorizationError, StateConflictError
from planpal.ledger import ExpenseStatus, Vote, normalize_handle


class ApprovalPolicy(str, Enum):
    MAJORITY = "majority"
    UNANIMOUS = "unanimous"

    def required_agrees(self, participant_count: int) -> int:
        if self is ApprovalPolicy.UNANIMOUS:
            return participant_count
        return math.ceil(participant_count / 2)


def initial_status(split_among) -> ExpenseStatus:
    """A single-participant expense needs no consent from anybody else."""
    return ExpenseStatus.CONFIRMED if len(split_among) < 2 else ExpenseStatus.PENDING


def tally(votes: dict[str, Vote], split_among, policy: ApprovalPolicy) -> ExpenseStatus:
    members = set(split_among)
    counted = [Vote(v) for h, v in votes.items() if h in members]
    if Vote.DISAGREE in counted:
        return ExpenseStatus.REJECTED
    agrees = counted.count(Vote.AGREE)
    if agrees >= policy.required_agrees(len(members)):
        return ExpenseStatus.CONFIRMED
    return ExpenseStatus.PENDING


def apply_vote(
    status: ExpenseStatus,
    votes: dict[str, Vote],
    split_among,
    voter: str,
    vote: Vote,
    policy: ApprovalPolicy,
) -> tuple[dict[str, Vote], ExpenseStatus]:
    """Return the updated vote map and the status it implies.

    The input map is not modified; callers persist both results together.
    """
    if status is not ExpenseStatus.PENDING:
        raise StateConflictError(f"Expense is already {status.value.lower()}")
    voter = normalize_handle(voter)
    if voter not in split_among:
        raise AuthorizationError(f"@{voter} is not a participant of this expense")

    updated = dict(votes)
    updated[voter] = Vote.parse(vote)
    return updated, tally(updated, split_among, policy)


def remaining_votes(votes: dict[str, Vote], split_among) -> int:
    return len([h for h in split_among if h not in votes])
