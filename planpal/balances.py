"""Balance computation and debt simplification.

Balances are derived from confirmed ledger entries on every call and never
stored. Positive means the handle is owed money, negative means it owes.
"""

import logging
import math
from fractions import Fraction
from typing import Iterable

from planpal.ledger import (
    ExpenseEntry,
    ExpenseStatus,
    PaymentEntry,
    PaymentStatus,
    Transfer,
)

logger = logging.getLogger("planpal")


def compute_exact_balances(
    expenses: Iterable[ExpenseEntry],
    payments: Iterable[PaymentEntry],
) -> dict[str, Fraction]:
    """Compute unrounded per-handle balances.

    Shares are exact fractions so an amount split three ways does not lose
    or invent paise before the final rounding step.
    """
    balances: dict[str, Fraction] = {}

    def ensure(handle: str) -> None:
        if handle not in balances:
            balances[handle] = Fraction(0)

    for expense in expenses:
        if expense.status is not ExpenseStatus.CONFIRMED:
            continue
        split_among = expense.participants
        if not split_among:
            continue
        if expense.payer not in split_among:
            logger.warning(
                "Skipping expense whose payer is outside the split",
                extra={"extra_data": {"expense_id": expense.id, "payer": expense.payer}},
            )
            continue

        share = Fraction(expense.amount, len(split_among))
        ensure(expense.payer)
        balances[expense.payer] += share * (len(split_among) - 1)
        for handle in split_among:
            if handle == expense.payer:
                continue
            ensure(handle)
            balances[handle] -= share

    for payment in payments:
        if payment.status is not PaymentStatus.CONFIRMED:
            continue
        ensure(payment.from_handle)
        ensure(payment.to_handle)
        balances[payment.from_handle] += payment.amount
        balances[payment.to_handle] -= payment.amount

    return balances


def round_balances(exact: dict[str, Fraction]) -> dict[str, int]:
    """Round exact balances to whole minor units, preserving a zero sum.

    Every balance is floored, then the paise lost to flooring are handed back
    one at a time to the handles with the largest fractional parts. Ties go
    to the handle that entered the map first.
    """
    floors = {handle: math.floor(value) for handle, value in exact.items()}
    missing = -sum(floors.values()) + math.floor(sum(exact.values(), Fraction(0)))
    by_remainder = sorted(exact, key=lambda h: exact[h] - floors[h], reverse=True)
    for handle in by_remainder[:missing]:
        floors[handle] += 1
    return floors


def compute_net_balances(
    expenses: Iterable[ExpenseEntry],
    payments: Iterable[PaymentEntry],
) -> dict[str, int]:
    """Net balance per handle in minor units. The values always sum to 0."""
    return round_balances(compute_exact_balances(expenses, payments))


def simplify_debts(balances: dict[str, int], tolerance: int) -> list[Transfer]:
    """Greedy debt simplification.

    Debtors and creditors keep the balance map's insertion order; this is a
    greedy matcher, not a minimum-transaction optimizer. Produces at most
    debtors + creditors - 1 transfers.
    """
    debtors = []
    creditors = []

    for handle, balance in balances.items():
        if balance < -tolerance:
            debtors.append([handle, -balance])
        elif balance > tolerance:
            creditors.append([handle, balance])

    transfers: list[Transfer] = []
    di = 0
    ci = 0

    while di < len(debtors) and ci < len(creditors):
        amount = min(debtors[di][1], creditors[ci][1])
        if amount > 0:
            transfers.append(Transfer(debtors[di][0], creditors[ci][0], amount))
        debtors[di][1] -= amount
        creditors[ci][1] -= amount
        if debtors[di][1] <= tolerance:
            di += 1
        if creditors[ci][1] <= tolerance:
            ci += 1

    return transfers


def unsettled_handles(balances: dict[str, int], tolerance: int) -> list[str]:
    return [handle for handle, balance in balances.items() if abs(balance) > tolerance]
