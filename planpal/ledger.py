"""Ledger value types.

Amounts are always positive integers in minor currency units (paise). The
direction of money is carried by role (payer, from, to), never by sign.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum

from planpal.errors import ValidationError

MINOR_UNITS = 100


class ExpenseStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not ExpenseStatus.PENDING


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"


class EventStatus(str, Enum):
    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class Vote(str, Enum):
    AGREE = "agree"
    DISAGREE = "disagree"

    @classmethod
    def parse(cls, value) -> "Vote":
        if isinstance(value, Vote):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown vote '{value}', expected 'agree' or 'disagree'")


def normalize_handle(handle) -> str:
    """Strip whitespace and a leading '@' from a chat handle."""
    return str(handle).strip().lstrip("@").strip()


def dedupe_handles(handles) -> tuple[str, ...]:
    """Normalize handles and drop repeats, keeping first-seen order."""
    seen: dict[str, None] = {}
    for h in handles:
        h = normalize_handle(h)
        if h:
            seen.setdefault(h, None)
    return tuple(seen)


def check_amount(amount) -> int:
    # bool is an int subclass; True is not an amount
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be an integer number of minor units")
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    return amount


def to_minor_units(value) -> int:
    """Convert a major-unit amount ("1,200.50", 12, Decimal) to minor units."""
    text = str(value).strip().replace(",", "")
    if text.startswith("₹"):
        text = text[1:]
    try:
        major = Decimal(text)
    except InvalidOperation:
        raise ValidationError(f"'{value}' is not a valid amount")
    if not major.is_finite():
        raise ValidationError(f"'{value}' is not a valid amount")
    minor = major * MINOR_UNITS
    if minor != minor.to_integral_value():
        raise ValidationError("Amounts can have at most two decimal places")
    return check_amount(int(minor))


def validate_expense(amount, description, payer, participants) -> tuple[str, ...]:
    """Validate a new expense and return its deduplicated split-among set."""
    check_amount(amount)
    if not description or not str(description).strip():
        raise ValidationError("Description must not be empty")
    payer = normalize_handle(payer or "")
    if not payer:
        raise ValidationError("Payer is required")
    split_among = dedupe_handles(participants or ())
    if not split_among:
        raise ValidationError("At least one participant is required")
    if payer not in split_among:
        raise ValidationError(f"Payer @{payer} must be one of the participants")
    return split_among


def validate_payment(from_handle, to_handle, amount) -> tuple[str, str]:
    check_amount(amount)
    from_handle = normalize_handle(from_handle or "")
    to_handle = normalize_handle(to_handle or "")
    if not from_handle or not to_handle:
        raise ValidationError("Both payer and recipient are required")
    if from_handle == to_handle:
        raise ValidationError("A payment needs two different participants")
    return from_handle, to_handle


@dataclass(frozen=True)
class ExpenseEntry:
    """An expense as seen by the balance engine."""

    amount: int
    payer: str
    participants: tuple[str, ...]
    status: ExpenseStatus
    id: str | None = None
    votes: dict[str, Vote] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        check_amount(self.amount)
        object.__setattr__(self, "payer", normalize_handle(self.payer))
        object.__setattr__(self, "participants", dedupe_handles(self.participants))
        object.__setattr__(self, "status", ExpenseStatus(self.status))


@dataclass(frozen=True)
class PaymentEntry:
    amount: int
    from_handle: str
    to_handle: str
    status: PaymentStatus
    id: str | None = None

    def __post_init__(self):
        check_amount(self.amount)
        object.__setattr__(self, "status", PaymentStatus(self.status))


@dataclass(frozen=True)
class Transfer:
    """One settlement instruction: from_handle pays to_handle amount."""

    from_handle: str
    to_handle: str
    amount: int
