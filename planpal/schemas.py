from datetime import date as date_type

from pydantic import BaseModel, Field


# --- Events ---

class CreateEventIn(BaseModel):
    name: str
    date: date_type | None = None
    code: str | None = None  # generated when omitted
    location: str | None = None
    description: str | None = None
    email: str | None = None


class UpdateEventIn(BaseModel):
    name: str | None = None
    date: date_type | None = None
    location: str | None = None
    description: str | None = None


# --- Expenses ---

class ExpenseIn(BaseModel):
    description: str
    amount: int  # minor units
    paid_by: str = Field(alias="paidBy")
    split_among: list[str] = Field(alias="splitAmong")

    model_config = {"populate_by_name": True}


class VoteIn(BaseModel):
    voter: str
    vote: str  # "agree" or "disagree"


# --- Payments ---

class PaymentIn(BaseModel):
    from_handle: str = Field(alias="from")
    to: str
    amount: int

    model_config = {"populate_by_name": True}


class ConfirmPaymentIn(BaseModel):
    from_handle: str = Field(alias="from")
    to: str
    amount: int
    confirmed_by: str = Field(alias="confirmedBy")
    payment_id: int | None = Field(default=None, alias="paymentId")

    model_config = {"populate_by_name": True}
