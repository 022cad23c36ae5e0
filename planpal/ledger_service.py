"""Ledger operations over a database session.

Every mutation is validated first and written in a single commit. Votes are
serialized per expense; expense/payment creation, payment confirmation and
event closure are serialized per event, so the close gate cannot pass while
a new pending item is being added. A refused mutation is rolled back before
the error leaves the service, so no row lock outlives the call.
"""

import logging
import secrets
import string
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from typing import Callable

from sqlalchemy.orm import Session

from planpal import config
from planpal.balances import compute_net_balances, simplify_debts, unsettled_handles
from planpal.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from planpal.ledger import (
    EventStatus,
    ExpenseEntry,
    ExpenseStatus,
    PaymentEntry,
    PaymentStatus,
    Transfer,
    Vote,
    normalize_handle,
    validate_expense,
    validate_payment,
)
from planpal.models import Event, Expense, Payment
from planpal.voting import ApprovalPolicy, apply_vote, initial_status

logger = logging.getLogger("planpal")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6

ResolutionListener = Callable[[Expense], None]


class KeyedLock:
    """One mutex per key, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict = {}

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


_event_locks = KeyedLock()
_expense_locks = KeyedLock()
_resolution_listeners: list[ResolutionListener] = []


def add_resolution_listener(listener: ResolutionListener) -> None:
    if listener not in _resolution_listeners:
        _resolution_listeners.append(listener)


def remove_resolution_listener(listener: ResolutionListener) -> None:
    if listener in _resolution_listeners:
        _resolution_listeners.remove(listener)


@dataclass
class CloseOutcome:
    closed: bool
    reasons: list[str] = field(default_factory=list)
    outstanding_transfers: list[Transfer] = field(default_factory=list)


def generate_event_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def expense_entry(expense: Expense) -> ExpenseEntry:
    return ExpenseEntry(
        id=str(expense.id),
        amount=expense.amount,
        payer=expense.payer,
        participants=tuple(expense.split_among or ()),
        status=expense.status,
        votes={h: Vote(v) for h, v in (expense.votes or {}).items()},
    )


def payment_entry(payment: Payment) -> PaymentEntry:
    return PaymentEntry(
        id=str(payment.id),
        amount=payment.amount,
        from_handle=payment.from_handle,
        to_handle=payment.to_handle,
        status=payment.status,
    )


class LedgerService:
    def __init__(
        self,
        db: Session,
        policy: ApprovalPolicy | str | None = None,
        tolerance: int | None = None,
    ):
        self.db = db
        self.policy = ApprovalPolicy(policy or config.APPROVAL_POLICY)
        self.tolerance = config.SETTLEMENT_TOLERANCE if tolerance is None else tolerance

    # --- Events ---

    def create_event(
        self,
        name: str,
        date: date_type | None = None,
        code: str | None = None,
        location: str | None = None,
        description: str | None = None,
    ) -> Event:
        if not name or not name.strip():
            raise ValidationError("Event name must not be empty")

        if code:
            code = code.strip().upper()
            if self.db.query(Event.id).filter(Event.code == code).first():
                raise StateConflictError(f"Event code {code} is already taken")
        else:
            code = generate_event_code()
            while self.db.query(Event.id).filter(Event.code == code).first():
                code = generate_event_code()

        event = Event(
            code=code,
            name=name.strip(),
            date=date or date_type.today(),
            location=location,
            description=description,
            status=EventStatus.CREATED,
        )
        self.db.add(event)
        self._commit()
        self.db.refresh(event)
        logger.info("Event created", extra={"extra_data": {"event_id": event.id, "code": event.code}})
        return event

    def get_event(self, event_id: int) -> Event:
        event = self.db.query(Event).filter(Event.id == event_id).first()
        if not event:
            raise NotFoundError("Event not found")
        return event

    def get_event_by_code(self, code: str) -> Event:
        event = self.db.query(Event).filter(Event.code == code.strip().upper()).first()
        if not event:
            raise NotFoundError("Invalid event code")
        return event

    def get_event_by_chat(self, chat_group_id: str) -> Event | None:
        return self.db.query(Event).filter(Event.chat_group_id == str(chat_group_id)).first()

    def list_events(self) -> list[Event]:
        return self.db.query(Event).order_by(Event.created_at.desc(), Event.id.desc()).all()

    def update_event(self, event_id: int, **changes) -> Event:
        event = self.get_event(event_id)
        self._ensure_editable(event)
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("Event name must not be empty")
        if "date" in changes and changes["date"] is None:
            raise ValidationError("Event date must not be empty")
        for key in ("name", "date", "location", "description"):
            if key in changes:
                setattr(event, key, changes[key])
        self._commit()
        self.db.refresh(event)
        return event

    def delete_event(self, event_id: int) -> None:
        event = self.get_event(event_id)
        self._ensure_editable(event)
        self.db.delete(event)
        self._commit()
        logger.info("Event deleted", extra={"extra_data": {"event_id": event_id}})

    def link_chat_group(self, code: str, chat_group_id: str) -> Event:
        """Bind an event to a chat group; the first link activates it."""
        event = self.get_event_by_code(code)
        chat_group_id = str(chat_group_id)
        with self._locked(_event_locks, event.id):
            event = self._lock_event(event.id)
            if event.status is EventStatus.CLOSED:
                raise StateConflictError("Event is already closed")

            # A group tracks one event at a time
            self.db.query(Event).filter(
                Event.chat_group_id == chat_group_id, Event.id != event.id,
            ).update({"chat_group_id": None}, synchronize_session="fetch")

            event.chat_group_id = chat_group_id
            if event.status is EventStatus.CREATED:
                event.status = EventStatus.ACTIVE
            self._commit()
            self.db.refresh(event)

        logger.info(
            "Event linked to chat group",
            extra={"extra_data": {"event_id": event.id, "chat_group_id": chat_group_id}},
        )
        return event

    # --- Expenses ---

    def create_expense(
        self,
        event_id: int,
        amount: int,
        description: str,
        payer: str,
        participants: list[str],
    ) -> Expense:
        split_among = validate_expense(amount, description, payer, participants)
        payer = normalize_handle(payer)
        status = initial_status(split_among)

        with self._locked(_event_locks, event_id):
            event = self._lock_event(event_id)
            self._ensure_open(event)
            expense = Expense(
                event_id=event.id,
                payer=payer,
                description=description.strip(),
                amount=amount,
                split_among=list(split_among),
                votes={},
                status=status,
                resolved_at=datetime.utcnow() if status.is_terminal else None,
            )
            self.db.add(expense)
            self._commit()
            self.db.refresh(expense)

        logger.info(
            "Expense created",
            extra={"extra_data": {
                "event_id": event_id,
                "expense_id": expense.id,
                "amount": amount,
                "status": status.value,
            }},
        )
        return expense

    def get_expense(self, expense_id: int) -> Expense:
        expense = self.db.query(Expense).filter(Expense.id == expense_id).first()
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def list_expenses(self, event_id: int, status: ExpenseStatus | None = None) -> list[Expense]:
        query = self.db.query(Expense).filter(Expense.event_id == event_id)
        if status is not None:
            query = query.filter(Expense.status == status)
        return query.order_by(Expense.id).all()

    def cast_vote(self, expense_id: int, voter: str, vote: Vote | str) -> ExpenseStatus:
        vote = Vote.parse(vote)
        with self._locked(_expense_locks, expense_id):
            expense = (
                self.db.query(Expense)
                .filter(Expense.id == expense_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if not expense:
                raise NotFoundError("Expense not found")

            votes = {h: Vote(v) for h, v in (expense.votes or {}).items()}
            votes, status = apply_vote(
                ExpenseStatus(expense.status), votes, expense.split_among or [], voter, vote, self.policy,
            )
            # Vote map and status land in the same commit
            expense.votes = {h: v.value for h, v in votes.items()}
            expense.status = status
            if status.is_terminal:
                expense.resolved_at = datetime.utcnow()
            self._commit()
            self.db.refresh(expense)

        logger.info(
            "Vote recorded",
            extra={"extra_data": {
                "expense_id": expense_id,
                "voter": normalize_handle(voter),
                "vote": vote.value,
                "status": status.value,
            }},
        )
        if status.is_terminal:
            self._notify_resolved(expense)
        return status

    def vote_on_pending(self, event_id: int, voter: str, vote: Vote | str) -> list[tuple[Expense, ExpenseStatus]]:
        """Cast the same vote on every pending expense of the event that includes voter."""
        voter = normalize_handle(voter)
        results = []
        for expense in self.list_expenses(event_id, ExpenseStatus.PENDING):
            if voter not in (expense.split_among or []):
                continue
            try:
                status = self.cast_vote(expense.id, voter, vote)
            except StateConflictError:
                # Resolved by somebody else since the listing
                continue
            results.append((expense, status))
        return results

    # --- Payments ---

    def create_payment(self, event_id: int, from_handle: str, to_handle: str, amount: int) -> Payment:
        from_handle, to_handle = validate_payment(from_handle, to_handle, amount)
        with self._locked(_event_locks, event_id):
            event = self._lock_event(event_id)
            self._ensure_open(event)
            payment = Payment(
                event_id=event.id,
                from_handle=from_handle,
                to_handle=to_handle,
                amount=amount,
                status=PaymentStatus.PENDING,
            )
            self.db.add(payment)
            self._commit()
            self.db.refresh(payment)

        logger.info(
            "Payment recorded",
            extra={"extra_data": {"event_id": event_id, "payment_id": payment.id, "amount": amount}},
        )
        return payment

    def confirm_payment(
        self,
        event_id: int,
        from_handle: str,
        to_handle: str,
        amount: int,
        confirming_handle: str,
        payment_id: int | None = None,
    ) -> Payment:
        """Confirm the first pending payment matching (from, to, amount).

        Several identical pending claims are ambiguous; the oldest one wins
        unless payment_id pins an exact record.
        """
        from_handle, to_handle = validate_payment(from_handle, to_handle, amount)
        if normalize_handle(confirming_handle) != to_handle:
            raise AuthorizationError("Only the recipient can confirm a payment")

        with self._locked(_event_locks, event_id):
            self.get_event(event_id)
            query = self.db.query(Payment).filter(
                Payment.event_id == event_id,
                Payment.from_handle == from_handle,
                Payment.to_handle == to_handle,
                Payment.amount == amount,
            )
            if payment_id is not None:
                query = query.filter(Payment.id == payment_id)

            payment = (
                query.filter(Payment.status == PaymentStatus.PENDING)
                .order_by(Payment.id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if not payment:
                if query.filter(Payment.status == PaymentStatus.CONFIRMED).first():
                    raise StateConflictError("Payment is already confirmed")
                raise NotFoundError("No pending payment found matching these details")

            payment.status = PaymentStatus.CONFIRMED
            payment.confirmed_at = datetime.utcnow()
            self._commit()
            self.db.refresh(payment)

        logger.info(
            "Payment confirmed",
            extra={"extra_data": {"event_id": event_id, "payment_id": payment.id}},
        )
        return payment

    def list_payments(self, event_id: int, status: PaymentStatus | None = None) -> list[Payment]:
        query = self.db.query(Payment).filter(Payment.event_id == event_id)
        if status is not None:
            query = query.filter(Payment.status == status)
        return query.order_by(Payment.id).all()

    # --- Balances ---

    def compute_balances(self, event_id: int) -> dict[str, int]:
        # Two separate reads: not an atomic snapshot across expenses and payments
        self.get_event(event_id)
        expenses = [expense_entry(e) for e in self.list_expenses(event_id)]
        payments = [payment_entry(p) for p in self.list_payments(event_id)]
        return compute_net_balances(expenses, payments)

    def compute_settlements(self, event_id: int) -> list[Transfer]:
        return simplify_debts(self.compute_balances(event_id), self.tolerance)

    def confirmed_total(self, event_id: int) -> int:
        return sum(e.amount for e in self.list_expenses(event_id, ExpenseStatus.CONFIRMED))

    # --- Lifecycle ---

    def close_event(self, event_id: int) -> CloseOutcome:
        with self._locked(_event_locks, event_id):
            event = self._lock_event(event_id)
            if event.status is EventStatus.CLOSED:
                raise StateConflictError("Event is already closed")

            reasons = []
            transfers: list[Transfer] = []

            pending_expenses = len(self.list_expenses(event_id, ExpenseStatus.PENDING))
            if pending_expenses:
                reasons.append(f"{pending_expenses} pending expenses need approval or rejection")

            pending_payments = len(self.list_payments(event_id, PaymentStatus.PENDING))
            if pending_payments:
                reasons.append(f"{pending_payments} pending payments need confirmation")

            balances = self.compute_balances(event_id)
            if unsettled_handles(balances, self.tolerance):
                reasons.append("unsettled balances remain")
                transfers = simplify_debts(balances, self.tolerance)

            if reasons:
                # Nothing to write; release the event row
                self.db.rollback()
                logger.info(
                    "Event close blocked",
                    extra={"extra_data": {"event_id": event_id, "reasons": reasons}},
                )
                return CloseOutcome(closed=False, reasons=reasons, outstanding_transfers=transfers)

            event.status = EventStatus.CLOSED
            self._commit()

        logger.info("Event closed", extra={"extra_data": {"event_id": event_id}})
        return CloseOutcome(closed=True)

    # --- Internals ---

    @contextmanager
    def _locked(self, locks: KeyedLock, key):
        """Hold the keyed mutex; a failure inside also drops the row locks."""
        with locks.hold(key):
            try:
                yield
            except Exception:
                self.db.rollback()
                raise

    def _lock_event(self, event_id: int) -> Event:
        event = (
            self.db.query(Event)
            .filter(Event.id == event_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not event:
            raise NotFoundError("Event not found")
        return event

    def _ensure_open(self, event: Event) -> None:
        if event.status is EventStatus.CLOSED:
            raise StateConflictError("Event is closed; no further expenses or payments can be recorded")

    def _ensure_editable(self, event: Event) -> None:
        if event.status is EventStatus.CLOSED:
            raise StateConflictError("Cannot edit a closed event")
        if event.chat_group_id:
            raise StateConflictError("Cannot edit active events")

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _notify_resolved(self, expense: Expense) -> None:
        # The resolution is already committed; a failing listener must not undo it
        for listener in list(_resolution_listeners):
            try:
                listener(expense)
            except Exception:
                logger.error(
                    "Resolution listener failed",
                    exc_info=True,
                    extra={"extra_data": {"expense_id": expense.id}},
                )
