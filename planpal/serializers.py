from planpal.ledger import Transfer
from planpal.ledger_service import CloseOutcome
from planpal.models import Event, Expense, Payment


def serialize_expense(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "eventId": expense.event_id,
        "description": expense.description,
        "amount": expense.amount,
        "paidBy": expense.payer,
        "splitAmong": list(expense.split_among or []),
        "votes": dict(expense.votes or {}),
        "status": expense.status.value,
        "createdAt": expense.created_at.isoformat(),
        "resolvedAt": expense.resolved_at.isoformat() if expense.resolved_at else None,
    }


def serialize_payment(payment: Payment) -> dict:
    return {
        "id": payment.id,
        "eventId": payment.event_id,
        "from": payment.from_handle,
        "to": payment.to_handle,
        "amount": payment.amount,
        "status": payment.status.value,
        "createdAt": payment.created_at.isoformat(),
        "confirmedAt": payment.confirmed_at.isoformat() if payment.confirmed_at else None,
    }


def serialize_transfer(transfer: Transfer) -> dict:
    return {"from": transfer.from_handle, "to": transfer.to_handle, "amount": transfer.amount}


def serialize_event_summary(event: Event) -> dict:
    return {
        "id": event.id,
        "code": event.code,
        "name": event.name,
        "date": event.date.isoformat(),
        "status": event.status.value,
        "isLinked": event.chat_group_id is not None,
        "createdAt": event.created_at.isoformat(),
        "updatedAt": event.updated_at.isoformat(),
    }


def serialize_event(event: Event) -> dict:
    return {
        **serialize_event_summary(event),
        "location": event.location,
        "description": event.description,
        "expenses": [serialize_expense(e) for e in event.expenses],
        "payments": [serialize_payment(p) for p in event.payments],
    }


def serialize_close_outcome(outcome: CloseOutcome) -> dict:
    return {
        "closed": outcome.closed,
        "reasons": list(outcome.reasons),
        "outstandingTransfers": [serialize_transfer(t) for t in outcome.outstanding_transfers],
    }
