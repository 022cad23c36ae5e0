from fastapi import APIRouter, Depends, Query

from planpal.deps import get_chat_sessions, get_ledger_service
from planpal.ledger import ExpenseStatus
from planpal.ledger_service import LedgerService
from planpal.schemas import ExpenseIn, VoteIn
from planpal.serializers import serialize_expense
from planpal.sessions import SessionStore

router = APIRouter()


@router.post("/events/{event_id}/expenses", status_code=201)
def add_expense(
    event_id: int,
    data: ExpenseIn,
    service: LedgerService = Depends(get_ledger_service),
):
    expense = service.create_expense(
        event_id, data.amount, data.description, data.paid_by, data.split_among,
    )
    return serialize_expense(expense)


@router.get("/events/{event_id}/expenses")
def list_expenses(
    event_id: int,
    status: ExpenseStatus | None = Query(None),
    service: LedgerService = Depends(get_ledger_service),
):
    service.get_event(event_id)
    return [serialize_expense(e) for e in service.list_expenses(event_id, status)]


@router.post("/expenses/{expense_id}/votes")
def cast_vote(
    expense_id: int,
    data: VoteIn,
    service: LedgerService = Depends(get_ledger_service),
    sessions: SessionStore | None = Depends(get_chat_sessions),
):
    status = service.cast_vote(expense_id, data.voter, data.vote)
    if sessions is not None:
        # Close the voter's pending chat prompt
        sessions.end_votes_for(expense_id, [data.voter])
    return {"status": status.value, "expense": serialize_expense(service.get_expense(expense_id))}
