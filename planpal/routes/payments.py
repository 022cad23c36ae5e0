from fastapi import APIRouter, Depends, Query

from planpal.deps import get_ledger_service
from planpal.ledger import PaymentStatus
from planpal.ledger_service import LedgerService
from planpal.schemas import ConfirmPaymentIn, PaymentIn
from planpal.serializers import serialize_payment

router = APIRouter()


@router.post("/events/{event_id}/payments", status_code=201)
def add_payment(
    event_id: int,
    data: PaymentIn,
    service: LedgerService = Depends(get_ledger_service),
):
    payment = service.create_payment(event_id, data.from_handle, data.to, data.amount)
    return serialize_payment(payment)


@router.post("/events/{event_id}/payments/confirm")
def confirm_payment(
    event_id: int,
    data: ConfirmPaymentIn,
    service: LedgerService = Depends(get_ledger_service),
):
    payment = service.confirm_payment(
        event_id,
        data.from_handle,
        data.to,
        data.amount,
        data.confirmed_by,
        payment_id=data.payment_id,
    )
    return serialize_payment(payment)


@router.get("/events/{event_id}/payments")
def list_payments(
    event_id: int,
    status: PaymentStatus | None = Query(None),
    service: LedgerService = Depends(get_ledger_service),
):
    service.get_event(event_id)
    return [serialize_payment(p) for p in service.list_payments(event_id, status)]
