from fastapi import APIRouter, Depends

from planpal.deps import get_ledger_service
from planpal.ledger_service import LedgerService
from planpal.serializers import serialize_transfer

router = APIRouter()


@router.get("/events/{event_id}/balances")
def get_balances(event_id: int, service: LedgerService = Depends(get_ledger_service)):
    balances = service.compute_balances(event_id)
    return {
        "balances": balances,
        "confirmedTotal": service.confirmed_total(event_id),
        "tolerance": service.tolerance,
    }


@router.get("/events/{event_id}/settlements")
def get_settlements(event_id: int, service: LedgerService = Depends(get_ledger_service)):
    return {"transfers": [serialize_transfer(t) for t in service.compute_settlements(event_id)]}
