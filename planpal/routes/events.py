import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from planpal.deps import get_ledger_service
from planpal.email import send_event_link
from planpal.ledger_service import LedgerService
from planpal.ratelimit import limiter
from planpal.schemas import CreateEventIn, UpdateEventIn
from planpal.serializers import (
    serialize_close_outcome,
    serialize_event,
    serialize_event_summary,
)

logger = logging.getLogger("planpal")
router = APIRouter()


@router.post("/events", status_code=201)
@limiter.limit("5/hour")
def create_event(
    request: Request,
    data: CreateEventIn,
    background_tasks: BackgroundTasks,
    service: LedgerService = Depends(get_ledger_service),
):
    event = service.create_event(
        data.name,
        date=data.date,
        code=data.code,
        location=data.location,
        description=data.description,
    )
    if data.email:
        background_tasks.add_task(send_event_link, data.email, event.name, event.code)
    return serialize_event(event)


@router.get("/events")
def list_events(service: LedgerService = Depends(get_ledger_service)):
    return [serialize_event_summary(e) for e in service.list_events()]


@router.get("/events/by-code/{code}")
def get_event_by_code(code: str, service: LedgerService = Depends(get_ledger_service)):
    return serialize_event(service.get_event_by_code(code))


@router.get("/events/{event_id}")
def get_event(event_id: int, service: LedgerService = Depends(get_ledger_service)):
    return serialize_event(service.get_event(event_id))


@router.patch("/events/{event_id}")
def update_event(
    event_id: int,
    data: UpdateEventIn,
    service: LedgerService = Depends(get_ledger_service),
):
    event = service.update_event(event_id, **data.model_dump(exclude_unset=True))
    return serialize_event(event)


@router.delete("/events/{event_id}", status_code=204)
def delete_event(event_id: int, service: LedgerService = Depends(get_ledger_service)):
    service.delete_event(event_id)
    return None


@router.post("/events/{event_id}/close")
def close_event(event_id: int, service: LedgerService = Depends(get_ledger_service)):
    outcome = service.close_event(event_id)
    if not outcome.closed:
        return JSONResponse(status_code=409, content=serialize_close_outcome(outcome))
    return {**serialize_close_outcome(outcome), "event": serialize_event(service.get_event(event_id))}
