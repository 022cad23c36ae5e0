from fastapi import Depends, Request
from sqlalchemy.orm import Session

from planpal.database import get_db
from planpal.ledger_service import LedgerService
from planpal.sessions import SessionStore


def get_ledger_service(db: Session = Depends(get_db)) -> LedgerService:
    return LedgerService(db)


def get_chat_sessions(request: Request) -> SessionStore | None:
    """The running dispatcher's interaction store, if chat is enabled."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return dispatcher.sessions if dispatcher else None
