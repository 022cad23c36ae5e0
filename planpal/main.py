import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress

import sentry_sdk
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from planpal import config
from planpal.chat.commands import CommandDispatcher
from planpal.chat.factory import get_chat_adapter
from planpal.database import Base, SessionLocal, engine, get_db
from planpal.errors import LedgerError
from planpal.logging_config import setup_logging
from planpal.middleware import RequestLoggingMiddleware
from planpal.ratelimit import limiter
from planpal.routes import balances, chat, events, expenses, payments, receipts
from planpal.sessions import SessionStore

load_dotenv()

# Sentry
sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    # Disable the auto-detected OpenAI Agents integration due to
    # version incompatibility (sentry-sdk expects a different internal API)
    _disabled = []
    try:
        from sentry_sdk.integrations.openai_agents import OpenAIAgentsIntegration
        _disabled.append(OpenAIAgentsIntegration)
    except ImportError:
        pass
    sentry_sdk.init(
        dsn=sentry_dsn,
        traces_sample_rate=0.1,
        send_default_pii=False,
        disabled_integrations=_disabled,
    )

logger = setup_logging()


async def sweep_sessions(sessions: SessionStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            sessions.sweep()
        except Exception:
            logger.error("Session sweep failed", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.dispatcher = None
    adapter = get_chat_adapter()
    if adapter is None:
        logger.info("Chat disabled, TELEGRAM_BOT_TOKEN not set")
        yield
        return

    sessions = SessionStore(ttl_seconds=config.SESSION_TTL_MINUTES * 60)
    dispatcher = CommandDispatcher(adapter, sessions, SessionLocal)
    dispatcher.attach()
    await adapter.start()
    app.state.dispatcher = dispatcher
    sweeper = asyncio.create_task(sweep_sessions(sessions, config.SESSION_SWEEP_SECONDS))
    logger.info("Chat started", extra={"extra_data": {"provider": config.CHAT_PROVIDER}})
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        dispatcher.detach()
        app.state.dispatcher = None
        await adapter.stop()
        logger.info("Chat stopped")


app = FastAPI(title="PlanPal API", version="0.1.0", lifespan=lifespan)
app.state.limiter = limiter
app.state.dispatcher = None
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.info(
        exc.message,
        extra={"extra_data": {
            "error": type(exc).__name__,
            "path": request.url.path,
            "status": exc.status_code,
        }},
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# CORS
origins = os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in origins],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(RequestLoggingMiddleware)

# Create tables (use Alembic in production)
Base.metadata.create_all(bind=engine)

# Routes
app.include_router(events.router, prefix="/api")
app.include_router(expenses.router, prefix="/api")
app.include_router(payments.router, prefix="/api")
app.include_router(balances.router, prefix="/api")
app.include_router(receipts.router, prefix="/api")
app.include_router(chat.router, prefix="/api")


@app.get("/health")
def health(request: Request, db: Session = Depends(get_db)):
    details = {"chat": "enabled" if request.app.state.dispatcher else "disabled"}
    try:
        db.execute(text("SELECT 1"))
        details["database"] = "ok"
    except SQLAlchemyError:
        logger.error("Health check failed", exc_info=True)
        details["database"] = "unavailable"
        return JSONResponse(status_code=503, content={"status": "unhealthy", "details": details})
    return {"status": "ok", "details": details}
