import logging
import secrets

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request

from planpal import config

logger = logging.getLogger("planpal")
router = APIRouter()


@router.post("/chat/telegram/webhook")
async def telegram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_telegram_bot_api_secret_token: str | None = Header(None),
):
    secret = config.TELEGRAM_WEBHOOK_SECRET
    if secret and not secrets.compare_digest(x_telegram_bot_api_secret_token or "", secret):
        logger.warning("Webhook call with a bad secret token")
        raise HTTPException(status_code=403, detail="Invalid webhook secret")

    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Chat is not configured")

    message = dispatcher.adapter.parse_update(await request.json())
    if message is not None:
        # Telegram retries webhooks that answer slowly
        background_tasks.add_task(dispatcher.handle, message)
    return {"ok": True}
