import logging
from typing import Any

import httpx

from planpal.chat.base import InboundMessage

logger = logging.getLogger("planpal")

TELEGRAM_API = "https://api.telegram.org"


def _entity_text(text: str, offset: int, length: int) -> str:
    # Telegram entity offsets count UTF-16 code units, not code points
    encoded = text.encode("utf-16-le")
    return encoded[offset * 2:(offset + length) * 2].decode("utf-16-le")


class TelegramAdapter:
    """Telegram Bot API transport. Updates arrive through a webhook."""

    def __init__(
        self,
        token: str,
        webhook_url: str | None = None,
        webhook_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.token = token
        self.webhook_url = webhook_url
        self.webhook_secret = webhook_secret
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10)
        return self._client

    async def start(self) -> None:
        if not self.webhook_url:
            logger.warning("TELEGRAM_WEBHOOK_URL not set, not registering a webhook")
            return
        params = {"url": self.webhook_url, "allowed_updates": ["message"]}
        if self.webhook_secret:
            params["secret_token"] = self.webhook_secret
        await self._call("setWebhook", params)
        logger.info("Telegram webhook registered", extra={"extra_data": {"url": self.webhook_url}})

    async def stop(self) -> None:
        try:
            if self.webhook_url:
                await self._call("deleteWebhook", {})
        finally:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    async def send_message(self, chat_id: str, text: str) -> None:
        await self._call("sendMessage", {"chat_id": chat_id, "text": text})

    async def download_file(self, file_id: str) -> bytes:
        result = await self._call("getFile", {"file_id": file_id})
        resp = await self.client.get(f"{TELEGRAM_API}/file/bot{self.token}/{result['file_path']}")
        resp.raise_for_status()
        return resp.content

    def parse_update(self, payload: dict[str, Any]) -> InboundMessage | None:
        message = payload.get("message") or payload.get("edited_message")
        if not message:
            return None

        text = message.get("text") or message.get("caption") or ""
        entities = message.get("entities") or message.get("caption_entities") or []
        mentions = [
            _entity_text(text, e["offset"] + 1, e["length"] - 1)
            for e in entities
            if e.get("type") == "mention"
        ]

        sender = message.get("from") or {}
        photos = message.get("photo") or []
        chat = message.get("chat") or {}

        return InboundMessage(
            chat_id=str(chat.get("id")),
            chat_type=chat.get("type", "group"),
            sender=sender.get("username") or (str(sender["id"]) if "id" in sender else None),
            text=text,
            mentions=[m for m in mentions if m],
            photo_file_id=photos[-1]["file_id"] if photos else None,
        )

    async def _call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        resp = await self.client.post(f"{TELEGRAM_API}/bot{self.token}/{method}", json=params)
        resp.raise_for_status()
        data = resp.json()
        if not data.get("ok"):
            raise RuntimeError(f"Telegram {method} failed: {data.get('description')}")
        return data.get("result") or {}
