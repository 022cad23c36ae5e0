from typing import Any, Protocol

from pydantic import BaseModel


class InboundMessage(BaseModel):
    chat_id: str
    chat_type: str = "group"  # "private", "group" or "supergroup"
    sender: str | None = None  # username, or the numeric user id as a fallback
    text: str = ""  # message text, or the caption of a photo
    mentions: list[str] = []  # handles without the leading "@"
    photo_file_id: str | None = None

    @property
    def is_private(self) -> bool:
        return self.chat_type == "private"


class MessageAdapter(Protocol):
    """A chat transport. The dispatcher only talks to chats through this."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def send_message(self, chat_id: str, text: str) -> None: ...

    async def download_file(self, file_id: str) -> bytes: ...

    def parse_update(self, payload: dict[str, Any]) -> InboundMessage | None: ...
