from planpal import config
from planpal.chat.base import MessageAdapter
from planpal.chat.telegram import TelegramAdapter


def get_chat_adapter() -> MessageAdapter | None:
    """Return the configured chat transport, or None when chat is disabled."""
    if config.CHAT_PROVIDER == "telegram":
        if not config.TELEGRAM_BOT_TOKEN:
            return None
        return TelegramAdapter(
            token=config.TELEGRAM_BOT_TOKEN,
            webhook_url=config.TELEGRAM_WEBHOOK_URL,
            webhook_secret=config.TELEGRAM_WEBHOOK_SECRET,
        )
    raise ValueError(f"Unknown chat provider: {config.CHAT_PROVIDER}")
