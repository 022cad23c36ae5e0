import os

from dotenv import load_dotenv

load_dotenv()

# "majority" needs ceil(n / 2) agree votes, "unanimous" needs all n
APPROVAL_POLICY = os.getenv("APPROVAL_POLICY", "majority").strip().lower()

# Minor units (paise). Balances within this distance of zero count as settled.
SETTLEMENT_TOLERANCE = int(os.getenv("SETTLEMENT_TOLERANCE", "1"))

SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", "30"))
SESSION_SWEEP_SECONDS = int(os.getenv("SESSION_SWEEP_SECONDS", "600"))

CHAT_PROVIDER = os.getenv("CHAT_PROVIDER", "telegram")
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_WEBHOOK_URL = os.getenv("TELEGRAM_WEBHOOK_URL")
TELEGRAM_WEBHOOK_SECRET = os.getenv("TELEGRAM_WEBHOOK_SECRET")
BOT_USERNAME = os.getenv("BOT_USERNAME")

CURRENCY_SYMBOL = "₹"
