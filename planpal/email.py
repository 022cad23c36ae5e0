import logging
import os

import resend

from planpal import config

logger = logging.getLogger("planpal")


def send_event_link(email: str, event_name: str, code: str):
    api_key = os.getenv("RESEND_API_KEY")
    if not api_key:
        return

    resend.api_key = api_key
    frontend_url = os.getenv("FRONTEND_URL", "http://localhost:5173")
    event_url = f"{frontend_url}/event/{code}"

    bot_line = ""
    if config.BOT_USERNAME:
        bot_url = f"https://t.me/{config.BOT_USERNAME}?start={code}"
        bot_line = (
            f'<p>Add <a href="{bot_url}">@{config.BOT_USERNAME}</a> to your group chat and send '
            f"<code>/startevent {code}</code> to start logging expenses.</p>"
        )

    resend.Emails.send({
        "from": "onboarding@resend.dev",
        "to": [email],
        "subject": f"Your event: {event_name}",
        "html": (
            f"<p>Your event <strong>{event_name}</strong> has been created!</p>"
            f"<p>Event code: <strong>{code}</strong></p>"
            f'<p><a href="{event_url}">Open your event</a></p>'
            f"{bot_line}"
        ),
    })
    logger.info("Event link email sent", extra={"extra_data": {"code": code}})
