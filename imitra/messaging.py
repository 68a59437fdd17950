# Outbound email (SMTP) and SMS (Twilio) with Jinja2-rendered message bodies

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from twilio.rest import Client as TwilioClient

from .config import (
    BASE_DIR, EMAIL_FROM, SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD,
    TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER,
)
from .db import executor

logger = logging.getLogger(__name__)

_jinja_env = Environment(
    loader=FileSystemLoader(str(BASE_DIR / "templates")),
    autoescape=select_autoescape(["html", "htm", "xml"]),
    trim_blocks=True,
    lstrip_blocks=True,
)

def render(template: str, **context) -> str:
    return _jinja_env.get_template(template).render(**context).strip()

# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------
def _smtp_send(msg: EmailMessage) -> None:
    with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as smtp:
        smtp.starttls()
        if SMTP_USER:
            smtp.login(SMTP_USER, SMTP_PASSWORD)
        smtp.send_message(msg)

async def send_email(to: str, subject: str, template: str, **context) -> bool:
    """Send one email. Returns False in demo mode; SMTP errors propagate."""
    body = render(f"email/{template}.txt", **context)
    if not SMTP_HOST:
        logger.info("[EMAIL DEMO] to=%s subject=%s\n%s", to, subject, body)
        return False
    msg = EmailMessage()
    msg["From"] = EMAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, _smtp_send, msg)
    logger.info("Email sent to %s: %s", to, subject)
    return True

# ---------------------------------------------------------------------------
# SMS
# ---------------------------------------------------------------------------
_twilio_client: Optional[TwilioClient] = None

def get_twilio() -> Optional[TwilioClient]:
    global _twilio_client
    if not (TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER):
        return None
    if _twilio_client is None:
        _twilio_client = TwilioClient(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN)
    return _twilio_client

def format_phone(phone: str) -> str:
    phone = phone.strip().replace(" ", "")
    return phone if phone.startswith("+") else f"+91{phone}"

async def send_sms(phone: str, template: str, **context) -> bool:
    """Send one SMS. Returns False in demo mode; Twilio errors propagate."""
    body = render(f"sms/{template}.txt", **context)
    to = format_phone(phone)
    client = get_twilio()
    if client is None:
        logger.info("[SMS DEMO] to=%s: %s", to, body)
        return False
    loop = asyncio.get_event_loop()
    message = await loop.run_in_executor(
        executor, lambda: client.messages.create(body=body, from_=TWILIO_PHONE_NUMBER, to=to))
    logger.info("SMS sent to %s (sid=%s)", to, message.sid)
    return True

# ---------------------------------------------------------------------------
# Best-effort notification of a user
# ---------------------------------------------------------------------------
async def notify_user(user: Optional[dict], template: str, subject: str,
                      email: bool = True, sms: bool = True, **context) -> None:
    """Email and/or SMS a user honoring their preferences. Failures are logged, never raised."""
    if not user:
        return
    prefs = user.get("notification_preferences") or {}
    context.setdefault("name", user.get("name"))
    if email and prefs.get("email", True) and user.get("email"):
        try:
            await send_email(user["email"], subject, template, **context)
        except Exception as e:
            logger.error("Email to %s failed: %s", user["email"], e)
    if sms and prefs.get("sms", True) and user.get("phone"):
        try:
            await send_sms(user["phone"], template, **context)
        except Exception as e:
            logger.error("SMS to %s failed: %s", user["phone"], e)
