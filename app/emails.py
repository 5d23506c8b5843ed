"""
Outgoing email for magic links.

Best-effort delivery over SMTP; a missing configuration or a relay failure is
logged and never raised into the web request.
"""

import os
import smtplib
import ssl
import logging
from email.message import EmailMessage
from typing import List, Optional

logger = logging.getLogger("nycguide.emails")

APP_TITLE = "NYC Visitor Guide"


def smtp_settings() -> dict:
    return {
        "host": os.getenv("SMTP_HOST", ""),
        "port": int(os.getenv("SMTP_PORT", "587")),
        "user": os.getenv("SMTP_USER", ""),
        "password": os.getenv("SMTP_PASS", ""),
        "sender": os.getenv("SMTP_FROM", ""),
    }


def send_email(to_addrs: List[str], subject: str, text_body: str, html_body: Optional[str] = None) -> bool:
    """
    Best-effort email. Never raises to the web request.
    Returns True when the relay accepted the message.
    """
    to_addrs = [a.strip() for a in (to_addrs or []) if a and a.strip()]
    if not to_addrs:
        return False

    settings = smtp_settings()
    if not (settings["host"] and settings["sender"]):
        logger.info(f"Email disabled, not sending '{subject}' to {to_addrs}")
        return False

    msg = EmailMessage()
    msg["From"] = settings["sender"]
    msg["To"] = ", ".join(to_addrs)
    msg["Subject"] = subject
    msg.set_content(text_body)
    if html_body:
        msg.add_alternative(html_body, subtype="html")

    context = ssl.create_default_context()
    try:
        with smtplib.SMTP(settings["host"], settings["port"], timeout=15) as server:
            server.ehlo()
            server.starttls(context=context)
            server.ehlo()
            if settings["user"]:
                server.login(settings["user"], settings["password"])
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send '{subject}' to {to_addrs}: {e}")
        return False

    return True


def build_magic_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/auth/verify?token={token}"


def send_magic_link_email(email: str, link: str) -> bool:
    subject = f"Your sign-in link for {APP_TITLE}"
    text_body = (
        f"Hi!\n\n"
        f"Use this link to sign in to {APP_TITLE}:\n\n"
        f"{link}\n\n"
        f"The link works once. If you didn't ask for it, you can ignore this email.\n"
    )
    html_body = (
        f"<p>Hi!</p>"
        f"<p><a href=\"{link}\">Sign in to {APP_TITLE}</a></p>"
        f"<p>The link works once. If you didn't ask for it, you can ignore this email.</p>"
    )
    return send_email([email], subject, text_body, html_body)
