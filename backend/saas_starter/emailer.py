# saas_starter/emailer.py
from __future__ import annotations

import logging
import smtplib
import socket
from email.message import EmailMessage

from .config import env_flag, env_int, env_str

logger = logging.getLogger(__name__)


def email_configured() -> bool:
    """
    True if outbound mail is switched on and an SMTP host is present.
    """
    return env_flag("EMAIL_ENABLED") and bool(env_str("SMTP_HOST"))


def send_email(to_email: str, subject: str, body: str) -> bool:
    """
    Sends a plain-text email when SMTP is configured.
    NEVER raises. Returns True if sent, False if skipped/failed.
    """
    if not email_configured():
        logger.info("Email skipped (EMAIL_ENABLED/SMTP_HOST not set)", extra={"to": to_email, "subject": subject})
        return False

    host = env_str("SMTP_HOST")
    port = env_int("SMTP_PORT", 587)
    secure = env_flag("SMTP_SECURE")  # implicit TLS (465) instead of STARTTLS
    username = env_str("SMTP_USER")
    password = env_str("SMTP_PASS")
    from_email = env_str("SMTP_FROM", "noreply@example.com")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_email
    msg["To"] = to_email
    msg.set_content(body)

    try:
        smtp_cls = smtplib.SMTP_SSL if secure else smtplib.SMTP
        with smtp_cls(host, port, timeout=15) as server:
            server.ehlo()
            if not secure and server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            if username and password:
                server.login(username, password)
            server.send_message(msg)

        logger.info("Email sent", extra={"to": to_email, "subject": subject})
        return True

    except socket.gaierror as e:
        logger.error("Email failed: DNS/host lookup failed for SMTP_HOST=%r: %s", host, e)
        return False
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email failed: %s", e, extra={"to": to_email})
        return False
