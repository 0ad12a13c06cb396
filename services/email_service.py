import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from config import settings

logger = logging.getLogger(__name__)


def send_email(to_addr: str, subject: str, body: str) -> bool:
    """Send a plain-text email. Returns True on success.

    Delivery is skipped (and False returned) while ``ENABLE_EMAIL_NOTIFICATIONS``
    is off. SMTP errors are logged, never raised.
    """
    if not settings.enable_email_notifications:
        logger.debug("Email notifications disabled, not sending '%s' to %s", subject, to_addr)
        return False

    msg = EmailMessage()
    msg["From"] = formataddr((settings.smtp_from_name, settings.smtp_from_email))
    msg["To"] = to_addr
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("Failed to send '%s' to %s: %s", subject, to_addr, e)
        return False

    logger.info("Sent '%s' to %s", subject, to_addr)
    return True
