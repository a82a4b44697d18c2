import logging
from email.message import EmailMessage

import aiosmtplib

from clipdash.core.config import settings

logger = logging.getLogger(__name__)


async def send_email(to_email: str, subject: str, plain_text: str, html: str | None = None) -> None:
    """
    Sends one message over SMTP. Raises on delivery failure.

    Outside production an unconfigured SMTP host turns sending into a log line.
    """
    if not settings.smtp_host:
        if settings.is_production:
            raise aiosmtplib.SMTPException("SMTP host is not configured")
        logger.info("email_send_stub to=%s subject=%s", to_email, subject)
        return

    message = EmailMessage()
    message["From"] = settings.email_from
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(plain_text)
    if html:
        message.add_alternative(html, subtype="html")

    try:
        await aiosmtplib.send(
            message,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user or None,
            password=settings.smtp_password or None,
            start_tls=settings.smtp_port in (587, 25),
        )
    except aiosmtplib.SMTPException:
        logger.exception("email_send_failed to=%s subject=%s", to_email, subject)
        raise
    logger.info("email_sent to=%s subject=%s", to_email, subject)
