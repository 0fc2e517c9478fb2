"""
Confirmation email delivery over SMTP.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from html import escape

from .config import Settings
from .errors import NotificationError

logger = logging.getLogger("intravatar.mailer")


class ConfirmationMailer:
    """Sends upload confirmation and test emails through the configured SMTP host."""

    def __init__(self, settings: Settings, timeout: float = 30.0):
        self.host = settings.SMTP_HOST
        self.port = settings.SMTP_PORT
        self.user = settings.SMTP_USER
        self.password = settings.SMTP_PASSWORD
        self.verify_tls = not settings.SMTP_NO_TLS_VERIFY
        self.sender = settings.SENDER
        self.service_url = settings.service_url
        self.timeout = timeout

    def confirmation_url(self, token: str) -> str:
        return f"{self.service_url}confirm/{token}"

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self.verify_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def send(self, msg: EmailMessage) -> None:
        """
        Deliver ``msg``.

        Raises:
            NotificationError: If the SMTP exchange fails
        """
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls(context=self._tls_context())
                    server.ehlo()
                if self.user:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Error sending email to %s: %s", msg["To"], e)
            raise NotificationError("Failed to send confirmation email") from e

    def send_confirmation(self, email: str, token: str) -> None:
        url = self.confirmation_url(token)
        logger.info("Sending confirmation email to %s with confirmation token %s", email, token)

        msg = EmailMessage()
        msg["Subject"] = "Please confirm your avatar upload"
        msg["From"] = self.sender
        msg["To"] = email
        msg.set_content(
            "Thank you for uploading your avatar. "
            f"You can confirm your upload by opening this link: {url}"
        )
        link = f'<a href="{escape(url)}">{escape(url)}</a>'
        msg.add_alternative(
            "<p>Thank you for uploading your avatar. "
            f"You can confirm your upload by clicking this link: {link}</p>",
            subtype="html",
        )
        self.send(msg)

    def send_test_mail(self, email: str) -> None:
        """Send a message that shows email delivery is configured correctly."""
        logger.info("Sending test email to %s to verify that email is configured correctly", email)

        msg = EmailMessage()
        msg["Subject"] = "Intravatar is up and running"
        msg["From"] = self.sender
        msg["To"] = email
        msg.set_content(
            "If you receive this message, intravatar is up and running "
            "and able to send confirmation emails"
        )
        self.send(msg)
