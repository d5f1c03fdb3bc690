"""
Outbound email.

Components never talk to SMTP directly: the HTTP layer builds a message and
hands it to whatever Mailer the app was created with.
"""

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from config import Settings
from errors import EmailDeliveryError

logger = logging.getLogger(__name__)

FOOTER = "FreshMart - Your one-stop shop for fresh groceries"


class Mailer:
    def send(self, message: EmailMessage, recipient: str) -> None:
        raise NotImplementedError


class SmtpMailer(Mailer):
    def __init__(self, settings: Settings, timeout: float = 10.0):
        self.host = settings.email_host
        self.port = settings.email_port
        self.user = settings.email_user
        self.password = settings.email_pass
        self.sender = formataddr((settings.email_from_name, settings.email_from))
        self.timeout = timeout

    def send(self, message: EmailMessage, recipient: str) -> None:
        if "From" not in message:
            message["From"] = self.sender
        if "To" not in message:
            message["To"] = recipient
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(message, to_addrs=[recipient])
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email '%s' to %s failed: %s", message["Subject"], recipient, exc)
            raise EmailDeliveryError() from exc
        logger.info("Email '%s' sent to %s", message["Subject"], recipient)


class LogMailer(Mailer):
    """Development mailer: records the send in the log instead of delivering it."""

    def send(self, message: EmailMessage, recipient: str) -> None:
        # body is not logged, it may carry a reset link
        logger.info("[mail] to=%s subject=%s (SMTP not configured, not delivered)", recipient, message["Subject"])


def build_password_reset_email(settings: Settings, token: str, name: str = None) -> EmailMessage:
    reset_url = f"{settings.client_url.rstrip('/')}/reset-password/{token}"
    minutes = settings.password_reset_expire_minutes
    greeting = f"Hello {name or 'there'},"

    text = (
        f"{greeting}\n\n"
        "You are receiving this email because you (or someone else) has requested "
        "to reset your password.\n\n"
        f"Please click the link below to reset your password. This link will expire in {minutes} minutes.\n\n"
        f"{reset_url}\n\n"
        "If you did not request this, please ignore this email and your password will remain unchanged.\n\n"
        f"{FOOTER}\n"
    )
    html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #4a5568; text-align: center;">Password Reset Request</h2>
      <p>{greeting}</p>
      <p>You are receiving this email because you (or someone else) has requested to reset your password.</p>
      <p>Please click the button below to reset your password. This link will expire in {minutes} minutes.</p>
      <div style="text-align: center; margin: 30px 0;">
        <a href="{reset_url}" style="background-color: #48bb78; color: white; padding: 12px 24px; text-decoration: none; border-radius: 4px;">
          Reset Password
        </a>
      </div>
      <p>If you did not request this, please ignore this email and your password will remain unchanged.</p>
      <div style="border-top: 1px solid #e2e8f0; margin-top: 30px; text-align: center; color: #a0aec0;">
        <p>{FOOTER}</p>
      </div>
    </div>
    """

    message = EmailMessage()
    message["Subject"] = "Password Reset Request"
    message["From"] = formataddr((settings.email_from_name, settings.email_from))
    message.set_content(text)
    message.add_alternative(html, subtype="html")
    return message


def mailer_from_settings(settings: Settings) -> Mailer:
    if settings.email_host:
        return SmtpMailer(settings)
    logger.warning("EMAIL_HOST is not set; outgoing email will only be logged")
    return LogMailer()
