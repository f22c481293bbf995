import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from fastapi import Depends

from config import Settings, get_settings
from errors import ProviderFailure

logger = logging.getLogger(__name__)

SUBJECT = "Your login code - Organic Basket"


class Mailer(Protocol):
    def send_code(self, email: str, name: str, code: str, expires_minutes: int) -> None:
        ...


def build_message(sender: str, email: str, name: str, code: str, expires_minutes: int) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = SUBJECT
    message["From"] = sender
    message["To"] = email
    message.set_content(
        f"Hello {name},\n\n"
        f"Your one-time login code is {code}.\n"
        f"It expires in {expires_minutes} minutes.\n\n"
        "If you didn't request this code, you can ignore this email."
    )
    message.add_alternative(
        f"<p>Hello {name}!</p>"
        f"<p>Your one-time login code is <strong style=\"letter-spacing:6px\">{code}</strong></p>"
        f"<p>This code will expire in {expires_minutes} minutes.</p>"
        "<p>If you didn't request this code, please ignore this email.</p>",
        subtype="html",
    )
    return message


class ConsoleMailer:
    """Development backend: writes the message to the log instead of sending it."""

    def send_code(self, email: str, name: str, code: str, expires_minutes: int) -> None:
        logger.info("--- EMAIL --- To: %s Subject: %s Code: %s (expires in %d min)",
                    email, SUBJECT, code, expires_minutes)


class SmtpMailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def send_code(self, email: str, name: str, code: str, expires_minutes: int) -> None:
        s = self.settings
        message = build_message(s.email_from, email, name, code, expires_minutes)
        try:
            with smtplib.SMTP(s.email_host, s.email_port, timeout=10) as smtp:
                if s.email_use_tls:
                    smtp.starttls()
                if s.email_user:
                    smtp.login(s.email_user, s.email_pass)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("OTP dispatch failed for %s: %s", email, exc)
            raise ProviderFailure() from exc


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    if settings.email_backend == "smtp":
        return SmtpMailer(settings)
    return ConsoleMailer()
