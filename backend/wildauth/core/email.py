"""Email delivery for verification codes and password reset links.

ResendEmailNotifier posts plain-text messages to the Resend HTTP API.
Notifiers report delivery as a bool instead of raising: the caller decides
whether a failed send is an error (code issuance) or must stay silent
(password reset for an unknown address).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import quote, urlencode

import httpx

from wildauth.core.config import Settings
from wildauth.schemas.credentials import CodePurpose

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0

_CODE_SUBJECTS: dict[CodePurpose, str] = {
    CodePurpose.REGISTER: "Your Wildblog registration code",
    CodePurpose.RESET_PASSWORD: "Your Wildblog password reset code",
    CodePurpose.CHANGE_EMAIL: "Your Wildblog email change code",
}

_CODE_INTROS: dict[CodePurpose, str] = {
    CodePurpose.REGISTER: "Welcome to Wildblog! Your registration code is:",
    CodePurpose.RESET_PASSWORD: "You are resetting your password. Your code is:",
    CodePurpose.CHANGE_EMAIL: "You are changing your email address. Your code is:",
}

_CODE_FOOTERS: dict[CodePurpose, str] = {
    CodePurpose.REGISTER: "If you didn't request this, you can safely ignore this email.",
    CodePurpose.RESET_PASSWORD: "If you didn't request this, change your password now.",
    CodePurpose.CHANGE_EMAIL: "If you didn't request this, contact support.",
}

_RESET_SUBJECT = "Reset your Wildblog password"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str


def build_code_message(
    email: str, code: str, purpose: CodePurpose, ttl_minutes: int
) -> EmailMessage:
    """Compose the verification code email for a purpose."""
    text = (
        f"{_CODE_INTROS[purpose]}\n\n    {code}\n\n"
        f"This code expires in {ttl_minutes} minutes.\n"
        f"{_CODE_FOOTERS[purpose]}"
    )
    return EmailMessage(to=email, subject=_CODE_SUBJECTS[purpose], text=text)


def build_reset_link(frontend_url: str, token: str) -> str:
    """Build the frontend URL that carries a reset token."""
    params = urlencode({"token": token}, quote_via=quote)
    return f"{frontend_url.rstrip('/')}/auth/reset-password?{params}"


def build_reset_message(
    email: str, reset_url: str, ttl_minutes: int
) -> EmailMessage:
    text = (
        f"Click this link to reset your password:\n\n{reset_url}\n\n"
        f"This link expires in {ttl_minutes} minutes. "
        "If you didn't request this, you can safely ignore this email."
    )
    return EmailMessage(to=email, subject=_RESET_SUBJECT, text=text)


class EmailNotifier(ABC):
    """Sends credential emails.

    Implementations return True when the message was accepted for
    delivery and False otherwise. They must not raise for delivery
    failures.
    """

    def __init__(
        self,
        *,
        frontend_url: str,
        code_ttl_minutes: int = 10,
        reset_ttl_minutes: int = 30,
    ) -> None:
        self.frontend_url = frontend_url
        self.code_ttl_minutes = code_ttl_minutes
        self.reset_ttl_minutes = reset_ttl_minutes

    async def send_code(self, email: str, code: str, purpose: CodePurpose) -> bool:
        """Send a verification code email.

        Args:
            email: Recipient address.
            code: Six-digit code.
            purpose: Selects subject and wording.

        Returns:
            True if accepted for delivery.
        """
        message = build_code_message(email, code, purpose, self.code_ttl_minutes)
        return await self.deliver(message)

    async def send_reset_link(self, email: str, token: str) -> bool:
        """Send a password reset link carrying the plaintext token."""
        reset_url = build_reset_link(self.frontend_url, token)
        message = build_reset_message(email, reset_url, self.reset_ttl_minutes)
        return await self.deliver(message)

    @abstractmethod
    async def deliver(self, message: EmailMessage) -> bool:
        """Hand one message to the transport."""


class ResendEmailNotifier(EmailNotifier):
    """Delivers mail through the Resend HTTP API."""

    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        frontend_url: str,
        code_ttl_minutes: int = 10,
        reset_ttl_minutes: int = 30,
        api_url: str = _RESEND_API_URL,
        timeout: float = _RESEND_TIMEOUT,
    ) -> None:
        super().__init__(
            frontend_url=frontend_url,
            code_ttl_minutes=code_ttl_minutes,
            reset_ttl_minutes=reset_ttl_minutes,
        )
        self._api_key = api_key
        self._sender = sender
        self._api_url = api_url
        self._timeout = timeout

    async def deliver(self, message: EmailMessage) -> bool:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self._api_url,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={
                        "from": self._sender,
                        "to": message.to,
                        "subject": message.subject,
                        "text": message.text,
                    },
                    timeout=self._timeout,
                )
                resp.raise_for_status()
        except Exception:
            logger.warning("Failed to send email: %s", message.subject, exc_info=True)
            return False
        return True


class LogOnlyEmailNotifier(EmailNotifier):
    """Development notifier: writes the message to the log instead of sending.

    The log line contains the code or reset link, so this is refused in
    production by build_email_notifier().
    """

    async def deliver(self, message: EmailMessage) -> bool:
        logger.info(
            "Email not sent (no RESEND_API_KEY) to=%s subject=%s\n%s",
            message.to,
            message.subject,
            message.text,
        )
        return True


def build_email_notifier(settings: Settings) -> EmailNotifier:
    """Choose the notifier for the configured environment.

    Raises:
        ValueError: In production without a Resend API key.
    """
    common = {
        "frontend_url": settings.frontend_url,
        "code_ttl_minutes": settings.verification_code_ttl_minutes,
        "reset_ttl_minutes": settings.reset_token_ttl_minutes,
    }
    api_key = settings.resend_api_key.get_secret_value()
    if api_key:
        return ResendEmailNotifier(
            api_key=api_key,
            sender=f"{settings.email_sender_name} <{settings.email_from}>",
            **common,
        )
    if settings.environment == "production":
        raise ValueError("RESEND_API_KEY must be set in production")
    logger.warning("RESEND_API_KEY not set; emails will be logged, not sent")
    return LogOnlyEmailNotifier(**common)
