"""Transactional email through the Plunk HTTP API."""

import logging

import httpx

from src.config.settings import settings

logger = logging.getLogger(__name__)


def redact_email(email: str) -> str:
    """Shorten an address for logs."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class PlunkMailer:
    """Send one-time codes by email.

    When no base URL or secret key is configured (local development), messages
    are logged instead of sent and ``send`` returns False.

    Args:
        base_url: Plunk API base URL
        secret_key: Plunk secret API key
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)

    """

    def __init__(
        self,
        base_url: str | None,
        secret_key: str | None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.secret_key = secret_key
        self.timeout = timeout
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.secret_key)

    async def send(self, to: str, subject: str, body: str) -> bool:
        """Send an email.

        Returns:
            True if the API accepted the message, False if mail is not configured

        Raises:
            httpx.HTTPError: If the request fails or the API rejects it

        """
        if not self.is_configured:
            logger.info(f"Email not configured, skipping '{subject}' to {redact_email(to)}")
            return False

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                "/v1/send",
                json={"to": to, "subject": subject, "body": body},
                headers={"Authorization": f"Bearer {self.secret_key}"},
            )
            response.raise_for_status()

        logger.info(f"Email '{subject}' sent to {redact_email(to)}")
        return True

    async def send_verification_code(self, to: str, code: str, ttl_minutes: int) -> bool:
        body = (
            f"<p>Your verification code is <strong>{code}</strong>.</p>"
            f"<p>It expires in {ttl_minutes} minutes.</p>"
        )
        return await self.send(to, "Verify your email", body)

    async def send_reset_code(self, to: str, code: str, ttl_minutes: int) -> bool:
        body = (
            f"<p>Your password reset code is <strong>{code}</strong>.</p>"
            f"<p>It expires in {ttl_minutes} minutes. If you did not request a reset, ignore this email.</p>"
        )
        return await self.send(to, "Reset your password", body)


def get_mailer() -> PlunkMailer:
    """Build the mailer from settings."""
    return PlunkMailer(settings.plunk_base_url, settings.plunk_secret_key)
