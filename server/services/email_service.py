"""
Email service for Crazy Aces discount delivery.

Sends discount codes via Resend. The code only ever leaves the server in
this email; it is never returned to the client.
"""

import asyncio
import html
import logging
from typing import Optional

import resend

from config import config

logger = logging.getLogger(__name__)


def mask_email(email: str) -> str:
    """Log-safe form of an address: first character and domain."""
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}" if domain else "***"


class EmailService:
    """Email service using Resend API."""

    def __init__(self, api_key: str, from_address: str):
        """
        Initialize email service.

        Args:
            api_key: Resend API key.
            from_address: Sender email address.
        """
        self.api_key = api_key
        self.from_address = from_address
        self._client = None

    @classmethod
    def create(cls) -> "EmailService":
        """Create EmailService from config."""
        return cls(
            api_key=config.RESEND_API_KEY,
            from_address=config.EMAIL_FROM,
        )

    @property
    def client(self):
        """Lazy-configure the Resend module."""
        if self._client is None:
            resend.api_key = self.api_key
            self._client = resend
        return self._client

    def is_configured(self) -> bool:
        """Check if email service is properly configured."""
        return bool(self.api_key)

    async def send_discount_email(
        self,
        to: str,
        discount_code: str,
        discount_percent: int,
        win_streak: int,
    ) -> Optional[str]:
        """
        Send a discount code.

        Args:
            to: Recipient address as the player entered it.
            discount_code: Code for the earned tier.
            discount_percent: 5, 10 or 15.
            win_streak: Streak that earned it.

        Returns:
            Resend message ID if sent, None if not configured or on error.
        """
        if not self.is_configured():
            logger.info(f"Email not configured. Would send {discount_percent}% code to {mask_email(to)}")
            return None

        subject = f"Your {discount_percent}% Crazy Aces discount"
        wins = "win" if win_streak == 1 else "wins"
        body = f"""
        <h2>Nice streak!</h2>
        <p>You won {win_streak} {wins} in a row at Crazy Aces.</p>
        <p>Here is your {discount_percent}% discount code:</p>
        <p style="font-size: 20px;"><strong>{html.escape(discount_code)}</strong></p>
        <p>Enter it at checkout on playingarts.com.</p>
        """

        return await self._send_email(to, subject, body)

    async def _send_email(
        self,
        to: str,
        subject: str,
        body: str,
    ) -> Optional[str]:
        """
        Send an email via Resend.

        Returns:
            Resend message ID if sent, None on error.
        """
        try:
            params = {
                "from": self.from_address,
                "to": [to],
                "subject": subject,
                "html": body,
            }

            response = await asyncio.to_thread(self.client.Emails.send, params)
            message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
            logger.info(f"Email sent to {mask_email(to)}: {message_id}")
            return message_id

        except Exception as e:
            logger.error(f"Failed to send email to {mask_email(to)}: {e}")
            return None

