"""
Discount claim service for Crazy Aces.

A claim goes through these steps, stopping at the first failure:

    1. verify the session token                          401
    2. load the session's authoritative win streak       404 / 503
    3. validate and normalize the email                  400
    4. hash the normalized email for the ledger key
    5. reject an address that already claimed            409
    6. reject a streak below 1                           400
    7. look up the discount code for the tier            500
    8. reserve the ledger entry (SET NX)                 409 / 503
    9. send the email; on failure release the entry      500
   10. confirm the claim permanently                     200

Once the email is out the claim is never refused: confirm is retried, and
if it still fails the reservation is made permanent instead.

The ledger and the streak both fail closed: if either store is unreachable
the claim is refused rather than granted.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from config import DiscountCodes, config
from models.session import ClaimRecord
from rules import discount_percent_for_streak
from services.email_service import EmailService, mask_email
from services.email_validation import hash_email, validate_email
from services.session_service import (
    SessionNotFoundError,
    SessionService,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass
class ClaimResult:
    """Result of a claim attempt."""
    success: bool
    status_code: int
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "message": self.message}
        return {"success": False, "error": self.error}


def _fail(status_code: int, error: str) -> ClaimResult:
    return ClaimResult(success=False, status_code=status_code, error=error)


class ClaimService:
    """
    Validates and fulfils discount claims.

    Args:
        session_service: Source of the authoritative win streak.
        claim_store: Ledger (ClaimStore or InMemoryClaimStore).
        email_service: Delivery of the code.
        discount_codes: Codes per tier.
        allow_unsent: Treat an unconfigured email service as delivered
            (development only).
    """

    CONFIRM_ATTEMPTS = 3
    CONFIRM_BACKOFF_SECONDS = 0.1

    def __init__(
        self,
        session_service: SessionService,
        claim_store,
        email_service: EmailService,
        discount_codes: Optional[DiscountCodes] = None,
        allow_unsent: bool = False,
    ):
        self.session_service = session_service
        self.claim_store = claim_store
        self.email_service = email_service
        self.discount_codes = discount_codes or config.discount_codes
        self.allow_unsent = allow_unsent

    async def claim(self, email, session_token, ip: Optional[str] = None) -> ClaimResult:
        if not email:
            return _fail(400, "Email is required")
        if not session_token:
            return _fail(400, "Session token is required")

        payload = self.session_service.verify_token(session_token)
        if payload is None:
            return _fail(401, "Invalid or expired session token")

        try:
            win_streak = await self.session_service.resolve_win_streak(payload)
        except SessionNotFoundError:
            return _fail(404, "Session expired. Please play a new game.")
        except StoreUnavailableError:
            return _fail(503, "Service temporarily unavailable. Please try again.")

        validation = validate_email(email)
        if not validation.valid:
            return _fail(400, validation.error)

        email_hash = hash_email(validation.normalized)

        try:
            if await self.claim_store.is_claimed(email_hash):
                logger.info(f"Duplicate claim for ledger entry {email_hash[:12]}")
                return _fail(409, "This email has already claimed a discount")
        except redis.RedisError as e:
            logger.error(f"Claim ledger unavailable: {e}")
            return _fail(503, "Service temporarily unavailable. Please try again.")

        if win_streak < 1:
            return _fail(400, "You must win at least one game to claim a discount")

        discount_percent = discount_percent_for_streak(win_streak)
        discount_code = self.discount_codes.for_percent(discount_percent)
        if not discount_code:
            logger.error(f"Missing discount code for {discount_percent}% tier")
            return _fail(500, "Server configuration error")
        if not self.email_service.is_configured() and not self.allow_unsent:
            logger.error("Email delivery is not configured")
            return _fail(500, "Server configuration error")

        try:
            if not await self.claim_store.reserve(email_hash):
                return _fail(409, "This email has already claimed a discount")
        except redis.RedisError as e:
            logger.error(f"Claim ledger unavailable: {e}")
            return _fail(503, "Service temporarily unavailable. Please try again.")

        delivered = await self._deliver(validation.address, discount_code, discount_percent, win_streak)
        if not delivered:
            try:
                await self.claim_store.release(email_hash)
            except redis.RedisError as e:
                logger.error(f"Could not release reservation {email_hash[:12]}: {e}")
            return _fail(500, "Failed to send email. Please try again later.")

        await self._record_claim(
            email_hash,
            ClaimRecord(win_streak=win_streak, discount_percent=discount_percent, ip=ip),
        )

        logger.info(
            f"Discount claimed: {discount_percent}% for streak {win_streak}, "
            f"ledger entry {email_hash[:12]}"
        )
        return ClaimResult(success=True, status_code=200, message="Discount code sent to your email!")

    async def _record_claim(self, email_hash: str, record: ClaimRecord) -> None:
        """Make a delivered claim permanent. Never fails the request."""
        for attempt in range(1, self.CONFIRM_ATTEMPTS + 1):
            try:
                await self.claim_store.confirm(email_hash, record)
                return
            except redis.RedisError as e:
                logger.warning(
                    f"Claim confirm failed for {email_hash[:12]} "
                    f"(attempt {attempt}/{self.CONFIRM_ATTEMPTS}): {e}"
                )
                if attempt < self.CONFIRM_ATTEMPTS:
                    await asyncio.sleep(self.CONFIRM_BACKOFF_SECONDS * attempt)

        try:
            await self.claim_store.persist(email_hash)
            logger.error(f"Claim {email_hash[:12]} kept as a permanent reservation after confirm failures")
        except redis.RedisError as e:
            logger.error(f"Claim {email_hash[:12]} was delivered but could not be recorded: {e}")

    async def _deliver(self, to: str, code: str, percent: int, win_streak: int) -> bool:
        if not self.email_service.is_configured():
            logger.warning(f"Email not configured, skipping delivery to {mask_email(to)}")
            return True
        message_id = await self.email_service.send_discount_email(to, code, percent, win_streak)
        return message_id is not None
