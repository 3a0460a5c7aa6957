"""
Discount claim ledger.

Claims are keyed by the SHA-256 of the normalized email and never expire.
A claim goes through two steps:

    reserve()  SET claim:{hash} <pending> NX EX 300   before the email is sent
    confirm()  SET claim:{hash} <record>              after the email is sent

If delivery fails the reservation is released so the player can retry. The
reservation TTL keeps a crashed request from locking an address forever.
If confirm keeps failing after delivery, persist() drops the reservation TTL
so the address stays claimed.

InMemoryClaimStore has the same interface and is used only in development
when no Redis is configured.
"""

import json
import logging
from typing import Optional

import redis.asyncio as redis

from models.session import ClaimRecord

logger = logging.getLogger(__name__)

PENDING_MARKER = "pending"


class ClaimStore:
    """Redis-backed permanent claim ledger."""

    CLAIM_KEY = "claim:{email_hash}"
    CLAIM_PATTERN = "claim:*"
    RESERVATION_TTL_SECONDS = 300

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def _key(self, email_hash: str) -> str:
        return self.CLAIM_KEY.format(email_hash=email_hash)

    async def reserve(self, email_hash: str) -> bool:
        """
        Atomically reserve the ledger entry.

        Returns:
            True if this caller now holds the entry, False if it was
            already claimed or reserved.
        """
        reserved = await self.redis.set(
            self._key(email_hash),
            json.dumps({"status": PENDING_MARKER}),
            nx=True,
            ex=self.RESERVATION_TTL_SECONDS,
        )
        return bool(reserved)

    async def confirm(self, email_hash: str, record: ClaimRecord) -> None:
        """Replace the reservation with the permanent record (no TTL)."""
        await self.redis.set(self._key(email_hash), json.dumps(record.to_dict()))

    async def persist(self, email_hash: str) -> bool:
        """Remove the reservation TTL. Returns False if the entry is gone."""
        return bool(await self.redis.persist(self._key(email_hash)))

    async def release(self, email_hash: str) -> None:
        """Drop a reservation. Confirmed claims are left alone."""
        key = self._key(email_hash)
        raw = await self.redis.get(key)
        if raw is not None and json.loads(raw).get("status") == PENDING_MARKER:
            await self.redis.delete(key)

    async def get(self, email_hash: str) -> Optional[ClaimRecord]:
        raw = await self.redis.get(self._key(email_hash))
        if raw is None:
            return None
        data = json.loads(raw)
        if data.get("status") == PENDING_MARKER:
            return None
        return ClaimRecord.from_dict(data)

    async def is_claimed(self, email_hash: str) -> bool:
        """True for both confirmed claims and in-progress reservations."""
        return bool(await self.redis.exists(self._key(email_hash)))

    async def clear_all(self) -> int:
        """Delete every ledger entry. Returns how many were removed."""
        keys = [key async for key in self.redis.scan_iter(match=self.CLAIM_PATTERN, count=100)]
        if not keys:
            return 0
        return await self.redis.delete(*keys)


class InMemoryClaimStore:
    """Process-local claim ledger for development without Redis."""

    def __init__(self):
        self._claims: dict[str, Optional[ClaimRecord]] = {}

    async def reserve(self, email_hash: str) -> bool:
        if email_hash in self._claims:
            return False
        self._claims[email_hash] = None
        return True

    async def confirm(self, email_hash: str, record: ClaimRecord) -> None:
        self._claims[email_hash] = record

    async def persist(self, email_hash: str) -> bool:
        return email_hash in self._claims

    async def release(self, email_hash: str) -> None:
        if email_hash in self._claims and self._claims[email_hash] is None:
            del self._claims[email_hash]

    async def get(self, email_hash: str) -> Optional[ClaimRecord]:
        return self._claims.get(email_hash)

    async def is_claimed(self, email_hash: str) -> bool:
        return email_hash in self._claims

    async def clear_all(self) -> int:
        count = len(self._claims)
        self._claims.clear()
        return count
