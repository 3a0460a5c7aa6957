"""
Redis-backed game session records.

Each session lives under `session:{session_id}` as JSON with a TTL that is
refreshed on activity. This record, not the client's token, is the source
of truth for win streaks when the store is the configured authority.

Reads are side-effect free and retried a few times with a short linear
backoff; writes are attempted once. Game results are applied with
WATCH/MULTI so concurrent updates to one session never overwrite each
other. Redis errors that survive the retries propagate to the caller.
"""

import asyncio
import json
import logging
from typing import Optional

import redis.asyncio as redis

from config import config
from models.session import SessionRecord

logger = logging.getLogger(__name__)


class SessionStore:
    """Redis-backed session records with TTL."""

    SESSION_KEY = "session:{session_id}"

    READ_ATTEMPTS = 3
    RETRY_BACKOFF_SECONDS = 0.05
    UPDATE_ATTEMPTS = 10

    def __init__(self, redis_client: redis.Redis, ttl_seconds: Optional[int] = None):
        """
        Args:
            redis_client: Async Redis client (decode_responses=True).
            ttl_seconds: Session lifetime after the last write.
        """
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or config.SESSION_TTL_SECONDS

    def _key(self, session_id: str) -> str:
        return self.SESSION_KEY.format(session_id=session_id)

    async def _read(self, op, *args):
        last_error: Optional[Exception] = None
        for attempt in range(1, self.READ_ATTEMPTS + 1):
            try:
                return await op(*args)
            except redis.RedisError as e:
                last_error = e
                logger.warning(f"Session store read failed (attempt {attempt}/{self.READ_ATTEMPTS}): {e}")
                if attempt < self.READ_ATTEMPTS:
                    await asyncio.sleep(self.RETRY_BACKOFF_SECONDS * attempt)
        raise last_error

    async def save(self, record: SessionRecord) -> None:
        """Write the record and reset its TTL."""
        await self.redis.setex(
            self._key(record.session_id),
            self.ttl_seconds,
            json.dumps(record.to_dict()),
        )

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        """Load a record, or None if it expired or never existed."""
        raw = await self._read(self.redis.get, self._key(session_id))
        if raw is None:
            return None
        try:
            return SessionRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Corrupt session record {session_id[:8]}: {e}")
            return None

    async def touch(self, session_id: str) -> bool:
        """Refresh the TTL. Returns False if the record is gone."""
        return bool(await self.redis.expire(self._key(session_id), self.ttl_seconds))

    async def record_result(self, session_id: str, won: bool) -> Optional[SessionRecord]:
        """
        Apply a game result to the stored record in one optimistic transaction.

        The read-modify-write is retried whenever another writer touches the
        key between WATCH and EXEC.

        Returns:
            The updated record, or None if it expired or never existed.

        Raises:
            redis.WatchError: Still conflicting after UPDATE_ATTEMPTS tries.
        """
        key = self._key(session_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            for attempt in range(1, self.UPDATE_ATTEMPTS + 1):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        return None
                    try:
                        record = SessionRecord.from_dict(json.loads(raw))
                    except (ValueError, KeyError, TypeError) as e:
                        logger.error(f"Corrupt session record {session_id[:8]}: {e}")
                        return None
                    record.record_result(won)
                    pipe.multi()
                    pipe.setex(key, self.ttl_seconds, json.dumps(record.to_dict()))
                    await pipe.execute()
                    return record
                except redis.WatchError:
                    logger.debug(f"Session {session_id[:8]} changed during update (attempt {attempt})")
        raise redis.WatchError(f"Session {session_id[:8]} kept changing during update")
