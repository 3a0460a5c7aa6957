"""
Session and token service for Crazy Aces.

Issues HMAC-signed session tokens and keeps the server-side session record
that decides discount eligibility.

Token format:
    base64(JSON{"payload": <payload JSON string>, "signature": <hex>})
    payload   = JSON{"sessionId", "winStreak", "timestamp"}
    signature = HMAC-SHA256(payload, SESSION_SECRET)

Streak authority:
    STORE  The Redis session record is the truth. The streak embedded in a
           token is display-only. Store failures are reported, not hidden.
    TOKEN  No server record; the signed token's streak is trusted. Meant
           for local development without Redis.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import time
from enum import Enum
from typing import Optional

import redis.asyncio as redis

from config import config
from models.session import SessionRecord, TokenPayload
from stores.session_store import SessionStore

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================

class SessionError(Exception):
    """Base class for session service errors."""


class InvalidTokenError(SessionError):
    """Token is malformed, tampered with or signed with another secret."""


class SessionNotFoundError(SessionError):
    """Session record has expired or never existed."""


class StoreUnavailableError(SessionError):
    """The session store could not be reached."""


class StreakAuthority(str, Enum):
    """Where the win streak used for discounts is read from."""
    STORE = "store"
    TOKEN = "token"


# =============================================================================
# Tokens
# =============================================================================

def _sign(payload: str, secret: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def issue_token(session_id: str, win_streak: int, secret: str, timestamp: Optional[int] = None) -> str:
    """Create a signed session token."""
    payload = json.dumps(
        TokenPayload(
            session_id=session_id,
            win_streak=win_streak,
            timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
        ).to_wire(),
        separators=(",", ":"),
    )
    envelope = json.dumps({"payload": payload, "signature": _sign(payload, secret)})
    return base64.b64encode(envelope.encode()).decode()


def verify_token(token, secret: str) -> Optional[TokenPayload]:
    """
    Check a token's signature and decode it.

    Returns None for anything that is not a well-formed token signed with
    `secret`. Never raises.
    """
    if not isinstance(token, str) or not token:
        return None
    try:
        envelope = json.loads(base64.b64decode(token.encode(), validate=True))
        payload = envelope["payload"]
        signature = envelope["signature"]
        if not isinstance(payload, str) or not isinstance(signature, str):
            return None
        expected = _sign(payload, secret)
        if not hmac.compare_digest(expected.encode(), signature.encode()):
            return None
        return TokenPayload.from_wire(json.loads(payload))
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeError, AttributeError):
        return None


def new_session_id() -> str:
    """64 hex characters from 32 random bytes."""
    return secrets.token_hex(32)


# =============================================================================
# Service
# =============================================================================

class SessionService:
    """
    Creates sessions, records game results and answers streak queries.

    In STORE mode every streak decision reads the SessionRecord. In TOKEN
    mode the store is not consulted at all.
    """

    def __init__(
        self,
        store: Optional[SessionStore],
        secret: str,
        authority: StreakAuthority = StreakAuthority.STORE,
    ):
        """
        Args:
            store: Session record store (required for STORE authority).
            secret: HMAC signing secret.
            authority: Where win streaks come from.
        """
        if authority is StreakAuthority.STORE and store is None:
            raise ValueError("STORE authority requires a session store")
        self.store = store
        self.secret = secret
        self.authority = authority

    @classmethod
    def create(cls, store: Optional[SessionStore]) -> "SessionService":
        """Create SessionService from config."""
        return cls(
            store=store,
            secret=config.SESSION_SECRET,
            authority=StreakAuthority(config.STREAK_AUTHORITY),
        )

    def issue_token(self, session_id: str, win_streak: int) -> str:
        return issue_token(session_id, win_streak, self.secret)

    def verify_token(self, token) -> Optional[TokenPayload]:
        return verify_token(token, self.secret)

    def _require_payload(self, token) -> TokenPayload:
        payload = self.verify_token(token)
        if payload is None:
            raise InvalidTokenError("Invalid session token")
        return payload

    async def _load(self, session_id: str) -> SessionRecord:
        try:
            record = await self.store.get(session_id)
        except redis.RedisError as e:
            logger.error(f"Session store unavailable reading {session_id[:8]}: {e}")
            raise StoreUnavailableError("Session store unavailable") from e
        if record is None:
            raise SessionNotFoundError("Session not found or expired")
        return record

    async def _save(self, record: SessionRecord) -> None:
        try:
            await self.store.save(record)
        except redis.RedisError as e:
            logger.error(f"Session store unavailable writing {record.session_id[:8]}: {e}")
            raise StoreUnavailableError("Session store unavailable") from e

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create_session(self, ip: Optional[str] = None) -> tuple[str, str]:
        """
        Start a session with a zero streak.

        Returns:
            (session_id, token)
        """
        session_id = new_session_id()
        if self.authority is StreakAuthority.STORE:
            await self._save(SessionRecord(session_id=session_id, ip=ip))
        logger.info(f"Session created: {session_id[:8]}")
        return session_id, self.issue_token(session_id, 0)

    async def record_game_result(
        self,
        session_id: str,
        won: bool,
        token_streak: int = 0,
    ) -> tuple[int, str]:
        """
        Apply a game result to the session.

        This is the only path that changes the authoritative streak.

        Args:
            session_id: Session to update.
            won: Whether the player won.
            token_streak: Streak from the caller's token (TOKEN authority only).

        Returns:
            (new_win_streak, new_token)

        Raises:
            SessionNotFoundError: Record expired or missing.
            StoreUnavailableError: Store unreachable.
        """
        if self.authority is StreakAuthority.TOKEN:
            win_streak = token_streak + 1 if won else 0
        else:
            try:
                record = await self.store.record_result(session_id, won)
            except redis.RedisError as e:
                logger.error(f"Session store unavailable updating {session_id[:8]}: {e}")
                raise StoreUnavailableError("Session store unavailable") from e
            if record is None:
                raise SessionNotFoundError("Session not found or expired")
            win_streak = record.win_streak

        logger.info(f"Session {session_id[:8]} result: won={won}, streak={win_streak}")
        return win_streak, self.issue_token(session_id, win_streak)

    async def update_from_token(self, token, won: bool) -> tuple[int, str]:
        """Verify a token, then record a game result for its session."""
        payload = self._require_payload(token)
        return await self.record_game_result(payload.session_id, won, payload.win_streak)

    async def resume_session(self, token) -> tuple[int, str]:
        """
        Refresh a session at game start without touching the streak.

        TTL refresh is best-effort: a store write failure is logged and the
        token is reissued anyway.

        Returns:
            (win_streak, new_token)
        """
        payload = self._require_payload(token)
        if self.authority is StreakAuthority.TOKEN:
            return payload.win_streak, self.issue_token(payload.session_id, payload.win_streak)

        record = await self._load(payload.session_id)
        try:
            await self.store.touch(record.session_id)
        except redis.RedisError as e:
            logger.warning(f"Could not refresh TTL for session {record.session_id[:8]}: {e}")
        return record.win_streak, self.issue_token(record.session_id, record.win_streak)

    async def get_status(self, token) -> dict:
        """Read-only streak and game count for a token's session."""
        payload = self._require_payload(token)
        if self.authority is StreakAuthority.TOKEN:
            return {"win_streak": payload.win_streak, "games_played": 0}
        record = await self._load(payload.session_id)
        return {"win_streak": record.win_streak, "games_played": record.games_played}

    async def resolve_win_streak(self, payload: TokenPayload) -> int:
        """
        Win streak to use for a discount decision.

        STORE authority always re-reads the record; the token's embedded
        streak may be stale.
        """
        if self.authority is StreakAuthority.TOKEN:
            return payload.win_streak
        record = await self._load(payload.session_id)
        return record.win_streak

