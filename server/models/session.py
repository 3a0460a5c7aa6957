"""
Session and claim models for Crazy Aces.

SessionRecord is the server-owned truth about a player's win streak.
TokenPayload is what a signed session token carries. ClaimRecord is the
permanent ledger entry written when a discount is claimed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _parse_dt(val: Any) -> Optional[datetime]:
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionRecord:
    """
    A game session stored server-side with a TTL.

    Attributes:
        session_id: Random 64-character hex id.
        win_streak: Consecutive wins; zeroed by a loss.
        games_played: Games recorded for this session.
        created_at: When the session was created.
        last_activity: Last time the record was written.
        ip: Client IP that created the session.
    """
    session_id: str
    win_streak: int = 0
    games_played: int = 0
    created_at: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)
    ip: Optional[str] = None

    def record_result(self, won: bool) -> None:
        """Apply one game result."""
        self.win_streak = self.win_streak + 1 if won else 0
        self.games_played += 1
        self.touch()

    def touch(self) -> None:
        self.last_activity = _now()

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "win_streak": self.win_streak,
            "games_played": self.games_played,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "ip": self.ip,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SessionRecord":
        return cls(
            session_id=d["session_id"],
            win_streak=int(d.get("win_streak", 0)),
            games_played=int(d.get("games_played", 0)),
            created_at=_parse_dt(d.get("created_at")) or _now(),
            last_activity=_parse_dt(d.get("last_activity")) or _now(),
            ip=d.get("ip"),
        )


@dataclass(frozen=True)
class TokenPayload:
    """
    Contents of a verified session token.

    The wire format uses camelCase keys (sessionId, winStreak, timestamp)
    so tokens stay compatible with existing clients.
    """
    session_id: str
    win_streak: int
    timestamp: int

    def to_wire(self) -> dict:
        return {
            "sessionId": self.session_id,
            "winStreak": self.win_streak,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_wire(cls, d: dict) -> "TokenPayload":
        """
        Build a payload from decoded token JSON.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """
        session_id = d.get("sessionId")
        win_streak = d.get("winStreak")
        timestamp = d.get("timestamp", 0)
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("sessionId missing")
        if isinstance(win_streak, bool) or not isinstance(win_streak, int) or win_streak < 0:
            raise ValueError("winStreak invalid")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("timestamp invalid")
        return cls(session_id=session_id, win_streak=win_streak, timestamp=int(timestamp))


@dataclass
class ClaimRecord:
    """
    A claimed discount, stored permanently under the email hash.

    Attributes:
        win_streak: Authoritative streak at claim time.
        discount_percent: 5, 10 or 15.
        claimed_at: When the claim completed.
        ip: Client IP that claimed.
    """
    win_streak: int
    discount_percent: int
    claimed_at: datetime = field(default_factory=_now)
    ip: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "win_streak": self.win_streak,
            "discount_percent": self.discount_percent,
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
            "ip": self.ip,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ClaimRecord":
        return cls(
            win_streak=int(d.get("win_streak", 0)),
            discount_percent=int(d.get("discount_percent", 0)),
            claimed_at=_parse_dt(d.get("claimed_at")) or _now(),
            ip=d.get("ip"),
        )
