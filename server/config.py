"""
Centralized configuration for the Crazy Aces server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.timing.computer_turn)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from constants import (
    COMPUTER_TURN_DELAY_MS,
    DEFAULT_HAND_SIZE,
    DEFAULT_SESSION_TTL_SECONDS,
    GAME_END_DELAY_MS,
    STATUS_MESSAGE_DELAY_MS,
)

# Load .env file if it exists
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "https://playingarts.github.io",
    "https://play.playingarts.com",
]


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def get_env_list(key: str, default: list[str]) -> list[str]:
    """Get comma-separated list environment variable."""
    raw = os.environ.get(key, "")
    values = [v.strip() for v in raw.split(",") if v.strip()]
    return values or list(default)


@dataclass
class TurnTiming:
    """Pacing delays between turn steps, in seconds."""
    computer_turn: float = COMPUTER_TURN_DELAY_MS / 1000
    status_message: float = STATUS_MESSAGE_DELAY_MS / 1000
    game_end: float = GAME_END_DELAY_MS / 1000

    @classmethod
    def instant(cls) -> "TurnTiming":
        """No pacing at all (tests, simulations)."""
        return cls(computer_turn=0, status_message=0, game_end=0)


@dataclass
class DiscountCodes:
    """Discount codes per tier. Never sent to the client before a claim."""
    FIVE: str = ""
    TEN: str = ""
    FIFTEEN: str = ""

    def for_percent(self, percent: int) -> str:
        return {5: self.FIVE, 10: self.TEN, 15: self.FIFTEEN}.get(percent, "")


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Redis (sessions, claims, rate limits, analytics)
    REDIS_URL: str = ""

    # Sessions
    SESSION_SECRET: str = "dev-secret-change-in-production"
    SESSION_TTL_SECONDS: int = DEFAULT_SESSION_TTL_SECONDS
    # "store" = Redis record is authoritative, "token" = signed token (dev mode)
    STREAK_AUTHORITY: str = "store"

    # HTTP
    ALLOWED_ORIGINS: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    RATE_LIMIT_ENABLED: bool = True

    # Email (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "Crazy Aces <noreply@playingarts.com>"

    # Admin
    ADMIN_API_KEY: str = ""

    # Error tracking
    SENTRY_DSN: str = ""

    # Game
    HAND_SIZE: int = DEFAULT_HAND_SIZE
    ANALYTICS_FLUSH_SECONDS: int = 5

    discount_codes: DiscountCodes = field(default_factory=DiscountCodes)
    timing: TurnTiming = field(default_factory=TurnTiming)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 8000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            REDIS_URL=get_env("REDIS_URL", ""),
            SESSION_SECRET=get_env("SESSION_SECRET", "dev-secret-change-in-production"),
            SESSION_TTL_SECONDS=get_env_int("SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS),
            STREAK_AUTHORITY=get_env("STREAK_AUTHORITY", "store").lower(),
            ALLOWED_ORIGINS=get_env_list("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS),
            RATE_LIMIT_ENABLED=get_env_bool("RATE_LIMIT_ENABLED", True),
            RESEND_API_KEY=get_env("RESEND_API_KEY", ""),
            EMAIL_FROM=get_env("EMAIL_FROM", "Crazy Aces <noreply@playingarts.com>"),
            ADMIN_API_KEY=get_env("ADMIN_API_KEY", ""),
            SENTRY_DSN=get_env("SENTRY_DSN", ""),
            HAND_SIZE=get_env_int("HAND_SIZE", DEFAULT_HAND_SIZE),
            ANALYTICS_FLUSH_SECONDS=get_env_int("ANALYTICS_FLUSH_SECONDS", 5),
            discount_codes=DiscountCodes(
                FIVE=get_env("DISCOUNT_CODE_5", ""),
                TEN=get_env("DISCOUNT_CODE_10", ""),
                FIFTEEN=get_env("DISCOUNT_CODE_15", ""),
            ),
            timing=TurnTiming(
                computer_turn=get_env_int("COMPUTER_TURN_DELAY_MS", COMPUTER_TURN_DELAY_MS) / 1000,
                status_message=get_env_int("STATUS_MESSAGE_DELAY_MS", STATUS_MESSAGE_DELAY_MS) / 1000,
                game_end=get_env_int("GAME_END_DELAY_MS", GAME_END_DELAY_MS) / 1000,
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()
