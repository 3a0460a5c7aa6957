"""
Game and service constants for Crazy Aces.

This module is the single source of truth for the card vocabulary, deal
sizes, discount tiers and rate limits. Values that operators may want to
tune (hand size, pacing, TTLs) are read through config.py instead.

Crazy Aces Rules Summary:
    - 54-card deck: 52 standard cards plus 2 Jokers
    - Match the active suit or rank to play a card
    - Aces are wild: the player picks the next suit
    - Jokers are wild: the next card may be anything
    - A 2 makes the opponent draw two cards
    - First side to empty its hand wins
"""

# =============================================================================
# Cards
# =============================================================================

# Suit iteration order used for tie-breaks and deck construction.
SUIT_ORDER: tuple[str, ...] = ("♠", "♥", "♦", "♣")

RANK_ORDER: tuple[str, ...] = (
    "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A",
)

JOKER_RANK = "JOKER"
JOKER_SUIT = "joker"
NUM_JOKERS = 2
DECK_SIZE = len(SUIT_ORDER) * len(RANK_ORDER) + NUM_JOKERS  # 54

SUIT_NAMES: dict[str, str] = {
    "♠": "Spades",
    "♥": "Hearts",
    "♦": "Diamonds",
    "♣": "Clubs",
}

DEFAULT_HAND_SIZE = 7
DRAW_TWO_COUNT = 2

# Fallback when every suit has already been chosen by an earlier wild card.
DEFAULT_FALLBACK_SUIT = "♠"


# =============================================================================
# Discounts
# =============================================================================

# Win streak (capped at 3) -> discount percent
DISCOUNT_TIERS: dict[int, int] = {
    1: 5,
    2: 10,
    3: 15,
}
MAX_DISCOUNT_TIER = 3


# =============================================================================
# Sessions & rate limits
# =============================================================================

DEFAULT_SESSION_TTL_SECONDS = 3600

# Rate limit configurations: (max_requests, window_seconds)
RATE_LIMITS: dict[str, tuple[int, int]] = {
    "session_create": (5, 3600),    # 5 new sessions per IP per hour
    "session_update": (30, 3600),   # 30 result updates per IP per hour
    "claim_discount": (5, 3600),    # 5 claim attempts per IP per hour
    "analytics": (100, 60),         # 100 analytics batches per IP per minute
}

ANALYTICS_MAX_BATCH = 50
ANALYTICS_EVENT_TTL_SECONDS = 60 * 60 * 24 * 30


# =============================================================================
# Turn pacing (milliseconds)
# =============================================================================

COMPUTER_TURN_DELAY_MS = 800
STATUS_MESSAGE_DELAY_MS = 1500
GAME_END_DELAY_MS = 500
