"""
Rule engine for Crazy Aces.

The module-level functions are pure: they never touch a GameState and never
raise on malformed input. GameEngine binds them to one GameState and adds
the two operations that need it: win-condition handling (which mutates the
session counters) and player move validation.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from constants import (
    DEFAULT_FALLBACK_SUIT,
    DISCOUNT_TIERS,
    DRAW_TWO_COUNT,
    MAX_DISCOUNT_TIER,
)
from game import Card, Deck, GameState, Rank, Side, Suit, TurnPhase


logger = logging.getLogger(__name__)


# =============================================================================
# Pure rules
# =============================================================================

def can_play_card(card, current_suit, current_rank, joker_was_played: bool = False) -> bool:
    """
    Check whether a card may be played on the active target.

    Jokers and Aces are always playable, and so is anything while the joker
    flag is set. Otherwise the card must match the suit or the rank.
    Missing or malformed cards are simply not playable.
    """
    if card is None:
        return False
    try:
        if getattr(card, "is_joker", False) is True or getattr(card, "is_ace", False) is True:
            return True
        if joker_was_played:
            return True
        suit = getattr(card, "suit", None)
        rank = getattr(card, "rank", None)
        if suit is not None and current_suit is not None and suit == current_suit:
            return True
        if rank is not None and current_rank is not None and rank == current_rank:
            return True
    except Exception:
        # A card object with a broken __eq__ or property is not playable
        return False
    return False


def find_first_playable_index(hand, current_suit, current_rank, joker_was_played: bool = False) -> int:
    """Index of the first playable card in hand order, or -1."""
    for index, card in enumerate(hand or []):
        if can_play_card(card, current_suit, current_rank, joker_was_played):
            return index
    return -1


def has_playable_card(hand, current_suit, current_rank, joker_was_played: bool = False) -> bool:
    return find_first_playable_index(hand, current_suit, current_rank, joker_was_played) != -1


def get_playable_cards(hand, current_suit, current_rank, joker_was_played: bool = False) -> list[int]:
    """Indices of every playable card in the hand."""
    return [
        index for index, card in enumerate(hand or [])
        if can_play_card(card, current_suit, current_rank, joker_was_played)
    ]


def choose_best_suit_for_computer(hand: Iterable[Card], chosen_suits: Iterable[Suit] = ()) -> Suit:
    """
    Pick the suit the computer names after playing a wild card.

    Counts the non-wild cards of each suit still available (not already
    named this game) and returns the most common one. Ties go to the
    earlier suit in ♠, ♥, ♦, ♣ order, which also decides when nothing is
    countable. Only when all four suits have been named does it fall back
    to ♠, which may repeat a suit.
    """
    excluded = set(chosen_suits or ())
    available = [suit for suit in Suit.playable() if suit not in excluded]
    if not available:
        return Suit(DEFAULT_FALLBACK_SUIT)

    counts = {suit: 0 for suit in available}
    for card in hand or []:
        if getattr(card, "is_ace", False) or getattr(card, "is_joker", False):
            continue
        suit = getattr(card, "suit", None)
        if suit in counts:
            counts[suit] += 1

    best_suit = available[0]
    best_count = -1
    for suit in available:
        if counts[suit] > best_count:
            best_suit = suit
            best_count = counts[suit]
    return best_suit


def detect_winner(player_hand, computer_hand) -> Optional[Side]:
    """
    Report who has emptied their hand, without side effects.

    The player is checked first, so an (unreachable) double-empty position
    counts as a player win.
    """
    if len(player_hand) == 0:
        return Side.PLAYER
    if len(computer_hand) == 0:
        return Side.COMPUTER
    return None


@dataclass(frozen=True)
class WildEffect:
    """What playing a card asks of the game."""

    needs_suit_selection: bool = False
    draw_two: bool = False


def process_wild_effect(card: Card, is_computer: bool = False) -> WildEffect:
    """
    Describe the effect of a played card.

    Wild cards ask the human for a suit (the computer picks its own). A 2
    makes the opponent draw two. Every other rank has no effect.
    """
    if card is None:
        return WildEffect()
    if card.is_joker or card.is_ace:
        return WildEffect(needs_suit_selection=not is_computer)
    if card.rank == Rank.TWO:
        return WildEffect(draw_two=True)
    return WildEffect()


def execute_draw_two(deck: Optional[Deck], target_hand: list[Card], count: int = DRAW_TWO_COUNT) -> list[Card]:
    """
    Move up to `count` cards from the deck into a hand.

    Returns the cards drawn, which is short when the deck runs out.
    """
    drawn: list[Card] = []
    if deck is None:
        return drawn
    for _ in range(max(count, 0)):
        if deck.is_empty:
            break
        card = deck.draw_one()
        target_hand.append(card)
        drawn.append(card)
    return drawn


def discount_percent_for_streak(win_streak: int) -> int:
    """Discount for a win streak: 1 -> 5%, 2 -> 10%, 3 or more -> 15%. 0 below 1."""
    if win_streak < 1:
        return 0
    return DISCOUNT_TIERS[min(win_streak, MAX_DISCOUNT_TIER)]


# =============================================================================
# Engine bound to a game state
# =============================================================================

@dataclass(frozen=True)
class WinResult:
    winner: Side
    win_streak: int
    games_played: int

    def to_dict(self) -> dict:
        return {
            "winner": self.winner.value,
            "win_streak": self.win_streak,
            "games_played": self.games_played,
        }


@dataclass(frozen=True)
class MoveValidation:
    valid: bool
    reason: Optional[str] = None


class GameEngine:
    """Rule engine bound to a single GameState."""

    def __init__(self, state: GameState):
        self.state = state

    def can_play_card(self, card) -> bool:
        return can_play_card(
            card,
            self.state.current_suit,
            self.state.current_rank,
            self.state.joker_was_played,
        )

    def find_computer_playable_card(self) -> int:
        return find_first_playable_index(
            self.state.computer_hand,
            self.state.current_suit,
            self.state.current_rank,
            self.state.joker_was_played,
        )

    def choose_best_suit_for_computer(self) -> Suit:
        return choose_best_suit_for_computer(self.state.computer_hand, self.state.chosen_ace_suits)

    def check_win_condition(self) -> Optional[WinResult]:
        """
        Detect a winner and apply the consequences.

        On a result this ends the game, bumps games_played and either
        increments (player win) or clears (computer win) the win streak.
        Each call applies them again, so call it once per conclusion.
        """
        winner = detect_winner(self.state.player_hand, self.state.computer_hand)
        if winner is None:
            return None

        self.state.phase = TurnPhase.GAME_OVER
        self.state.games_played += 1
        if winner is Side.PLAYER:
            self.state.increment_win_streak()
        else:
            self.state.reset_win_streak()

        logger.info(
            f"Game {self.state.game_id[:8]} won by {winner.value}, "
            f"streak now {self.state.win_streak}"
        )
        return WinResult(
            winner=winner,
            win_streak=self.state.win_streak,
            games_played=self.state.games_played,
        )

    def validate_player_move(self, index) -> MoveValidation:
        """Check a player's play request without changing anything."""
        state = self.state
        if state.phase == TurnPhase.DRAWING:
            return MoveValidation(False, "Wait for draw to complete")
        if state.phase == TurnPhase.GAME_OVER:
            return MoveValidation(False, "Game is over")
        if state.phase == TurnPhase.COMPUTER_TURN:
            return MoveValidation(False, "Wait for your turn")
        if state.phase == TurnPhase.AWAITING_SUIT_CHOICE:
            return MoveValidation(False, "Pick a suit first")

        if isinstance(index, bool) or not isinstance(index, int):
            return MoveValidation(False, "Invalid card")
        if index < 0 or index >= len(state.player_hand):
            return MoveValidation(False, "Invalid card")

        card = state.player_hand[index]
        if not self.can_play_card(card):
            return MoveValidation(False, "Card cannot be played on current card")
        return MoveValidation(True)
