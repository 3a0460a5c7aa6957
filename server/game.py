"""
Card, deck and game state for Crazy Aces.

This module holds the data side of the game: immutable cards, the 54-card
deck, and the mutable per-game state (hands, discard pile, the active match
target, turn phase). Legality and win detection live in rules.py; turn
sequencing lives in turn_controller.py.

Crazy Aces Rules Summary:
    - Each side is dealt 7 cards; one card opens the discard pile
    - Play a card matching the active suit or rank, or draw one
    - Aces are wild: the player then names the next suit
    - Jokers are wild: any card may follow, and the player keeps the turn
    - A 2 makes the opponent draw two cards
    - First side to empty its hand wins

Card identity vs. match state:
    A played Ace keeps its own suit forever. The suit chosen for it is held
    in GameState.target (an ActiveTarget), never written onto the card.
"""

import random
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from constants import (
    DEFAULT_HAND_SIZE,
    JOKER_RANK,
    JOKER_SUIT,
    NUM_JOKERS,
    RANK_ORDER,
    SUIT_ORDER,
)


class Suit(str, Enum):
    """Card suits. JOKER is the sentinel suit carried by both Jokers."""

    SPADES = "♠"
    HEARTS = "♥"
    DIAMONDS = "♦"
    CLUBS = "♣"
    JOKER = JOKER_SUIT

    @classmethod
    def playable(cls) -> list["Suit"]:
        """The four real suits in tie-break order."""
        return [cls(s) for s in SUIT_ORDER]

    @classmethod
    def parse(cls, value) -> Optional["Suit"]:
        """Parse a client-supplied suit, accepting emoji variation selectors."""
        if isinstance(value, Suit):
            return value
        if not isinstance(value, str):
            return None
        cleaned = value.replace("️", "").strip()
        for suit in cls.playable():
            if cleaned == suit.value or cleaned.lower() == suit.name.lower():
                return suit
        return None


class Rank(str, Enum):
    """Card ranks with their display values."""

    TWO = "2"
    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"
    ACE = "A"
    JOKER = JOKER_RANK


@dataclass(frozen=True)
class Card:
    """
    A playing card.

    Cards never change after construction. Anything that varies during play
    (the suit an Ace was turned into, whether a Joker is in effect) is game
    state, not card state.

    Attributes:
        rank: The card's rank (2-10, J, Q, K, A or JOKER).
        suit: The card's suit, or Suit.JOKER for Jokers.
        joker_variant: 1 or 2 for the two Jokers, None otherwise.
    """

    rank: Rank
    suit: Suit
    joker_variant: Optional[int] = None

    def __post_init__(self) -> None:
        if self.rank == Rank.JOKER:
            if self.suit != Suit.JOKER:
                raise ValueError("Jokers must use the joker suit")
            if self.joker_variant not in (1, 2):
                raise ValueError(f"Invalid joker variant: {self.joker_variant}")
        else:
            if self.suit == Suit.JOKER:
                raise ValueError(f"{self.rank.value} cannot use the joker suit")
            if self.joker_variant is not None:
                raise ValueError("Only Jokers carry a variant")

    @classmethod
    def joker(cls, variant: int) -> "Card":
        return cls(Rank.JOKER, Suit.JOKER, joker_variant=variant)

    @property
    def is_ace(self) -> bool:
        return self.rank == Rank.ACE

    @property
    def is_joker(self) -> bool:
        return self.rank == Rank.JOKER

    @property
    def is_wild(self) -> bool:
        return self.is_ace or self.is_joker

    def to_dict(self) -> dict:
        """Convert card to dictionary for JSON serialization."""
        data = {
            "rank": self.rank.value,
            "suit": self.suit.value,
            "is_ace": self.is_ace,
            "is_joker": self.is_joker,
        }
        if self.is_joker:
            data["joker_variant"] = self.joker_variant
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Card":
        return cls(
            rank=Rank(data["rank"]),
            suit=Suit(data["suit"]),
            joker_variant=data.get("joker_variant"),
        )

    def __str__(self) -> str:
        if self.is_joker:
            return f"JOKER ({self.joker_variant})"
        return f"{self.rank.value}{self.suit.value}"


class Deck:
    """
    A 54-card deck (52 standard cards plus 2 Jokers).

    The front of `cards` is the top of the deck. A seed may be supplied
    for deterministic shuffles in tests and simulations.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        self.cards: list[Card] = []
        self._rng = random.Random(seed)
        self._build()

    def _build(self) -> None:
        self.cards = [
            Card(Rank(rank), Suit(suit))
            for suit in SUIT_ORDER
            for rank in RANK_ORDER
        ]
        for variant in range(1, NUM_JOKERS + 1):
            self.cards.append(Card.joker(variant))

    def shuffle(self) -> "Deck":
        """Shuffle in place (uniform permutation) and return self."""
        self._rng.shuffle(self.cards)
        return self

    def draw(self, count: int = 1) -> list[Card]:
        """
        Remove and return the top `count` cards.

        Raises:
            ValueError: If count is negative or exceeds the deck size.
        """
        if count < 0:
            raise ValueError(f"Cannot draw {count} cards")
        if count > len(self.cards):
            raise ValueError(f"Cannot draw {count} cards, only {len(self.cards)} remaining")
        drawn = self.cards[:count]
        del self.cards[:count]
        return drawn

    def draw_one(self) -> Card:
        if not self.cards:
            raise ValueError("Cannot draw from empty deck")
        return self.cards.pop(0)

    def draw_non_special(self) -> Card:
        """Remove and return the first card that is neither an Ace nor a Joker."""
        for index, card in enumerate(self.cards):
            if not card.is_wild:
                return self.cards.pop(index)
        raise ValueError("No non-special cards available")

    def find_matching_card(self, suit, rank) -> Optional[Card]:
        """First non-wild card matching the given suit or rank."""
        for card in self.cards:
            if not card.is_wild and (card.suit == suit or card.rank == rank):
                return card
        return None

    def swap_card(self, card_to_remove: Card, card_to_add: Card) -> bool:
        """Replace `card_to_remove` in place with `card_to_add`."""
        for index, existing in enumerate(self.cards):
            if existing == card_to_remove:
                self.cards[index] = card_to_add
                return True
        return False

    @property
    def rng(self) -> random.Random:
        """The deck's random source, so seeded games stay reproducible."""
        return self._rng

    @property
    def size(self) -> int:
        return len(self.cards)

    @property
    def is_empty(self) -> bool:
        return not self.cards

    def __len__(self) -> int:
        return len(self.cards)


@dataclass(frozen=True)
class ActiveTarget:
    """
    The suit and rank the next play must match.

    Usually mirrors the top discard, but diverges after a wild card: an Ace
    of hearts turned to clubs gives ActiveTarget(CLUBS, ACE).
    """

    suit: Optional[Suit] = None
    rank: Optional[Rank] = None

    @classmethod
    def of(cls, card: Card) -> "ActiveTarget":
        return cls(suit=card.suit, rank=card.rank)


class TurnPhase(str, Enum):
    """
    Whose move it is, and what kind of move is allowed.

    Flow: PLAYER_TURN -> (AWAITING_SUIT_CHOICE | DRAWING) -> COMPUTER_TURN
    -> PLAYER_TURN ... until GAME_OVER.
    """

    PLAYER_TURN = "player_turn"
    COMPUTER_TURN = "computer_turn"
    AWAITING_SUIT_CHOICE = "awaiting_suit_choice"
    DRAWING = "drawing"
    GAME_OVER = "game_over"


class Side(str, Enum):
    PLAYER = "player"
    COMPUTER = "computer"


@dataclass
class PendingWild:
    """A wild card the player has played but not yet named a suit for."""

    card: Card
    previous_target: ActiveTarget
    after_joker: bool


@dataclass
class GameState:
    """
    Mutable state for one game session.

    `win_streak`, `discount_claimed`, `games_played` and
    `player_made_first_move` belong to the session and survive reset();
    everything else belongs to a single game.

    Attributes:
        deck: The draw pile.
        player_hand: Human player's cards (display order).
        computer_hand: Computer opponent's cards.
        discard_pile: Played cards; the last one is on top.
        target: Effective suit/rank the next play must match.
        joker_was_played: True between a Joker and the next non-Joker play.
        chosen_ace_suits: Suits already named by wild cards this game.
        pending_wild: Player's wild card awaiting a suit choice.
        pending_draw_two: Side that must draw two at the start of its turn.
        phase: Current turn phase.
        game_id: Unique identifier for log correlation.
    """

    deck: Optional[Deck] = None
    player_hand: list[Card] = field(default_factory=list)
    computer_hand: list[Card] = field(default_factory=list)
    discard_pile: list[Card] = field(default_factory=list)
    target: ActiveTarget = field(default_factory=ActiveTarget)
    joker_was_played: bool = False
    chosen_ace_suits: list[Suit] = field(default_factory=list)
    pending_wild: Optional[PendingWild] = None
    pending_draw_two: Optional[Side] = None
    phase: TurnPhase = TurnPhase.PLAYER_TURN
    game_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Session-scoped, not reset between games
    win_streak: int = 0
    discount_claimed: bool = False
    games_played: int = 0
    player_made_first_move: bool = False

    def reset(self) -> None:
        """
        Clear all per-game fields.

        win_streak, discount_claimed, games_played and player_made_first_move
        are left alone; they persist across games.
        """
        self.deck = None
        self.player_hand = []
        self.computer_hand = []
        self.discard_pile = []
        self.target = ActiveTarget()
        self.joker_was_played = False
        self.chosen_ace_suits = []
        self.pending_wild = None
        self.pending_draw_two = None
        self.phase = TurnPhase.PLAYER_TURN
        self.game_id = str(uuid.uuid4())

    # -------------------------------------------------------------------------
    # Dealing
    # -------------------------------------------------------------------------

    def initialize_game(self, hand_size: int = DEFAULT_HAND_SIZE, seed: Optional[int] = None) -> None:
        """
        Deal a new game.

        Hands and the opening discard come only from non-wild cards; every
        Ace and Joker goes back into the remaining deck, which is then
        shuffled again.
        """
        self.reset()
        deck = Deck(seed=seed).shuffle()

        special = [c for c in deck.cards if c.is_wild]
        regular = [c for c in deck.cards if not c.is_wild]

        self.player_hand = regular[:hand_size]
        self.computer_hand = regular[hand_size:hand_size * 2]
        first_card = regular[hand_size * 2]
        self.discard_pile = [first_card]

        deck.cards = regular[hand_size * 2 + 1:] + special
        deck.shuffle()
        self.deck = deck

        self.target = ActiveTarget.of(first_card)

    def ensure_player_has_playable_card(self) -> bool:
        """
        Guarantee the player can move on turn one.

        If nothing in the player's hand matches the opening card, swap a
        random hand card for a matching non-wild card from the deck.

        Returns:
            True if a swap happened.
        """
        has_playable = any(
            card.is_wild or card.suit == self.target.suit or card.rank == self.target.rank
            for card in self.player_hand
        )
        if has_playable or not self.deck or self.deck.is_empty or not self.player_hand:
            return False

        matching = self.deck.find_matching_card(self.target.suit, self.target.rank)
        if matching is None:
            return False

        index = self.deck.rng.randrange(len(self.player_hand))
        returned = self.player_hand[index]
        self.deck.swap_card(matching, returned)
        self.player_hand[index] = matching
        return True

    # -------------------------------------------------------------------------
    # Card movement
    # -------------------------------------------------------------------------

    @property
    def top_card(self) -> Optional[Card]:
        return self.discard_pile[-1] if self.discard_pile else None

    @property
    def current_suit(self) -> Optional[Suit]:
        return self.target.suit

    @property
    def current_rank(self) -> Optional[Rank]:
        return self.target.rank

    def update_target(self, suit: Suit, rank: Rank) -> None:
        self.target = ActiveTarget(suit=suit, rank=rank)

    def hand_for(self, side: Side) -> list[Card]:
        return self.player_hand if side is Side.PLAYER else self.computer_hand

    def play_card_from_hand(self, index: int) -> Card:
        card = self.player_hand.pop(index)
        self.discard_pile.append(card)
        return card

    def play_computer_card(self, index: int) -> Card:
        card = self.computer_hand.pop(index)
        self.discard_pile.append(card)
        return card

    def draw_card_for(self, side: Side) -> Optional[Card]:
        """Draw one card into a hand. Returns None if the deck is empty."""
        if self.deck is None or self.deck.is_empty:
            return None
        card = self.deck.draw_one()
        self.hand_for(side).append(card)
        return card

    def draw_card_for_player(self) -> Optional[Card]:
        return self.draw_card_for(Side.PLAYER)

    def draw_card_for_computer(self) -> Optional[Card]:
        return self.draw_card_for(Side.COMPUTER)

    def record_chosen_ace_suit(self, suit: Suit) -> None:
        if suit not in self.chosen_ace_suits:
            self.chosen_ace_suits.append(suit)

    # -------------------------------------------------------------------------
    # Session-scoped counters
    # -------------------------------------------------------------------------

    @property
    def game_over(self) -> bool:
        return self.phase == TurnPhase.GAME_OVER

    def increment_win_streak(self) -> None:
        self.win_streak += 1

    def reset_win_streak(self) -> None:
        self.win_streak = 0

    def claim_discount(self) -> None:
        self.discount_claimed = True

    def to_dict(self) -> dict:
        """Summary for debugging and logs (no hidden card identities)."""
        return {
            "game_id": self.game_id,
            "deck_size": self.deck.size if self.deck else 0,
            "player_hand_size": len(self.player_hand),
            "computer_hand_size": len(self.computer_hand),
            "discard_pile_size": len(self.discard_pile),
            "current_suit": self.current_suit.value if self.current_suit else None,
            "current_rank": self.current_rank.value if self.current_rank else None,
            "top_card": str(self.top_card) if self.top_card else None,
            "phase": self.phase.value,
            "win_streak": self.win_streak,
        }
