"""
Test suite for Crazy Aces cards, deck and game state.

Covers:
- Card construction and serialization
- Deck composition, drawing and seeded shuffles
- Dealing (no wild cards in opening hands or discard)
- The first-turn fairness swap
- Session fields surviving reset

Run with: pytest test_game.py -v
"""

import pytest

from constants import DECK_SIZE
from game import (
    ActiveTarget, Card, Deck, GameState, Rank, Side, Suit, TurnPhase,
)


def c(rank: str, suit: str) -> Card:
    return Card(Rank(rank), Suit(suit))


# =============================================================================
# Card Tests
# =============================================================================

class TestCard:

    def test_ace_flags(self):
        ace = c("A", "♥")
        assert ace.is_ace
        assert ace.is_wild
        assert not ace.is_joker

    def test_joker_flags(self):
        joker = Card.joker(1)
        assert joker.is_joker
        assert joker.is_wild
        assert joker.suit == Suit.JOKER
        assert joker.joker_variant == 1

    def test_regular_card_not_wild(self):
        assert not c("7", "♠").is_wild

    def test_joker_requires_variant(self):
        with pytest.raises(ValueError):
            Card(Rank.JOKER, Suit.JOKER)

    def test_regular_card_cannot_use_joker_suit(self):
        with pytest.raises(ValueError):
            Card(Rank.SEVEN, Suit.JOKER)

    def test_cards_are_immutable(self):
        card = c("A", "♥")
        with pytest.raises(Exception):
            card.suit = Suit.CLUBS

    def test_to_dict_and_back(self):
        for card in (c("10", "♦"), Card.joker(2)):
            assert Card.from_dict(card.to_dict()) == card

    def test_str(self):
        assert str(c("7", "♠")) == "7♠"
        assert str(Card.joker(2)) == "JOKER (2)"


class TestSuitParse:

    def test_symbols_and_names(self):
        assert Suit.parse("♣") == Suit.CLUBS
        assert Suit.parse("hearts") == Suit.HEARTS
        assert Suit.parse("SPADES") == Suit.SPADES

    def test_strips_variation_selector(self):
        assert Suit.parse("\u2665\ufe0f") == Suit.HEARTS

    def test_rejects_joker_and_garbage(self):
        assert Suit.parse("joker") is None
        assert Suit.parse("x") is None
        assert Suit.parse(None) is None
        assert Suit.parse(3) is None


# =============================================================================
# Deck Tests
# =============================================================================

class TestDeck:

    def test_composition(self):
        deck = Deck()
        assert deck.size == DECK_SIZE == 54
        assert len(set(deck.cards)) == 54
        assert sum(1 for card in deck.cards if card.is_joker) == 2
        assert sum(1 for card in deck.cards if card.is_ace) == 4

    def test_seeded_shuffle_is_reproducible(self):
        a = Deck(seed=42).shuffle()
        b = Deck(seed=42).shuffle()
        assert a.cards == b.cards

    def test_shuffle_keeps_every_card(self):
        deck = Deck(seed=7).shuffle()
        assert sorted(map(str, deck.cards)) == sorted(map(str, Deck().cards))

    def test_draw_takes_from_top(self):
        deck = Deck()
        top = deck.cards[:3]
        assert deck.draw(3) == top
        assert deck.size == 51

    def test_draw_zero(self):
        deck = Deck()
        assert deck.draw(0) == []
        assert deck.size == 54

    def test_draw_too_many_raises(self):
        deck = Deck()
        with pytest.raises(ValueError):
            deck.draw(55)

    def test_draw_negative_raises(self):
        with pytest.raises(ValueError):
            Deck().draw(-1)

    def test_draw_one_from_empty_raises(self):
        deck = Deck()
        deck.cards = []
        with pytest.raises(ValueError):
            deck.draw_one()

    def test_draw_non_special_skips_wilds(self):
        deck = Deck()
        deck.cards = [Card.joker(1), c("A", "♠"), c("5", "♦")]
        assert deck.draw_non_special() == c("5", "♦")
        assert deck.size == 2

    def test_find_matching_card_ignores_wilds(self):
        deck = Deck()
        deck.cards = [c("A", "♥"), c("9", "♣"), c("4", "♥")]
        assert deck.find_matching_card(Suit.HEARTS, Rank.SEVEN) == c("4", "♥")
        assert deck.find_matching_card(Suit.SPADES, Rank.NINE) == c("9", "♣")
        assert deck.find_matching_card(Suit.SPADES, Rank.THREE) is None

    def test_swap_card(self):
        deck = Deck()
        deck.cards = [c("2", "♠"), c("3", "♠")]
        assert deck.swap_card(c("3", "♠"), c("K", "♦"))
        assert deck.cards == [c("2", "♠"), c("K", "♦")]
        assert not deck.swap_card(c("Q", "♣"), c("J", "♣"))


# =============================================================================
# Dealing Tests
# =============================================================================

class TestInitializeGame:

    def test_deal_sizes(self):
        state = GameState()
        state.initialize_game(hand_size=7, seed=1)
        assert len(state.player_hand) == 7
        assert len(state.computer_hand) == 7
        assert len(state.discard_pile) == 1
        assert state.deck.size == 54 - 15

    def test_no_wilds_dealt(self):
        for seed in range(25):
            state = GameState()
            state.initialize_game(seed=seed)
            dealt = state.player_hand + state.computer_hand + state.discard_pile
            assert not any(card.is_wild for card in dealt)

    def test_all_wilds_remain_in_deck(self):
        state = GameState()
        state.initialize_game(seed=3)
        assert sum(1 for card in state.deck.cards if card.is_wild) == 6

    def test_every_card_accounted_for(self):
        state = GameState()
        state.initialize_game(seed=11)
        everything = (
            state.player_hand + state.computer_hand + state.discard_pile + state.deck.cards
        )
        assert len(everything) == 54
        assert len(set(everything)) == 54

    def test_target_matches_opening_card(self):
        state = GameState()
        state.initialize_game(seed=5)
        assert state.target == ActiveTarget.of(state.discard_pile[0])
        assert state.phase == TurnPhase.PLAYER_TURN


class TestFairnessSwap:

    def _state_with_dead_hand(self) -> GameState:
        state = GameState()
        state.initialize_game(seed=2)
        state.discard_pile = [c("7", "♠")]
        state.target = ActiveTarget.of(c("7", "♠"))
        state.player_hand = [c("2", "♥"), c("3", "♦"), c("4", "♣")]
        state.deck.cards = [c("A", "♠"), c("K", "♥"), c("9", "♠"), c("5", "♦")]
        return state

    def test_swaps_in_matching_card(self):
        state = self._state_with_dead_hand()
        assert state.ensure_player_has_playable_card()
        assert c("9", "♠") in state.player_hand
        assert len(state.player_hand) == 3
        assert state.deck.size == 4
        assert c("9", "♠") not in state.deck.cards

    def test_no_swap_when_playable(self):
        state = self._state_with_dead_hand()
        state.player_hand.append(c("7", "♦"))
        before = list(state.player_hand)
        assert not state.ensure_player_has_playable_card()
        assert state.player_hand == before

    def test_no_swap_without_matching_card(self):
        state = self._state_with_dead_hand()
        state.deck.cards = [c("A", "♠"), c("K", "♥")]
        assert not state.ensure_player_has_playable_card()

    def test_swapped_slot_follows_game_seed(self):
        hands = []
        for _ in range(2):
            state = self._state_with_dead_hand()
            state.player_hand = [c(r, "♥") for r in ("2", "3", "4", "5", "6", "8")]
            assert state.ensure_player_has_playable_card()
            hands.append(list(state.player_hand))
            hands.append(list(state.deck.cards))
        assert hands[0] == hands[2]
        assert hands[1] == hands[3]


# =============================================================================
# State Tests
# =============================================================================

class TestGameState:

    def test_reset_keeps_session_fields(self):
        state = GameState()
        state.initialize_game(seed=1)
        state.win_streak = 2
        state.discount_claimed = True
        state.games_played = 4
        old_id = state.game_id

        state.reset()

        assert state.win_streak == 2
        assert state.discount_claimed
        assert state.games_played == 4
        assert state.player_hand == []
        assert state.target == ActiveTarget()
        assert state.game_id != old_id

    def test_draw_for_side(self):
        state = GameState()
        state.initialize_game(seed=1)
        card = state.draw_card_for(Side.COMPUTER)
        assert card is not None
        assert state.computer_hand[-1] == card

    def test_draw_from_empty_deck_returns_none(self):
        state = GameState()
        state.initialize_game(seed=1)
        state.deck.cards = []
        assert state.draw_card_for_player() is None
        assert len(state.player_hand) == 7

    def test_play_moves_card_to_discard(self):
        state = GameState()
        state.initialize_game(seed=1)
        card = state.player_hand[0]
        assert state.play_card_from_hand(0) == card
        assert state.top_card == card
        assert len(state.player_hand) == 6

    def test_record_chosen_suit_once(self):
        state = GameState()
        state.record_chosen_ace_suit(Suit.CLUBS)
        state.record_chosen_ace_suit(Suit.CLUBS)
        assert state.chosen_ace_suits == [Suit.CLUBS]
