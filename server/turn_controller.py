"""
Turn controller for Crazy Aces.

Drives one game: validates player actions through the rule engine, applies
their effects, runs the computer's turn and reports every visible change.

Concurrency model:
    One controller per connection, run on a single event loop. Every public
    action checks and sets `_in_flight` before its first await and clears it
    on every exit path. A second action that arrives while one is running is
    dropped (ActionResult.dropped), never queued.

Phases:
    PLAYER_TURN -> play / draw / wild card
    AWAITING_SUIT_CHOICE -> choose_suit or cancel_suit_choice
    DRAWING -> resolved within draw_card
    COMPUTER_TURN -> resolved within the same action that ended the player's turn
    GAME_OVER -> only start_game is accepted
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from config import TurnTiming, config
from constants import SUIT_NAMES
from game import GameState, PendingWild, Rank, Side, Suit, TurnPhase
from logging_config import game_id_var
from rules import (
    GameEngine,
    WinResult,
    discount_percent_for_streak,
    execute_draw_two,
    get_playable_cards,
    process_wild_effect,
)


logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong. Try again."

UpdateCallback = Callable[[dict], Awaitable[None]]
GameEndCallback = Callable[[WinResult], Awaitable[None]]


ALLOWED_TRANSITIONS: dict[TurnPhase, set[TurnPhase]] = {
    TurnPhase.PLAYER_TURN: {
        TurnPhase.PLAYER_TURN,
        TurnPhase.AWAITING_SUIT_CHOICE,
        TurnPhase.DRAWING,
        TurnPhase.COMPUTER_TURN,
        TurnPhase.GAME_OVER,
    },
    TurnPhase.AWAITING_SUIT_CHOICE: {
        TurnPhase.PLAYER_TURN,
        TurnPhase.COMPUTER_TURN,
        TurnPhase.GAME_OVER,
    },
    TurnPhase.DRAWING: {
        TurnPhase.PLAYER_TURN,
        TurnPhase.COMPUTER_TURN,
    },
    TurnPhase.COMPUTER_TURN: {
        TurnPhase.COMPUTER_TURN,
        TurnPhase.PLAYER_TURN,
        TurnPhase.GAME_OVER,
    },
    TurnPhase.GAME_OVER: {
        TurnPhase.PLAYER_TURN,
    },
}


class InvalidTransitionError(RuntimeError):
    """Raised when the controller tries to move between incompatible phases."""


@dataclass
class ActionResult:
    """
    Outcome of one controller action.

    Attributes:
        accepted: True if the action ran.
        reason: Why it was rejected (or the generic error message).
        dropped: True if another action was already in flight.
        messages: Status lines produced while the action ran, in order.
        win_result: Set when the action ended the game.
    """

    accepted: bool
    reason: Optional[str] = None
    dropped: bool = False
    messages: list[str] = field(default_factory=list)
    win_result: Optional[WinResult] = None

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "reason": self.reason,
            "dropped": self.dropped,
            "messages": list(self.messages),
            "win_result": self.win_result.to_dict() if self.win_result else None,
        }


class TurnController:
    """
    Sequences player and computer turns for one game session.

    Args:
        state: Game state to drive (a fresh one if omitted).
        engine: Rule engine bound to `state`.
        timing: Pacing delays; TurnTiming.instant() disables them.
        on_update: Awaited with a snapshot after each visible change.
        on_game_end: Awaited with the WinResult before a game-over result
            is returned. Failures are logged and ignored.
        analytics: Optional AnalyticsQueue for gameplay events.
        hand_size: Cards dealt to each side.
    """

    def __init__(
        self,
        state: Optional[GameState] = None,
        engine: Optional[GameEngine] = None,
        timing: Optional[TurnTiming] = None,
        on_update: Optional[UpdateCallback] = None,
        on_game_end: Optional[GameEndCallback] = None,
        analytics=None,
        hand_size: Optional[int] = None,
    ):
        self.state = state or GameState()
        self.engine = engine or GameEngine(self.state)
        self.timing = timing or config.timing
        self.on_update = on_update
        self.on_game_end = on_game_end
        self.analytics = analytics
        self.hand_size = hand_size or config.HAND_SIZE

        self._in_flight = False
        self._started = False
        self._acted_this_game = False
        self._game_started_at = 0.0
        self._cards_played = 0
        self._cards_drawn = 0
        self._status = ""
        self._messages: list[str] = []

    @property
    def phase(self) -> TurnPhase:
        return self.state.phase

    @property
    def busy(self) -> bool:
        return self._in_flight

    # -------------------------------------------------------------------------
    # Public actions
    # -------------------------------------------------------------------------

    async def start_game(
        self,
        seed: Optional[int] = None,
        prepare: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> ActionResult:
        """
        Deal a new game. Win streak and discount flag carry over.

        `prepare` is awaited under the action lock, before the deal.
        """
        return await self._guarded("start_game", self._start_game, seed, prepare)

    async def reset(self, seed: Optional[int] = None) -> ActionResult:
        return await self.start_game(seed)

    async def play_card(self, index) -> ActionResult:
        return await self._guarded("play_card", self._play_card, index)

    async def choose_suit(self, suit) -> ActionResult:
        return await self._guarded("choose_suit", self._choose_suit, suit)

    async def cancel_suit_choice(self) -> ActionResult:
        return await self._guarded("cancel_suit_choice", self._cancel_suit_choice)

    async def draw_card(self) -> ActionResult:
        return await self._guarded("draw_card", self._draw_card)

    async def claim_discount(self) -> ActionResult:
        """Record that this session's discount has been claimed."""
        return await self._guarded("claim_discount", self._claim_discount)

    def snapshot(self) -> dict:
        """Client view of the game. The computer's cards stay hidden."""
        state = self.state
        top = state.top_card
        pending = state.pending_wild
        return {
            "game_id": state.game_id,
            "phase": state.phase.value,
            "status": self._status,
            "player_hand": [card.to_dict() for card in state.player_hand],
            "computer_hand_count": len(state.computer_hand),
            "deck_size": state.deck.size if state.deck else 0,
            "top_card": top.to_dict() if top else None,
            "current_suit": state.current_suit.value if state.current_suit else None,
            "current_rank": state.current_rank.value if state.current_rank else None,
            "joker_was_played": state.joker_was_played,
            "chosen_ace_suits": [suit.value for suit in state.chosen_ace_suits],
            "pending_wild": pending.card.to_dict() if pending else None,
            "playable_indices": (
                get_playable_cards(
                    state.player_hand,
                    state.current_suit,
                    state.current_rank,
                    state.joker_was_played,
                )
                if state.phase == TurnPhase.PLAYER_TURN
                else []
            ),
            "win_streak": state.win_streak,
            "games_played": state.games_played,
            "discount_claimed": state.discount_claimed,
        }

    # -------------------------------------------------------------------------
    # Action boundary
    # -------------------------------------------------------------------------

    async def _guarded(self, name: str, action, *args) -> ActionResult:
        # Check-then-set with no await in between
        if self._in_flight:
            logger.debug(f"Dropped {name}: another action is in flight")
            return ActionResult(accepted=False, dropped=True, reason="Action in progress")
        self._in_flight = True
        self._messages = []
        game_id_var.set(self.state.game_id)
        try:
            result = await action(*args)
        except Exception:
            logger.exception(f"Error in {name} (game {self.state.game_id[:8]})")
            result = self._recover()
        finally:
            self._in_flight = False
        result.messages = self._messages + result.messages
        self._messages = []
        return result

    def _recover(self) -> ActionResult:
        """Unlock the turn after an internal error."""
        state = self.state
        if state.phase != TurnPhase.GAME_OVER:
            if state.pending_wild is not None:
                state.phase = TurnPhase.AWAITING_SUIT_CHOICE
            else:
                state.phase = TurnPhase.PLAYER_TURN
        self._status = GENERIC_ERROR_MESSAGE
        return ActionResult(accepted=False, reason=GENERIC_ERROR_MESSAGE)

    def _transition(self, phase: TurnPhase) -> None:
        current = self.state.phase
        if phase not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(f"Cannot move from {current.value} to {phase.value}")
        self.state.phase = phase

    def _reject(self, reason: str) -> ActionResult:
        return ActionResult(accepted=False, reason=reason)

    def _say(self, message: str) -> None:
        self._status = message
        self._messages.append(message)

    async def _notify(self) -> None:
        if self.on_update is not None:
            await self.on_update(self.snapshot())

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    def _track(self, event: str, **data) -> None:
        if self.analytics is not None:
            self.analytics.track(event, **data)

    def _game_stats(self) -> dict:
        return {
            "duration": int((time.monotonic() - self._game_started_at) * 1000),
            "cards_played": self._cards_played,
            "cards_drawn": self._cards_drawn,
        }

    def _mark_player_acted(self) -> None:
        if not self._acted_this_game:
            self._acted_this_game = True
            self.state.player_made_first_move = True
            self._track(
                "first_action",
                time_to_action=int((time.monotonic() - self._game_started_at) * 1000),
            )

    # -------------------------------------------------------------------------
    # Action implementations
    # -------------------------------------------------------------------------

    async def _start_game(self, seed: Optional[int], prepare=None) -> ActionResult:
        state = self.state
        if prepare is not None:
            await prepare()
        if self._started and state.phase != TurnPhase.GAME_OVER and self._acted_this_game:
            self._track("game_abandoned", **self._game_stats())

        state.initialize_game(hand_size=self.hand_size, seed=seed)
        swapped = state.ensure_player_has_playable_card()
        self._started = True
        self._acted_this_game = False
        self._game_started_at = time.monotonic()
        self._cards_played = 0
        self._cards_drawn = 0

        logger.info(
            f"Game {state.game_id[:8]} started "
            f"(streak {state.win_streak}, fairness swap: {swapped})"
        )
        self._track("game_started", win_streak=state.win_streak)
        self._say("Your turn")
        await self._notify()
        return ActionResult(accepted=True)

    async def _play_card(self, index) -> ActionResult:
        state = self.state
        if not self._started:
            return self._reject("No game in progress")

        validation = self.engine.validate_player_move(index)
        if not validation.valid:
            if validation.reason == "Card cannot be played on current card":
                card = state.player_hand[index]
                self._track(
                    "invalid_card",
                    card_type=_card_type(card),
                    rank=card.rank.value,
                    suit=card.suit.value,
                    reason=validation.reason,
                )
            return self._reject(validation.reason)

        self._mark_player_acted()
        was_after_joker = state.joker_was_played
        previous_target = state.target
        card = state.play_card_from_hand(index)
        self._cards_played += 1
        self._track("card_played", card_type=_card_type(card), rank=card.rank.value, suit=card.suit.value)

        effect = process_wild_effect(card)
        if effect.needs_suit_selection and card.is_joker:
            # Winning with a Joker ends the game before the flag is set
            if not state.player_hand:
                return await self._conclude_if_won()
            state.joker_was_played = True
            self._say("Joker played - play any card")
            await self._notify()
            return ActionResult(accepted=True)

        if effect.needs_suit_selection:
            state.pending_wild = PendingWild(
                card=card,
                previous_target=previous_target,
                after_joker=was_after_joker,
            )
            self._transition(TurnPhase.AWAITING_SUIT_CHOICE)
            self._say("Ace played! Pick a suit")
            await self._notify()
            return ActionResult(accepted=True)

        state.joker_was_played = False
        state.update_target(card.suit, card.rank)
        if was_after_joker:
            self._say(f"You played {card} - suit is now {card.suit.value}")
        else:
            self._say(f"You played {card}")
        if effect.draw_two:
            state.pending_draw_two = Side.COMPUTER
        await self._notify()

        result = await self._conclude_if_won()
        if result.win_result is not None:
            return result

        await self._pause(self.timing.status_message)
        return await self._run_computer_turn()

    async def _choose_suit(self, suit) -> ActionResult:
        state = self.state
        pending = state.pending_wild
        if state.phase != TurnPhase.AWAITING_SUIT_CHOICE or pending is None:
            return self._reject("No suit choice pending")

        chosen = Suit.parse(suit)
        if chosen is None:
            return self._reject("Invalid suit")
        if chosen in state.chosen_ace_suits and len(state.chosen_ace_suits) < len(Suit.playable()):
            return self._reject("Suit already chosen")

        state.pending_wild = None
        state.joker_was_played = False
        state.update_target(chosen, pending.card.rank)
        state.record_chosen_ace_suit(chosen)
        self._track("suit_selected", card_type=_card_type(pending.card), suit=chosen.value)
        self._say(f"You changed suit to {chosen.value}")
        await self._notify()

        result = await self._conclude_if_won()
        if result.win_result is not None:
            return result

        if pending.after_joker:
            self._transition(TurnPhase.PLAYER_TURN)
            self._say("Your turn")
            await self._notify()
            return ActionResult(accepted=True)

        await self._pause(self.timing.status_message)
        return await self._run_computer_turn()

    async def _cancel_suit_choice(self) -> ActionResult:
        state = self.state
        pending = state.pending_wild
        if state.phase != TurnPhase.AWAITING_SUIT_CHOICE or pending is None:
            return self._reject("No suit choice pending")

        if state.discard_pile and state.discard_pile[-1] == pending.card:
            state.discard_pile.pop()
        state.player_hand.append(pending.card)
        state.target = pending.previous_target
        state.pending_wild = None
        self._transition(TurnPhase.PLAYER_TURN)
        self._say("Card returned to hand")
        await self._notify()
        return ActionResult(accepted=True)

    async def _draw_card(self) -> ActionResult:
        state = self.state
        if not self._started:
            return self._reject("No game in progress")
        if state.phase == TurnPhase.DRAWING:
            return self._reject("Wait for draw to complete")
        if state.phase == TurnPhase.GAME_OVER:
            return self._reject("Game is over")
        if state.phase == TurnPhase.AWAITING_SUIT_CHOICE:
            return self._reject("Pick a suit first")
        if state.phase != TurnPhase.PLAYER_TURN:
            return self._reject("Wait for your turn")

        self._mark_player_acted()
        self._transition(TurnPhase.DRAWING)
        card = state.draw_card_for_player()

        if card is None:
            self._say("Deck empty - pass turn")
            await self._notify()
            await self._pause(self.timing.status_message)
            return await self._run_computer_turn()

        playable = self.engine.can_play_card(card)
        self._cards_drawn += 1
        self._track("card_drawn", playable=playable)
        self._say("You drew a card")

        if playable:
            self._transition(TurnPhase.PLAYER_TURN)
            self._say("You can play the card you drew!")
            await self._notify()
            return ActionResult(accepted=True)

        await self._notify()
        return await self._run_computer_turn()

    async def _claim_discount(self) -> ActionResult:
        state = self.state
        if state.discount_claimed:
            return self._reject("Discount already claimed")
        if state.win_streak < 1:
            return self._reject("No win streak to claim")
        state.claim_discount()
        self._track(
            "claim_clicked",
            percent=discount_percent_for_streak(state.win_streak),
            win_streak=state.win_streak,
        )
        return ActionResult(accepted=True)

    # -------------------------------------------------------------------------
    # Computer turn
    # -------------------------------------------------------------------------

    async def _run_computer_turn(self) -> ActionResult:
        state = self.state
        self._transition(TurnPhase.COMPUTER_TURN)
        self._say("Opponent's move")
        self._apply_draw_two(Side.COMPUTER)
        await self._notify()

        while True:
            await self._pause(self.timing.computer_turn)
            index = self.engine.find_computer_playable_card()

            if index == -1:
                drawn = state.draw_card_for_computer()
                if drawn is None:
                    self._say("Opponent passes - deck empty")
                    await self._notify()
                    break
                self._say("Opponent drew a card")
                await self._notify()
                if self.engine.can_play_card(drawn):
                    continue
                break

            card = state.play_computer_card(index)
            effect = process_wild_effect(card, is_computer=True)

            if card.is_joker:
                state.joker_was_played = True
                self._say("Opponent played Joker")
                await self._notify()
                if not state.computer_hand:
                    return await self._conclude_if_won()
                continue

            state.joker_was_played = False
            if card.is_wild:
                suit = self.engine.choose_best_suit_for_computer()
                state.update_target(suit, Rank.ACE)
                state.record_chosen_ace_suit(suit)
                self._say(f"Opponent played Ace - changed to {SUIT_NAMES[suit.value]}")
            else:
                state.update_target(card.suit, card.rank)
                self._say(f"Opponent played {card}")
                if effect.draw_two:
                    state.pending_draw_two = Side.PLAYER
            await self._notify()
            break

        result = await self._conclude_if_won()
        if result.win_result is not None:
            return result

        self._transition(TurnPhase.PLAYER_TURN)
        self._apply_draw_two(Side.PLAYER)
        self._say("Your turn")
        await self._notify()
        return ActionResult(accepted=True)

    def _apply_draw_two(self, side: Side) -> None:
        state = self.state
        if state.pending_draw_two is not side:
            return
        state.pending_draw_two = None
        drawn = execute_draw_two(state.deck, state.hand_for(side))
        if side is Side.PLAYER:
            self._say(f"You drew {len(drawn)} cards")
        else:
            self._say(f"Opponent drew {len(drawn)} cards")

    # -------------------------------------------------------------------------
    # Game end
    # -------------------------------------------------------------------------

    async def _conclude_if_won(self) -> ActionResult:
        """
        Apply the win condition once and report the game end.

        Returns an accepted result; `win_result` is set only if the game ended.
        """
        win_result = self.engine.check_win_condition()
        if win_result is None:
            return ActionResult(accepted=True)

        state = self.state
        self._track(
            "game_ended",
            winner=win_result.winner.value,
            win_streak=win_result.win_streak,
            **self._game_stats(),
        )
        if win_result.winner is Side.PLAYER and win_result.win_streak > 0:
            self._track(
                "discount_offered",
                percent=discount_percent_for_streak(win_result.win_streak),
                win_streak=win_result.win_streak,
            )

        await self._pause(self.timing.game_end)

        # The session record must be updated before the client sees game over
        if self.on_game_end is not None:
            try:
                await self.on_game_end(win_result)
            except Exception as e:
                logger.warning(f"Game end hook failed for game {state.game_id[:8]}: {e}")

        if win_result.winner is Side.PLAYER:
            streak = state.win_streak
            self._say(f"You win! {streak} in a row" if streak > 1 else "You win!")
        else:
            self._say("Opponent wins!")
        await self._notify()
        return ActionResult(accepted=True, win_result=win_result)


def _card_type(card) -> str:
    if card.is_joker:
        return "joker"
    if card.is_ace:
        return "ace"
    return "regular"
