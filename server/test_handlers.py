"""
Test suite for WebSocket message handlers.

Tests session establishment, handler flows and the game over message
using a mock WebSocket and instant turn pacing.

Run with: pytest test_handlers.py -v
"""

import asyncio
from unittest.mock import AsyncMock

import fakeredis
import pytest
import redis.asyncio as redis

from config import TurnTiming
from game import ActiveTarget, Card, Rank, Suit, TurnPhase
from handlers import (
    HANDLERS,
    handle_cancel_suit,
    handle_choose_suit,
    handle_claim_discount,
    handle_draw_card,
    handle_get_state,
    handle_new_game,
    handle_play_card,
    open_connection,
)
from services.analytics import AnalyticsRecorder
from services.session_service import SessionService, StreakAuthority, issue_token
from stores.session_store import SessionStore

SECRET = "test-secret"


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)

    def last_message(self) -> dict:
        return self.messages[-1] if self.messages else {}

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]


def c(rank: str, suit: str) -> Card:
    return Card(Rank(rank), Suit(suit))


def token_service():
    return SessionService(None, SECRET, StreakAuthority.TOKEN)


def store_service():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    return SessionService(SessionStore(client, ttl_seconds=3600), SECRET, StreakAuthority.STORE)


async def connect(token=None, service=None, **kwargs):
    ws = MockWebSocket()
    ctx = await open_connection(
        ws,
        token,
        session_service=service if service is not None else token_service(),
        timing=TurnTiming.instant(),
        **kwargs,
    )
    return ws, ctx


def rig(ctx, player, computer, top, deck):
    """Overwrite the dealt position so plays are deterministic."""
    state = ctx.controller.state
    state.player_hand = list(player)
    state.computer_hand = list(computer)
    state.discard_pile = [top]
    state.target = ActiveTarget.of(top)
    state.deck.cards = list(deck)


# =============================================================================
# Session establishment
# =============================================================================

class TestEstablishSession:

    @pytest.mark.asyncio
    async def test_new_connection_gets_session(self):
        ws, ctx = await connect()
        payload = ctx.session_service.verify_token(ctx.session_token)
        assert payload.session_id == ctx.session_id
        assert ctx.win_streak == 0

    @pytest.mark.asyncio
    async def test_resume_carries_streak_to_controller(self):
        token = issue_token("abc", 2, SECRET)
        ws, ctx = await connect(token)
        assert ctx.session_id == "abc"
        assert ctx.win_streak == 2
        assert ctx.controller.state.win_streak == 2

    @pytest.mark.asyncio
    async def test_invalid_token_starts_fresh(self):
        ws, ctx = await connect("garbage")
        assert ctx.session_token != "garbage"
        assert ctx.win_streak == 0

    @pytest.mark.asyncio
    async def test_expired_session_starts_fresh(self):
        service = store_service()
        stale = issue_token("gone", 3, SECRET)
        ws, ctx = await connect(stale, service=service)
        assert ctx.session_id != "gone"
        assert ctx.win_streak == 0

    @pytest.mark.asyncio
    async def test_store_down_keeps_client_token(self):
        service = store_service()
        service.store.get = AsyncMock(side_effect=redis.ConnectionError("down"))
        token = issue_token("abc", 2, SECRET)

        ws, ctx = await connect(token, service=service)

        assert ctx.session_token == token
        assert ctx.win_streak == 2

    @pytest.mark.asyncio
    async def test_store_down_without_token_plays_sessionless(self):
        service = store_service()
        service.store.save = AsyncMock(side_effect=redis.ConnectionError("down"))

        ws, ctx = await connect(None, service=service)

        assert ctx.session_token is None
        assert ctx.controller is not None

    @pytest.mark.asyncio
    async def test_analytics_queue_tagged_with_session(self):
        ws, ctx = await connect(recorder=AnalyticsRecorder(None))
        assert ctx.analytics.session_id == ctx.session_id
        await ctx.close()


# =============================================================================
# Game handlers
# =============================================================================

class TestGameHandlers:

    @pytest.mark.asyncio
    async def test_new_game_sends_session_and_state(self):
        ws, ctx = await connect()

        await handle_new_game({}, ctx)

        assert ws.messages_of_type("session")
        state_msg = ws.messages_of_type("game_state")[-1]["game_state"]
        assert state_msg["phase"] == TurnPhase.PLAYER_TURN.value
        assert len(state_msg["player_hand"]) == 7
        assert state_msg["computer_hand_count"] == 7
        assert "computer_hand" not in state_msg
        assert state_msg["playable_indices"]

    @pytest.mark.asyncio
    async def test_play_card_runs_computer_turn(self):
        ws, ctx = await connect()
        await handle_new_game({}, ctx)
        rig(ctx, [c("7", "♥"), c("K", "♣")], [c("7", "♠"), c("2", "♦")], c("9", "♥"), [c("3", "♣")])
        ws.messages.clear()

        await handle_play_card({"index": 0}, ctx)

        assert not ws.messages_of_type("error")
        final = ws.last_message()["game_state"]
        assert final["phase"] == TurnPhase.PLAYER_TURN.value
        assert final["top_card"] == c("7", "♠").to_dict()
        assert final["status"] == "Your turn"

    @pytest.mark.asyncio
    async def test_rejected_play_reports_error(self):
        ws, ctx = await connect()
        await handle_new_game({}, ctx)
        rig(ctx, [c("7", "♥"), c("K", "♣")], [c("7", "♠")], c("9", "♥"), [])
        ws.messages.clear()

        await handle_play_card({"index": 1}, ctx)

        assert ws.last_message() == {"type": "error", "message": "Card cannot be played on current card"}

    @pytest.mark.asyncio
    async def test_missing_index_rejected(self):
        ws, ctx = await connect()
        await handle_new_game({}, ctx)
        ws.messages.clear()

        await handle_play_card({}, ctx)

        assert ws.last_message() == {"type": "error", "message": "Invalid card"}

    @pytest.mark.asyncio
    async def test_ace_suit_choice_and_cancel(self):
        ws, ctx = await connect()
        await handle_new_game({}, ctx)
        rig(ctx, [c("A", "♥"), c("K", "♣")], [c("4", "♦"), c("5", "♦")], c("9", "♥"), [c("3", "♠")])

        await handle_play_card({"index": 0}, ctx)
        assert ctx.controller.phase == TurnPhase.AWAITING_SUIT_CHOICE

        await handle_cancel_suit({}, ctx)
        assert ctx.controller.phase == TurnPhase.PLAYER_TURN
        assert len(ctx.controller.state.player_hand) == 2

        await handle_play_card({"index": 1}, ctx)
        await handle_choose_suit({"suit": "♣"}, ctx)

        assert not ws.messages_of_type("error")
        assert ctx.controller.state.chosen_ace_suits == [Suit.CLUBS]

    @pytest.mark.asyncio
    async def test_draw_card(self):
        ws, ctx = await connect()
        await handle_new_game({}, ctx)
        rig(ctx, [c("4", "♠")], [c("K", "♦"), c("Q", "♦")], c("9", "♥"), [c("3", "♣"), c("5", "♣")])

        await handle_draw_card({}, ctx)

        assert not ws.messages_of_type("error")
        assert len(ctx.controller.state.player_hand) == 2

    @pytest.mark.asyncio
    async def test_get_state(self):
        ws, ctx = await connect()
        await handle_new_game({}, ctx)
        ws.messages.clear()

        await handle_get_state({}, ctx)

        assert ws.last_message()["type"] == "game_state"
        assert ws.last_message()["game_state"] == ctx.controller.snapshot()

    @pytest.mark.asyncio
    async def test_new_game_ignored_while_busy(self):
        ws, ctx = await connect()
        ctx.controller._in_flight = True

        await handle_new_game({}, ctx)

        assert ws.messages == []

    @pytest.mark.asyncio
    async def test_duplicate_action_is_silent(self):
        ws, ctx = await connect()
        await handle_new_game({}, ctx)
        rig(ctx, [c("7", "♥"), c("K", "♣")], [c("7", "♠"), c("2", "♦")], c("9", "♥"), [c("3", "♣")])
        ws.messages.clear()
        gate = asyncio.Event()
        send = ws.send_json

        async def held_send(data):
            await gate.wait()
            await send(data)

        ws.send_json = held_send
        first = asyncio.create_task(handle_play_card({"index": 0}, ctx))
        while not ctx.controller.busy:
            await asyncio.sleep(0)

        await handle_play_card({"index": 0}, ctx)
        gate.set()
        await first

        assert not ws.messages_of_type("error")
        assert ctx.controller.state.player_hand == [c("K", "♣")]

    @pytest.mark.asyncio
    async def test_concurrent_new_games_deal_once(self):
        ws, ctx = await connect()
        assert ctx.session_token
        gate = asyncio.Event()
        send = ws.send_json

        async def held_send(data):
            await gate.wait()
            await send(data)

        ws.send_json = held_send
        first = asyncio.create_task(handle_new_game({}, ctx))
        while not ctx.controller.busy:
            await asyncio.sleep(0)

        await handle_new_game({}, ctx)
        gate.set()
        await first

        game_ids = {m["game_state"]["game_id"] for m in ws.messages_of_type("game_state")}
        assert game_ids == {ctx.controller.state.game_id}
        assert len(ws.messages_of_type("session")) == 1
        assert not ws.messages_of_type("error")

    def test_dispatch_table(self):
        assert set(HANDLERS) == {
            "new_game", "play_card", "choose_suit", "cancel_suit",
            "draw_card", "get_state", "claim_discount",
        }


# =============================================================================
# Game end
# =============================================================================

class TestGameEnd:

    @pytest.mark.asyncio
    async def test_player_win_updates_session_and_offers_discount(self):
        ws, ctx = await connect()
        await handle_new_game({}, ctx)
        rig(ctx, [c("7", "♥")], [c("K", "♠")], c("9", "♥"), [])
        ws.messages.clear()

        await handle_play_card({"index": 0}, ctx)

        session_msg = ws.messages_of_type("session")[-1]
        assert session_msg["win_streak"] == 1
        assert ctx.session_service.verify_token(session_msg["session_token"]).win_streak == 1

        game_over = ws.messages_of_type("game_over")[-1]
        assert game_over == {
            "type": "game_over",
            "winner": "player",
            "win_streak": 1,
            "games_played": 1,
            "discount_percent": 5,
            "discount_claimed": False,
        }
        # The session update reaches the client before game over
        types = [m["type"] for m in ws.messages]
        assert types.index("session") < types.index("game_over")

    @pytest.mark.asyncio
    async def test_streak_carries_into_next_game(self):
        ws, ctx = await connect(issue_token("abc", 2, SECRET))
        await handle_new_game({}, ctx)
        rig(ctx, [c("7", "♥")], [c("K", "♠")], c("9", "♥"), [])

        await handle_play_card({"index": 0}, ctx)

        game_over = ws.messages_of_type("game_over")[-1]
        assert game_over["win_streak"] == 3
        assert game_over["discount_percent"] == 15

    @pytest.mark.asyncio
    async def test_computer_win_resets_streak(self):
        ws, ctx = await connect(issue_token("abc", 2, SECRET))
        await handle_new_game({}, ctx)
        rig(ctx, [c("7", "♥"), c("4", "♠")], [c("7", "♣")], c("9", "♥"), [])

        await handle_play_card({"index": 0}, ctx)

        game_over = ws.messages_of_type("game_over")[-1]
        assert game_over["winner"] == "computer"
        assert game_over["win_streak"] == 0
        assert game_over["discount_percent"] == 0

    @pytest.mark.asyncio
    async def test_store_failure_still_ends_game(self):
        service = store_service()
        ws, ctx = await connect(service=service)
        await handle_new_game({}, ctx)
        rig(ctx, [c("7", "♥")], [c("K", "♠")], c("9", "♥"), [])
        service.store.get = AsyncMock(side_effect=redis.ConnectionError("down"))
        service.store.record_result = AsyncMock(side_effect=redis.ConnectionError("down"))
        ws.messages.clear()

        await handle_play_card({"index": 0}, ctx)

        assert not ws.messages_of_type("session")
        assert ws.messages_of_type("game_over")[-1]["winner"] == "player"

    @pytest.mark.asyncio
    async def test_claim_discount_after_win(self):
        ws, ctx = await connect()
        await handle_new_game({}, ctx)
        rig(ctx, [c("7", "♥")], [c("K", "♠")], c("9", "♥"), [])
        await handle_play_card({"index": 0}, ctx)
        ws.messages.clear()

        await handle_claim_discount({}, ctx)
        assert ws.last_message()["game_state"]["discount_claimed"] is True

        await handle_claim_discount({}, ctx)
        assert ws.last_message() == {"type": "error", "message": "Discount already claimed"}
