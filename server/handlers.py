"""WebSocket message handlers for Crazy Aces.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict in main.py, each as its own
task, so a duplicate action arriving mid-turn is dropped by the controller.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import WebSocket

from config import TurnTiming
from game import Side
from rules import WinResult, discount_percent_for_streak
from services.analytics import AnalyticsQueue, AnalyticsRecorder
from services.session_service import (
    InvalidTokenError,
    SessionError,
    SessionNotFoundError,
    SessionService,
    StoreUnavailableError,
)
from turn_controller import ActionResult, TurnController

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    session_service: Optional[SessionService] = None
    session_token: Optional[str] = None
    session_id: Optional[str] = None
    win_streak: int = 0
    controller: Optional[TurnController] = None
    analytics: Optional[AnalyticsQueue] = None
    tasks: set = field(default_factory=set)

    def spawn(self, coro) -> asyncio.Task:
        """Run a handler as a task tracked by this connection."""
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def close(self) -> None:
        """Cancel outstanding handlers and flush analytics."""
        for task in list(self.tasks):
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        if self.analytics is not None:
            await self.analytics.close()


# ---------------------------------------------------------------------------
# Outbound messages
# ---------------------------------------------------------------------------

async def send_error(ctx: ConnectionContext, message: str) -> None:
    await ctx.websocket.send_json({"type": "error", "message": message})


async def send_session(ctx: ConnectionContext) -> None:
    await ctx.websocket.send_json({
        "type": "session",
        "session_token": ctx.session_token,
        "win_streak": ctx.win_streak,
    })


async def send_game_state(ctx: ConnectionContext, snapshot: dict) -> None:
    await ctx.websocket.send_json({"type": "game_state", "game_state": snapshot})


async def send_action_result(ctx: ConnectionContext, result: ActionResult) -> None:
    """Report a rejected action. Dropped duplicates are silent."""
    if result.dropped or result.accepted:
        return
    await send_error(ctx, result.reason or "Action rejected")


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

def _adopt_token(ctx: ConnectionContext, token: str, win_streak: int) -> None:
    payload = ctx.session_service.verify_token(token)
    ctx.session_token = token
    ctx.session_id = payload.session_id if payload else None
    ctx.win_streak = win_streak
    if ctx.controller is not None:
        ctx.controller.state.win_streak = win_streak


async def establish_session(ctx: ConnectionContext, token: Optional[str]) -> None:
    """
    Resume the session behind `token`, or start a new one.

    Gameplay never waits on the session store: if it is unreachable the
    connection plays without a session (or on its existing token) and
    streak updates are skipped.
    """
    service = ctx.session_service
    if service is None:
        return

    if token:
        try:
            win_streak, new_token = await service.resume_session(token)
            _adopt_token(ctx, new_token, win_streak)
            logger.debug(f"Connection {ctx.connection_id[:8]} resumed session {ctx.session_id[:8]}")
            return
        except (InvalidTokenError, SessionNotFoundError) as e:
            logger.info(f"Connection {ctx.connection_id[:8]} starting a new session: {e}")
        except StoreUnavailableError as e:
            payload = service.verify_token(token)
            logger.warning(f"Session store unavailable on resume, keeping client token: {e}")
            _adopt_token(ctx, token, payload.win_streak if payload else 0)
            return

    try:
        _, new_token = await service.create_session()
    except SessionError as e:
        logger.warning(f"Could not create session for connection {ctx.connection_id[:8]}: {e}")
        return
    _adopt_token(ctx, new_token, 0)


async def record_game_end(ctx: ConnectionContext, win_result: WinResult) -> None:
    """Store the result against the session and announce the game over."""
    won = win_result.winner is Side.PLAYER
    state = ctx.controller.state

    if ctx.session_service is not None and ctx.session_token:
        try:
            win_streak, new_token = await ctx.session_service.update_from_token(ctx.session_token, won)
            _adopt_token(ctx, new_token, win_streak)
            await send_session(ctx)
        except SessionError as e:
            logger.warning(f"Could not record result for session {(ctx.session_id or '?')[:8]}: {e}")

    await ctx.websocket.send_json({
        "type": "game_over",
        "winner": win_result.winner.value,
        "win_streak": state.win_streak,
        "games_played": state.games_played,
        "discount_percent": discount_percent_for_streak(state.win_streak) if won else 0,
        "discount_claimed": state.discount_claimed,
    })


async def open_connection(
    websocket: WebSocket,
    token: Optional[str],
    *,
    session_service: Optional[SessionService] = None,
    recorder: Optional[AnalyticsRecorder] = None,
    timing: Optional[TurnTiming] = None,
) -> ConnectionContext:
    """Build the per-connection context: session, analytics queue, controller."""
    ctx = ConnectionContext(
        websocket=websocket,
        connection_id=str(uuid.uuid4()),
        session_service=session_service,
    )
    await establish_session(ctx, token)

    if recorder is not None:
        ctx.analytics = AnalyticsQueue(recorder.record, session_id=ctx.session_id)
        ctx.analytics.start()

    async def on_update(snapshot: dict) -> None:
        await send_game_state(ctx, snapshot)

    async def on_game_end(win_result: WinResult) -> None:
        await record_game_end(ctx, win_result)

    ctx.controller = TurnController(
        timing=timing,
        on_update=on_update,
        on_game_end=on_game_end,
        analytics=ctx.analytics,
    )
    ctx.controller.state.win_streak = ctx.win_streak
    return ctx


# ---------------------------------------------------------------------------
# Game handlers
# ---------------------------------------------------------------------------

async def handle_new_game(data: dict, ctx: ConnectionContext, **kw) -> None:
    async def refresh_session():
        if ctx.session_token:
            await establish_session(ctx, ctx.session_token)
            await send_session(ctx)

    result = await ctx.controller.start_game(prepare=refresh_session)
    await send_action_result(ctx, result)


async def handle_play_card(data: dict, ctx: ConnectionContext, **kw) -> None:
    result = await ctx.controller.play_card(data.get("index"))
    await send_action_result(ctx, result)


async def handle_choose_suit(data: dict, ctx: ConnectionContext, **kw) -> None:
    result = await ctx.controller.choose_suit(data.get("suit"))
    await send_action_result(ctx, result)


async def handle_cancel_suit(data: dict, ctx: ConnectionContext, **kw) -> None:
    result = await ctx.controller.cancel_suit_choice()
    await send_action_result(ctx, result)


async def handle_draw_card(data: dict, ctx: ConnectionContext, **kw) -> None:
    result = await ctx.controller.draw_card()
    await send_action_result(ctx, result)


async def handle_get_state(data: dict, ctx: ConnectionContext, **kw) -> None:
    await send_game_state(ctx, ctx.controller.snapshot())


async def handle_claim_discount(data: dict, ctx: ConnectionContext, **kw) -> None:
    result = await ctx.controller.claim_discount()
    if result.accepted:
        await send_game_state(ctx, ctx.controller.snapshot())
    else:
        await send_action_result(ctx, result)


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "new_game": handle_new_game,
    "play_card": handle_play_card,
    "choose_suit": handle_choose_suit,
    "cancel_suit": handle_cancel_suit,
    "draw_card": handle_draw_card,
    "get_state": handle_get_state,
    "claim_discount": handle_claim_discount,
}
