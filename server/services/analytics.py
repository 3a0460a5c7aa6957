"""
Gameplay analytics for Crazy Aces.

Two halves:

    AnalyticsQueue     Per-connection outbound queue. Events are batched and
                       flushed every few seconds (immediately for critical
                       events). Delivery is at-most-once: a failed batch is
                       logged and dropped.

    AnalyticsRecorder  Ingestion. Whitelisted event names, per-event field
                       sanitizing, and a Redis pipeline updating daily
                       counters and 30-day per-event sorted sets.

Neither half ever raises into gameplay or request handling.

Redis keys:
    analytics:daily:{YYYY-MM-DD}   Hash of counters
    analytics:events:{event}       Sorted set of event JSON, scored by timestamp
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis

from config import config
from constants import ANALYTICS_EVENT_TTL_SECONDS, ANALYTICS_MAX_BATCH

logger = logging.getLogger(__name__)


VALID_EVENTS = frozenset({
    "game_started",
    "game_ended",
    "game_abandoned",
    "card_played",
    "card_drawn",
    "suit_selected",
    "invalid_card",
    "hint_shown",
    "first_action",
    "session_start",
    "session_end",
    "discount_offered",
    "claim_clicked",
    "email_form_opened",
    "email_submitted",
    "email_sent_success",
    "email_sent_failed",
    "rules_viewed",
    "play_again",
    "play_for_more",
})

CRITICAL_EVENTS = frozenset({"game_ended", "email_sent_success", "email_sent_failed"})


# =============================================================================
# Field sanitizing
# =============================================================================

Validator = Callable[[Any], Any]

_DROP = object()


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _one_of(*choices) -> Validator:
    # bool is an int subclass, so True must not match 1
    return lambda v: v if v in choices and not isinstance(v, bool) else _DROP


def _number(low: Optional[float] = None, high: Optional[float] = None) -> Validator:
    def check(v):
        if not _is_number(v):
            return _DROP
        if low is not None and v < low:
            return _DROP
        if high is not None and v > high:
            return _DROP
        return v
    return check


def _truncated(max_len: int) -> Validator:
    return lambda v: v[:max_len] if isinstance(v, str) else _DROP


def _short_str(max_len: int) -> Validator:
    return lambda v: v if isinstance(v, str) and len(v) <= max_len else _DROP


def _exact_len(length: int) -> Validator:
    return lambda v: v if isinstance(v, str) and len(v) == length else _DROP


def _boolean(v):
    return v if isinstance(v, bool) else _DROP


_CARD_FIELDS: dict[str, Validator] = {
    "cardType": _one_of("joker", "ace", "regular"),
    "rank": _short_str(2),
    "suit": _exact_len(1),
}

_PERCENT_FIELDS: dict[str, Validator] = {
    "percent": _one_of(5, 10, 15),
    "winStreak": _number(),
}

FIELD_RULES: dict[str, dict[str, Validator]] = {
    "game_ended": {
        "winner": _one_of("player", "computer"),
        "winStreak": _number(0, 100),
        "duration": _number(0, 3_600_000),
        "turns": _number(0, 1000),
        "cardsPlayed": _number(0),
        "cardsDrawn": _number(0),
    },
    "card_played": _CARD_FIELDS,
    "card_drawn": {"playable": _boolean},
    "discount_offered": _PERCENT_FIELDS,
    "claim_clicked": _PERCENT_FIELDS,
    "email_sent_success": _PERCENT_FIELDS,
    "email_submitted": {"valid": _boolean},
    "email_sent_failed": {"error": _truncated(100)},
    "rules_viewed": {"source": _one_of("auto", "help_button")},
    "play_again": {"afterWin": _boolean},
    "play_for_more": {"current": _number(), "target": _number()},
    "session_start": {
        "referrer": _truncated(50),
        "referrerFull": _truncated(200),
        "isReturning": _boolean,
    },
    "session_end": {
        "duration": _number(0, 86_400_000),
        "gamesPlayed": _number(0, 100),
    },
    "first_action": {"timeToAction": _number(0, 300_000)},
    "invalid_card": {
        **_CARD_FIELDS,
        "reason": _truncated(50),
        "attemptNumber": _number(0, 100),
        "turn": _number(0, 500),
    },
    "hint_shown": {
        "hintType": _one_of("playable_card", "draw_card"),
        "turn": _number(0, 500),
    },
    "game_abandoned": {
        "turn": _number(0, 500),
        "cardsPlayed": _number(0),
        "cardsDrawn": _number(0),
        "duration": _number(0, 3_600_000),
    },
    "suit_selected": {
        "cardType": _one_of("ace", "joker"),
        "suit": _exact_len(1),
        "selectionTime": _number(0, 60_000),
    },
}


def sanitize_event(event: dict) -> dict:
    """Keep only the common fields and the whitelisted fields for the event type."""
    session_id = event.get("sessionId")
    device = event.get("device")
    timestamp = event.get("timestamp")
    clean = {
        "event": event["event"],
        "timestamp": timestamp if _is_number(timestamp) else int(time.time() * 1000),
    }
    if isinstance(session_id, str):
        clean["sessionId"] = session_id[:50]
    if device in ("mobile", "desktop"):
        clean["device"] = device

    for name, validator in FIELD_RULES.get(event["event"], {}).items():
        if name in event:
            value = validator(event[name])
            if value is not _DROP:
                clean[name] = value
    return clean


# =============================================================================
# Ingestion
# =============================================================================

class AnalyticsRecorder:
    """Stores sanitized analytics events in Redis."""

    DAILY_KEY = "analytics:daily:{date}"
    EVENTS_KEY = "analytics:events:{event}"

    def __init__(self, redis_client: Optional[redis.Redis]):
        """
        Args:
            redis_client: Async Redis client, or None to only count events.
        """
        self.redis = redis_client

    async def record(self, events) -> int:
        """
        Store a batch of raw events.

        Invalid events are skipped silently. Returns how many were accepted;
        0 if the batch itself is malformed or Redis fails.
        """
        if not isinstance(events, list) or not events or len(events) > ANALYTICS_MAX_BATCH:
            return 0

        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        daily_key = self.DAILY_KEY.format(date=today)
        accepted = [
            sanitize_event(event) for event in events
            if isinstance(event, dict) and event.get("event") in VALID_EVENTS
        ]
        if not accepted or self.redis is None:
            return len(accepted)

        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                for event in accepted:
                    name = event["event"]
                    events_key = self.EVENTS_KEY.format(event=name)
                    pipe.hincrby(daily_key, name, 1)
                    pipe.zadd(events_key, {json.dumps(event): event["timestamp"]})
                    pipe.expire(events_key, ANALYTICS_EVENT_TTL_SECONDS)
                    self._update_metrics(pipe, daily_key, event)
                await pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Analytics write failed: {e}")
            return 0

        return len(accepted)

    def _update_metrics(self, pipe, daily_key: str, event: dict) -> None:
        name = event["event"]

        def bump(field: str, amount=1) -> None:
            pipe.hincrby(daily_key, field, int(amount))

        if name == "game_started":
            if event.get("device"):
                bump(f"games_{event['device']}")
        elif name == "game_ended":
            if event.get("winner") == "player":
                bump("player_wins")
            elif event.get("winner") == "computer":
                bump("computer_wins")
            if event.get("duration"):
                bump("total_duration", event["duration"])
        elif name == "email_sent_success":
            if event.get("percent"):
                bump(f"conversions_{event['percent']}")
        elif name == "card_played":
            if event.get("cardType"):
                bump(f"cards_{event['cardType']}")
        elif name == "session_start":
            bump("returning_visitors" if event.get("isReturning") else "new_visitors")
            if event.get("referrer"):
                bump(f"referrer_{event['referrer']}")
        elif name == "first_action":
            if event.get("timeToAction"):
                bump("total_time_to_first_action", event["timeToAction"])
                bump("first_action_count")
        elif name == "invalid_card":
            bump("invalid_card_attempts")
        elif name == "hint_shown":
            if event.get("hintType"):
                bump(f"hints_{event['hintType']}")
        elif name == "game_abandoned":
            bump("games_abandoned")
            if "turn" in event:
                bump("abandon_turns_total", event["turn"])
        elif name == "suit_selected":
            if event.get("selectionTime"):
                bump("total_suit_selection_time", event["selectionTime"])
                bump("suit_selection_count")
        elif name == "session_end":
            if event.get("duration"):
                bump("total_session_duration", event["duration"])
                bump("session_count")


# =============================================================================
# Outbound queue
# =============================================================================

def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class AnalyticsQueue:
    """
    Batches gameplay events and hands them to a sender.

    Args:
        sender: Awaited with each batch (list of event dicts).
        session_id: Tag added to every event.
        flush_interval: Seconds between periodic flushes.
        max_batch: Largest batch handed to the sender.
    """

    def __init__(
        self,
        sender: Callable[[list[dict]], Awaitable[Any]],
        session_id: Optional[str] = None,
        flush_interval: Optional[float] = None,
        max_batch: int = ANALYTICS_MAX_BATCH,
    ):
        self.sender = sender
        self.session_id = session_id
        self.flush_interval = flush_interval if flush_interval is not None else config.ANALYTICS_FLUSH_SECONDS
        self.max_batch = max_batch
        self.queue: list[dict] = []
        self._flush_task: Optional[asyncio.Task] = None
        self._pending: set[asyncio.Task] = set()
        self._closed = False

    def start(self) -> None:
        """Start the periodic flush task (needs a running loop)."""
        if self._flush_task is None and self.flush_interval > 0:
            self._flush_task = asyncio.create_task(self._flush_loop())

    def track(self, event: str, **data) -> None:
        """Queue an event. Keyword names are sent in camelCase."""
        if self._closed:
            return
        try:
            entry = {"event": event, "timestamp": int(time.time() * 1000)}
            if self.session_id:
                entry["sessionId"] = self.session_id
            for key, value in data.items():
                entry[_camel(key)] = value
            self.queue.append(entry)

            if event in CRITICAL_EVENTS:
                self._schedule_flush()
        except Exception as e:
            logger.debug(f"Dropped analytics event {event}: {e}")

    def _schedule_flush(self) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self.flush())
        except RuntimeError:
            # No running loop; the next periodic or final flush picks it up
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> int:
        """Send everything queued. Returns how many events were handed off."""
        if not self.queue:
            return 0
        events, self.queue = self.queue, []
        sent = 0
        for start in range(0, len(events), self.max_batch):
            batch = events[start:start + self.max_batch]
            try:
                await self.sender(batch)
                sent += len(batch)
            except Exception as e:
                logger.warning(f"Analytics flush failed, dropping {len(batch)} events: {e}")
        return sent

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            await self.flush()

    async def close(self) -> None:
        """Stop periodic flushing and make a final best-effort flush."""
        self._closed = True
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.flush()
