"""
Tests for analytics ingestion and the per-connection analytics queue.

Run with: pytest test_analytics.py -v
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import fakeredis
import pytest
import redis.asyncio as redis

from services.analytics import AnalyticsQueue, AnalyticsRecorder, sanitize_event


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


def today_key() -> str:
    return "analytics:daily:" + datetime.now(timezone.utc).strftime("%Y-%m-%d")


# =============================================================================
# Sanitizing
# =============================================================================

class TestSanitizeEvent:

    def test_keeps_whitelisted_fields(self):
        clean = sanitize_event({
            "event": "game_ended", "timestamp": 5, "sessionId": "s" * 80,
            "device": "mobile", "winner": "player", "winStreak": 2, "email": "leak@example.com",
        })
        assert clean == {
            "event": "game_ended", "timestamp": 5, "sessionId": "s" * 50,
            "device": "mobile", "winner": "player", "winStreak": 2,
        }

    def test_drops_out_of_range_and_wrong_types(self):
        clean = sanitize_event({
            "event": "game_ended", "winner": "nobody", "turns": 5000, "duration": "long",
        })
        assert set(clean) == {"event", "timestamp"}

    def test_bools_are_not_numbers(self):
        clean = sanitize_event({"event": "discount_offered", "percent": True, "winStreak": True})
        assert "percent" not in clean
        assert "winStreak" not in clean

    def test_truncates_free_text(self):
        clean = sanitize_event({"event": "email_sent_failed", "error": "x" * 500})
        assert clean["error"] == "x" * 100

    def test_unknown_device_dropped(self):
        assert "device" not in sanitize_event({"event": "rules_viewed", "device": "fridge"})


# =============================================================================
# Recorder
# =============================================================================

class TestAnalyticsRecorder:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batch", [None, {}, [], "events", [{"event": "game_started"}] * 51])
    async def test_malformed_batches(self, batch):
        assert await AnalyticsRecorder(None).record(batch) == 0

    @pytest.mark.asyncio
    async def test_skips_unknown_events(self):
        batch = [{"event": "game_started"}, {"event": "hack"}, "nope", {"no": "event"}]
        assert await AnalyticsRecorder(None).record(batch) == 1

    @pytest.mark.asyncio
    async def test_writes_counters_and_event_log(self, redis_client):
        recorder = AnalyticsRecorder(redis_client)
        batch = [
            {"event": "game_started", "device": "desktop", "timestamp": 1000},
            {"event": "game_ended", "winner": "player", "duration": 1500, "timestamp": 2000},
            {"event": "card_played", "cardType": "ace", "timestamp": 3000},
        ]

        assert await recorder.record(batch) == 3

        daily = await redis_client.hgetall(today_key())
        assert daily["game_started"] == "1"
        assert daily["games_desktop"] == "1"
        assert daily["player_wins"] == "1"
        assert daily["total_duration"] == "1500"
        assert daily["cards_ace"] == "1"

        stored = await redis_client.zrange("analytics:events:game_ended", 0, -1)
        assert json.loads(stored[0])["winner"] == "player"
        assert 0 < await redis_client.ttl("analytics:events:game_ended") <= 30 * 86400

    @pytest.mark.asyncio
    async def test_session_metrics(self, redis_client):
        recorder = AnalyticsRecorder(redis_client)
        await recorder.record([
            {"event": "session_start", "isReturning": True, "referrer": "google"},
            {"event": "session_start", "isReturning": False},
        ])
        daily = await redis_client.hgetall(today_key())
        assert daily["returning_visitors"] == "1"
        assert daily["new_visitors"] == "1"
        assert daily["referrer_google"] == "1"

    @pytest.mark.asyncio
    async def test_redis_error_returns_zero(self):
        client = MagicMock()
        client.pipeline.side_effect = redis.ConnectionError("down")
        assert await AnalyticsRecorder(client).record([{"event": "game_started"}]) == 0


# =============================================================================
# Queue
# =============================================================================

class TestAnalyticsQueue:

    def test_track_uses_camel_case(self):
        queue = AnalyticsQueue(AsyncMock(), session_id="s1", flush_interval=0)
        queue.track("card_played", card_type="ace", suit="♥")

        entry = queue.queue[0]
        assert entry["event"] == "card_played"
        assert entry["sessionId"] == "s1"
        assert entry["cardType"] == "ace"
        assert entry["suit"] == "♥"
        assert isinstance(entry["timestamp"], int)

    @pytest.mark.asyncio
    async def test_flush_batches(self):
        sender = AsyncMock()
        queue = AnalyticsQueue(sender, flush_interval=0, max_batch=2)
        for _ in range(5):
            queue.track("card_drawn", playable=False)

        assert await queue.flush() == 5

        assert [len(call.args[0]) for call in sender.await_args_list] == [2, 2, 1]
        assert queue.queue == []

    @pytest.mark.asyncio
    async def test_failed_batch_is_dropped(self):
        sender = AsyncMock(side_effect=RuntimeError("offline"))
        queue = AnalyticsQueue(sender, flush_interval=0)
        queue.track("card_drawn")

        assert await queue.flush() == 0
        assert queue.queue == []

    @pytest.mark.asyncio
    async def test_critical_event_flushes_on_close(self):
        sender = AsyncMock()
        queue = AnalyticsQueue(sender, flush_interval=0)
        queue.track("game_ended", winner="player")

        await queue.close()

        sent = [event for call in sender.await_args_list for event in call.args[0]]
        assert [event["event"] for event in sent] == ["game_ended"]

    @pytest.mark.asyncio
    async def test_closed_queue_ignores_events(self):
        sender = AsyncMock()
        queue = AnalyticsQueue(sender, flush_interval=0)
        await queue.close()
        queue.track("card_drawn")
        assert queue.queue == []

    @pytest.mark.asyncio
    async def test_periodic_flush_task_stops_on_close(self):
        queue = AnalyticsQueue(AsyncMock(), flush_interval=60)
        queue.start()
        assert queue._flush_task is not None
        await queue.close()
        assert queue._flush_task is None
