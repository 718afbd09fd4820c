"""Unit tests for RedisClient and stream message envelopes (mock redis.asyncio)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
import redis.asyncio as aioredis

from trade_core.models.messages import (
    AIDecisionMessage,
    DecisionRequestMessage,
    StreamMessage,
    SystemAlertMessage,
    TradeFillMessage,
    TradeOrderMessage,
)
from trade_core.redis_client import CONSUMED_STREAMS, RedisClient


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def connected():
    client = RedisClient(redis_url="redis://localhost:6379", consumer_group="g", consumer_name="c")
    client.client = AsyncMock()
    return client


def entry(message: StreamMessage) -> dict:
    return {k.encode(): v.encode() for k, v in message.to_redis().items()}


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class TestMessages:
    @pytest.mark.parametrize(
        "cls, type_",
        [
            (TradeFillMessage, "trade_fill"),
            (TradeOrderMessage, "trade_order"),
            (AIDecisionMessage, "ai_decision"),
            (SystemAlertMessage, "system_alert"),
            (DecisionRequestMessage, "decision_request"),
        ],
    )
    def test_message_types(self, cls, type_):
        assert cls().type == type_

    def test_from_redis_bytes_and_str(self):
        msg = TradeOrderMessage(payload={"symbol": "BTCUSDT"})
        from_bytes = StreamMessage.from_redis(entry(msg))
        from_str = StreamMessage.from_redis(msg.to_redis())
        assert from_bytes.msg_id == from_str.msg_id == msg.msg_id
        assert from_bytes.payload == {"symbol": "BTCUSDT"}
        assert from_bytes.type == "trade_order"

    def test_from_redis_missing_data(self):
        with pytest.raises(ValueError, match="no 'data' field"):
            StreamMessage.from_redis({b"other": b"x"})


# ---------------------------------------------------------------------------
# RedisClient
# ---------------------------------------------------------------------------


class TestRedisClient:
    async def test_connect_creates_groups_for_consumed_streams(self):
        client = RedisClient(redis_url="redis://localhost:6379")
        mock_redis = AsyncMock()
        with patch("trade_core.redis_client.aioredis.from_url", return_value=mock_redis):
            await client.connect()

        mock_redis.ping.assert_awaited_once()
        streams = [c.args[0] for c in mock_redis.xgroup_create.await_args_list]
        assert streams == list(CONSUMED_STREAMS)

    async def test_publish_returns_decoded_id(self, connected):
        connected.client.xadd.return_value = b"1700000000000-0"
        entry_id = await connected.publish("trade:orders", TradeOrderMessage())
        assert entry_id == "1700000000000-0"
        stream, fields = connected.client.xadd.await_args.args
        assert stream == "trade:orders"
        assert "data" in fields

    async def test_publish_caps_stream_length(self, connected):
        connected.stream_maxlen = 500
        connected.client.xadd.return_value = b"1-0"
        await connected.publish("ai:decisions", AIDecisionMessage())
        kwargs = connected.client.xadd.await_args.kwargs
        assert kwargs == {"maxlen": 500, "approximate": True}

    @pytest.mark.parametrize("stream", ["trade:fills", "ai:prompts", "market:ticks"])
    async def test_publish_rejects_inbound_streams(self, connected, stream):
        with pytest.raises(ValueError, match="does not publish"):
            await connected.publish(stream, TradeOrderMessage())
        connected.client.xadd.assert_not_awaited()

    async def test_not_connected_raises(self):
        client = RedisClient()
        with pytest.raises(RuntimeError, match="not connected"):
            await client.publish("trade:orders", TradeOrderMessage())

    async def test_busygroup_ignored(self, connected):
        connected.client.xgroup_create.side_effect = aioredis.ResponseError("BUSYGROUP exists")
        await connected.ensure_group("trade:fills")

    async def test_other_group_error_raised(self, connected):
        connected.client.xgroup_create.side_effect = aioredis.ResponseError("WRONGTYPE")
        with pytest.raises(aioredis.ResponseError):
            await connected.ensure_group("trade:fills")

    async def test_disconnect(self, connected):
        mock_redis = connected.client
        await connected.disconnect()
        mock_redis.aclose.assert_awaited_once()
        assert connected.client is None


# ---------------------------------------------------------------------------
# consume()
# ---------------------------------------------------------------------------


class TestConsume:
    async def test_handler_called_and_acked(self, connected):
        msg = TradeFillMessage(payload={"symbol": "BTCUSDT"})
        connected.client.xreadgroup.side_effect = [
            [],
            [(b"trade:fills", [(b"1-0", entry(msg))])],
            asyncio.CancelledError(),
        ]
        handler = AsyncMock()

        await connected.consume({"trade:fills": handler})

        stream, received = handler.await_args.args
        assert stream == "trade:fills"
        assert received.msg_id == msg.msg_id
        connected.client.xack.assert_awaited_once_with("trade:fills", "g", b"1-0")

    async def test_pending_entries_replayed_first(self, connected):
        msg = TradeFillMessage(payload={"symbol": "ETHUSDT"})
        connected.client.xreadgroup.side_effect = [
            [(b"trade:fills", [(b"0-7", entry(msg))])],
            asyncio.CancelledError(),
        ]
        handler = AsyncMock()

        await connected.consume({"trade:fills": handler})

        first, second = connected.client.xreadgroup.await_args_list
        assert first.kwargs["streams"] == {"trade:fills": "0"}
        assert first.kwargs["block"] is None
        assert second.kwargs["streams"] == {"trade:fills": ">"}
        assert second.kwargs["block"] == 5000
        assert handler.await_args.args[1].msg_id == msg.msg_id
        connected.client.xack.assert_awaited_once_with("trade:fills", "g", b"0-7")

    async def test_failed_handler_not_acked(self, connected):
        connected.client.xreadgroup.side_effect = [
            [],
            [(b"trade:fills", [(b"1-0", entry(TradeFillMessage()))])],
            asyncio.CancelledError(),
        ]
        handler = AsyncMock(side_effect=RuntimeError("boom"))

        await connected.consume({"trade:fills": handler})

        handler.assert_awaited_once()
        connected.client.xack.assert_not_awaited()

    async def test_trimmed_pending_entry_acked_without_handler(self, connected):
        connected.client.xreadgroup.side_effect = [
            [(b"trade:fills", [(b"0-3", None)])],
            asyncio.CancelledError(),
        ]
        handler = AsyncMock()

        await connected.consume({"trade:fills": handler})

        handler.assert_not_awaited()
        connected.client.xack.assert_awaited_once_with("trade:fills", "g", b"0-3")

    async def test_routes_by_stream(self, connected):
        connected.client.xreadgroup.side_effect = [
            [],
            [
                (b"trade:fills", [(b"1-0", entry(TradeFillMessage()))]),
                (b"ai:prompts", [(b"2-0", entry(DecisionRequestMessage()))]),
            ],
            asyncio.CancelledError(),
        ]
        on_fill, on_prompt = AsyncMock(), AsyncMock()

        await connected.consume({"trade:fills": on_fill, "ai:prompts": on_prompt})

        assert on_fill.await_args.args[1].type == "trade_fill"
        assert on_prompt.await_args.args[1].type == "decision_request"

    async def test_nogroup_recreates(self, connected):
        connected.client.xreadgroup.side_effect = [
            aioredis.ResponseError("NOGROUP No such key"),
            asyncio.CancelledError(),
        ]
        await connected.consume({"trade:fills": AsyncMock()})
        connected.client.xgroup_create.assert_awaited_once()
