"""Redis Streams transport for trade_core.

Consumed (consumer group per stream):
    trade:fills   executed orders from the execution layer
    ai:prompts    prompt pairs from the prompt builder, one per decision cycle

Published (capped with approximate MAXLEN):
    trade:orders  one entry per actionable validated decision
    ai:decisions  one summary per decision cycle
    system:alerts failed decision cycles
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping

import redis.asyncio as aioredis
import structlog

from trade_core.models.messages import StreamMessage

logger = structlog.get_logger()

FILLS_STREAM = "trade:fills"
PROMPTS_STREAM = "ai:prompts"
ORDERS_STREAM = "trade:orders"
DECISIONS_STREAM = "ai:decisions"
ALERTS_STREAM = "system:alerts"

CONSUMED_STREAMS = (FILLS_STREAM, PROMPTS_STREAM)
PUBLISHED_STREAMS = (ORDERS_STREAM, DECISIONS_STREAM, ALERTS_STREAM)

Handler = Callable[[str, StreamMessage], Awaitable[object]]


class RedisClient:
    def __init__(
        self,
        redis_url: str = "redis://redis:6379",
        consumer_group: str = "trade_core",
        consumer_name: str = "core-1",
        socket_timeout: float = 30.0,
        socket_connect_timeout: float = 10.0,
        retry_on_timeout: bool = True,
        stream_maxlen: int = 10_000,
        batch_size: int = 10,
        block_ms: int = 5000,
    ) -> None:
        self.redis_url = redis_url
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name
        self.socket_timeout = socket_timeout
        self.socket_connect_timeout = socket_connect_timeout
        self.retry_on_timeout = retry_on_timeout
        self.stream_maxlen = stream_maxlen
        self.batch_size = batch_size
        self.block_ms = block_ms
        self.client: aioredis.Redis | None = None

    async def connect(self) -> None:
        """Connect and make sure the consumed streams have our group."""
        self.client = aioredis.from_url(
            self.redis_url,
            decode_responses=False,
            max_connections=20,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_connect_timeout,
            retry_on_timeout=self.retry_on_timeout,
        )
        await self.client.ping()
        logger.info("redis_connected", url=self.redis_url, group=self.consumer_group)

        for stream in CONSUMED_STREAMS:
            await self.ensure_group(stream)

    async def disconnect(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("redis_disconnected")

    def _require_client(self) -> aioredis.Redis:
        if self.client is None:
            raise RuntimeError("RedisClient is not connected")
        return self.client

    async def publish(self, stream: str, message: StreamMessage) -> str:
        """XADD to one of the outbound streams. Returns the entry ID."""
        if stream not in PUBLISHED_STREAMS:
            raise ValueError(f"trade_core does not publish to {stream!r}")
        client = self._require_client()
        entry_id = await client.xadd(
            stream, message.to_redis(), maxlen=self.stream_maxlen, approximate=True
        )
        if isinstance(entry_id, bytes):
            entry_id = entry_id.decode()
        logger.debug("redis_published", stream=stream, entry_id=entry_id, type=message.type)
        return entry_id

    async def consume(self, handlers: Mapping[str, Handler]) -> None:
        """Route entries of each consumed stream to its handler until cancelled.

        The first read replays entries this consumer received but never
        acknowledged (a handler raised, or the process died); after that only
        new entries are read. An entry is ACKed once its handler returns.
        """
        client = self._require_client()
        replay_pending = True

        while True:
            try:
                start_id = "0" if replay_pending else ">"
                results = await client.xreadgroup(
                    groupname=self.consumer_group,
                    consumername=self.consumer_name,
                    streams={s: start_id for s in handlers},
                    count=self.batch_size,
                    block=None if replay_pending else self.block_ms,
                )
                if replay_pending:
                    replay_pending = False
                    pending = sum(len(entries) for _, entries in results or [])
                    if pending:
                        logger.info("redis_replaying_pending", entries=pending)

                for stream_raw, entries in results or []:
                    stream = stream_raw.decode() if isinstance(stream_raw, bytes) else stream_raw
                    for entry_id, fields in entries:
                        await self._dispatch(stream, entry_id, fields, handlers[stream])
            except asyncio.CancelledError:
                break
            except aioredis.ResponseError as e:
                if "NOGROUP" not in str(e):
                    logger.exception("redis_consume_error")
                    await asyncio.sleep(1)
                    continue
                logger.warning("redis_nogroup_recreating", streams=list(handlers))
                for stream in handlers:
                    await self.ensure_group(stream)
            except Exception:
                logger.exception("redis_consume_error")
                await asyncio.sleep(1)

    async def _dispatch(
        self, stream: str, entry_id: bytes | str, fields: dict | None, handler: Handler
    ) -> None:
        # Trimmed away while pending: nothing left to process
        if not fields:
            await self.ack(stream, entry_id)
            return
        try:
            message = StreamMessage.from_redis(fields)
            await handler(stream, message)
        except Exception:
            logger.exception("redis_handler_error", stream=stream, entry_id=entry_id)
            return
        await self.ack(stream, entry_id)

    async def ensure_group(self, stream: str) -> None:
        """XGROUP CREATE ... MKSTREAM; an existing group is left alone."""
        client = self._require_client()
        try:
            await client.xgroup_create(stream, self.consumer_group, id="0", mkstream=True)
            logger.debug("redis_group_created", stream=stream, group=self.consumer_group)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def ack(self, stream: str, entry_id: bytes | str) -> None:
        client = self._require_client()
        await client.xack(stream, self.consumer_group, entry_id)
