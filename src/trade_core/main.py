"""Entry point: decision cycles from ai:prompts, position reconciliation from trade:fills."""

import asyncio
import signal
import sys

import structlog

from trade_core.config import Settings
from trade_core.db.engine import create_db_engine, create_session_factory
from trade_core.db.repository import DecisionRecordRepository, PositionRepository
from trade_core.decision_service import DecisionService
from trade_core.fill_consumer import FillConsumer
from trade_core.llm_client import DecisionClient
from trade_core.reconciler import PositionReconciler
from trade_core.redis_client import FILLS_STREAM, PROMPTS_STREAM, RedisClient

logger = structlog.get_logger()


async def main() -> None:
    settings = Settings()

    redis = RedisClient(
        redis_url=settings.REDIS_URL,
        consumer_group="trade_core",
        consumer_name=f"core-{settings.TRADER_ID}",
        socket_timeout=30.0,
        socket_connect_timeout=10.0,
        retry_on_timeout=True,
    )
    await redis.connect()

    engine = create_db_engine(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_timeout=settings.DB_POOL_TIMEOUT,
    )
    session_factory = create_session_factory(engine)
    positions = PositionRepository(session_factory)
    reconciler = PositionReconciler(positions, quantity_tolerance=settings.QUANTITY_TOLERANCE)
    consumer = FillConsumer(
        reconciler,
        trader_id=settings.TRADER_ID,
        exchange_id=settings.EXCHANGE_ID,
        exchange_type=settings.EXCHANGE_TYPE,
    )
    decisions = DecisionService(
        settings,
        DecisionClient(settings),
        redis,
        DecisionRecordRepository(session_factory),
    )

    handlers = {FILLS_STREAM: consumer.handle, PROMPTS_STREAM: decisions.handle}
    # One consumer task per stream
    subscribers = [
        asyncio.create_task(redis.consume({stream: handler}))
        for stream, handler in handlers.items()
    ]
    logger.info(
        "trade_core_started",
        trader_id=settings.TRADER_ID,
        streams=list(handlers),
        model=settings.DECISION_MODEL,
    )

    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        for task in subscribers:
            task.cancel()

    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _signal_handler)
    else:
        signal.signal(signal.SIGINT, lambda *_: _signal_handler())

    try:
        await asyncio.gather(*subscribers)
    except asyncio.CancelledError:
        pass
    finally:
        await redis.disconnect()
        await engine.dispose()
        logger.info("shutdown_complete")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
