"""Shared fixtures for trade_core integration tests.

Runs the real repositories against a throwaway SQLite file through aiosqlite,
so no database server is needed.
"""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from trade_core.db.engine import create_db_engine, create_session_factory
from trade_core.db.models import Base
from trade_core.db.repository import DecisionRecordRepository, PositionRepository


@pytest.fixture
async def db_engine(tmp_path) -> AsyncEngine:
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'trade_core.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def position_repo(session_factory) -> PositionRepository:
    return PositionRepository(session_factory)


@pytest.fixture
def decision_repo(session_factory) -> DecisionRecordRepository:
    return DecisionRecordRepository(session_factory)
