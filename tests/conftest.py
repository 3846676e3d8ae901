"""Tool Ledger — Pytest Configuration & Fixtures.

Provides an isolated database per test:
1. A fresh in-memory SQLite engine (aiosqlite) with the schema created
   from the ORM metadata.
2. A session seeded with two factories and three machines.
3. Factory fixtures for registering tools and feeding telemetry.

Usage:
    async def test_regrinding(db_session, make_tool):
        tool = await make_tool(material_id="400100")
        result = await ProjectionService(db_session).apply_maintenance_event(
            tool.tool_id, "regrinding", actor_id=ACTOR,
        )
"""

import os

# Must be set before the settings are first loaded
os.environ["DB_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("LEDGER_OPERATING_TIMEZONE", "UTC")

from datetime import datetime, timezone
from typing import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from config import get_settings
from database import build_engine, create_schema, create_session_maker
from db.models import Factory, Machine
from schemas.tool import ToolRead
from services import RollupService, ToolService

get_settings.cache_clear()

TEST_DB_URL = "sqlite+aiosqlite://"
ACTOR = "tester"


# =============================================================================
# Database Engine & Session
# =============================================================================

@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """One in-memory database per test; nothing leaks between tests."""
    engine = build_engine(TEST_DB_URL)
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Session over the test database, seeded with reference data.

    Factories: 1 "Plant A", 2 "Plant B".
    Machines: 1 "Press 1" and 2 "Press 2" in Plant A, 3 "Line 1" in Plant B.
    """
    session_maker = create_session_maker(db_engine)
    async with session_maker() as session:
        session.add_all([
            Factory(factory_id=1, name="Plant A"),
            Factory(factory_id=2, name="Plant B"),
        ])
        await session.flush()
        session.add_all([
            Machine(machine_id=1, machine_name="Press 1", factory_id=1),
            Machine(machine_id=2, machine_name="Press 2", factory_id=1),
            Machine(machine_id=3, machine_name="Line 1", factory_id=2),
        ])
        await session.flush()

        yield session

        await session.rollback()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_tool(db_session) -> Callable[..., Awaitable[ToolRead]]:
    """Register a tool through ToolService with sensible defaults."""
    counter = {"n": 0}

    async def _make(**overrides) -> ToolRead:
        counter["n"] += 1
        payload = {
            "material_id": f"4001{counter['n']:02d}",
            "batch_id": "B1",
            "tool_name": f"Die {counter['n']}",
            "type": "cutting",
            "current_factory_id": 1,
            "format": "a4",
        }
        payload.update(overrides)
        return await ToolService(db_session).register_tool(payload, actor_id=ACTOR)

    return _make


@pytest.fixture
def accrue(db_session) -> Callable[..., Awaitable[None]]:
    """Feed one telemetry sample for a tool (defaults: machine 1, now)."""

    async def _accrue(
        tool_id: int,
        revolutions: float,
        hlp: int = 0,
        machine_id: int = 1,
        timestamp: datetime | None = None,
    ) -> None:
        await RollupService(db_session).record_usage(
            tool_id,
            machine_id,
            timestamp or datetime.now(timezone.utc),
            hlp,
            revolutions,
        )

    return _accrue


def utc(*args: int) -> datetime:
    """Aware UTC datetime shorthand: utc(2024, 3, 1, 7, 10)."""
    return datetime(*args, tzinfo=timezone.utc)
