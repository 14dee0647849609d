"""Pytest fixtures for timecard engine tests."""

from __future__ import annotations

from datetime import date
from typing import AsyncGenerator, Awaitable, Callable
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import selectinload

from timecard_engine.database import make_session_factory
from timecard_engine.models import Base, TimecardHeader
from timecard_engine.providers import (
    ProjectPeriod,
    StaticAuthorizationProvider,
    StaticProjectPeriods,
)
from timecard_engine.schemas import TimecardSnapshot
from timecard_engine.services import TimecardService

# Two-week project period (Monday 2024-09-16 through Sunday 2024-09-29)
PERIOD = ProjectPeriod(start=date(2024, 9, 16), end=date(2024, 9, 29))
MONDAY = date(2024, 9, 16)
TUESDAY = date(2024, 9, 17)
WEDNESDAY = date(2024, 9, 18)


@pytest.fixture
def worker_id() -> UUID:
    return uuid4()


@pytest.fixture
def admin_id() -> UUID:
    return uuid4()


@pytest.fixture
def supervisor_id() -> UUID:
    return uuid4()


@pytest.fixture
def escort_id() -> UUID:
    return uuid4()


@pytest.fixture
def project_id() -> UUID:
    return uuid4()


@pytest.fixture
def authorization(admin_id, supervisor_id, escort_id) -> StaticAuthorizationProvider:
    """Admin approves; supervisor and talent escort do not (default policy)."""
    return StaticAuthorizationProvider(
        roles={
            admin_id: "admin",
            supervisor_id: "supervisor",
            escort_id: "talent_escort",
        }
    )


@pytest.fixture
def periods(project_id) -> StaticProjectPeriods:
    return StaticProjectPeriods(periods={project_id: PERIOD})


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so several sessions can share one database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'timecards.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def service(session, authorization, periods) -> TimecardService:
    return TimecardService(session, authorization, periods)


@pytest_asyncio.fixture
async def open_service(
    session_factory, authorization, periods
) -> AsyncGenerator[Callable[..., TimecardService], None]:
    """Build services on their own sessions (one per simulated request)."""
    sessions: list[AsyncSession] = []

    def _open(**kwargs) -> TimecardService:
        session = session_factory()
        sessions.append(session)
        return TimecardService(
            session,
            kwargs.pop("authorization", authorization),
            periods,
            **kwargs,
        )

    yield _open

    for session in sessions:
        await session.close()


@pytest_asyncio.fixture
async def draft(service, worker_id, project_id) -> TimecardSnapshot:
    return await service.create_timecard(worker_id, project_id, worker_id)


@pytest_asyncio.fixture
async def submitted(service, draft, worker_id) -> TimecardSnapshot:
    """Draft with 8h on Monday and 6h on Tuesday, submitted."""
    await service.upsert_entry(draft.timecard_id, worker_id, MONDAY, {"hours_worked": "8"})
    await service.upsert_entry(draft.timecard_id, worker_id, TUESDAY, {"hours_worked": "6"})
    return await service.submit_timecard(draft.timecard_id, worker_id)


@pytest.fixture
def load_header(session) -> Callable[[UUID], Awaitable[TimecardHeader]]:
    """Reload a header and its entries straight from the database."""

    async def _load(header_id: UUID) -> TimecardHeader:
        result = await session.execute(
            select(TimecardHeader)
            .where(TimecardHeader.timecard_id == header_id)
            .options(selectinload(TimecardHeader.entries))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    return _load