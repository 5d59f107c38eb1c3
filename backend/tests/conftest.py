"""Pytest configuration with fixtures for async testing."""

import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401  registers every table on Base.metadata
from app.core.auth import Actor
from app.core.database import Base
from app.models.event import ShopEvent
from app.models.machine import Machine, MachineCapability
from app.models.task import Task
from app.models.transition_log import TransitionLogEntry
from app.services.audit import AuditRow, AuditSink, AuditTrail

COMPANY_ID = uuid.UUID("10000000-0000-0000-0000-000000000001")
_EPOCH = datetime(2026, 1, 5, 6, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Test Data Factories (using MagicMock for SQLAlchemy 2.0 compatibility)
# ---------------------------------------------------------------------------


def _make_mock(defaults: dict[str, Any], overrides: dict[str, Any]) -> MagicMock:
    """Create a MagicMock with given attributes."""
    merged = {**defaults, **overrides}
    mock = MagicMock()
    for k, v in merged.items():
        setattr(mock, k, v)
    return mock


class CapabilityFactory:
    """Factory for MachineCapability mocks used by pure capability checks."""

    @classmethod
    def create(cls, **overrides: Any) -> MagicMock:
        defaults = {
            "id": uuid.uuid4(),
            "machine_id": uuid.uuid4(),
            "bar_code": "10M",
            "process": "cut",
            "max_bars": 50,
            "max_length_mm": None,
        }
        return _make_mock(defaults, overrides)


# ---------------------------------------------------------------------------
# Database-backed builders
# ---------------------------------------------------------------------------


class ShopBuilder:
    """Inserts machines, capabilities and tasks for scenario tests."""

    def __init__(self, session: AsyncSession, company_id: uuid.UUID) -> None:
        self.session = session
        self.company_id = company_id
        self._machines = 0

    async def machine(
        self,
        name: str | None = None,
        capabilities: Sequence[tuple[str, str, int, int | None]] = (),
        status: str = "idle",
        machine_type: str = "cutter",
    ) -> Machine:
        """Create a machine; ``capabilities`` rows are (process, bar_code, max_bars, max_length_mm)."""
        self._machines += 1
        created = _EPOCH + timedelta(minutes=self._machines)
        machine = Machine(
            id=uuid.uuid4(),
            company_id=self.company_id,
            name=name or f"M-{self._machines}",
            machine_type=machine_type,
            status=status,
            created_at=created,
            updated_at=created,
        )
        self.session.add(machine)
        await self.session.flush()
        for process, bar_code, max_bars, max_length_mm in capabilities:
            self.session.add(
                MachineCapability(
                    machine_id=machine.id,
                    process=process,
                    bar_code=bar_code,
                    max_bars=max_bars,
                    max_length_mm=max_length_mm,
                )
            )
        await self.session.flush()
        return machine

    async def task(self, **overrides: Any) -> Task:
        fields = {
            "id": uuid.uuid4(),
            "company_id": self.company_id,
            "task_type": "cut",
            "bar_code": "10M",
            "qty_required": 10,
            "status": "pending",
        }
        fields.update(overrides)
        task = Task(**fields)
        self.session.add(task)
        await self.session.flush()
        return task


class AuditRecorder:
    """An AuditSink whose writer keeps rows in memory for assertions."""

    def __init__(self) -> None:
        self.rows: list[AuditRow] = []
        self.sink = AuditSink(self._write, max_pending=1000, batch_size=50)

    async def _write(self, batch: Sequence[AuditRow]) -> None:
        self.rows.extend(batch)

    async def events(self, event_type: str | None = None) -> list[ShopEvent]:
        await self.sink.flush()
        return [
            r for r in self.rows
            if isinstance(r, ShopEvent) and (event_type is None or r.event_type == event_type)
        ]

    async def transitions(self, graph: str | None = None) -> list[TransitionLogEntry]:
        await self.sink.flush()
        return [
            r for r in self.rows
            if isinstance(r, TransitionLogEntry) and (graph is None or r.graph == graph)
        ]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def capability_factory():
    """Provide CapabilityFactory for tests."""
    return CapabilityFactory


@pytest.fixture
def mock_db():
    """Provide a mock AsyncSession for unit tests."""
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.delete = AsyncMock()
    return session


@pytest.fixture
def actor() -> Actor:
    """A shop-floor user allowed to run machines."""
    return Actor(user_id=uuid.uuid4(), company_id=COMPANY_ID, roles=frozenset({"workshop"}))


@pytest.fixture
def office_actor() -> Actor:
    """An office-only user: may read, may not touch machines."""
    return Actor(user_id=uuid.uuid4(), company_id=COMPANY_ID, roles=frozenset({"office"}))


@pytest.fixture
def recorder() -> AuditRecorder:
    return AuditRecorder()


@pytest.fixture
def trail(recorder, actor) -> AuditTrail:
    return AuditTrail(recorder.sink, actor)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A throwaway SQLite database with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def shop(db) -> ShopBuilder:
    return ShopBuilder(db, COMPANY_ID)


@pytest.fixture
def shop_for():
    """Builder bound to an explicit session, for multi-session tests."""

    def _make(session: AsyncSession) -> ShopBuilder:
        return ShopBuilder(session, COMPANY_ID)

    return _make
