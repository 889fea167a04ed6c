"""Global test fixtures and shared test infrastructure.

Provides:
- Environment variable defaults (must be set before any app import)
- TickingClock, a deterministic clock that advances on every read
- An in-memory SQLite database built from the ORM metadata, with SAVEPOINT
  support enabled for the aiosqlite driver
- FakeAsyncSession for tests that only need to observe ``add``/``flush``
- Factories for owners and file references
"""

from __future__ import annotations

import os

# Environment defaults must be set before importing the app, which triggers
# pydantic Settings validation on import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEFAULT_ORG_ID", "default")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401 - registers tables on Base.metadata
from app.api import deps
from app.db.base import Base
from app.schemas.documents import DocumentFileRef, OwnerKind, OwnerRef

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class TickingClock:
    """Returns strictly increasing instants, one step per ``now()`` call."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start
        self.step = step

    def now(self) -> datetime:
        value = self.current
        self.current = value + self.step
        return value

    def advance(self, **delta: float) -> None:
        self.current += timedelta(**delta)


# ---------------------------------------------------------------------------
# FakeAsyncSession: records writes without a database
# ---------------------------------------------------------------------------


class FakeAsyncSession:
    def __init__(self) -> None:
        self.added: list[Any] = []
        self.flushed: bool = False

    def add(self, obj: Any) -> None:
        self.added.append(obj)

    async def flush(self) -> None:
        self.flushed = True
        for obj in self.added:
            if hasattr(obj, "id") and getattr(obj, "id", None) is None:
                obj.id = uuid4()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_person(person_id: UUID | None = None) -> OwnerRef:
    return OwnerRef(kind=OwnerKind.PERSON, id=person_id or uuid4())


def make_identification(identification_id: UUID | None = None) -> OwnerRef:
    return OwnerRef(kind=OwnerKind.IDENTIFICATION, id=identification_id or uuid4())


def make_file_ref(file_name: str = "scan.pdf", **overrides: Any) -> DocumentFileRef:
    defaults: dict[str, Any] = dict(
        file_name=file_name,
        storage_provider="local",
        content_type="application/pdf",
        size_bytes=2048,
        checksum=uuid4().hex,
    )
    defaults.update(overrides)
    return DocumentFileRef(**defaults)


# ---------------------------------------------------------------------------
# Shared pytest fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _configure_sqlite(dbapi_connection, connection_record):
        # Let SQLAlchemy drive BEGIN/SAVEPOINT instead of the driver.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def fake_db() -> FakeAsyncSession:
    return FakeAsyncSession()


@pytest.fixture
def tenant_ctx() -> deps.TenantContext:
    return deps.TenantContext(org_id="default")


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def person() -> OwnerRef:
    return make_person()
