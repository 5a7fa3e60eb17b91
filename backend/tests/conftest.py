"""
MManage Backend — Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment overrides are applied before any ``mmanage`` import so
       the settings singleton and the engine pick them up.

Fixture Hierarchy:
    Function-scoped:
    ├── mock_db_session:       AsyncMock standing in for AsyncSession
    ├── cluster_factory:       FakeClusterFactory (Cassandra stand-in)
    ├── fake_clock:            records reconnect delays instead of sleeping
    ├── make_backup_service:   builds a BackupService wired to the fakes
    ├── db_engine:             in-memory SQLite with the schema created
    ├── mock_backup_service:   MagicMock(spec=BackupService) for route tests
    └── api_client:            HTTPX AsyncClient against the FastAPI app
"""

import os

# Override settings for testing BEFORE any mmanage imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["CASSANDRA_CONTACT_POINTS"] = "cassandra-test"

from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fakes import FakeClock, FakeClusterFactory
from mmanage.backup.connection import ConnectionManager
from mmanage.backup.queue import BackupQueue
from mmanage.backup.registry import DEFAULT_BACKUP_TABLES, BackupTableRegistry
from mmanage.backup.service import BackupService, BackupStatus
from mmanage.backup.writer import BackupWriter
from mmanage.database import Base, get_db_session
from mmanage.dependencies import get_backup_service


# ══════════════════════════════════════════════════════════════════════════
# Primary store
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def mock_db_session():
    """
    A mock async database session for service unit tests.

    Usage:
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = user
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.delete = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


# ══════════════════════════════════════════════════════════════════════════
# Backup store
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def cluster_factory():
    return FakeClusterFactory()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest_asyncio.fixture
async def make_backup_service(cluster_factory, fake_clock):
    """
    Factory fixture: ``make_backup_service(capacity=2, strict_ordering=False)``.

    The service is not started; call ``await service.start()`` to connect.
    Every service built here is stopped at teardown.
    """
    created = []

    def _make(
        capacity: int = 1000,
        overflow: str = "drop_newest",
        strict_ordering: bool = True,
        tables=DEFAULT_BACKUP_TABLES,
        factory=None,
        clock=None,
        enabled: bool = True,
    ) -> BackupService:
        registry = BackupTableRegistry(tables)
        connection = ConnectionManager(
            keyspace="mmanage_logs",
            cluster_factory=factory or cluster_factory,
            retry_delay=30.0,
            sleep=(clock or fake_clock).sleep,
        )
        service = BackupService(
            connection=connection,
            writer=BackupWriter(connection, registry),
            queue=BackupQueue(capacity=capacity, overflow=overflow),
            registry=registry,
            strict_ordering=strict_ordering,
            shutdown_timeout=1.0,
            enabled=enabled,
        )
        created.append(service)
        return service

    yield _make

    for service in created:
        await service.stop()


@pytest.fixture
def mock_backup_service():
    """A BackupService double reporting a connected, idle pipeline."""
    service = MagicMock(spec=BackupService)
    service.status.return_value = BackupStatus(
        state="connected",
        queue_depth=0,
        queue_capacity=1000,
        sent=0,
        queued=0,
        dropped=0,
        failed=0,
    )
    return service


# ══════════════════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def api_client(db_engine, mock_backup_service) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTPX client against the app, with SQLite and a mocked backup service.

    ASGITransport does not run the lifespan, so no Cassandra connection is
    attempted.
    """
    from mmanage.main import app

    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_backup_service] = lambda: mock_backup_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
