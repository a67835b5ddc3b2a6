"""Shared pytest fixtures for the impact monitoring test suite.

Provides:
- db_engine: in-memory SQLite async engine with all tables
- db_session: SAVEPOINT-isolated async session (app commits don't leak)
- scope: SessionScope that hands out db_session (jobs, receipt attachment)
- notarization_sink / attached_receipts / dispatcher: in-memory notarization
- client: AsyncClient with dependency overrides for DB-backed testing
"""

from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.db.session import Base, get_async_session
import src.db.tables  # noqa: F401 - register ORM models on Base.metadata
from src.notarization.dispatcher import NotarizationDispatcher
from src.notarization.memory import InMemoryNotarizationSink


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed - it rolls back at teardown.
    Application code calling session.commit() triggers a SAVEPOINT release,
    which is then restarted so subsequent operations stay in the same
    outer transaction. This ensures full test isolation.
    """
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Start a nested SAVEPOINT
        nested = await conn.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(sync_session, transaction):  # noqa: ARG001
            nonlocal nested
            if transaction.nested and not transaction._parent.nested:
                nested = conn.sync_connection.begin_nested()

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def scope(db_session):
    """SessionScope stand-in: every unit of work shares db_session, flushed not committed."""

    @asynccontextmanager
    async def _scope():
        yield db_session
        await db_session.flush()

    return _scope


@pytest.fixture
def notarization_sink() -> InMemoryNotarizationSink:
    return InMemoryNotarizationSink()


@pytest.fixture
def attached_receipts() -> dict:
    """record_id -> receipt, filled by the dispatcher fixture's attach callable."""
    return {}


@pytest.fixture
def dispatcher(notarization_sink, attached_receipts) -> NotarizationDispatcher:
    """Dispatcher whose attach records receipts in memory (no DB access)."""

    async def _attach(record_id, receipt) -> bool:
        attached_receipts[record_id] = receipt
        return True

    return NotarizationDispatcher(notarization_sink, _attach, attach_delay=0)


@pytest.fixture
async def client(db_session, dispatcher):
    """AsyncClient with the session and notarization dispatcher overridden."""
    from src.api.dependencies import get_notarization_dispatcher
    from src.api.main import app

    async def _override_session():
        yield db_session

    app.dependency_overrides[get_async_session] = _override_session
    app.dependency_overrides[get_notarization_dispatcher] = lambda: dispatcher

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await dispatcher.drain()
    app.dependency_overrides.clear()
