"""SQLAlchemy async session setup for the impact monitoring service.

Provides:
- Base: DeclarativeBase for all ORM models
- engine: async engine configured from settings
- async_session_factory: session maker bound to engine
- get_async_session: FastAPI dependency with Unit-of-Work commit/rollback
- session_scope: the same Unit-of-Work outside a request (jobs, background tasks)
"""

from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.config.settings import Environment, get_settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


# Anything that opens a committed-on-success session: session_scope in
# production, a fixture-backed stand-in under test.
SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_settings = get_settings()

engine = create_async_engine(
    _settings.DATABASE_URL,
    echo=(_settings.ENVIRONMENT == Environment.DEV and _settings.LOG_LEVEL == "DEBUG"),
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session with Unit-of-Work semantics.

    Repositories only call add()/flush()/refresh().
    Commit happens once at the end of a successful request.
    Rollback happens on any exception.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Open one Unit-of-Work outside a request.

    Used by the goal evaluation batch (one scope per goal) and by the
    notarization dispatcher when it attaches a receipt.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
