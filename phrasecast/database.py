"""
Async database setup with SQLAlchemy and aiosqlite.

The engine and session factory are built from Settings at startup and
stored on the FastAPI app state; there is no module-level client.
"""
from fastapi import Request
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy import text

from phrasecast.config import Settings, ensure_directories
from phrasecast.models import Base


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured database URL."""
    return create_async_engine(
        settings.database_url,
        echo=False,
        future=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def enable_wal_mode(engine: AsyncEngine):
    """Enable WAL mode for SQLite concurrent read/write access."""
    async with engine.begin() as conn:
        await conn.execute(text('PRAGMA journal_mode=WAL'))
        await conn.execute(text('PRAGMA synchronous=NORMAL'))


async def init_db(engine: AsyncEngine, settings: Settings):
    """Initialize database - create tables if they don't exist."""
    ensure_directories(settings)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if engine.dialect.name == 'sqlite':
        await enable_wal_mode(engine)


async def close_db(engine: AsyncEngine):
    """Close database connections."""
    await engine.dispose()


async def get_db(request: Request):
    """
    Dependency that provides an async database session.

    Usage:
        @app.get('/items')
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
