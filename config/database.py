from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlmodel import SQLModel

from .base import Settings, get_settings

_engine: AsyncEngine | None = None


def get_database_url(settings: Settings) -> str:
    """Construct the async database URL based on environment settings.

    Parameters
    ----------
    settings: Settings
        Application settings object.

    Returns
    -------
    str
        String representing the database connection URL.

    Raises
    ------
    ValueError
        If no `database_url` is configured outside of development.
    """
    if settings.database_url:
        return settings.database_url

    if not settings.environment.lower() == "development":
        raise ValueError(
            f'DATABASE_URL is required in the "{settings.environment}" environment'
        )

    return f"sqlite+aiosqlite:///{settings.base_dir}/db.sqlite3"


async def get_database_engine() -> AsyncEngine:
    """Provide a singleton asynchronous SQLAlchemy database engine.

    Returns
    -------
    AsyncEngine
        Asynchronous SQLAlchemy engine instance.
    """
    global _engine

    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(get_database_url(settings), echo=False)

    return _engine


async def close_database_engine():
    """Dispose of existing database engine."""
    global _engine

    if _engine:
        await _engine.dispose()
        _engine = None


async def get_database_session():
    """Provide an asynchronous SQLAlchemy session.

    Yields
    ------
    AsyncSession
        Asynchronous SQLAlchemy session instance.
    """
    engine = await get_database_engine()
    async with AsyncSession(bind=engine, expire_on_commit=False) as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def database_session_scope():
    """Open a session outside of a request, for background jobs and the CLI."""
    engine = await get_database_engine()
    async with AsyncSession(bind=engine, expire_on_commit=False) as session:
        yield session


async def create_tables():
    """Asynchronously create all database tables defined in SQLModel metadata."""
    import inventory.infrastructure.models  # noqa: F401
    import notifications.infrastructure.models  # noqa: F401
    import sales.infrastructure.models  # noqa: F401

    engine = await get_database_engine()
    async with engine.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)
