from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cell_server.load_secrets import db_backend
from cell_server.models.schemas import Base


def create_engine() -> AsyncEngine:
    """Engine for the configured backend (postgres via asyncpg, or a local sqlite file)."""
    if db_backend == "sqlite":
        from cell_server.create_sqlite_engine import create_engine as create_sqlite
        return create_sqlite()
    from cell_server.create_postgres_engine import create_engine as create_postgres
    return create_postgres()


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # Centralized session factory to avoid creating it in router modules.
    return async_sessionmaker(
        autocommit=False,
        class_=AsyncSession,
        autoflush=True,
        expire_on_commit=False,
        bind=engine,
    )


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
