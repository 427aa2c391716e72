"""
Database engine and session management
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.engine import make_url
from typing import AsyncGenerator

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """Make sure the URL uses an async driver"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"Unsupported database driver: {drivername}. Use an async driver or update DATABASE__URL")

    async_driver = driver_map[drivername]
    return str(url.set(drivername=async_driver))


def build_engine(database_url: str, *, echo: bool = False, **kwargs) -> AsyncEngine:
    return create_async_engine(_build_async_url(database_url), echo=echo, future=True, **kwargs)


engine = build_engine(settings.DATABASE_URL, echo=settings.database.echo)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session; the caller owns the transaction."""
    async with AsyncSessionLocal() as session:
        yield session


async def create_tables(target: AsyncEngine = engine):
    """Create every ledger table known to the metadata"""
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(target: AsyncEngine = engine):
    """Drop every ledger table. Test environments only."""
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
