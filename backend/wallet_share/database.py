"""Database engine, session factory and request-scoped sessions."""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from wallet_share.config import settings

# Accept plain postgresql:// URLs from the environment
database_url = settings.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

engine_kwargs = {
    "echo": settings.LOG_LEVEL == "DEBUG",
    "pool_pre_ping": True,
}
if database_url.startswith("postgresql"):
    engine_kwargs.update(pool_size=20, max_overflow=10)

engine = create_async_engine(database_url, **engine_kwargs)

# Engine jobs keep working with ORM rows after commit
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

Base = declarative_base()


async def create_schema():
    """Create every registered table (demo and local setups; production uses migrations)."""
    from wallet_share import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session
