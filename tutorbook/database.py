"""Database connection and session management using SQLAlchemy async ORM"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from tutorbook.config import settings

# Database Configuration
DATABASE_URL = settings.DATABASE_URL

# Convert sync postgresql:// to async postgresql+asyncpg://
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)


def _engine_options(url: str) -> dict:
    """Pool settings per backend; SQLite connections are not pooled"""
    if url.startswith("sqlite"):
        return {"poolclass": NullPool}

    # pool_size=20: Keep 20 connections alive in the pool
    # max_overflow=30: Allow 30 additional connections under load (total 50 max)
    # pool_recycle=3600: Recycle connections every hour to prevent stale connections
    return {
        "pool_size": 20,
        "max_overflow": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,  # Verify connection health before using
    }


# Create async SQLAlchemy engine
engine = create_async_engine(
    DATABASE_URL,
    echo=settings.SQL_ECHO,
    **_engine_options(DATABASE_URL),
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for declarative models
Base = declarative_base()


async def init_db() -> None:
    """Create all tables that do not exist yet"""
    # Register every model on Base.metadata before create_all
    import tutorbook.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db() -> None:
    """Drop all tables (used by tests)"""
    import tutorbook.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

