# ==== DATABASE CONNECTION AND SESSION MANAGEMENT ==== #

"""
Database connection and session management for the UMKM licensing core.

This module owns the async SQLAlchemy engine and session factory used by the
SQL application store, plus a schema bootstrap helper for local runs and
tests. Migrations are managed outside this package.
"""

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
    AsyncEngine
)
from sqlalchemy.orm import declarative_base

from umkm_licensing.settings import settings


# ==== SQLALCHEMY CONFIGURATION ==== #

# SQLAlchemy base for model definitions
Base = declarative_base()

# Global engine and session factory instances
engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


# ==== DATABASE INITIALIZATION ==== #


def normalize_database_url(db_url: str) -> str:
    """Force the asyncpg driver for plain PostgreSQL URLs."""
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif db_url.startswith("postgresql+psycopg://"):
        db_url = db_url.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)

    # asyncpg spells the SSL parameter differently
    if db_url.startswith("postgresql+asyncpg://") and "sslmode=require" in db_url:
        db_url = db_url.replace("sslmode=require", "ssl=require")

    return db_url


def build_session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured the way the store expects."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def init_database(db_url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """
    Initialize database engine and session factory.

    Args:
        db_url: Override for ``settings.DATABASE_URL``

    Returns:
        async_sessionmaker: Global session factory
    """
    global engine, SessionLocal

    if engine is not None and SessionLocal is not None:
        return SessionLocal

    url = normalize_database_url(db_url or settings.DATABASE_URL)

    connect_args = {}
    if url.startswith("postgresql+asyncpg://"):
        connect_args = {
            "server_settings": {
                "application_name": settings.SERVICE_NAME,
                "timezone": "UTC"
            }
        }

    engine = create_async_engine(
        url,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=True,
        connect_args=connect_args,
    )
    SessionLocal = build_session_factory(engine)
    return SessionLocal


async def create_schema(db_engine: AsyncEngine | None = None) -> None:
    """Create all tables that do not exist yet."""
    # Register the mapped classes on Base.metadata
    from umkm_licensing.storage import models  # noqa: F401

    target = db_engine or engine
    if target is None:
        init_database()
        target = engine

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Close database connections on shutdown."""
    global engine, SessionLocal
    if engine is not None:
        await engine.dispose()
        engine = None
        SessionLocal = None
