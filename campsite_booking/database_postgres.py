"""
Database Configuration with SQLAlchemy (async)
PostgreSQL in production, SQLite (aiosqlite) for local dev and tests
"""

from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import settings

# Base class for all models
Base = declarative_base()

engine: Optional[AsyncEngine] = None
async_session_factory: Optional[async_sessionmaker] = None


def engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # SQLite uses a static/null pool; pool sizing arguments are rejected
        return {"echo": False}

    connect_args = {}
    if "supabase.com" in database_url or "sslmode=require" in database_url:
        connect_args = {
            "server_settings": {
                "application_name": "campsite_booking"
            }
        }

    return {
        "echo": False,  # Set to True for SQL debugging
        "pool_size": 20,
        "max_overflow": 30,
        "connect_args": connect_args,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


def create_engine_and_sessions(database_url: str) -> Tuple[AsyncEngine, async_sessionmaker]:
    new_engine = create_async_engine(database_url, **engine_options(database_url))
    factory = async_sessionmaker(
        new_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
    return new_engine, factory


def configure_database(database_url: Optional[str] = None) -> async_sessionmaker:
    """Create the process-wide engine and session factory."""
    global engine, async_session_factory
    engine, async_session_factory = create_engine_and_sessions(database_url or settings.database_url)
    return async_session_factory


# Initialize database
async def init_db(target: Optional[AsyncEngine] = None):
    """Initialize database tables"""
    from . import models_postgres  # noqa: F401  registers tables on Base.metadata

    if target is None:
        if engine is None:
            configure_database()
        target = engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Close database connections
async def close_db():
    """Close database connections"""
    if engine is not None:
        await engine.dispose()
