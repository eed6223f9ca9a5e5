"""
Database Configuration

Async SQLAlchemy engine, session factory and declarative base.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from nodue.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db() -> None:
    """
    Verify the database connection on startup.

    In development the tables are created directly; other environments
    are expected to run the Alembic migrations.
    """
    # Register models on the metadata
    from nodue.modules.audit import models as _audit_models  # noqa: F401
    from nodue.modules.clearance import models as _clearance_models  # noqa: F401

    async with engine.begin() as conn:
        if settings.is_development:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine's connection pool."""
    await engine.dispose()
