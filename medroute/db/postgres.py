"""
MedRoute Database Connection Management

PostgreSQL async connection pool with SQLAlchemy 2.0.
Includes session handling, schema bootstrap and health checks.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from medroute.core.errors import ConfigurationError
from medroute.db.models import Base, embedding_column_dimension, set_embedding_dimension

# ============================================
# Configuration Constants
# ============================================

# Connection pool settings
POOL_SIZE = 5
MAX_OVERFLOW = 10
POOL_RECYCLE = 1800  # 30 minutes
POOL_PRE_PING = True


# ============================================
# Engine & Session Factory
# ============================================


def create_db_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create async database engine with connection pooling.

    Args:
        database_url: SQLAlchemy async URL (postgresql+asyncpg://...).
        echo: Log every SQL statement.

    Returns:
        AsyncEngine configured with connection pool.
    """
    return create_async_engine(
        database_url,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=POOL_PRE_PING,
        echo=echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Get async session maker bound to the engine.

    Returns:
        Async session maker instance.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ============================================
# Session Context Manager
# ============================================


@asynccontextmanager
async def get_db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions.

    Automatically commits on success, rolls back on exception.

    Example:
        async with get_db_session(factory) as session:
            result = await session.execute(query)
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


# ============================================
# Health Check
# ============================================


async def check_database_health(
    session_factory: async_sessionmaker[AsyncSession],
) -> dict:
    """
    Check database connectivity and health.

    Returns:
        Dict with status and connection details.
    """
    try:
        async with get_db_session(session_factory) as session:
            result = await session.execute(text("SELECT 1 AS health_check"))
            if result.scalar() == 1:
                return {
                    "status": "healthy",
                    "database": "connected",
                    "pool_size": POOL_SIZE,
                }
    except Exception as e:
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
        }

    return {
        "status": "unknown",
        "database": "check_failed",
    }


async def check_pgvector_extension(
    session_factory: async_sessionmaker[AsyncSession],
) -> bool:
    """Verify the pgvector extension is installed."""
    try:
        async with get_db_session(session_factory) as session:
            result = await session.execute(
                text("SELECT extname FROM pg_extension WHERE extname = 'vector'")
            )
            return result.scalar() == "vector"
    except Exception:
        return False


# ============================================
# Lifecycle Management
# ============================================


async def init_db(engine: AsyncEngine, embedding_dimension: int | None = None) -> None:
    """
    Ensure the pgvector extension and tables exist.

    Production schemas are managed by alembic; this covers fresh
    development databases.

    Args:
        engine: Async engine.
        embedding_dimension: Output size of the configured embedding model.
            The chunk embedding column is sized to it before creation.

    Raises:
        ConfigurationError: If an existing document_chunks table was created
            for a different embedding dimension.
    """
    if embedding_dimension is not None:
        set_embedding_dimension(embedding_dimension)

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
        result = await conn.execute(
            text(
                "SELECT atttypmod FROM pg_attribute "
                "WHERE attrelid = to_regclass('document_chunks') AND attname = 'embedding'"
            )
        )
        stored = result.scalar()

    expected = embedding_column_dimension()
    # atttypmod is -1 for an unsized vector column
    if stored is not None and stored > 0 and stored != expected:
        raise ConfigurationError(
            f"document_chunks.embedding holds {stored}-dimension vectors but the "
            f"embedding model produces {expected}; re-create the table or set "
            "EMBEDDING_DIMENSION to match"
        )


async def close_db(engine: AsyncEngine) -> None:
    """Dispose the connection pool. Call during application shutdown."""
    await engine.dispose()
