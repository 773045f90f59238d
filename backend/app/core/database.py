"""
Database connection and session management.
"""
import asyncio
from typing import Any, AsyncGenerator, Dict
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.exc import OperationalError, DisconnectionError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

TRANSIENT_ERROR_KEYWORDS = (
    "connection", "timeout", "network", "closed", "lost",
    "server closed", "connection reset",
)


def _engine_options(database_url: str) -> Dict[str, Any]:
    """Pooling and driver options; only PostgreSQL gets the asyncpg tuning."""
    if not database_url.startswith("postgresql"):
        return {"echo": False}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "echo": False,
        "connect_args": {
            "command_timeout": 30,
            "server_settings": {
                "application_name": "imports_backend",
                "tcp_keepalives_idle": "600",
                "tcp_keepalives_interval": "30",
                "tcp_keepalives_count": "3",
            },
        },
    }


engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for database models
Base = declarative_base()


def is_transient_error(exc: Exception) -> bool:
    """Check whether a database error is worth retrying."""
    error_str = str(exc).lower()
    return any(keyword in error_str for keyword in TRANSIENT_ERROR_KEYWORDS)


def is_postgresql(db: AsyncSession) -> bool:
    return db.get_bind().dialect.name == "postgresql"


async def set_tenant_scope(db: AsyncSession, organization_id: int) -> None:
    """
    Scope the current transaction to one organization.

    On PostgreSQL the row-level security policies of materialized tables read
    ``app.current_organization_id``; other dialects rely on the explicit
    ``organization_id`` filters every query carries.
    """
    if is_postgresql(db):
        await db.execute(
            text("SELECT set_config('app.current_organization_id', :org_id, true)"),
            {"org_id": str(organization_id)},
        )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting a database session.

    Commits when the request handler succeeds and rolls back otherwise.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except (OperationalError, DisconnectionError) as e:
            await session.rollback()
            if is_transient_error(e):
                logger.warning(f"Transient database error: {e}")
            else:
                logger.error(f"Database error: {e}")
            raise
        except Exception:
            await session.rollback()
            raise


async def run_with_retry(operation, max_retries: int = 3, retry_delay: float = 1.0):
    """
    Run an async database operation, retrying transient connection errors
    with linear backoff.
    """
    for attempt in range(max_retries):
        try:
            return await operation()
        except (OperationalError, DisconnectionError) as e:
            if is_transient_error(e) and attempt < max_retries - 1:
                logger.warning(
                    f"Database connection error (attempt {attempt + 1}/{max_retries}): {e}. "
                    f"Retrying in {retry_delay * (attempt + 1)}s..."
                )
                await asyncio.sleep(retry_delay * (attempt + 1))
                continue
            raise


@asynccontextmanager
async def get_db_session():
    """
    Context manager for getting a database session outside of a request,
    e.g. from scripts or the application lifespan.
    """
    session = AsyncSessionLocal()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
