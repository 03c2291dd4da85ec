"""Database connection management for async Postgres operations.

This module provides async connection management using SQLAlchemy's async engine
with SQLModel. Handler sessions are opened through ``services.tenant_scope``;
this module only owns the engine and the session factory.
"""
import os
import ssl
import logging
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

logger = logging.getLogger(__name__)

# Global engine instance (initialized lazily)
_engine: AsyncEngine | None = None
_async_session_maker: sessionmaker | None = None


def get_database_url() -> tuple[str, dict]:
    """Get and validate DATABASE_URL from environment.

    Postgres URLs are rewritten to the asyncpg driver and stripped of
    parameters asyncpg does not understand. Other async URLs (for example
    ``sqlite+aiosqlite``) are passed through unchanged.

    Returns:
        Tuple of (database URL with async driver, connect_args dict).

    Raises:
        ValueError: If DATABASE_URL is not set.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is not set")

    parsed = urlparse(database_url)
    if not parsed.scheme.startswith("postgres"):
        return database_url, {}

    query_params = parse_qs(parsed.query)

    connect_args = {}
    ssl_required = False

    if 'sslmode' in query_params:
        sslmode = query_params['sslmode'][0]
        if sslmode in ('require', 'verify-ca', 'verify-full'):
            ssl_required = True

    # Remove asyncpg-incompatible parameters from query string
    incompatible_params = ['sslmode', 'channel_binding', 'options']
    filtered_params = {k: v for k, v in query_params.items() if k not in incompatible_params}
    new_query = urlencode(filtered_params, doseq=True) if filtered_params else ''

    clean_url = urlunparse((
        'postgresql+asyncpg',
        parsed.netloc,
        parsed.path,
        parsed.params,
        new_query,
        parsed.fragment
    ))

    if ssl_required:
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE  # Neon uses self-signed certs
        connect_args['ssl'] = ssl_context

    return clean_url, connect_args


def get_engine() -> AsyncEngine:
    """Get or create the async database engine.

    Returns:
        The AsyncEngine instance.
    """
    global _engine

    if _engine is None:
        database_url, connect_args = get_database_url()

        if database_url.startswith("postgresql"):
            _engine = create_async_engine(
                database_url,
                pool_pre_ping=True,  # Verify connections before use
                pool_size=5,
                max_overflow=10,
                pool_recycle=300,
                echo=False,
                connect_args=connect_args,
            )
        else:
            _engine = create_async_engine(database_url, echo=False)

        logger.info("Database engine created successfully")

    return _engine


def get_session_maker() -> sessionmaker:
    """Get or create the async session maker.

    Returns:
        The sessionmaker configured for async sessions.
    """
    global _async_session_maker

    if _async_session_maker is None:
        engine = get_engine()
        _async_session_maker = create_session_maker(engine)

    return _async_session_maker


def create_session_maker(engine: AsyncEngine) -> sessionmaker:
    """Build a session factory bound to ``engine``."""
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create all SQLModel tables that do not exist yet."""
    # Imported for table registration on SQLModel.metadata
    import models  # noqa: F401
    import models.location_update  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables ensured")


async def check_database() -> bool:
    """Return True when the database answers a trivial query."""
    from sqlalchemy import text

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False


async def close_engine() -> None:
    """Close the database engine and cleanup connections.

    Should be called during application shutdown.
    """
    global _engine, _async_session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_maker = None
        logger.info("Database engine closed")
