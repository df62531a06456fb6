"""
Database configuration and session management

The reservation engine needs row locks (SELECT ... FOR UPDATE) to stay safe
across processes, so PostgreSQL is the deployment target. SQLite URLs are
accepted for tests and local experiments and get the dialect's own pool.
"""
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from tesoros.core.config import settings


def engine_options(url: str, environment: str) -> dict:
    """Pool sizing for a database URL in a given environment."""
    if make_url(url).get_backend_name() == "sqlite":
        # aiosqlite picks its own pool class; sizing arguments are rejected
        return {}
    if environment == "production":
        return {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_recycle": settings.DB_POOL_RECYCLE,
            "pool_pre_ping": True,  # Verify connections before use
        }
    # Development: small pool, reservations are short transactions
    return {
        "pool_size": 2,
        "max_overflow": 5,
        "pool_pre_ping": True,
    }


def build_engine(url: Optional[str] = None, **overrides) -> AsyncEngine:
    """
    Create an async engine for `url` (default: DATABASE_URL).

    Keyword overrides win over the environment's pool options, e.g.
    build_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool).
    """
    url = url or settings.DATABASE_URL
    options = engine_options(url, settings.ENVIRONMENT)
    options.update(overrides)
    return create_async_engine(url, echo=settings.DEBUG, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Sessions keep loaded reservations usable after their transaction commits."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """Dependency for getting async database sessions"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create the inventory tables if they do not exist yet."""
    # Import models so they register on Base.metadata
    import tesoros.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
