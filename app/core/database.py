import logging
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from typing import AsyncGenerator

from app.models import Base
from .config import settings


def get_database_url() -> str:
    """
    Get the async database URL.

    Plain postgresql:// / postgres:// URLs are rewritten to the asyncpg driver.
    """
    if not settings.DATABASE_URL:
        raise ValueError(
            "DATABASE_URL is required. Please set it in your environment or .env file."
        )

    url = settings.DATABASE_URL
    if url.startswith("postgresql://") or url.startswith("postgres://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://").replace(
            "postgres://", "postgresql+asyncpg://"
        )
    return url


DATABASE_URL = get_database_url()

_engine_kwargs = {
    "echo": False,  # Use Python logging config instead
    "future": True,
    "pool_pre_ping": True,
}
if DATABASE_URL.startswith("postgresql+asyncpg://"):
    _engine_kwargs.update(
        pool_recycle=3600 if not settings.is_local else -1,
        pool_size=10 if not settings.is_local else 5,
        max_overflow=20 if not settings.is_local else 10,
        pool_timeout=30,
        connect_args={
            "command_timeout": 30,
            "timeout": 10,
            "server_settings": {"application_name": "tracegate-api"},
        },
    )

engine = create_async_engine(DATABASE_URL, **_engine_kwargs)

# Create async session factory
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables():
    """Create all database tables"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_database():
    """Initialize database with tables"""
    logger = logging.getLogger(__name__)

    try:
        await create_tables()
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}", exc_info=True)
        raise RuntimeError(f"Failed to initialize database: {e}") from e
