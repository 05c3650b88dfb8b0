from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.utils.settings.database import DatabaseSettings


def create_engine_from_settings(settings: DatabaseSettings | None = None) -> AsyncEngine:
    """Create the async engine for the configured database."""
    settings = settings or DatabaseSettings()
    return create_async_engine(settings.DATABASE_URL_ASYNC, echo=settings.DATABASE_ECHO)


async_engine = create_engine_from_settings()
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine, class_=AsyncSession, expire_on_commit=False
)
