from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import declarative_base
import logging

logger = logging.getLogger(__name__)

# Create base class for models
Base = declarative_base()


def build_engine(database_url: str, pool_size: int = 5, max_overflow: int = 5, echo: bool = False) -> AsyncEngine:
    """Create the async engine, forcing the asyncpg driver for plain postgres URLs."""
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        echo=echo,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create session factory bound to the engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


class DatabaseManager:
    """
    Database manager for handling connections and table creation.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def create_tables(self):
        """Create all tables."""
        # Register models on the metadata
        from relay.models import RelayRecord  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Error creating database tables: {e}")
            raise

    async def close_connections(self):
        """Close all database connections."""
        try:
            await self.engine.dispose()
            logger.info("Database connections closed")
        except Exception as e:
            logger.error(f"Error closing database connections: {e}")
