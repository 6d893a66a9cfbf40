"""Database connection and session management."""
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from smm_panel.config import Settings
from smm_panel.database.models import Base


class Database:
    """
    Owns the async engine and session factory for one application instance.

    Constructed at startup and handed to the components that need it.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine: AsyncEngine = self._create_engine(settings)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @staticmethod
    def _create_engine(settings: Settings) -> AsyncEngine:
        """
        Create the database engine.

        Returns:
            AsyncEngine: SQLAlchemy async engine instance
        """
        kwargs: dict[str, Any] = {
            "echo": settings.database_echo,
            "pool_pre_ping": True,  # Verify connections before using
        }
        if not settings.database_url.startswith("sqlite"):
            kwargs.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_recycle=3600,  # Recycle connections after 1 hour
            )
        return create_async_engine(settings.database_url, **kwargs)

    async def init_db(self) -> None:
        """
        Initialize database tables.

        Creates all tables defined in models if they don't exist.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close database connections and dispose of the engine."""
        await self.engine.dispose()
