"""
Database manager for EventManager notifications.
"""

import logging
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from .models import Base, TemplateRecord, NotificationRecord, RecipientRecord, CustomerRecord
from ..core.config import AppConfig

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Database operation error."""

    pass


class DatabaseManager:
    """Owns the async engine and session factory shared by the stores."""

    def __init__(self, config: AppConfig):
        """
        Initialize database manager.

        Args:
            config: Application configuration
        """
        self.config = config
        self.engine = None
        self.async_session_factory = None
        self._is_initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    async def initialize(self, database_url: Optional[str] = None) -> None:
        """
        Initialize database connection and create tables.

        Args:
            database_url: Database URL (defaults to the configured URL)
        """
        if self._is_initialized:
            return

        try:
            if not database_url:
                database_url = self.config.database_url()
                if database_url.startswith("sqlite"):
                    self.config.data_dir.mkdir(parents=True, exist_ok=True)

            self.engine = create_async_engine(
                database_url,
                echo=self.config.database.echo,
                pool_pre_ping=True,
            )

            self.async_session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._is_initialized = True
            logger.info(f"Database initialized: {database_url}")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError(f"Database initialization failed: {e}") from e

    async def close(self) -> None:
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            self._is_initialized = False
            logger.info("Database connections closed")

    async def get_session(self) -> AsyncSession:
        """Get a database session."""
        if not self._is_initialized:
            raise DatabaseError("Database not initialized")
        return self.async_session_factory()

    async def get_database_stats(self) -> Dict[str, int]:
        """
        Count rows per table.

        Returns:
            Mapping of table name to row count
        """
        try:
            async with await self.get_session() as session:
                stats = {}
                for model in (TemplateRecord, NotificationRecord, RecipientRecord, CustomerRecord):
                    result = await session.execute(select(func.count()).select_from(model))
                    stats[model.__tablename__] = result.scalar_one()
                return stats
        except SQLAlchemyError as e:
            logger.error(f"Failed to get database stats: {e}")
            raise DatabaseError(f"Failed to get database stats: {e}") from e
