"""
Database Management and Configuration.

Sets up the asynchronous SQLAlchemy engine and session factory that back the
catalog store. SQLModel supplies the table metadata.

Key Components:
- `Database`: Owns one async engine and its `async_sessionmaker`. Created by
  the application lifespan from `Settings.database_url` and passed to the
  catalog store; there is no module-level engine.
- `Database.create_tables`: Startup hook creating all SQLModel tables.
- `Database.health_check`: Connectivity probe for the monitoring router.

Architectural Design:
- Asynchronous Operations: `aiosqlite` for SQLite (development, tests) and
  `asyncpg` for PostgreSQL.
- Connection Pooling: PostgreSQL uses a pre-pinged `AsyncAdaptedQueuePool`.
"""

from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool
from sqlmodel import SQLModel

from core.logging_config import get_logger

logger = get_logger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine tuned for the database type"""
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo,
            poolclass=AsyncAdaptedQueuePool,
        )
    return create_async_engine(
        database_url,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Validate connections before use
        echo=echo,
    )


class Database:
    """Async engine plus session factory"""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.engine = build_engine(database_url, echo=echo)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @property
    def database_type(self) -> str:
        return "postgresql" if "postgresql" in self.database_url else "sqlite"

    async def create_tables(self) -> None:
        """Create all tables. Called during application startup."""
        # Table classes register themselves on import
        import core.models  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("Video catalog tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create video catalog tables: {e}")
            raise

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def health_check(self) -> Dict[str, Any]:
        """Probe connectivity for monitoring"""
        try:
            async with self.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
            healthy = True
            error = None
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            healthy = False
            error = str(e)

        info: Dict[str, Any] = {
            "status": "healthy" if healthy else "unhealthy",
            "database_type": self.database_type,
            # Hide credentials
            "database_url": self.database_url.split("@")[1]
            if "@" in self.database_url
            else "masked",
        }
        if error:
            info["error"] = error
        return info
