from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..models.base import StagingBase
from ..utils.logging import get_logger

logger = get_logger("product_staging_ingest.database")


def mask_database_url(database_url: str) -> str:
    """Drop credentials from a database URL before it is logged."""
    if "@" not in database_url:
        return database_url
    scheme, _, rest = database_url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"


class StagingDatabaseManager:
    """Owns the engine and session factory for the staging cache database.

    Built explicitly at startup and passed to the repository; there is no
    module-level instance.
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 10,
        max_overflow: int = 20,
    ) -> None:
        self.database_url = database_url
        engine_kwargs: Dict[str, Any] = {
            "echo": echo,
            "future": True,
        }

        if "sqlite" in database_url:
            engine_kwargs["connect_args"] = {
                "timeout": 60,
                "check_same_thread": False,
            }
            database_type = "sqlite"
        else:
            engine_kwargs.update(
                {
                    "pool_size": pool_size,
                    "max_overflow": max_overflow,
                    "pool_timeout": 30,
                    "pool_recycle": 3600,
                    # Detect connections dropped while the consumer was idle
                    "pool_pre_ping": True,
                }
            )
            database_type = "postgresql"

        self.async_engine = create_async_engine(database_url, **engine_kwargs)
        self.async_session_maker = async_sessionmaker(
            bind=self.async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
            autocommit=False,
        )

        logger.info(
            "Staging database manager initialized",
            extra={
                "operation": "database_manager_init",
                "database_url": mask_database_url(database_url),
                "database_type": database_type,
                "echo": echo,
            },
        )

    async def create_tables(self) -> None:
        """Create the staging tables if they do not exist."""
        async with self.async_engine.begin() as conn:
            await conn.run_sync(StagingBase.metadata.create_all, checkfirst=True)
        logger.info(
            "Staging tables ensured",
            extra={"operation": "create_tables"},
        )

    async def close(self) -> None:
        """Dispose of the engine and all pooled connections."""
        await self.async_engine.dispose()
        logger.info(
            "Staging database connections closed",
            extra={"operation": "database_close"},
        )
