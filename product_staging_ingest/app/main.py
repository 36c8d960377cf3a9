"""
Product Staging Ingest FastAPI Application
==========================================

Service shell for the product lifecycle sync pipeline. The lifespan builds
every component explicitly (database, repository, sync service, audit
sidecar, NATS connection, consumer), starts the pull loop in the background
and tears everything down in reverse order on shutdown.

HTTP surface: ``GET /health``, ``GET /info`` and the ``/ws/{room}``
notification socket.
"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI

from .api.v1.health import router as health_router
from .api.v1.notifications import router as notifications_router
from .core.database import StagingDatabaseManager
from .core.settings import ProductStagingSettings, get_settings
from .events.base.nats_client import JetStreamConnection
from .events.event_consumers import ProductLifecycleConsumer
from .middleware.error.error_handler import setup_ingest_error_handling
from .repository import StagingProductRepository
from .services import (
    AuditSidecar,
    CentralMessageLogger,
    LifecycleSyncService,
    Notifier,
    ProductCacheClient,
    RoomNotifier,
)
from .utils.logging import get_logger

logger = get_logger("product_staging_ingest.main")


@dataclass
class IngestComponents:
    """Everything the running service owns, built once per process"""

    database: StagingDatabaseManager
    repository: StagingProductRepository
    sync_service: LifecycleSyncService
    message_logger: CentralMessageLogger
    notifier: Notifier
    sidecar: AuditSidecar
    connection: JetStreamConnection
    consumer: ProductLifecycleConsumer
    cache_client: Optional[ProductCacheClient] = None
    started_at: float = field(default_factory=time.time)


def build_components(settings: ProductStagingSettings) -> IngestComponents:
    """Wire the pipeline from settings. No connections are opened here."""
    database = StagingDatabaseManager(
        settings.STAGING_DATABASE_URL,
        echo=settings.DEBUG,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
    )
    repository = StagingProductRepository(
        database.async_session_maker,
        staleness_threshold=timedelta(hours=settings.STALENESS_THRESHOLD_HOURS),
    )

    cache_client = None
    if settings.PRODUCT_CACHE_API_URL:
        cache_client = ProductCacheClient(
            settings.PRODUCT_CACHE_API_URL,
            timeout=settings.PRODUCT_CACHE_TIMEOUT_SECONDS,
        )
    sync_service = LifecycleSyncService(repository, cache_client)

    message_logger = CentralMessageLogger(
        settings.SYSTEM_API_URL,
        source_system=settings.AUDIT_SOURCE_SYSTEM,
        timeout=settings.AUDIT_TIMEOUT_SECONDS,
    )
    notifier = RoomNotifier(settings.NOTIFICATION_ROOMS)
    sidecar = AuditSidecar(
        message_logger, notifier, max_queue_size=settings.AUDIT_QUEUE_SIZE
    )

    connection = JetStreamConnection(
        servers=[settings.nats_url],
        stream_name=settings.STREAM_NAME,
        stream_subjects=settings.STREAM_SUBJECTS,
        consumer_name=settings.CONSUMER_NAME,
        client_name=settings.SERVICE_NAME,
        max_deliveries=settings.MAX_DELIVERIES,
        ack_wait=settings.ACK_WAIT_SECONDS,
        connect_timeout=settings.CONNECT_TIMEOUT_SECONDS,
        reconnect_time_wait=settings.RECONNECT_TIME_WAIT_SECONDS,
        initial_connect_timeout=settings.INITIAL_CONNECT_TIMEOUT_SECONDS,
    )
    consumer = ProductLifecycleConsumer(
        connection,
        sync_service,
        sidecar,
        max_deliveries=settings.MAX_DELIVERIES,
        batch_size=settings.PULL_BATCH_SIZE,
        pull_wait=settings.PULL_WAIT_SECONDS,
        nak_delay=settings.NAK_DELAY_SECONDS,
        error_backoff=settings.LOOP_ERROR_BACKOFF_SECONDS,
        dead_letter_subject=settings.DEAD_LETTER_SUBJECT,
    )

    return IngestComponents(
        database=database,
        repository=repository,
        sync_service=sync_service,
        message_logger=message_logger,
        notifier=notifier,
        sidecar=sidecar,
        connection=connection,
        consumer=consumer,
        cache_client=cache_client,
    )


# Lifespan management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager for startup and shutdown."""
    startup_start = time.time()
    settings: ProductStagingSettings = app.state.settings

    if app.state.components is None:
        app.state.components = build_components(settings)
    components: IngestComponents = app.state.components

    try:
        await _initialize_services(components, settings, startup_start)
    except Exception as e:
        logger.error(
            "Failed to start product staging ingest",
            exc_info=True,
            extra={
                "startup_duration_ms": int((time.time() - startup_start) * 1000),
                "error_type": type(e).__name__,
            },
        )
        raise

    yield

    await _shutdown_services(components, settings)


async def _initialize_services(
    components: IngestComponents,
    settings: ProductStagingSettings,
    startup_start: float,
) -> None:
    logger.info(
        "Starting product staging ingest initialization",
        extra={
            "environment": settings.ENVIRONMENT,
            "debug_mode": settings.DEBUG,
            "service_version": settings.APP_VERSION,
        },
    )

    # Database is required
    db_start = time.time()
    await components.database.create_tables()
    db_duration = int((time.time() - db_start) * 1000)

    components.sidecar.start()

    # Without the broker the service stays up and reports 503 on /health
    consumer_start = time.time()
    try:
        await components.consumer.start()
    except Exception as e:
        logger.warning(
            "Event consumer initialization failed, continuing without events",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
    consumer_duration = int((time.time() - consumer_start) * 1000)

    logger.info(
        "Product staging ingest started successfully",
        extra={
            "total_startup_duration_ms": int((time.time() - startup_start) * 1000),
            "database_init_ms": db_duration,
            "event_consumer_init_ms": consumer_duration,
        },
    )


async def _shutdown_services(
    components: IngestComponents, settings: ProductStagingSettings
) -> None:
    """Stop the pull loop first, then the sidecar, then close clients and the database."""
    shutdown_start = time.time()
    logger.info("Starting product staging ingest shutdown")

    steps: list[tuple[str, Any]] = [
        (
            "consumer",
            lambda: components.consumer.stop(
                grace_period=settings.SHUTDOWN_GRACE_SECONDS
            ),
        ),
        ("audit_sidecar", components.sidecar.close),
        ("message_logger", components.message_logger.close),
    ]
    if components.cache_client is not None:
        steps.append(("cache_client", components.cache_client.close))
    steps.append(("database", components.database.close))

    for name, step in steps:
        try:
            await step()
        except Exception as e:
            logger.error(
                "Error during product staging ingest shutdown",
                exc_info=True,
                extra={"component": name, "error_type": type(e).__name__},
            )

    logger.info(
        "Product staging ingest shutdown completed",
        extra={"shutdown_duration_ms": int((time.time() - shutdown_start) * 1000)},
    )


# Application factory
def create_app(
    settings: Optional[ProductStagingSettings] = None,
    components: Optional[IngestComponents] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )
    app.state.settings = settings
    app.state.components = components

    setup_ingest_error_handling(app)
    app.include_router(health_router, tags=["Health"])
    app.include_router(notifications_router, tags=["Notifications"])

    logger.info(
        "FastAPI application configured",
        extra={
            "app_name": settings.APP_NAME,
            "app_version": settings.APP_VERSION,
            "routers": ["health", "notifications"],
        },
    )
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "product_staging_ingest.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
