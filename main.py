"""
Video Feed API - Main Application Entry Point.

This module initializes and configures the FastAPI application for the Video
Feed API: a ranked video feed with view and like tracking, backed by video
files spread across several remote storage accounts.

Key Responsibilities:
- Configure and launch the FastAPI application.
- Build the service container (database, cache, storage provider, stream
  proxy, services) in the lifespan and release it on shutdown.
- Schedule the periodic source-link refresh sweep.
- Set up middleware for CORS, correlation, error handling and request timing.
- Mount the health, public, admin and streaming routers.
"""

from contextlib import asynccontextmanager
from datetime import timedelta

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import ServiceContainer
from api.endpoints import admin_router, router, stream_router
from api.health_router import SERVICE_NAME, SERVICE_VERSION, health_router, monitoring_router
from core.cache import CacheManager, create_cache_backend
from core.config import Settings, load_settings
from core.database import Database
from core.exceptions import VideoAPIException
from core.logging_config import get_logger, setup_logging
from core.middleware import CorrelationMiddleware, ErrorHandlingMiddleware, RequestTimingMiddleware
from providers.catalog_store import SQLCatalogStore
from providers.storage_provider import PCloudStorageProvider
from providers.stream_proxy import StreamProxy
from services.feed_cache import FeedCache
from services.link_refresher import LinkRefresher
from services.storage_rotator import StorageRotator
from services.video_service import VideoService
from services.view_attributor import ViewAttributor

settings = load_settings()
logger = get_logger("api.main")

LINK_REFRESH_JOB_ID = "refresh_source_links"


def build_container(settings: Settings) -> ServiceContainer:
    """Wire the database, cache, provider and services for one application"""
    database = Database(settings.database_url, echo=False)
    cache = CacheManager(
        create_cache_backend(
            settings.cache_backend,
            redis_url=settings.redis_url,
            default_ttl=settings.feed_cache_ttl_seconds,
        )
    )
    store = SQLCatalogStore(database)
    provider = PCloudStorageProvider(
        base_url=settings.pcloud_base_url,
        upload_timeout_seconds=settings.upload_timeout_seconds,
        request_timeout_seconds=settings.link_timeout_seconds,
    )

    feed_cache = FeedCache(store, cache, ttl_seconds=settings.feed_cache_ttl_seconds)
    rotator = StorageRotator(
        store,
        provider,
        upload_timeout_seconds=settings.upload_timeout_seconds,
        link_timeout_seconds=settings.link_timeout_seconds,
    )
    video_service = VideoService(
        store=store,
        feed_cache=feed_cache,
        view_attributor=ViewAttributor(store, feed_cache),
        rotator=rotator,
        link_refresher=LinkRefresher(
            store, rotator, window=timedelta(minutes=settings.link_refresh_window_minutes)
        ),
    )

    return ServiceContainer(
        settings=settings,
        database=database,
        cache=cache,
        store=store,
        provider=provider,
        video_service=video_service,
        stream_proxy=StreamProxy(timeout_seconds=settings.stream_timeout_seconds),
    )


async def refresh_source_links(video_service: VideoService) -> None:
    """Scheduled sweep; failures are logged and retried on the next tick"""
    try:
        report = await video_service.run_link_refresh_sweep()
    except VideoAPIException as e:
        logger.error(f"Link refresh sweep failed: {e.message}", extra={"error_code": e.error_code})
        return
    if report.skipped:
        logger.info("Link refresh sweep skipped: previous run still in progress")


def job_listener(event) -> None:
    if event.exception:
        logger.error(f"Scheduled job {event.job_id} raised: {event.exception}")
    else:
        logger.debug(f"Scheduled job {event.job_id} finished")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging(settings.environment, settings.log_level)
    startup_logger = get_logger("api.startup")

    container = build_container(settings)
    await container.database.create_tables()
    startup_logger.info(
        f"Database initialized ({container.database.database_type}), "
        f"cache backend: {container.cache.backend.name}"
    )
    app.state.container = container

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        refresh_source_links,
        "interval",
        minutes=settings.link_refresh_interval_minutes,
        args=[container.video_service],
        id=LINK_REFRESH_JOB_ID,
        replace_existing=True,
        max_instances=1,
        misfire_grace_time=60,
    )
    scheduler.add_listener(job_listener, EVENT_JOB_ERROR | EVENT_JOB_EXECUTED)
    scheduler.start()
    startup_logger.info(
        f"Link refresh scheduled every {settings.link_refresh_interval_minutes} minutes"
    )

    if not settings.api_key:
        startup_logger.warning("API_KEY is not set; admin endpoints will reject every request")

    yield

    # Shutdown
    startup_logger.info("Shutting down Video Feed API")
    scheduler.shutdown(wait=False)
    await container.provider.close()
    await container.stream_proxy.close()
    await container.cache.close()
    await container.database.dispose()
    startup_logger.info("Cleanup completed")


app = FastAPI(
    title=SERVICE_NAME,
    description="Ranked video feed with view tracking and rotating remote storage",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# Starlette runs the last added middleware first
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(CorrelationMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Health routers first (no authentication required for monitoring)
app.include_router(health_router)
app.include_router(monitoring_router)

app.include_router(router)
app.include_router(admin_router)
app.include_router(stream_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8002,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
    )
