"""
Playgram - event delivery, job pipeline and social-data cache

FastAPI application entry point.
"""
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Import observability modules
from playgram.config import settings
from playgram.database import AsyncSessionLocal
from playgram.logging_config import configure_logging
from playgram.sentry_config import configure_sentry
from playgram.middleware.logging import LoggingMiddleware
from playgram.routes.metrics import router as metrics_router

# Import route modules
from playgram.routes.admin import router as admin_router
from playgram.routes.gallery import public_router as gallery_public_router
from playgram.routes.gallery import router as gallery_router
from playgram.routes.jobs import router as jobs_router
from playgram.routes.manychat import public_router as manychat_public_router
from playgram.routes.manychat import router as manychat_router
from playgram.routes.social import router as social_router
from playgram.routes.webhooks import router as webhooks_router

from playgram.queue.queues import Queues
from playgram.services.apify_client import ApifyClient
from playgram.services.background import TaskSupervisor
from playgram.services.bulk_sync import BulkSyncOrchestrator
from playgram.services.cache_service import create_cache_service
from playgram.services.gallery_service import GalleryService
from playgram.services.manychat_client import ManychatClient
from playgram.services.signature_service import SecretCipher
from playgram.services.social_data_service import SocialDataService
from playgram.services.webhook_events import WebhookEventEmitter
from playgram.services.webhook_service import WebhookDeliveryService

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

logger = structlog.get_logger()


async def connect_queues() -> Queues | None:
    """The API starts without the queue backend; job submission then returns 503."""
    try:
        return await Queues.connect(settings.QUEUE_REDIS_URL)
    except Exception as e:
        logger.error("queue_error", error=str(e), reason="queue backend unreachable at startup")
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    cache = create_cache_service(settings)
    cache.start()
    http_client = httpx.AsyncClient()
    cipher = SecretCipher(settings.APP_SECRET_KEY)
    queues = await connect_queues()

    delivery_service = WebhookDeliveryService(http_client, cipher, AsyncSessionLocal)
    mode = settings.WEBHOOK_DELIVERY_MODE if queues is not None else "sync"
    manychat = ManychatClient(http_client)

    app.state.cache = cache
    app.state.cipher = cipher
    app.state.manychat = manychat
    app.state.queues = queues
    app.state.delivery_service = delivery_service
    app.state.emitter = WebhookEventEmitter(delivery_service, AsyncSessionLocal, queues=queues, mode=mode)
    app.state.supervisor = TaskSupervisor()
    app.state.gallery_service = GalleryService(cipher, manychat, BulkSyncOrchestrator(), AsyncSessionLocal)
    app.state.social_service = SocialDataService(cache, ApifyClient(http_client), AsyncSessionLocal)
    logger.info("app_started", webhook_delivery_mode=mode, redis_cache=cache.redis_enabled)

    yield

    await app.state.supervisor.shutdown()
    await cache.shutdown()
    if queues is not None:
        await queues.close()
    await http_client.aclose()
    logger.info("app_stopped")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Signed webhook delivery, background jobs, social-data caching and ManyChat gallery sync",
    lifespan=lifespan,
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.APP_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Public gallery ingestion before the subscription routes it shares a prefix with
app.include_router(gallery_public_router)
app.include_router(webhooks_router)
app.include_router(gallery_router)
app.include_router(social_router)
app.include_router(admin_router)
app.include_router(manychat_public_router)
app.include_router(manychat_router)
app.include_router(jobs_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "cache": await app.state.cache.get_stats(),
        "queues": "connected" if app.state.queues is not None else "disconnected",
    }
