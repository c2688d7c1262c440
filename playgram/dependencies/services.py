"""
Service dependencies for FastAPI.

Long-lived services are built once in the application lifespan and kept on
app.state; routes reach them through these getters so tests can override
them.
"""
from fastapi import HTTPException, Request, status

from playgram.queue.queues import Queues
from playgram.services.background import TaskSupervisor
from playgram.services.cache_service import CacheService
from playgram.services.gallery_service import GalleryService
from playgram.services.manychat_client import ManychatClient
from playgram.services.signature_service import SecretCipher
from playgram.services.social_data_service import SocialDataService
from playgram.services.webhook_events import WebhookEventEmitter
from playgram.services.webhook_service import WebhookDeliveryService


def get_cache(request: Request) -> CacheService:
    return request.app.state.cache


def get_cipher(request: Request) -> SecretCipher:
    return request.app.state.cipher


def get_delivery_service(request: Request) -> WebhookDeliveryService:
    return request.app.state.delivery_service


def get_emitter(request: Request) -> WebhookEventEmitter:
    return request.app.state.emitter


def get_supervisor(request: Request) -> TaskSupervisor:
    return request.app.state.supervisor


def get_gallery_service(request: Request) -> GalleryService:
    return request.app.state.gallery_service


def get_social_service(request: Request) -> SocialDataService:
    return request.app.state.social_service


def get_queues(request: Request) -> Queues:
    """The job queues, or 503 when the queue backend was unreachable at startup."""
    queues = getattr(request.app.state, "queues", None)
    if queues is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue backend is not connected",
        )
    return queues


def get_manychat(request: Request) -> ManychatClient:
    return request.app.state.manychat
