"""
Webhook API routes.

Provides endpoints for managing webhook subscriptions per owner and reading
their delivery log.
"""
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, HttpUrl
from sqlalchemy.ext.asyncio import AsyncSession

from playgram.database import get_db
from playgram.dependencies.auth import TokenPayload, get_current_owner
from playgram.dependencies.services import get_cipher, get_delivery_service
from playgram.models.webhook import WebhookDelivery, WebhookSubscription
from playgram.services.errors import WebhookConfigurationError
from playgram.services.signature_service import SecretCipher
from playgram.services.subscription_service import SubscriptionService
from playgram.services.webhook_service import WEBHOOK_EVENTS, WebhookDeliveryService

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


class CreateWebhookRequest(BaseModel):
    """Request model for creating a subscription."""
    url: HttpUrl
    events: list[str]
    custom_headers: dict[str, str] | None = None


class UpdateWebhookRequest(BaseModel):
    url: HttpUrl | None = None
    events: list[str] | None = None
    is_active: bool | None = None
    custom_headers: dict[str, str] | None = None


class WebhookResponse(BaseModel):
    """Response model for a subscription. The secret is never returned here."""
    id: str
    url: str
    events: list[str]
    is_active: bool
    custom_headers: dict[str, str] | None = None
    created_at: str | None = None
    stats: dict | None = None


class DeliveryResponse(BaseModel):
    id: str
    subscription_id: str
    event: str
    event_id: str | None = None
    status: str
    attempts: int
    response_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    created_at: str | None = None
    last_attempt_at: str | None = None


def webhook_to_response(subscription: WebhookSubscription, stats: dict | None = None) -> WebhookResponse:
    """Convert WebhookSubscription model to WebhookResponse."""
    return WebhookResponse(
        id=subscription.id,
        url=subscription.url,
        events=subscription.events,
        is_active=subscription.is_active,
        custom_headers=subscription.custom_headers,
        created_at=subscription.created_at.isoformat() if subscription.created_at else None,
        stats=stats,
    )


def delivery_to_response(delivery: WebhookDelivery) -> DeliveryResponse:
    return DeliveryResponse(
        id=delivery.id,
        subscription_id=delivery.subscription_id,
        event=delivery.event,
        event_id=delivery.event_id,
        status=delivery.status,
        attempts=delivery.attempts,
        response_status=delivery.response_status,
        response_body=delivery.response_body,
        error_message=delivery.error_message,
        created_at=delivery.created_at.isoformat() if delivery.created_at else None,
        last_attempt_at=delivery.last_attempt_at.isoformat() if delivery.last_attempt_at else None,
    )


def get_subscription_service(
    db: AsyncSession = Depends(get_db),
    cipher: SecretCipher = Depends(get_cipher),
) -> SubscriptionService:
    return SubscriptionService(db, cipher)


async def get_owned_subscription(
    subscription_id: str,
    owner: TokenPayload = Depends(get_current_owner),
    service: SubscriptionService = Depends(get_subscription_service),
) -> WebhookSubscription:
    subscription = await service.get(owner.sub, subscription_id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found"
        )
    return subscription


@router.get("/events", response_model=dict)
async def list_events():
    """Event names a subscription can listen to."""
    return {"events": WEBHOOK_EVENTS}


@router.get("", response_model=dict)
async def list_webhooks(
    owner: TokenPayload = Depends(get_current_owner),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """List the owner's subscriptions with delivery counters."""
    rows = await service.list_for_owner(owner.sub)
    return {"webhooks": [webhook_to_response(sub, stats) for sub, stats in rows]}


@router.post("", status_code=status.HTTP_201_CREATED, response_model=dict)
async def create_webhook(
    request: CreateWebhookRequest,
    owner: TokenPayload = Depends(get_current_owner),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Create a subscription.

    The signing secret is returned in this response only; store it now.
    """
    try:
        subscription, secret = await service.create(
            owner.sub, str(request.url), request.events, request.custom_headers
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"webhook": webhook_to_response(subscription), "secret": secret}


@router.get("/deliveries", response_model=dict)
async def list_deliveries(
    delivery_status: Literal["pending", "success", "failed"] | None = Query(default=None, alias="status"),
    event: str | None = None,
    subscription_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    owner: TokenPayload = Depends(get_current_owner),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Delivery attempts across the owner's subscriptions, newest first."""
    deliveries, total = await service.list_deliveries(
        owner.sub,
        status=delivery_status,
        event=event,
        subscription_id=subscription_id,
        limit=limit,
        offset=offset,
    )
    return {
        "deliveries": [delivery_to_response(delivery) for delivery in deliveries],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/{subscription_id}", response_model=WebhookResponse)
async def get_webhook(subscription: WebhookSubscription = Depends(get_owned_subscription)):
    return webhook_to_response(subscription)


@router.patch("/{subscription_id}", response_model=WebhookResponse)
async def update_webhook(
    request: UpdateWebhookRequest,
    subscription: WebhookSubscription = Depends(get_owned_subscription),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Change only the fields present in the body; custom_headers: null clears them."""
    changes = request.model_dump(exclude_unset=True)
    if changes.get("url") is not None:
        changes["url"] = str(changes["url"])
    try:
        updated = await service.update(subscription, **changes)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return webhook_to_response(updated)


@router.delete("/{subscription_id}", response_model=dict)
async def delete_webhook(
    subscription: WebhookSubscription = Depends(get_owned_subscription),
    service: SubscriptionService = Depends(get_subscription_service),
):
    await service.delete(subscription)
    return {"message": "Webhook deleted successfully"}


@router.post("/{subscription_id}/test", response_model=dict)
async def test_webhook(
    subscription: WebhookSubscription = Depends(get_owned_subscription),
    delivery_service: WebhookDeliveryService = Depends(get_delivery_service),
):
    """Send a webhook.test event to the subscription and report the outcome."""
    try:
        result = await delivery_service.send_test_webhook(subscription)
    except WebhookConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return {
        "success": result.success,
        "delivery_id": result.delivery_id,
        "status_code": result.status_code,
        "error": result.error,
        "duration_ms": result.duration_ms,
    }
