"""
ManyChat API routes.

Admin endpoints connect a ManyChat account. The public contact endpoint is
called from ManyChat automations (External Request) with either the full
subscriber_data or just a subscriber id.
"""
import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from playgram.database import get_db
from playgram.dependencies.auth import TokenPayload, get_current_owner
from playgram.dependencies.services import get_cipher, get_emitter, get_manychat, get_supervisor
from playgram.models.manychat import ManychatConnection
from playgram.services.background import TaskSupervisor
from playgram.services.contact_service import ContactService, SubscriberData
from playgram.services.errors import ExternalServiceError
from playgram.services.manychat_client import ManychatClient, save_connection
from playgram.services.signature_service import SecretCipher
from playgram.services.webhook_events import WebhookEventEmitter

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/manychat", tags=["manychat"])
public_router = APIRouter(prefix="/api/v1/manychat/webhook", tags=["manychat"])


class ConnectRequest(BaseModel):
    api_token: str = Field(min_length=1)


class FullContactPayload(BaseModel):
    admin_id: str = Field(min_length=1)
    subscriber_data: SubscriberData


class MinimalContactPayload(BaseModel):
    admin_id: str = Field(min_length=1)
    subscriber_id: str | int


def connection_to_response(connection: ManychatConnection | None) -> dict | None:
    """The stored token never leaves the server."""
    if connection is None:
        return None
    return {
        "id": connection.id,
        "pageId": connection.page_id,
        "pageName": connection.page_name,
        "isConnected": connection.is_connected,
        "lastSyncAt": connection.last_sync_at.isoformat() if connection.last_sync_at else None,
    }


@router.get("/connection", response_model=dict)
async def get_connection(
    owner: TokenPayload = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(ManychatConnection).where(ManychatConnection.owner_id == owner.sub)
    connection = (await db.execute(stmt)).scalar_one_or_none()
    return {"connection": connection_to_response(connection)}


@router.put("/connection", response_model=dict)
async def connect(
    request: ConnectRequest,
    owner: TokenPayload = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
    cipher: SecretCipher = Depends(get_cipher),
    manychat: ManychatClient = Depends(get_manychat),
):
    """Verify the API token with ManyChat and store it encrypted."""
    try:
        connection = await save_connection(db, cipher, manychat, owner.sub, request.api_token)
    except ExternalServiceError as e:
        logger.warning("manychat_connect_failed", owner_id=owner.sub, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid API token or ManyChat connection failed"
        )
    return {"connection": connection_to_response(connection)}


@public_router.post("/contact", response_model=dict)
async def ingest_contact(
    body: dict,
    db: AsyncSession = Depends(get_db),
    emitter: WebhookEventEmitter = Depends(get_emitter),
    supervisor: TaskSupervisor = Depends(get_supervisor),
):
    """
    Mirror a ManyChat subscriber into a local contact.

    Body: {"admin_id": ..., "subscriber_data": {...}} or the older
    {"admin_id": ..., "subscriber_id": ...}. New and changed contacts emit
    user.created / user.updated in the background.
    """
    full = minimal = None
    try:
        full = FullContactPayload.model_validate(body)
    except ValidationError as e:
        try:
            minimal = MinimalContactPayload.model_validate(body)
        except ValidationError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
            )

    owner_id = full.admin_id if full else minimal.admin_id
    contacts = ContactService(db)
    if not await contacts.is_connected(owner_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="ManyChat not configured for this admin"
        )

    if minimal is not None:
        result = await contacts.touch(owner_id, str(minimal.subscriber_id))
        return {
            "success": True,
            "contact_id": result.contact_id,
            "created": result.created,
        }

    result = await contacts.ingest_subscriber(owner_id, full.subscriber_data)
    if result.created:
        supervisor.spawn(
            emitter.emit_user_created(owner_id, result.contact_id),
            name="emit_user_created",
            owner_id=owner_id,
            contact_id=result.contact_id,
        )
    elif result.changes:
        supervisor.spawn(
            emitter.emit_user_updated(owner_id, result.contact_id, result.changes),
            name="emit_user_updated",
            owner_id=owner_id,
            contact_id=result.contact_id,
        )

    return {
        "success": True,
        "contact_id": result.contact_id,
        "created": result.created,
        "tags_synced": result.tags_synced,
        "custom_fields_synced": result.fields_synced,
    }
