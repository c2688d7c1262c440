"""
Dynamic gallery API routes.

Admin endpoints manage cards, secrets and ManyChat sync for the caller's
gallery. The public ingestion endpoint accepts signed card pushes from
external systems.
"""
import json

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field, ValidationError

from playgram.dependencies.auth import TokenPayload, get_current_owner
from playgram.dependencies.services import get_gallery_service, get_supervisor
from playgram.services.background import TaskSupervisor
from playgram.services.errors import EntityNotFoundError, GalleryError, InvalidSignatureError
from playgram.services.gallery_service import GalleryService

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/dynamic-gallery", tags=["dynamic-gallery"])
public_router = APIRouter(prefix="/api/v1/webhooks/dynamic-gallery", tags=["dynamic-gallery"])


class StoreCardsRequest(BaseModel):
    cards: list[dict]


class SyncRequest(BaseModel):
    snapshot_id: str | None = Field(default=None, alias="snapshotId")
    dry_run: bool = Field(default=False, alias="dryRun")
    contact_ids: list[str] | None = Field(default=None, alias="contactIds")


class AutoSyncRequest(BaseModel):
    enabled: bool


class CreateSecretRequest(BaseModel):
    label: str | None = Field(default=None, max_length=255)


def _card_errors(error: ValidationError) -> list[dict]:
    return [{"loc": list(err["loc"]), "msg": err["msg"]} for err in error.errors()]


async def _store(store, *args):
    try:
        return await store(*args)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=_card_errors(e))
    except GalleryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("", response_model=dict)
async def get_gallery(
    owner: TokenPayload = Depends(get_current_owner),
    gallery: GalleryService = Depends(get_gallery_service),
):
    """Config, latest snapshot, live secrets and recent sync logs."""
    return await gallery.get_summary(owner.sub)


@router.post("/cards", response_model=dict)
async def store_cards(
    request: StoreCardsRequest,
    owner: TokenPayload = Depends(get_current_owner),
    gallery: GalleryService = Depends(get_gallery_service),
):
    """Store gallery cards manually."""
    result = await _store(gallery.store_cards_for_owner, owner.sub, request.cards, "manual")
    return {"snapshotId": result.snapshot_id, "version": result.version, "created": result.created}


@router.post("/sync", response_model=dict)
async def sync_gallery(
    request: SyncRequest,
    owner: TokenPayload = Depends(get_current_owner),
    gallery: GalleryService = Depends(get_gallery_service),
):
    try:
        return await gallery.sync_to_manychat(
            owner.sub,
            "manual",
            snapshot_id=request.snapshot_id,
            dry_run=request.dry_run,
            contact_ids=request.contact_ids,
        )
    except GalleryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.put("/auto-sync", response_model=dict)
async def set_auto_sync(
    request: AutoSyncRequest,
    owner: TokenPayload = Depends(get_current_owner),
    gallery: GalleryService = Depends(get_gallery_service),
):
    await gallery.set_auto_sync(owner.sub, request.enabled)
    return await gallery.get_summary(owner.sub)


@router.post("/secrets", status_code=status.HTTP_201_CREATED, response_model=dict)
async def create_secret(
    request: CreateSecretRequest,
    owner: TokenPayload = Depends(get_current_owner),
    gallery: GalleryService = Depends(get_gallery_service),
):
    """Generate a signing secret. The plaintext is only returned here."""
    return await gallery.generate_secret(owner.sub, request.label)


@router.delete("/secrets/{secret_id}", response_model=dict)
async def revoke_secret(
    secret_id: str,
    owner: TokenPayload = Depends(get_current_owner),
    gallery: GalleryService = Depends(get_gallery_service),
):
    if not await gallery.revoke_secret(owner.sub, secret_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Secret not found"
        )
    return {"message": "Secret revoked"}


@public_router.post("/{config_id}", response_model=dict)
async def ingest_cards(
    config_id: str,
    request: Request,
    signature: str | None = Header(default=None, alias="X-Playgram-Signature"),
    gallery: GalleryService = Depends(get_gallery_service),
    supervisor: TaskSupervisor = Depends(get_supervisor),
):
    """
    Signed card push from an external system.

    The signature is an HMAC-SHA256 of the raw body with any live secret of
    the gallery. A new snapshot on a gallery with auto-sync enabled starts a
    ManyChat sync in the background.
    """
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing signature"
        )

    raw_body = await request.body()
    try:
        await gallery.verify_webhook_signature(config_id, raw_body, signature)
    except InvalidSignatureError:
        logger.warning("gallery_signature_rejected", config_id=config_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature"
        )

    try:
        body = StoreCardsRequest.model_validate(json.loads(raw_body))
    except (ValueError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Body must be a JSON object with a cards list"
        )

    try:
        result = await _store(gallery.store_cards, config_id, body.cards, "webhook")
        config = await gallery.get_config(config_id)
    except EntityNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Gallery not found"
        )

    auto_sync = config.auto_sync_enabled and result.created
    if auto_sync:
        supervisor.spawn(
            gallery.sync_to_manychat(config.owner_id, "webhook", snapshot_id=result.snapshot_id),
            name="gallery_auto_sync",
            config_id=config_id,
            snapshot_id=result.snapshot_id,
        )

    return {
        "snapshotId": result.snapshot_id,
        "version": result.version,
        "created": result.created,
        "autoSyncQueued": auto_sync,
    }
