"""
Dynamic Gallery Service

Stores gallery cards as versioned, content-hashed snapshots, authenticates
inbound card pushes with rotating HMAC secrets, and syncs the latest cards to
every ManyChat contact as custom fields.
"""
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from playgram.config import settings
from playgram.database import AsyncSessionLocal
from playgram.models.gallery import GalleryConfig, GallerySecret, GallerySnapshot, GallerySyncLog
from playgram.services.bulk_sync import BulkSyncOrchestrator
from playgram.services.errors import (
    EntityNotFoundError,
    GalleryError,
    InvalidSignatureError,
    WebhookConfigurationError,
)
from playgram.services.manychat_client import ManychatClient, resolve_api_token
from playgram.services.signature_service import SecretCipher, find_matching_secret, generate_secret
from playgram.services.webhook_service import utc_now_iso

logger = structlog.get_logger()

MAX_CARDS = 10
MAX_BUTTONS = 3
FIELD_PREFIX = "playgram_gallery"

TriggerType = Literal["manual", "webhook", "schedule"]


class GalleryButton(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str = Field(min_length=1, max_length=80)
    type: Literal["link", "flow", "call"] = "link"
    url: str | None = Field(default=None, max_length=2048)
    value: str | None = Field(default=None, max_length=2048)

    @model_validator(mode="after")
    def check_target(self):
        if self.type in ("link", "call") and not self.url:
            raise ValueError("link and call buttons need a url")
        if self.type == "flow" and not self.value:
            raise ValueError("flow buttons need a value")
        return self


class GalleryCard(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str | None = None
    image_url: HttpUrl
    image_click_url: str | None = Field(default=None, max_length=2048)
    title: str = Field(min_length=1, max_length=80)
    subtitle: str = Field(min_length=1, max_length=80)
    buttons: list[GalleryButton] = Field(default_factory=list, max_length=MAX_BUTTONS)


CardList = TypeAdapter(list[GalleryCard])


def parse_cards(cards: list) -> list[GalleryCard]:
    """Validate a raw card list. Raises pydantic.ValidationError."""
    parsed = CardList.validate_python(cards)
    if len(parsed) > MAX_CARDS:
        raise GalleryError(f"Maximum of {MAX_CARDS} cards supported")
    return parsed


def dump_cards(cards: list[GalleryCard]) -> list[dict]:
    return CardList.dump_python(cards, mode="json", by_alias=True, exclude_none=True)


def hash_cards(cards: list[dict]) -> str:
    """SHA-256 over the canonical JSON of the card list."""
    canonical = json.dumps(cards, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode()).hexdigest()


def build_field_plan(cards: list[dict], updated_at: str) -> dict[str, object]:
    """ManyChat custom field values for one contact."""
    fields: dict[str, object] = {}
    for index, card in enumerate(cards, start=1):
        base = f"{FIELD_PREFIX}_{index}"
        fields[f"{base}_image_url"] = card["imageUrl"]
        if card.get("imageClickUrl"):
            fields[f"{base}_image_click_url"] = card["imageClickUrl"]
        fields[f"{base}_title"] = card["title"]
        fields[f"{base}_subtitle"] = card["subtitle"]

        for button_index, button in enumerate(card.get("buttons", []), start=1):
            button_base = f"{base}_button_{button_index}"
            fields[f"{button_base}_title"] = button["title"]
            if button.get("url"):
                fields[f"{button_base}_url"] = button["url"]
            if button.get("value"):
                fields[f"{button_base}_value"] = button["value"]
            fields[f"{button_base}_type"] = button["type"]

    fields[f"{FIELD_PREFIX}_active_count"] = len(cards)
    fields[f"{FIELD_PREFIX}_last_updated_iso"] = updated_at
    return fields


@dataclass
class StoreResult:
    snapshot_id: str
    version: int
    created: bool


class GalleryService:
    """Dynamic gallery storage, secrets and ManyChat sync."""

    def __init__(
        self,
        cipher: SecretCipher,
        manychat: ManychatClient,
        orchestrator: BulkSyncOrchestrator | None = None,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        max_contacts: int = settings.SYNC_MAX_CONTACTS,
    ):
        self.cipher = cipher
        self.manychat = manychat
        self.orchestrator = orchestrator or BulkSyncOrchestrator()
        self.session_factory = session_factory
        self.max_contacts = max_contacts

    async def _config_for_owner(self, db: AsyncSession, owner_id: str) -> GalleryConfig:
        stmt = (
            select(GalleryConfig)
            .where(GalleryConfig.owner_id == owner_id)
            .order_by(GalleryConfig.created_at)
            .limit(1)
        )
        config = (await db.execute(stmt)).scalar_one_or_none()
        if config is None:
            config = GalleryConfig(owner_id=owner_id, name="Default Gallery")
            db.add(config)
            await db.commit()
            logger.info("gallery_config_created", owner_id=owner_id, config_id=config.id)
        return config

    async def get_or_create_config(self, owner_id: str) -> GalleryConfig:
        async with self.session_factory() as db:
            return await self._config_for_owner(db, owner_id)

    async def get_config(self, config_id: str) -> GalleryConfig:
        async with self.session_factory() as db:
            config = await db.get(GalleryConfig, config_id)
            if config is None:
                raise EntityNotFoundError("GalleryConfig", config_id)
            return config

    @staticmethod
    async def _latest_snapshot(db: AsyncSession, config_id: str) -> GallerySnapshot | None:
        stmt = (
            select(GallerySnapshot)
            .where(GallerySnapshot.config_id == config_id)
            .order_by(GallerySnapshot.version.desc())
            .limit(1)
        )
        return (await db.execute(stmt)).scalar_one_or_none()

    async def store_cards(self, config_id: str, cards: list, trigger: TriggerType) -> StoreResult:
        """
        Store a card list as a new snapshot version.

        If the content hash equals the latest snapshot's, nothing is written
        and the existing snapshot is returned with created=False.
        """
        card_dicts = dump_cards(parse_cards(cards))
        content_hash = hash_cards(card_dicts)

        async with self.session_factory() as db:
            config = await db.get(GalleryConfig, config_id)
            if config is None:
                raise EntityNotFoundError("GalleryConfig", config_id)

            latest = await self._latest_snapshot(db, config_id)
            if latest is not None and latest.hash == content_hash:
                logger.info("gallery_snapshot_unchanged", config_id=config_id, version=latest.version)
                return StoreResult(snapshot_id=latest.id, version=latest.version, created=False)

            snapshot = GallerySnapshot(
                config_id=config_id,
                version=latest.version + 1 if latest else 1,
                card_count=len(card_dicts),
                cards=card_dicts,
                hash=content_hash,
            )
            db.add(snapshot)
            if trigger == "webhook":
                config.last_webhook_at = datetime.now(timezone.utc)
            await db.commit()

        logger.info("gallery_snapshot_created", config_id=config_id, version=snapshot.version,
                    card_count=snapshot.card_count, trigger=trigger)
        return StoreResult(snapshot_id=snapshot.id, version=snapshot.version, created=True)

    async def store_cards_for_owner(self, owner_id: str, cards: list, trigger: TriggerType) -> StoreResult:
        config = await self.get_or_create_config(owner_id)
        return await self.store_cards(config.id, cards, trigger)

    async def set_auto_sync(self, owner_id: str, enabled: bool) -> None:
        async with self.session_factory() as db:
            config = await self._config_for_owner(db, owner_id)
            config.auto_sync_enabled = enabled
            await db.commit()

    async def generate_secret(self, owner_id: str, label: str | None = None) -> dict:
        """Create a signing secret. The plaintext is returned here and never again."""
        secret = generate_secret()
        async with self.session_factory() as db:
            config = await self._config_for_owner(db, owner_id)
            row = GallerySecret(
                config_id=config.id,
                label=label or f"Secret {utc_now_iso()}",
                encrypted_secret=self.cipher.encrypt(secret),
            )
            db.add(row)
            await db.commit()
            await db.refresh(row)

        return {"id": row.id, "label": row.label, "secret": secret, "createdAt": row.created_at.isoformat()}

    async def revoke_secret(self, owner_id: str, secret_id: str) -> bool:
        async with self.session_factory() as db:
            config = await self._config_for_owner(db, owner_id)
            stmt = select(GallerySecret).where(
                GallerySecret.id == secret_id,
                GallerySecret.config_id == config.id,
                GallerySecret.revoked_at.is_(None),
            )
            row = (await db.execute(stmt)).scalar_one_or_none()
            if row is None:
                return False
            row.revoked_at = datetime.now(timezone.utc)
            await db.commit()
        return True

    async def verify_webhook_signature(self, config_id: str, raw_body: bytes | str, signature: str) -> str:
        """
        Check an inbound signature against every live secret of the config.

        Returns the matching secret id and marks it used. Raises
        InvalidSignatureError when nothing matches.
        """
        async with self.session_factory() as db:
            stmt = select(GallerySecret).where(
                GallerySecret.config_id == config_id,
                GallerySecret.revoked_at.is_(None),
            )
            secrets = (await db.execute(stmt)).scalars().all()
            if not secrets:
                raise InvalidSignatureError("No webhook secrets configured")

            match = find_matching_secret(raw_body, signature, self._readable_secrets(secrets))
            if match is None:
                raise InvalidSignatureError("Invalid webhook signature")

            match.last_used_at = datetime.now(timezone.utc)
            await db.commit()
            return match.id

    def _readable_secrets(self, secrets):
        """(row, plaintext) for each secret; rows that fail to decrypt are skipped."""
        for row in secrets:
            try:
                yield row, self.cipher.decrypt(row.encrypted_secret)
            except WebhookConfigurationError:
                logger.error("gallery_secret_unreadable", config_id=row.config_id, secret_id=row.id)

    async def get_summary(self, owner_id: str, base_url: str = settings.APP_URL) -> dict:
        async with self.session_factory() as db:
            config = await self._config_for_owner(db, owner_id)
            snapshot = await self._latest_snapshot(db, config.id)
            secrets = (await db.execute(
                select(GallerySecret)
                .where(GallerySecret.config_id == config.id, GallerySecret.revoked_at.is_(None))
                .order_by(GallerySecret.created_at.desc())
            )).scalars().all()
            logs = (await db.execute(
                select(GallerySyncLog)
                .where(GallerySyncLog.config_id == config.id)
                .order_by(GallerySyncLog.created_at.desc())
                .limit(10)
            )).scalars().all()

        return {
            "config": {
                "id": config.id,
                "autoSyncEnabled": config.auto_sync_enabled,
                "lastSyncedAt": config.last_synced_at.isoformat() if config.last_synced_at else None,
                "lastWebhookAt": config.last_webhook_at.isoformat() if config.last_webhook_at else None,
                "lastSyncStatus": config.last_sync_status,
            },
            "snapshot": {
                "id": snapshot.id,
                "version": snapshot.version,
                "cardCount": snapshot.card_count,
                "cards": snapshot.cards,
                "hash": snapshot.hash,
            } if snapshot else None,
            "secrets": [
                {
                    "id": row.id,
                    "label": row.label,
                    "lastUsedAt": row.last_used_at.isoformat() if row.last_used_at else None,
                }
                for row in secrets
            ],
            "syncLogs": [
                {
                    "id": log.id,
                    "triggerType": log.trigger_type,
                    "status": log.status,
                    "cardCount": log.card_count,
                    "contactsImpacted": log.contacts_impacted,
                    "durationMs": log.duration_ms,
                    "errorMessage": log.error_message,
                }
                for log in logs
            ],
            "webhookUrl": f"{base_url.rstrip('/')}/api/v1/webhooks/dynamic-gallery/{config.id}",
        }

    async def fetch_manychat_contact_ids(self, api_token: str, page_size: int = 100) -> list[str]:
        """Page through ManyChat subscribers, stopping at max_contacts."""
        contact_ids: list[str] = []
        page = 1
        has_more = True
        while has_more and len(contact_ids) < self.max_contacts:
            contacts, has_more = await self.manychat.get_contacts(api_token, page, page_size)
            contact_ids.extend(str(contact["id"]) for contact in contacts)
            page += 1
        return contact_ids[:self.max_contacts]

    async def sync_to_manychat(
        self,
        owner_id: str,
        trigger: TriggerType,
        snapshot_id: str | None = None,
        dry_run: bool = False,
        contact_ids: list[str] | None = None,
    ) -> dict:
        """
        Write the snapshot's cards to ManyChat custom fields for every contact.

        Records one sync log row. A run that updates no contact is logged
        with status "warning".
        """
        async with self.session_factory() as db:
            config = await self._config_for_owner(db, owner_id)
            if snapshot_id:
                snapshot = await db.get(GallerySnapshot, snapshot_id)
                if snapshot is not None and snapshot.config_id != config.id:
                    snapshot = None
            else:
                snapshot = await self._latest_snapshot(db, config.id)

            if snapshot is None:
                raise GalleryError("No dynamic gallery snapshot available")

            try:
                api_token = await resolve_api_token(db, self.cipher, owner_id)
            except EntityNotFoundError as e:
                raise GalleryError("ManyChat not connected") from e

        cards = snapshot.cards
        if dry_run:
            return {"success": True, "dryRun": True, "cardCount": len(cards)}

        targets = list(contact_ids or []) or await self.fetch_manychat_contact_ids(api_token)
        fields = build_field_plan(cards, utc_now_iso())

        def update_plan(contact_id: str):
            return [
                self.manychat.set_custom_field_by_name(api_token, contact_id, name, value)
                for name, value in fields.items()
            ]

        result = await self.orchestrator.sync_many(owner_id, targets, update_plan)

        status = "success" if result.updated_count > 0 else "warning"
        async with self.session_factory() as db:
            config = await db.get(GalleryConfig, config.id)
            config.last_synced_at = datetime.now(timezone.utc)
            config.last_sync_status = status
            db.add(GallerySyncLog(
                config_id=config.id,
                trigger_type=trigger,
                status=status,
                card_count=len(cards),
                contacts_impacted=result.updated_count,
                duration_ms=result.duration_ms,
                error_message=None if result.updated_count > 0 else "No ManyChat contacts were updated",
            ))
            await db.commit()

        logger.info("gallery_sync_completed", owner_id=owner_id, trigger=trigger, status=status,
                    contacts=result.attempted, updated=result.updated_count)
        return {
            "success": True,
            "status": status,
            "cardCount": len(cards),
            "contactsAttempted": result.attempted,
            "contactsUpdated": result.updated_count,
            "durationMs": result.duration_ms,
        }
