"""
ManyChat contact ingestion.

SECURITY: All queries MUST include owner_id filter.
Failure to do so will result in data leakage between tenants.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from playgram.models.contact import Contact, ContactFieldValue, CustomField, Tag
from playgram.models.manychat import ManychatConnection
from playgram.services.webhook_events import diff_fields

logger = structlog.get_logger()


class SubscriberTag(BaseModel):
    id: str | int
    name: str


class SubscriberData(BaseModel):
    """ManyChat's subscriber_data object."""
    id: str | int
    first_name: str | None = None
    last_name: str | None = None
    profile_pic: str | None = None
    instagram_username: str | None = None
    custom_fields: dict[str, Any] | None = None
    tags: list[SubscriberTag] | None = None


@dataclass
class IngestResult:
    contact_id: str
    created: bool
    # {field: {"old": ..., "new": ...}} for an existing contact
    changes: dict[str, dict[str, Any]] = field(default_factory=dict)
    tags_synced: int = 0
    fields_synced: int = 0


class ContactService:
    """Mirror ManyChat subscribers into local contacts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_connected(self, owner_id: str) -> bool:
        stmt = select(ManychatConnection.id).where(
            ManychatConnection.owner_id == owner_id,
            ManychatConnection.is_connected.is_(True),
        )
        return (await self.db.execute(stmt)).scalar_one_or_none() is not None

    async def _by_manychat_id(self, owner_id: str, manychat_id: str) -> Contact | None:
        stmt = select(Contact).where(Contact.owner_id == owner_id, Contact.manychat_id == manychat_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def touch(self, owner_id: str, manychat_id: str) -> IngestResult:
        """
        Record an interaction from a subscriber known only by id.

        Unknown subscribers get a placeholder contact that a later full
        payload fills in.
        """
        contact = await self._by_manychat_id(owner_id, manychat_id)
        created = contact is None
        if created:
            contact = Contact(owner_id=owner_id, manychat_id=manychat_id, is_subscribed=True)
            self.db.add(contact)
        contact.last_interaction = datetime.now(timezone.utc)
        await self.db.commit()
        return IngestResult(contact_id=contact.id, created=created)

    async def ingest_subscriber(self, owner_id: str, subscriber: SubscriberData) -> IngestResult:
        """Create or update the contact for a subscriber, with its tags and custom field values."""
        manychat_id = str(subscriber.id)
        contact = await self._by_manychat_id(owner_id, manychat_id)
        created = contact is None

        incoming = {
            "firstName": subscriber.first_name,
            "lastName": subscriber.last_name,
            "igUsername": subscriber.instagram_username,
        }
        changes = {}
        if created:
            contact = Contact(owner_id=owner_id, manychat_id=manychat_id, tags=[], field_values=[])
            self.db.add(contact)
        else:
            current = {
                "firstName": contact.first_name,
                "lastName": contact.last_name,
                "igUsername": contact.ig_username,
            }
            given = {key: value for key, value in incoming.items() if value}
            changes = diff_fields({key: current[key] for key in given}, given)

        contact.first_name = subscriber.first_name or contact.first_name
        contact.last_name = subscriber.last_name or contact.last_name
        contact.ig_username = subscriber.instagram_username or contact.ig_username
        contact.profile_pic_url = subscriber.profile_pic or contact.profile_pic_url
        contact.last_interaction = datetime.now(timezone.utc)
        contact.is_subscribed = True
        await self.db.flush()

        tags = subscriber.tags or []
        for tag in tags:
            await self._attach_tag(owner_id, contact, tag)

        values = {name: value for name, value in (subscriber.custom_fields or {}).items() if value is not None}
        for name, value in values.items():
            await self._set_field_value(owner_id, contact, name, value)

        await self.db.commit()
        logger.info("manychat_contact_ingested", owner_id=owner_id, contact_id=contact.id, created=created,
                    changed=sorted(changes), tags=len(tags), custom_fields=len(values))
        return IngestResult(
            contact_id=contact.id,
            created=created,
            changes=changes,
            tags_synced=len(tags),
            fields_synced=len(values),
        )

    async def _attach_tag(self, owner_id: str, contact: Contact, incoming: SubscriberTag) -> None:
        manychat_id = str(incoming.id)
        stmt = select(Tag).where(Tag.owner_id == owner_id, Tag.manychat_id == manychat_id)
        tag = (await self.db.execute(stmt)).scalar_one_or_none()
        if tag is None:
            tag = Tag(owner_id=owner_id, name=incoming.name, manychat_id=manychat_id)
            self.db.add(tag)
            await self.db.flush()

        if all(existing.id != tag.id for existing in contact.tags):
            contact.tags.append(tag)

    async def _set_field_value(self, owner_id: str, contact: Contact, name: str, value: Any) -> None:
        stmt = select(CustomField).where(CustomField.owner_id == owner_id, CustomField.name == name)
        custom_field = (await self.db.execute(stmt)).scalar_one_or_none()
        if custom_field is None:
            is_number = isinstance(value, (int, float)) and not isinstance(value, bool)
            custom_field = CustomField(owner_id=owner_id, name=name, field_type="number" if is_number else "text")
            self.db.add(custom_field)
            await self.db.flush()

        for existing in contact.field_values:
            if existing.field_id == custom_field.id:
                existing.value = str(value)
                return
        contact.field_values.append(ContactFieldValue(field_id=custom_field.id, value=str(value)))
