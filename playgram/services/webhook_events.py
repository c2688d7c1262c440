"""
Webhook event emission.

Turns domain changes (contacts, bookings, QR codes, tags, custom fields) into
webhook payloads and fans each event out to every matching subscription of
the owner, either by delivering directly or by queueing one job per
subscription.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from playgram.config import settings
from playgram.database import AsyncSessionLocal
from playgram.models.base import new_id
from playgram.models.contact import Booking, Contact, QRCode
from playgram.models.webhook import WebhookSubscription
from playgram.queue.jobs import JobOptions, WebhookJob
from playgram.queue.queues import Queues
from playgram.services.errors import EntityNotFoundError
from playgram.services.webhook_service import WebhookDeliveryService, WebhookEvent, WebhookPayload

logger = structlog.get_logger()


@dataclass
class SubscriptionOutcome:
    subscription_id: str
    success: bool
    delivery_id: str | None = None
    job_id: str | None = None
    error: str | None = None


@dataclass
class EmitSummary:
    event: str
    event_id: str | None = None
    matched: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[SubscriptionOutcome] = field(default_factory=list)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def diff_fields(before: dict, after: dict) -> dict[str, dict[str, Any]]:
    """Field-level diff: {name: {"old": ..., "new": ...}} for every changed key."""
    changes = {}
    for key in before.keys() | after.keys():
        old, new = before.get(key), after.get(key)
        if old != new:
            changes[key] = {"old": old, "new": new}
    return changes


def _contact_summary(contact: Contact) -> dict:
    return {
        "id": contact.id,
        "manychatId": contact.manychat_id,
        "instagramUsername": contact.ig_username,
        "firstName": contact.first_name,
        "lastName": contact.last_name,
    }


def _tool_summary(tool) -> dict:
    return {"id": tool.id, "name": tool.name, "type": tool.tool_type}


async def prepare_user_payload(db: AsyncSession, contact_id: str) -> dict:
    """Contact joined with its tags, custom fields and activity counters."""
    contact = await db.get(Contact, contact_id)
    if contact is None:
        raise EntityNotFoundError("Contact", contact_id)

    bookings_count = await db.scalar(select(func.count()).select_from(Booking).where(Booking.contact_id == contact_id))
    qr_count = await db.scalar(select(func.count()).select_from(QRCode).where(QRCode.contact_id == contact_id))

    return {
        **_contact_summary(contact),
        "fullName": contact.full_name,
        "profilePic": contact.profile_pic_url,
        "followerCount": contact.follower_count,
        "isSubscribed": contact.is_subscribed,
        "tags": [{"id": tag.id, "name": tag.name, "manychatId": tag.manychat_id} for tag in contact.tags],
        "customFields": {value.field.name: value.value for value in contact.field_values},
        "stats": {
            "bookingsCount": bookings_count or 0,
            "qrScansCount": qr_count or 0,
        },
        "timestamps": {
            "lastInteraction": _iso(contact.last_interaction),
            "createdAt": _iso(contact.created_at),
            "updatedAt": _iso(contact.updated_at),
        },
    }


async def prepare_booking_payload(db: AsyncSession, booking_id: str) -> dict:
    """Booking joined with its contact and tool."""
    booking = await db.get(Booking, booking_id)
    if booking is None:
        raise EntityNotFoundError("Booking", booking_id)

    return {
        "id": booking.id,
        "bookingDate": _iso(booking.booking_date),
        "startTime": booking.start_time,
        "endTime": booking.end_time,
        "status": booking.status,
        "helperName": booking.helper_name,
        "serviceType": booking.service_type,
        "notes": booking.notes,
        "metadata": booking.details,
        "tool": _tool_summary(booking.tool),
        "user": _contact_summary(booking.contact),
        "timestamps": {
            "createdAt": _iso(booking.created_at),
            "updatedAt": _iso(booking.updated_at),
        },
    }


async def prepare_qr_code_payload(db: AsyncSession, qr_code_id: str) -> dict:
    """QR code joined with its tool and, when assigned, its contact."""
    qr_code = await db.get(QRCode, qr_code_id)
    if qr_code is None:
        raise EntityNotFoundError("QRCode", qr_code_id)

    return {
        "id": qr_code.id,
        "code": qr_code.code,
        "type": qr_code.qr_type,
        "metadata": qr_code.details,
        "scanCount": qr_code.scan_count,
        "scannedAt": _iso(qr_code.scanned_at),
        "validatedAt": _iso(qr_code.validated_at),
        "expiresAt": _iso(qr_code.expires_at),
        "tool": _tool_summary(qr_code.tool),
        "user": _contact_summary(qr_code.contact) if qr_code.contact else None,
        "timestamps": {
            "createdAt": _iso(qr_code.created_at),
            "updatedAt": _iso(qr_code.updated_at),
        },
    }


class WebhookEventEmitter:
    """
    Fans events out to subscriptions.

    In "sync" mode each subscription is delivered with fixed-delay retries;
    in "queue" mode each becomes one webhook job. Either way one subscriber
    failing never affects the others and emit() does not raise for it.
    """

    def __init__(
        self,
        delivery_service: WebhookDeliveryService,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        queues: Queues | None = None,
        mode: Literal["sync", "queue"] = settings.WEBHOOK_DELIVERY_MODE,
        max_attempts: int = settings.WEBHOOK_MAX_ATTEMPTS,
        retry_delay_ms: int = settings.WEBHOOK_RETRY_DELAY_MS,
    ):
        if mode == "queue" and queues is None:
            raise ValueError("queue delivery mode needs a Queues instance")
        self.delivery_service = delivery_service
        self.session_factory = session_factory
        self.queues = queues
        self.mode = mode
        self.max_attempts = max_attempts
        self.retry_delay_ms = retry_delay_ms

    async def _matching_subscriptions(self, owner_id: str, event: str) -> list[WebhookSubscription]:
        async with self.session_factory() as db:
            stmt = select(WebhookSubscription).where(
                WebhookSubscription.owner_id == owner_id,
                WebhookSubscription.is_active.is_(True),
            )
            result = await db.execute(stmt)
            return [sub for sub in result.scalars().all() if sub.listens_to(event)]

    async def _deliver(self, subscription: WebhookSubscription, payload: WebhookPayload,
                       event_id: str) -> SubscriptionOutcome:
        target = self.delivery_service.target_for(subscription)
        result = await self.delivery_service.deliver_with_retry(
            target,
            payload,
            max_attempts=self.max_attempts,
            delay_ms=self.retry_delay_ms,
            event_id=event_id,
        )
        return SubscriptionOutcome(
            subscription_id=subscription.id,
            success=result.success,
            delivery_id=result.delivery_id,
            error=result.error,
        )

    async def _enqueue(self, subscription: WebhookSubscription, payload: WebhookPayload,
                       event_id: str) -> SubscriptionOutcome:
        job = WebhookJob(
            webhook_id=subscription.id,
            event=payload.event,
            payload=payload.model_dump(mode="json"),
            url=subscription.url,
            headers=subscription.custom_headers,
            event_id=event_id,
        )
        # Deterministic id: enqueueing the same event twice is a no-op
        options = JobOptions(job_id=f"webhook:{subscription.id}:{event_id}", attempts=self.max_attempts)
        queued = await self.queues.add_webhook_job(job, options)
        return SubscriptionOutcome(subscription_id=subscription.id, success=True, job_id=queued.job_id)

    async def emit(self, owner_id: str, event: str, data: Any, metadata: dict | None = None) -> EmitSummary:
        """
        Send an event to every active subscription of the owner listening to it.

        No matching subscription is a no-op. A payload that cannot be
        serialized raises WebhookConfigurationError before anything is sent.
        """
        log = logger.bind(owner_id=owner_id, webhook_event=event)
        subscriptions = await self._matching_subscriptions(owner_id, event)

        if not subscriptions:
            log.info("webhook_no_subscribers")
            return EmitSummary(event=event)

        payload = WebhookPayload.build(event, data, metadata)
        payload.serialize()
        event_id = new_id()
        send = self._enqueue if self.mode == "queue" else self._deliver

        log.info("webhook_emitting", subscriptions=len(subscriptions), mode=self.mode, event_id=event_id)
        outcomes = await asyncio.gather(
            *(send(subscription, payload, event_id) for subscription in subscriptions),
            return_exceptions=True,
        )

        summary = EmitSummary(event=event, event_id=event_id, matched=len(subscriptions))
        for subscription, outcome in zip(subscriptions, outcomes):
            if isinstance(outcome, BaseException):
                log.error("webhook_subscriber_error", subscription_id=subscription.id, error=str(outcome),
                          error_type=type(outcome).__name__)
                outcome = SubscriptionOutcome(subscription_id=subscription.id, success=False, error=str(outcome))
            summary.results.append(outcome)
            if outcome.success:
                summary.succeeded += 1
            else:
                summary.failed += 1

        log.info("webhook_emitted", event_id=event_id, succeeded=summary.succeeded, failed=summary.failed)
        return summary

    # Domain helpers. Each loads already-committed state, builds the payload
    # and emits it.

    async def _user_data(self, contact_id: str) -> dict:
        async with self.session_factory() as db:
            return await prepare_user_payload(db, contact_id)

    async def _booking_data(self, booking_id: str) -> dict:
        async with self.session_factory() as db:
            return await prepare_booking_payload(db, booking_id)

    async def _qr_data(self, qr_code_id: str) -> dict:
        async with self.session_factory() as db:
            return await prepare_qr_code_payload(db, qr_code_id)

    async def emit_user_created(self, owner_id: str, contact_id: str) -> EmitSummary:
        return await self.emit(owner_id, WebhookEvent.USER_CREATED.value, {"user": await self._user_data(contact_id)})

    async def emit_user_updated(self, owner_id: str, contact_id: str,
                                changes: dict[str, dict[str, Any]] | None = None) -> EmitSummary:
        return await self.emit(
            owner_id,
            WebhookEvent.USER_UPDATED.value,
            {"user": await self._user_data(contact_id)},
            {"changes": changes} if changes else None,
        )

    async def emit_user_deleted(self, owner_id: str, user_data: dict) -> EmitSummary:
        # The row is gone; the caller captures the data before deleting
        return await self.emit(owner_id, WebhookEvent.USER_DELETED.value, {"user": user_data})

    async def emit_booking_created(self, owner_id: str, booking_id: str) -> EmitSummary:
        return await self.emit(owner_id, WebhookEvent.BOOKING_CREATED.value,
                               {"booking": await self._booking_data(booking_id)})

    async def emit_booking_updated(self, owner_id: str, booking_id: str,
                                   changes: dict[str, dict[str, Any]] | None = None) -> EmitSummary:
        return await self.emit(
            owner_id,
            WebhookEvent.BOOKING_UPDATED.value,
            {"booking": await self._booking_data(booking_id)},
            {"changes": changes} if changes else None,
        )

    async def emit_booking_cancelled(self, owner_id: str, booking_id: str) -> EmitSummary:
        return await self.emit(owner_id, WebhookEvent.BOOKING_CANCELLED.value,
                               {"booking": await self._booking_data(booking_id)})

    async def emit_booking_completed(self, owner_id: str, booking_id: str) -> EmitSummary:
        return await self.emit(owner_id, WebhookEvent.BOOKING_COMPLETED.value,
                               {"booking": await self._booking_data(booking_id)})

    async def emit_qr_created(self, owner_id: str, qr_code_id: str) -> EmitSummary:
        return await self.emit(owner_id, WebhookEvent.QR_CREATED.value, {"qrCode": await self._qr_data(qr_code_id)})

    async def emit_qr_scanned(self, owner_id: str, qr_code_id: str, scanned_by: str | None = None) -> EmitSummary:
        return await self.emit(
            owner_id,
            WebhookEvent.QR_SCANNED.value,
            {"qrCode": await self._qr_data(qr_code_id)},
            {"scannedBy": scanned_by} if scanned_by else None,
        )

    async def emit_qr_validated(self, owner_id: str, qr_code_id: str) -> EmitSummary:
        return await self.emit(owner_id, WebhookEvent.QR_VALIDATED.value, {"qrCode": await self._qr_data(qr_code_id)})

    async def emit_tag_added(self, owner_id: str, contact_id: str, tag_id: str, tag_name: str) -> EmitSummary:
        return await self.emit(
            owner_id,
            WebhookEvent.TAG_ADDED.value,
            {"user": await self._user_data(contact_id)},
            {"tag": {"id": tag_id, "name": tag_name}},
        )

    async def emit_tag_removed(self, owner_id: str, contact_id: str, tag_id: str, tag_name: str) -> EmitSummary:
        return await self.emit(
            owner_id,
            WebhookEvent.TAG_REMOVED.value,
            {"user": await self._user_data(contact_id)},
            {"tag": {"id": tag_id, "name": tag_name}},
        )

    async def emit_custom_field_updated(self, owner_id: str, contact_id: str, field_name: str,
                                        old_value: Any, new_value: Any) -> EmitSummary:
        return await self.emit(
            owner_id,
            WebhookEvent.CUSTOM_FIELD_UPDATED.value,
            {"user": await self._user_data(contact_id)},
            {"field": field_name, "oldValue": old_value, "newValue": new_value},
        )
