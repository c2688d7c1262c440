"""
Webhook Service

Handles outbound webhook delivery: signing, the per-attempt delivery record,
and the fixed-delay retry loop used by synchronous delivery.
"""
import asyncio
import enum
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from playgram.config import settings
from playgram.database import AsyncSessionLocal
from playgram.models.base import new_id
from playgram.models.webhook import DeliveryStatus, WebhookDelivery, WebhookSubscription
from playgram.routes.metrics import track_webhook_delivery
from playgram.services.errors import WebhookConfigurationError
from playgram.services.retry_policy import FixedDelay, RetryPolicy
from playgram.services.signature_service import SecretCipher, generate_signature

logger = structlog.get_logger()


class WebhookEvent(str, enum.Enum):
    """Events a subscription can listen to."""
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    BOOKING_CREATED = "booking.created"
    BOOKING_UPDATED = "booking.updated"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_COMPLETED = "booking.completed"
    QR_CREATED = "qr.created"
    QR_SCANNED = "qr.scanned"
    QR_VALIDATED = "qr.validated"
    TAG_ADDED = "tag.added"
    TAG_REMOVED = "tag.removed"
    CUSTOM_FIELD_UPDATED = "customfield.updated"
    WEBHOOK_TEST = "webhook.test"


WEBHOOK_EVENTS = [event.value for event in WebhookEvent]


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WebhookPayload(BaseModel):
    """Body of every outbound webhook."""
    event: str
    timestamp: str
    data: Any
    metadata: dict | None = None

    @classmethod
    def build(cls, event: str, data: Any, metadata: dict | None = None) -> "WebhookPayload":
        return cls(event=event, timestamp=utc_now_iso(), data=data, metadata=metadata)

    def serialize(self) -> str:
        """
        Serialize once. The returned string is both signed and sent.

        Raises WebhookConfigurationError if the data cannot be encoded.
        """
        try:
            return self.model_dump_json(exclude={"metadata"} if self.metadata is None else None)
        except ValueError as e:
            raise WebhookConfigurationError(f"Payload for {self.event} is not serializable: {e}") from e


@dataclass(frozen=True)
class WebhookTarget:
    """A subscription ready to sign with: the plaintext secret is in memory only."""
    id: str
    url: str
    secret: str
    custom_headers: dict | None = None

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription, cipher: SecretCipher) -> "WebhookTarget":
        return cls(
            id=subscription.id,
            url=subscription.url,
            secret=cipher.decrypt(subscription.encrypted_secret),
            custom_headers=subscription.custom_headers,
        )


@dataclass
class DeliveryResult:
    """Outcome of one delivery attempt."""
    success: bool
    delivery_id: str | None = None
    status_code: int | None = None
    error: str | None = None
    duration_ms: int = 0


class WebhookDeliveryService:
    """Sends signed webhooks and records every attempt."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cipher: SecretCipher,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        timeout_seconds: float = settings.WEBHOOK_TIMEOUT_SECONDS,
        response_body_limit: int = settings.WEBHOOK_RESPONSE_BODY_LIMIT,
        user_agent: str = settings.WEBHOOK_USER_AGENT,
    ):
        self.http_client = http_client
        self.cipher = cipher
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self.response_body_limit = response_body_limit
        self.user_agent = user_agent

    def target_for(self, subscription: WebhookSubscription) -> WebhookTarget:
        return WebhookTarget.from_subscription(subscription, self.cipher)

    def _headers(self, target: WebhookTarget, payload: WebhookPayload, signature: str,
                 delivery_id: str, event_id: str, attempt: int) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": signature,
            "X-Webhook-Event": payload.event,
            "X-Webhook-Timestamp": payload.timestamp,
            "X-Webhook-ID": delivery_id,
            "X-Webhook-Event-ID": event_id,
            "X-Webhook-Attempt": str(attempt),
            "User-Agent": self.user_agent,
        }
        if target.custom_headers:
            headers.update({str(k): str(v) for k, v in target.custom_headers.items()})
        return headers

    async def deliver(
        self,
        target: WebhookTarget,
        payload: WebhookPayload,
        attempt: int = 1,
        event_id: str | None = None,
    ) -> DeliveryResult:
        """
        Send one attempt and record it.

        A delivery row is committed before the HTTP call and updated after it,
        whether the call succeeds, fails, times out or is cancelled. Local
        failures (serialization) raise before any row is written.

        event_id is sent as X-Webhook-Event-ID and stays the same across
        retries of one event so subscribers can dedupe on it.
        """
        body = payload.serialize()
        signature = generate_signature(body, target.secret)
        event_id = event_id or new_id()
        log = logger.bind(subscription_id=target.id, webhook_event=payload.event, attempt=attempt)
        start_time = time.perf_counter()

        async with self.session_factory() as db:
            delivery = WebhookDelivery(
                subscription_id=target.id,
                event=payload.event,
                event_id=event_id,
                payload=body,
                status=DeliveryStatus.PENDING.value,
                attempts=attempt,
            )
            db.add(delivery)
            await db.commit()

            headers = self._headers(target, payload, signature, delivery.id, event_id, attempt)

            try:
                response = await asyncio.wait_for(
                    self.http_client.post(target.url, content=body.encode(), headers=headers,
                                          timeout=self.timeout_seconds),
                    timeout=self.timeout_seconds,
                )
            except asyncio.CancelledError:
                await self._record_failure(db, delivery, "Delivery cancelled")
                log.warning("webhook_cancelled", delivery_id=delivery.id)
                raise
            except Exception as e:
                if isinstance(e, (TimeoutError, httpx.TimeoutException)):
                    error = f"Request timed out after {self.timeout_seconds:g}s"
                else:
                    error = str(e) or type(e).__name__
                duration_ms = self._elapsed_ms(start_time)
                await self._record_failure(db, delivery, error)
                track_webhook_delivery(payload.event, "failed", duration_ms / 1000)
                log.warning("webhook_failed", delivery_id=delivery.id, error=error, duration_ms=duration_ms)
                return DeliveryResult(
                    success=False,
                    delivery_id=delivery.id,
                    error=error,
                    duration_ms=duration_ms,
                )

            duration_ms = self._elapsed_ms(start_time)
            success = 200 <= response.status_code < 300

            delivery.status = DeliveryStatus.SUCCESS.value if success else DeliveryStatus.FAILED.value
            delivery.response_status = response.status_code
            delivery.response_body = response.text[:self.response_body_limit]
            delivery.last_attempt_at = datetime.now(timezone.utc)
            delivery.error_message = None if success else f"HTTP {response.status_code}"
            await db.commit()

        track_webhook_delivery(payload.event, delivery.status, duration_ms / 1000)

        if success:
            log.info("webhook_delivered", delivery_id=delivery.id, status_code=response.status_code,
                     duration_ms=duration_ms)
        elif 400 <= response.status_code < 500 and response.status_code != 429:
            # Retried like any other failure, but worth telling apart in logs
            log.warning("webhook_rejected", delivery_id=delivery.id, status_code=response.status_code)
        else:
            log.warning("webhook_failed", delivery_id=delivery.id, status_code=response.status_code,
                        duration_ms=duration_ms)

        return DeliveryResult(
            success=success,
            delivery_id=delivery.id,
            status_code=response.status_code,
            error=delivery.error_message,
            duration_ms=duration_ms,
        )

    async def deliver_with_retry(
        self,
        target: WebhookTarget,
        payload: WebhookPayload,
        max_attempts: int = settings.WEBHOOK_MAX_ATTEMPTS,
        delay_ms: int = settings.WEBHOOK_RETRY_DELAY_MS,
        retry_policy: RetryPolicy | None = None,
        event_id: str | None = None,
    ) -> DeliveryResult:
        """
        Deliver with retries, stopping at the first success.

        Waits delay_ms between attempts unless a retry policy is given.
        Returns the last attempt's result.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        policy = retry_policy or FixedDelay(delay_ms / 1000)
        event_id = event_id or new_id()
        result = DeliveryResult(success=False)

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                await asyncio.sleep(policy.next_delay(attempt - 1))

            result = await self.deliver(target, payload, attempt=attempt, event_id=event_id)
            if result.success:
                break

            logger.info(
                "webhook_attempt_failed",
                subscription_id=target.id,
                attempt=attempt,
                max_attempts=max_attempts,
                error=result.error,
            )

        return result

    async def send_test_webhook(self, subscription: WebhookSubscription) -> DeliveryResult:
        """Send a single webhook.test event to one subscription."""
        payload = WebhookPayload.build(
            WebhookEvent.WEBHOOK_TEST.value,
            {
                "message": "This is a test webhook from Playgram",
                "webhookId": subscription.id,
                "subscribedEvents": list(subscription.events),
            },
            metadata={"test": True},
        )
        return await self.deliver(self.target_for(subscription), payload)

    async def _record_failure(self, db: AsyncSession, delivery: WebhookDelivery, error: str):
        delivery.status = DeliveryStatus.FAILED.value
        delivery.last_attempt_at = datetime.now(timezone.utc)
        delivery.error_message = error
        await db.commit()

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.perf_counter() - start_time) * 1000)
