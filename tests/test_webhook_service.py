"""
Webhook delivery engine tests.
"""
import asyncio
import json

import httpx
import pytest
from sqlalchemy import select

from playgram.models.webhook import WebhookDelivery
from playgram.services.errors import WebhookConfigurationError
from playgram.services.retry_policy import FixedDelay
from playgram.services.signature_service import verify_signature
from playgram.services.webhook_service import (
    WEBHOOK_EVENTS,
    WebhookDeliveryService,
    WebhookPayload,
    utc_now_iso,
)
from tests.factories import make_subscription


@pytest.fixture
def delivery_service(http_client, cipher, session_factory):
    return WebhookDeliveryService(http_client, cipher, session_factory, timeout_seconds=10)


async def deliveries(session_factory) -> list[WebhookDelivery]:
    async with session_factory() as db:
        result = await db.execute(select(WebhookDelivery).order_by(WebhookDelivery.attempts))
        return list(result.scalars().all())


def test_event_catalogue():
    assert "qr.scanned" in WEBHOOK_EVENTS
    assert "webhook.test" in WEBHOOK_EVENTS
    assert len(WEBHOOK_EVENTS) == 14


def test_timestamp_format():
    stamp = utc_now_iso()
    assert stamp.endswith("Z")
    assert len(stamp) == len("2026-01-01T00:00:00.000Z")


def test_payload_without_metadata_omits_key():
    body = json.loads(WebhookPayload.build("qr.scanned", {"a": 1}).serialize())
    assert set(body) == {"event", "timestamp", "data"}


def test_unserializable_payload_raises_configuration_error():
    payload = WebhookPayload.build("qr.scanned", {"bad": object()})
    with pytest.raises(WebhookConfigurationError):
        payload.serialize()


async def test_successful_delivery_is_signed_and_recorded(delivery_service, transport, session_factory, cipher):
    subscription = await make_subscription(session_factory, cipher, custom_headers={"X-Tenant": "t1"})
    payload = WebhookPayload.build("qr.scanned", {"qrCode": "X1", "scannedBy": "u1"})

    result = await delivery_service.deliver(delivery_service.target_for(subscription), payload)

    assert result.success
    assert result.status_code == 200

    request = transport.requests[0]
    assert str(request.url) == "https://example.com/hook"
    assert verify_signature(request.content, request.headers["X-Webhook-Signature"], "abc")
    assert request.headers["X-Webhook-Event"] == "qr.scanned"
    assert request.headers["X-Webhook-Attempt"] == "1"
    assert request.headers["X-Webhook-ID"] == result.delivery_id
    assert request.headers["X-Webhook-Timestamp"] == payload.timestamp
    assert request.headers["User-Agent"] == "Playgram-Webhook/1.0"
    assert request.headers["X-Tenant"] == "t1"

    [row] = await deliveries(session_factory)
    assert row.status == "success"
    assert row.response_status == 200
    assert row.payload == request.content.decode()


async def test_non_2xx_is_failure_with_truncated_body(delivery_service, transport, session_factory, cipher):
    transport.responder = lambda request: httpx.Response(500, text="x" * 5000)
    subscription = await make_subscription(session_factory, cipher)

    result = await delivery_service.deliver(
        delivery_service.target_for(subscription), WebhookPayload.build("qr.scanned", {})
    )

    assert not result.success
    [row] = await deliveries(session_factory)
    assert row.status == "failed"
    assert row.response_status == 500
    assert len(row.response_body) == 1000


async def test_network_error_is_recorded(delivery_service, transport, session_factory, cipher):
    def refuse(request):
        raise httpx.ConnectError("connection refused")

    transport.responder = refuse
    subscription = await make_subscription(session_factory, cipher)

    result = await delivery_service.deliver(
        delivery_service.target_for(subscription), WebhookPayload.build("qr.scanned", {})
    )

    assert not result.success
    assert result.error == "connection refused"
    [row] = await deliveries(session_factory)
    assert row.status == "failed"
    assert row.error_message == "connection refused"


async def test_timeout_is_recorded(cipher, session_factory):
    async def slow(request):
        await asyncio.sleep(1)
        return httpx.Response(200)

    async with httpx.AsyncClient(transport=httpx.MockTransport(slow)) as client:
        service = WebhookDeliveryService(client, cipher, session_factory, timeout_seconds=0.05)
        subscription = await make_subscription(session_factory, cipher)
        result = await service.deliver(service.target_for(subscription), WebhookPayload.build("qr.scanned", {}))

    assert not result.success
    assert result.error.startswith("Request timed out")
    [row] = await deliveries(session_factory)
    assert row.status == "failed"


async def test_configured_timeout_overrides_client_default(delivery_service, transport, session_factory, cipher):
    subscription = await make_subscription(session_factory, cipher)

    await delivery_service.deliver(delivery_service.target_for(subscription), WebhookPayload.build("qr.scanned", {}))

    timeouts = transport.requests[0].extensions["timeout"]
    assert timeouts["connect"] == 10
    assert timeouts["read"] == 10


async def test_client_read_timeout_is_reported_as_timeout(delivery_service, transport, session_factory, cipher):
    def read_timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    transport.responder = read_timeout
    subscription = await make_subscription(session_factory, cipher)

    result = await delivery_service.deliver(delivery_service.target_for(subscription),
                                            WebhookPayload.build("qr.scanned", {}))

    assert result.error == "Request timed out after 10s"
    [row] = await deliveries(session_factory)
    assert row.error_message == "Request timed out after 10s"


async def test_retry_records_one_row_per_attempt(delivery_service, transport, session_factory, cipher):
    statuses = iter([503, 502, 200])
    transport.responder = lambda request: httpx.Response(next(statuses))
    subscription = await make_subscription(session_factory, cipher)

    result = await delivery_service.deliver_with_retry(
        delivery_service.target_for(subscription),
        WebhookPayload.build("qr.scanned", {}),
        max_attempts=3,
        delay_ms=0,
    )

    assert result.success
    rows = await deliveries(session_factory)
    assert [row.attempts for row in rows] == [1, 2, 3]
    assert [row.status for row in rows] == ["failed", "failed", "success"]
    assert len({row.event_id for row in rows}) == 1

    event_ids = {request.headers["X-Webhook-Event-ID"] for request in transport.requests}
    assert event_ids == {rows[0].event_id}
    assert [request.headers["X-Webhook-Attempt"] for request in transport.requests] == ["1", "2", "3"]


async def test_retry_gives_up_after_max_attempts(delivery_service, transport, session_factory, cipher):
    transport.responder = lambda request: httpx.Response(500)
    subscription = await make_subscription(session_factory, cipher)

    result = await delivery_service.deliver_with_retry(
        delivery_service.target_for(subscription),
        WebhookPayload.build("qr.scanned", {}),
        max_attempts=2,
        delay_ms=0,
        retry_policy=FixedDelay(0),
    )

    assert not result.success
    assert len(await deliveries(session_factory)) == 2


async def test_retry_rejects_zero_attempts(delivery_service, session_factory, cipher):
    subscription = await make_subscription(session_factory, cipher)
    with pytest.raises(ValueError):
        await delivery_service.deliver_with_retry(
            delivery_service.target_for(subscription), WebhookPayload.build("qr.scanned", {}), max_attempts=0
        )


async def test_test_webhook(delivery_service, transport, session_factory, cipher):
    subscription = await make_subscription(session_factory, cipher, events=["qr.scanned", "booking.created"])

    result = await delivery_service.send_test_webhook(subscription)

    assert result.success
    body = json.loads(transport.requests[0].content)
    assert body["event"] == "webhook.test"
    assert body["metadata"] == {"test": True}
    assert body["data"]["subscribedEvents"] == ["qr.scanned", "booking.created"]


async def test_undecryptable_secret_fails_before_sending(delivery_service, transport, session_factory, cipher):
    subscription = await make_subscription(session_factory, cipher)
    subscription.encrypted_secret = "not-a-fernet-token"

    with pytest.raises(WebhookConfigurationError):
        delivery_service.target_for(subscription)
    assert transport.requests == []
