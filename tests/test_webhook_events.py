"""
Event fan-out tests.
"""
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy import select

from playgram.models.webhook import WebhookDelivery
from playgram.queue.jobs import QueuedJob, QueueName
from playgram.services.errors import EntityNotFoundError
from playgram.services.signature_service import verify_signature
from playgram.services.webhook_events import WebhookEventEmitter, diff_fields
from playgram.services.webhook_service import WebhookDeliveryService
from tests.factories import OWNER_ID, make_qr_code, make_subscription


@pytest.fixture
def delivery_service(http_client, cipher, session_factory):
    return WebhookDeliveryService(http_client, cipher, session_factory)


@pytest.fixture
def emitter(delivery_service, session_factory):
    return WebhookEventEmitter(delivery_service, session_factory, mode="sync", max_attempts=2, retry_delay_ms=0)


def test_diff_fields():
    changes = diff_fields({"status": "pending", "notes": None}, {"status": "confirmed", "notes": None, "x": 1})
    assert changes == {
        "status": {"old": "pending", "new": "confirmed"},
        "x": {"old": None, "new": 1},
    }


def test_queue_mode_requires_queues(delivery_service, session_factory):
    with pytest.raises(ValueError):
        WebhookEventEmitter(delivery_service, session_factory, mode="queue")


async def test_no_subscribers_is_a_noop(emitter, transport):
    summary = await emitter.emit(OWNER_ID, "qr.scanned", {"a": 1})

    assert summary.matched == 0
    assert summary.event_id is None
    assert transport.requests == []


async def test_only_matching_active_subscriptions_receive(emitter, transport, session_factory, cipher):
    await make_subscription(session_factory, cipher, url="https://a.example.com/", events=["qr.scanned"])
    await make_subscription(session_factory, cipher, url="https://b.example.com/", events=["*"])
    await make_subscription(session_factory, cipher, url="https://c.example.com/", events=["booking.created"])
    await make_subscription(session_factory, cipher, url="https://d.example.com/", is_active=False)
    await make_subscription(session_factory, cipher, url="https://e.example.com/", owner_id="someone-else")

    summary = await emitter.emit(OWNER_ID, "qr.scanned", {"a": 1})

    assert summary.matched == 2
    assert summary.succeeded == 2
    hosts = sorted(request.url.host for request in transport.requests)
    assert hosts == ["a.example.com", "b.example.com"]
    assert len({request.headers["X-Webhook-Event-ID"] for request in transport.requests}) == 1


async def test_one_failing_subscriber_does_not_affect_others(emitter, transport, session_factory, cipher):
    transport.responder = lambda request: httpx.Response(500 if request.url.host == "bad.example.com" else 200)
    await make_subscription(session_factory, cipher, url="https://bad.example.com/")
    await make_subscription(session_factory, cipher, url="https://good.example.com/")
    broken = await make_subscription(session_factory, cipher, url="https://broken.example.com/")
    async with session_factory() as db:
        row = await db.merge(broken)
        row.encrypted_secret = "garbage"
        await db.commit()

    summary = await emitter.emit(OWNER_ID, "qr.scanned", {"a": 1})

    assert summary.matched == 3
    assert summary.succeeded == 1
    assert summary.failed == 2
    hosts = [request.url.host for request in transport.requests]
    assert hosts.count("bad.example.com") == 2
    assert hosts.count("good.example.com") == 1
    assert "broken.example.com" not in hosts


async def test_queue_mode_enqueues_one_job_per_subscription(delivery_service, session_factory, cipher, transport):
    first = await make_subscription(session_factory, cipher, url="https://a.example.com/")
    second = await make_subscription(session_factory, cipher, url="https://b.example.com/")

    queues = AsyncMock()
    queues.add_webhook_job.side_effect = lambda job, options: QueuedJob(
        job_id=options.job_id,
        queue=QueueName.WEBHOOKS,
        kind="webhook",
        enqueued_at="2026-01-01T00:00:00.000Z",
        options=options,
    )
    emitter = WebhookEventEmitter(delivery_service, session_factory, queues=queues, mode="queue", max_attempts=4)

    summary = await emitter.emit(OWNER_ID, "qr.scanned", {"a": 1})

    assert summary.succeeded == 2
    assert transport.requests == []
    jobs = {call.args[0].webhook_id: call for call in queues.add_webhook_job.call_args_list}
    assert set(jobs) == {first.id, second.id}
    job, options = jobs[first.id].args
    assert job.event_id == summary.event_id
    assert job.payload["event"] == "qr.scanned"
    assert options.job_id == f"webhook:{first.id}:{summary.event_id}"
    assert options.attempts == 4


async def test_qr_scanned_reaches_subscriber_signed(emitter, transport, session_factory, cipher):
    subscription = await make_subscription(session_factory, cipher)

    summary = await emitter.emit(OWNER_ID, "qr.scanned", {"qrCode": "X1", "scannedBy": "u1"})

    assert summary.succeeded == 1
    request = transport.requests[0]
    assert request.url == "https://example.com/hook"
    assert verify_signature(request.content, request.headers["X-Webhook-Signature"], "abc")

    async with session_factory() as db:
        rows = (await db.execute(
            select(WebhookDelivery).where(WebhookDelivery.subscription_id == subscription.id)
        )).scalars().all()
    assert len(rows) == 1
    assert rows[0].status == "success"
    assert rows[0].attempts == 1
    assert rows[0].response_status == 200


async def test_qr_scanned_payload(emitter, transport, session_factory, cipher):
    await make_subscription(session_factory, cipher)
    qr_code = await make_qr_code(session_factory)

    await emitter.emit_qr_scanned(OWNER_ID, qr_code.id, scanned_by="u1")

    body = json.loads(transport.requests[0].content)
    assert body["event"] == "qr.scanned"
    assert body["data"]["qrCode"]["code"] == "X1"
    assert body["data"]["qrCode"]["tool"]["name"] == "Spring Launch"
    assert body["data"]["qrCode"]["user"]["firstName"] == "Ada"
    assert body["metadata"] == {"scannedBy": "u1"}


async def test_missing_entity_raises(emitter, session_factory, cipher):
    await make_subscription(session_factory, cipher, events=["qr.validated"])
    with pytest.raises(EntityNotFoundError):
        await emitter.emit_qr_validated(OWNER_ID, "missing")
