"""
Job processors.

run_job is the single arq function every queue registers. It unpacks the
job envelope, dispatches on the payload kind and turns failures into arq
retries according to the job's own attempts and backoff options.

Services are taken from the arq context, which the worker fills at startup:
session_factory, cipher, delivery_service, manychat, email, emitter.
"""
import asyncio
import csv
import io
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import assert_never

import structlog
from arq import Retry
from sqlalchemy import select

from playgram.config import settings
from playgram.models.contact import Booking, Contact, QRCode
from playgram.models.webhook import WebhookSubscription
from playgram.queue.jobs import (
    AnalyticsJob,
    EmailJob,
    ExportJob,
    JobEnvelope,
    JobPayload,
    QueueName,
    SyncJob,
    WebhookJob,
)
from playgram.queue.queues import queue_key, running_key
from playgram.routes.metrics import track_job_completed, track_job_failed, track_job_retry
from playgram.services.email_client import render_template
from playgram.services.errors import (
    EntityNotFoundError,
    NonRetryableJobError,
    WebhookConfigurationError,
    WebhookDeliveryFailed,
)
from playgram.services.manychat_client import resolve_api_token
from playgram.services.webhook_service import WebhookPayload

logger = structlog.get_logger()

# arq's own per-function try limit. Real limits come from JobOptions.attempts.
MAX_TRIES_CEILING = 1000


async def process_webhook_job(ctx: dict, job: WebhookJob, attempt: int) -> dict:
    async with ctx["session_factory"]() as db:
        subscription = await db.get(WebhookSubscription, job.webhook_id)

    if subscription is None or not subscription.is_active:
        raise NonRetryableJobError(f"Webhook subscription {job.webhook_id} is missing or inactive")

    delivery_service = ctx["delivery_service"]
    try:
        target = delivery_service.target_for(subscription)
        payload = WebhookPayload.model_validate(job.payload)
    except (WebhookConfigurationError, ValueError) as e:
        raise NonRetryableJobError(str(e)) from e

    result = await delivery_service.deliver(target, payload, attempt=attempt, event_id=job.event_id)
    if not result.success:
        raise WebhookDeliveryFailed(subscription.id, attempt, result.error)

    return {"delivery_id": result.delivery_id, "status_code": result.status_code}


async def process_sync_job(ctx: dict, job: SyncJob) -> dict:
    """Apply one contact/tag/field change to a ManyChat subscriber."""
    async with ctx["session_factory"]() as db:
        try:
            api_token = await resolve_api_token(db, ctx["cipher"], job.owner_id)
        except EntityNotFoundError as e:
            raise NonRetryableJobError("ManyChat not connected") from e

    manychat = ctx["manychat"]
    subscriber_id = job.target_id

    match (job.type, job.action):
        case ("contact", "create"):
            await manychat.create_subscriber(api_token, job.data)
        case ("contact", "update"):
            await manychat.update_subscriber(api_token, subscriber_id, job.data)
        case ("contact", "delete"):
            raise NonRetryableJobError("ManyChat subscribers cannot be deleted through the API")
        case ("tag", "create" | "update"):
            await manychat.add_tag(api_token, subscriber_id, _required(job.data, "tag_id"))
        case ("tag", "delete"):
            await manychat.remove_tag(api_token, subscriber_id, _required(job.data, "tag_id"))
        case ("field", "create" | "update"):
            await manychat.set_custom_field_by_name(
                api_token, subscriber_id, _required(job.data, "field_name"), job.data.get("value")
            )
        case ("field", "delete"):
            await manychat.set_custom_field_by_name(api_token, subscriber_id, _required(job.data, "field_name"), None)

    logger.info("manychat_sync_applied", owner_id=job.owner_id, type=job.type, action=job.action,
                subscriber_id=subscriber_id)
    return {"type": job.type, "action": job.action, "subscriber_id": subscriber_id}


def _required(data: dict, key: str):
    if not data.get(key):
        raise NonRetryableJobError(f"Missing {key} in job data")
    return data[key]


async def process_email_job(ctx: dict, job: EmailJob) -> dict:
    email = ctx["email"]
    if not email.is_configured:
        raise NonRetryableJobError("Email provider is not configured")

    try:
        html = render_template(job.template, job.data)
    except KeyError as e:
        raise NonRetryableJobError(f"Cannot render template {job.template}: missing {e}") from e

    message_id = await email.send(job.to, job.subject, html)
    return {"message_id": message_id}


async def process_analytics_job(ctx: dict, job: AnalyticsJob, job_id: str) -> dict:
    """
    Count a QR scan or validation once per job id, then emit the matching
    webhook event.

    The count and the emit are marked separately, so a retry after a failed
    emit re-sends the event without counting the scan twice. Markers expire
    after ANALYTICS_MARKER_TTL_SECONDS.
    """
    redis = ctx["redis"]
    counted_key = queue_key(QueueName.QR_ANALYTICS, f"counted:{job_id}")
    emitted_key = queue_key(QueueName.QR_ANALYTICS, f"emitted:{job_id}")
    ttl = settings.ANALYTICS_MARKER_TTL_SECONDS

    if await redis.exists(emitted_key):
        logger.info("analytics_already_applied", job_id=job_id, qr_code_id=job.entity_id)
        return {"duplicate": True}

    owner_id = await redis.get(counted_key)
    if owner_id is None:
        now = datetime.now(timezone.utc)
        async with ctx["session_factory"]() as db:
            qr_code = await db.get(QRCode, job.entity_id)
            if qr_code is None:
                raise NonRetryableJobError(f"QR code not found: {job.entity_id}")

            if job.event == "scan":
                qr_code.scan_count += 1
                qr_code.scanned_at = now
            else:
                qr_code.validation_count += 1
                qr_code.validated_at = now
            owner_id = qr_code.owner_id
            await db.commit()

        await redis.set(counted_key, owner_id, ex=ttl)
    else:
        owner_id = owner_id.decode() if isinstance(owner_id, bytes) else owner_id
        logger.info("analytics_count_already_applied", job_id=job_id, qr_code_id=job.entity_id)

    emitter = ctx.get("emitter")
    if emitter is not None:
        if job.event == "scan":
            await emitter.emit_qr_scanned(owner_id, job.entity_id, scanned_by=job.data.get("scanned_by"))
        else:
            await emitter.emit_qr_validated(owner_id, job.entity_id)

    await redis.set(emitted_key, 1, ex=ttl)
    return {"qr_code_id": job.entity_id, "event": job.event}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


async def _export_rows(ctx: dict, job: ExportJob) -> list[dict]:
    filters = job.filters or {}
    async with ctx["session_factory"]() as db:
        if job.data_type == "contacts":
            stmt = select(Contact).where(Contact.owner_id == job.owner_id).order_by(Contact.created_at)
            contacts = (await db.execute(stmt)).scalars().all()
            return [
                {
                    "id": contact.id,
                    "manychat_id": contact.manychat_id,
                    "ig_username": contact.ig_username,
                    "name": contact.full_name,
                    "is_subscribed": contact.is_subscribed,
                    "tags": ";".join(tag.name for tag in contact.tags),
                    "last_interaction": _iso(contact.last_interaction),
                    "created_at": _iso(contact.created_at),
                }
                for contact in contacts
            ]

        if job.data_type == "qr_scans":
            stmt = (
                select(QRCode)
                .where(QRCode.owner_id == job.owner_id, QRCode.scan_count > 0)
                .order_by(QRCode.scanned_at.desc())
            )
            qr_codes = (await db.execute(stmt)).scalars().all()
            return [
                {
                    "code": qr_code.code,
                    "type": qr_code.qr_type,
                    "tool": qr_code.tool.name if qr_code.tool else None,
                    "contact": qr_code.contact.full_name if qr_code.contact else None,
                    "scan_count": qr_code.scan_count,
                    "validation_count": qr_code.validation_count,
                    "scanned_at": _iso(qr_code.scanned_at),
                    "validated_at": _iso(qr_code.validated_at),
                }
                for qr_code in qr_codes
            ]

        stmt = select(Booking).where(Booking.owner_id == job.owner_id)
        if filters.get("status"):
            stmt = stmt.where(Booking.status == filters["status"])
        bookings = (await db.execute(stmt.order_by(Booking.booking_date))).scalars().all()
        return [
            {
                "id": booking.id,
                "contact": booking.contact.full_name if booking.contact else None,
                "tool": booking.tool.name if booking.tool else None,
                "booking_date": _iso(booking.booking_date),
                "start_time": booking.start_time,
                "end_time": booking.end_time,
                "status": booking.status,
                "service_type": booking.service_type,
            }
            for booking in bookings
        ]


def _render_export(rows: list[dict], export_type: str) -> str:
    if export_type == "json":
        return json.dumps(rows, indent=2)

    buffer = io.StringIO()
    if rows:
        writer = csv.DictWriter(buffer, fieldnames=list(rows[0]))
        writer.writeheader()
        writer.writerows(rows)
    return buffer.getvalue()


async def process_export_job(ctx: dict, job: ExportJob) -> dict:
    if job.export_type not in ("csv", "json"):
        raise NonRetryableJobError(f"Export type {job.export_type} is not supported")

    rows = await _export_rows(ctx, job)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    path = Path(ctx.get("export_dir", settings.EXPORT_DIR)) / job.owner_id / f"{job.data_type}-{stamp}.{job.export_type}"

    def write():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(_render_export(rows, job.export_type), encoding="utf-8")

    await asyncio.to_thread(write)
    logger.info("export_written", owner_id=job.owner_id, data_type=job.data_type, rows=len(rows), file=str(path))
    return {"file": str(path), "rows": len(rows)}


async def process(ctx: dict, payload: JobPayload, attempt: int, job_id: str) -> dict:
    match payload:
        case WebhookJob():
            return await process_webhook_job(ctx, payload, attempt)
        case SyncJob():
            return await process_sync_job(ctx, payload)
        case EmailJob():
            return await process_email_job(ctx, payload)
        case AnalyticsJob():
            return await process_analytics_job(ctx, payload, job_id)
        case ExportJob():
            return await process_export_job(ctx, payload)
        case _:
            assert_never(payload)


async def _retain(redis, queue: str, outcome: str, job_id: str, keep: int):
    key = queue_key(queue, outcome)
    if keep <= 0:
        await redis.delete(key)
        return
    await redis.lpush(key, job_id)
    await redis.ltrim(key, 0, keep - 1)


async def run_job(ctx: dict, envelope_data: dict) -> dict:
    """
    arq entry point for every queue.

    A failure with attempts left raises Retry with the job's backoff delay.
    On the last attempt, or for NonRetryableJobError, the error propagates
    and arq marks the job failed.
    """
    envelope = JobEnvelope.model_validate(envelope_data)
    options = envelope.options
    redis = ctx["redis"]
    queue = ctx["queue_name"]
    job_id = ctx["job_id"]
    job_try = ctx.get("job_try", 1)
    log = logger.bind(queue=queue, job_id=job_id, kind=envelope.payload.kind, attempt=job_try,
                      max_attempts=options.attempts)

    run_marker = running_key(queue, job_id)
    previous_try = await redis.get(run_marker)
    if previous_try is not None:
        log.warning("job_stalled", previous_attempt=int(previous_try))
    await redis.set(run_marker, job_try, ex=settings.JOB_TIMEOUT_SECONDS * 2)
    await redis.sadd(queue_key(queue, "active"), job_id)
    log.info("job_active")

    try:
        result = await process(ctx, envelope.payload, job_try, job_id)
    except Exception as e:
        final = isinstance(e, NonRetryableJobError) or job_try >= options.attempts
        if final:
            track_job_failed(queue)
            await _retain(redis, queue, "failed", job_id, options.remove_on_fail)
            log.error("job_failed", error=str(e), error_type=type(e).__name__,
                      retryable=not isinstance(e, NonRetryableJobError))
            raise

        delay = options.backoff.to_retry_policy().next_delay(job_try)
        track_job_retry(queue)
        log.warning("job_retry_scheduled", error=str(e), error_type=type(e).__name__, delay_s=delay)
        raise Retry(defer=delay) from e
    finally:
        await redis.srem(queue_key(queue, "active"), job_id)
        await redis.delete(run_marker)

    track_job_completed(queue)
    await _retain(redis, queue, "completed", job_id, options.remove_on_complete)
    log.info("job_completed")
    return result
