"""
Job queues on arq/Redis.

One JobQueue per QueueName. Producers call the typed add_* helpers; the
worker process (playgram.worker) consumes them.
"""
import time
from datetime import timedelta

import structlog
from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job, JobStatus
from pydantic import BaseModel

from playgram.config import settings
from playgram.models.base import new_id
from playgram.queue.jobs import (
    QUEUE_FOR_KIND,
    AnalyticsJob,
    EmailJob,
    ExportJob,
    JobEnvelope,
    JobOptions,
    JobState,
    QueuedJob,
    QueueName,
    SyncJob,
    WebhookJob,
)
from playgram.routes.metrics import track_job_queued
from playgram.services.webhook_service import utc_now_iso

logger = structlog.get_logger()

# arq function every queue's worker registers
JOB_FUNCTION = "run_job"


def queue_key(queue: QueueName | str, suffix: str) -> str:
    """Redis key for per-queue bookkeeping (completed/failed lists, active set)."""
    name = queue.value if isinstance(queue, QueueName) else queue
    return f"playgram:queue:{name}:{suffix}"


def running_key(queue: QueueName | str, job_id: str) -> str:
    """Set while a job's processor runs; left behind when its worker dies."""
    return queue_key(queue, f"running:{job_id}")


class QueueHealth(BaseModel):
    name: str
    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int
    healthy: bool


class JobQueue:
    """A named queue accepting one payload kind."""

    def __init__(self, name: QueueName, redis: ArqRedis):
        self.name = name
        self.redis = redis

    async def add(self, payload, options: JobOptions | None = None) -> QueuedJob:
        """
        Enqueue a job.

        Raises ValueError if the payload kind belongs to another queue. Adding
        a job whose job_id is already queued is a no-op and returns a handle
        with duplicate=True.
        """
        expected = QUEUE_FOR_KIND[payload.kind]
        if expected != self.name:
            raise ValueError(f"{payload.kind} jobs belong on {expected.value}, not {self.name.value}")

        options = options or JobOptions()
        job_id = options.job_id or new_id()
        envelope = JobEnvelope(payload=payload, options=options, enqueued_at=utc_now_iso())

        job = await self.redis.enqueue_job(
            JOB_FUNCTION,
            envelope.model_dump(mode="json"),
            _job_id=job_id,
            _queue_name=self.name.value,
            _defer_by=timedelta(milliseconds=options.delay_ms) if options.delay_ms else None,
        )

        handle = QueuedJob(
            job_id=job_id,
            queue=self.name,
            kind=payload.kind,
            enqueued_at=envelope.enqueued_at,
            options=options,
            duplicate=job is None,
        )

        if job is None:
            logger.info("job_duplicate", queue=self.name.value, job_id=job_id)
            return handle

        track_job_queued(self.name.value)
        logger.info(
            "job_queued",
            queue=self.name.value,
            job_id=job_id,
            kind=payload.kind,
            priority=options.priority,
            delay_ms=options.delay_ms,
        )
        return handle

    async def get_job_state(self, job_id: str) -> JobState | None:
        """
        Current state of a job, or None if arq no longer knows it.

        A job arq has put back in the queue while its run marker is still set
        lost its worker mid-run and is reported as stalled.
        """
        job = Job(job_id, self.redis, _queue_name=self.name.value)
        status = await job.status()

        if status == JobStatus.not_found:
            return None
        if status in (JobStatus.queued, JobStatus.deferred):
            if await self.redis.exists(running_key(self.name, job_id)):
                return JobState.STALLED
            return JobState.WAITING
        if status == JobStatus.in_progress:
            return JobState.ACTIVE

        info = await job.result_info()
        if info is not None and info.success:
            return JobState.COMPLETED
        return JobState.FAILED

    async def get_health(self) -> QueueHealth:
        now_ms = int(time.time() * 1000)
        ready = await self.redis.zcount(self.name.value, "-inf", now_ms)
        delayed = await self.redis.zcount(self.name.value, f"({now_ms}", "+inf")
        active = await self.redis.scard(queue_key(self.name, "active"))
        completed = await self.redis.llen(queue_key(self.name, "completed"))
        failed = await self.redis.llen(queue_key(self.name, "failed"))

        return QueueHealth(
            name=self.name.value,
            # arq keeps running jobs in the queue until they finish
            waiting=max(ready - active, 0),
            active=active,
            completed=completed,
            failed=failed,
            delayed=delayed,
            healthy=failed < settings.QUEUE_UNHEALTHY_FAILED_THRESHOLD,
        )


class Queues:
    """Registry of every named queue over one Redis connection."""

    def __init__(self, redis: ArqRedis):
        self.redis = redis
        self._queues = {name: JobQueue(name, redis) for name in QueueName}

    @classmethod
    async def connect(cls, dsn: str = settings.QUEUE_REDIS_URL) -> "Queues":
        redis = await create_pool(RedisSettings.from_dsn(dsn))
        logger.info("queues_connected")
        return cls(redis)

    def get(self, name: QueueName) -> JobQueue:
        return self._queues[name]

    async def add(self, payload, options: JobOptions | None = None) -> QueuedJob:
        """Enqueue on the queue that owns the payload's kind."""
        return await self.get(QUEUE_FOR_KIND[payload.kind]).add(payload, options)

    async def add_webhook_job(self, job: WebhookJob, options: JobOptions | None = None) -> QueuedJob:
        return await self.get(QueueName.WEBHOOKS).add(job, options)

    async def add_sync_job(self, job: SyncJob, options: JobOptions | None = None) -> QueuedJob:
        return await self.get(QueueName.MANYCHAT_SYNC).add(job, options)

    async def add_email_job(self, job: EmailJob, options: JobOptions | None = None) -> QueuedJob:
        return await self.get(QueueName.EMAIL).add(job, options)

    async def add_analytics_job(self, job: AnalyticsJob, options: JobOptions | None = None) -> QueuedJob:
        return await self.get(QueueName.QR_ANALYTICS).add(job, options)

    async def add_export_job(self, job: ExportJob, options: JobOptions | None = None) -> QueuedJob:
        return await self.get(QueueName.DATA_EXPORT).add(job, options)

    async def get_job_state(self, name: QueueName, job_id: str) -> JobState | None:
        return await self.get(name).get_job_state(job_id)

    async def get_health(self) -> list[QueueHealth]:
        return [await queue.get_health() for queue in self._queues.values()]

    async def close(self) -> None:
        await self.redis.aclose()
        logger.info("queues_closed")
