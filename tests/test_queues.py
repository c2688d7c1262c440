"""
Job queue tests against a mocked arq pool.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from arq.jobs import Job, JobStatus

from playgram.queue.jobs import AnalyticsJob, EmailJob, JobEnvelope, JobOptions, JobState, QueueName, WebhookJob
from playgram.queue.queues import JOB_FUNCTION, JobQueue, Queues, queue_key


def webhook_job():
    return WebhookJob(
        webhook_id="sub-1",
        event="qr.scanned",
        payload={"event": "qr.scanned", "timestamp": "t", "data": {}},
        url="https://example.com/hook",
        event_id="evt-1",
    )


@pytest.fixture
def redis():
    redis = MagicMock()
    redis.enqueue_job = AsyncMock(return_value=object())
    redis.aclose = AsyncMock()
    return redis


def test_queue_key():
    assert queue_key(QueueName.EMAIL, "active") == "playgram:queue:email:active"
    assert queue_key("email", "failed") == "playgram:queue:email:failed"


async def test_add_enqueues_envelope(redis):
    queue = JobQueue(QueueName.WEBHOOKS, redis)

    handle = await queue.add(webhook_job(), JobOptions(job_id="job-1", attempts=3, delay_ms=500))

    assert handle.job_id == "job-1"
    assert handle.kind == "webhook"
    assert not handle.duplicate
    args, kwargs = redis.enqueue_job.call_args
    assert args[0] == JOB_FUNCTION
    envelope = JobEnvelope.model_validate(args[1])
    assert envelope.payload.event_id == "evt-1"
    assert envelope.options.attempts == 3
    assert kwargs["_job_id"] == "job-1"
    assert kwargs["_queue_name"] == "webhooks"
    assert kwargs["_defer_by"].total_seconds() == 0.5


async def test_generated_job_id(redis):
    handle = await JobQueue(QueueName.WEBHOOKS, redis).add(webhook_job())
    assert handle.job_id
    assert redis.enqueue_job.call_args.kwargs["_defer_by"] is None


async def test_wrong_queue_for_kind(redis):
    queue = JobQueue(QueueName.EMAIL, redis)
    with pytest.raises(ValueError):
        await queue.add(webhook_job())
    redis.enqueue_job.assert_not_called()


async def test_duplicate_job_id_is_a_noop(redis):
    redis.enqueue_job.return_value = None
    handle = await JobQueue(QueueName.WEBHOOKS, redis).add(webhook_job(), JobOptions(job_id="job-1"))
    assert handle.duplicate


async def test_registry_routes_by_kind(redis):
    queues = Queues(redis)

    email = await queues.add(EmailJob(to="a@example.com", subject="Hi", template="welcome"))
    analytics = await queues.add_analytics_job(AnalyticsJob(entity_id="qr-1", event="scan"))

    assert email.queue == QueueName.EMAIL
    assert analytics.queue == QueueName.QR_ANALYTICS
    queue_names = [call.kwargs["_queue_name"] for call in redis.enqueue_job.call_args_list]
    assert queue_names == ["email", "qr-analytics"]

    await queues.close()
    redis.aclose.assert_awaited_once()


async def test_health(redis):
    redis.zcount = AsyncMock(side_effect=[7, 2])
    redis.scard = AsyncMock(return_value=3)
    redis.llen = AsyncMock(side_effect=[40, 1])

    health = await JobQueue(QueueName.EMAIL, redis).get_health()

    assert health.name == "email"
    assert health.waiting == 4
    assert health.active == 3
    assert health.delayed == 2
    assert health.completed == 40
    assert health.failed == 1
    assert health.healthy


async def test_unhealthy_when_failures_pile_up(redis):
    redis.zcount = AsyncMock(return_value=0)
    redis.scard = AsyncMock(return_value=0)
    redis.llen = AsyncMock(side_effect=[0, 10_000])

    health = await JobQueue(QueueName.EMAIL, redis).get_health()

    assert not health.healthy


@pytest.mark.parametrize("status,running,expected", [
    (JobStatus.queued, 0, JobState.WAITING),
    (JobStatus.deferred, 0, JobState.WAITING),
    (JobStatus.queued, 1, JobState.STALLED),
    (JobStatus.in_progress, 1, JobState.ACTIVE),
])
async def test_job_state(redis, monkeypatch, status, running, expected):
    monkeypatch.setattr(Job, "status", AsyncMock(return_value=status))
    redis.exists = AsyncMock(return_value=running)

    assert await JobQueue(QueueName.EMAIL, redis).get_job_state("job-1") == expected


async def test_stalled_state_reads_run_marker(redis, monkeypatch):
    monkeypatch.setattr(Job, "status", AsyncMock(return_value=JobStatus.queued))
    redis.exists = AsyncMock(return_value=1)

    await JobQueue(QueueName.EMAIL, redis).get_job_state("job-1")

    redis.exists.assert_awaited_once_with("playgram:queue:email:running:job-1")


async def test_unknown_job_has_no_state(redis, monkeypatch):
    monkeypatch.setattr(Job, "status", AsyncMock(return_value=JobStatus.not_found))
    assert await JobQueue(QueueName.EMAIL, redis).get_job_state("job-1") is None
