"""
ARQ background worker for Playgram.

Runs one arq Worker per named queue in a single process:

    python -m playgram.worker

SIGTERM/SIGINT stop polling, let running jobs finish, then close every
worker and queue connection.
"""
import asyncio
import signal

import httpx
import structlog
from arq.connections import RedisSettings
from arq.worker import Worker, func

from playgram.config import settings
from playgram.database import AsyncSessionLocal
from playgram.logging_config import configure_logging
from playgram.queue.jobs import QueueName
from playgram.queue.processors import MAX_TRIES_CEILING, run_job
from playgram.queue.queues import JOB_FUNCTION, Queues
from playgram.sentry_config import configure_sentry
from playgram.services.email_client import EmailClient
from playgram.services.manychat_client import ManychatClient
from playgram.services.signature_service import SecretCipher
from playgram.services.webhook_events import WebhookEventEmitter
from playgram.services.webhook_service import WebhookDeliveryService

logger = structlog.get_logger()


def build_context(queues: Queues, http_client: httpx.AsyncClient) -> dict:
    """Services shared by every queue's jobs."""
    cipher = SecretCipher(settings.APP_SECRET_KEY)
    delivery_service = WebhookDeliveryService(http_client, cipher, AsyncSessionLocal)
    return {
        "session_factory": AsyncSessionLocal,
        "cipher": cipher,
        "delivery_service": delivery_service,
        "manychat": ManychatClient(http_client),
        "email": EmailClient(http_client),
        "emitter": WebhookEventEmitter(delivery_service, AsyncSessionLocal, queues=queues),
        "export_dir": settings.EXPORT_DIR,
    }


def create_worker(queue: QueueName, shared: dict, redis_settings: RedisSettings) -> Worker:
    return Worker(
        functions=[func(run_job, name=JOB_FUNCTION, max_tries=MAX_TRIES_CEILING)],
        queue_name=queue.value,
        redis_settings=redis_settings,
        ctx={**shared, "queue_name": queue.value},
        handle_signals=False,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        keep_result=3600,
    )


async def run_workers(stop: asyncio.Event | None = None) -> None:
    """
    Run every queue's worker until stop is set.

    Without a stop event one is created and set by SIGTERM/SIGINT.
    """
    redis_settings = RedisSettings.from_dsn(settings.QUEUE_REDIS_URL)
    queues = await Queues.connect(settings.QUEUE_REDIS_URL)
    http_client = httpx.AsyncClient()
    shared = build_context(queues, http_client)
    workers = [create_worker(queue, shared, redis_settings) for queue in QueueName]

    if stop is None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop.set)

    main_tasks = [asyncio.create_task(worker.main(), name=f"worker:{queue.value}")
                  for worker, queue in zip(workers, QueueName)]
    stop_task = asyncio.create_task(stop.wait())
    logger.info("worker_started", queues=[queue.value for queue in QueueName])

    try:
        done, _ = await asyncio.wait([stop_task, *main_tasks], return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if task is not stop_task and not task.cancelled() and task.exception() is not None:
                logger.error("queue_error", worker=task.get_name(), error=str(task.exception()))
    finally:
        logger.info("worker_stopping")
        stop_task.cancel()
        for task in main_tasks:
            task.cancel()
        await asyncio.gather(*main_tasks, return_exceptions=True)

        for worker, queue in zip(workers, QueueName):
            try:
                await worker.close()
            except Exception as e:
                logger.error("queue_error", queue=queue.value, error=str(e))

        await queues.close()
        await http_client.aclose()
        logger.info("worker_stopped")


def main():
    configure_logging()
    configure_sentry()
    asyncio.run(run_workers())


if __name__ == "__main__":
    main()
