"""
Job definitions.

Every queue carries exactly one payload kind. Payloads form a closed union
discriminated by `kind`, so the worker's dispatch can be exhaustive.
"""
import enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from playgram.config import settings
from playgram.services.retry_policy import ExponentialBackoff, FixedDelay, RetryPolicy


class QueueName(str, enum.Enum):
    WEBHOOKS = "webhooks"
    MANYCHAT_SYNC = "manychat-sync"
    EMAIL = "email"
    QR_ANALYTICS = "qr-analytics"
    DATA_EXPORT = "data-export"


class JobState(str, enum.Enum):
    """Job lifecycle state."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    STALLED = "stalled"


class WebhookJob(BaseModel):
    """Deliver one event to one subscription."""
    kind: Literal["webhook"] = "webhook"
    webhook_id: str
    event: str
    payload: dict
    url: str
    headers: dict[str, str] | None = None
    # Same for every job fanned out from one emit
    event_id: str


class SyncJob(BaseModel):
    """Push one local change to ManyChat."""
    kind: Literal["sync"] = "sync"
    type: Literal["contact", "tag", "field"]
    action: Literal["create", "update", "delete"]
    owner_id: str
    target_id: str
    data: dict = Field(default_factory=dict)


class EmailJob(BaseModel):
    kind: Literal["email"] = "email"
    to: str
    subject: str
    template: str
    data: dict = Field(default_factory=dict)


class AnalyticsJob(BaseModel):
    """Record a QR scan or validation."""
    kind: Literal["analytics"] = "analytics"
    entity_id: str
    event: Literal["scan", "validation"]
    data: dict = Field(default_factory=dict)


class ExportJob(BaseModel):
    kind: Literal["export"] = "export"
    owner_id: str
    export_type: Literal["csv", "json", "pdf", "excel"]
    data_type: Literal["contacts", "qr_scans", "bookings"]
    filters: dict | None = None


JobPayload = Annotated[
    Union[WebhookJob, SyncJob, EmailJob, AnalyticsJob, ExportJob],
    Field(discriminator="kind"),
]

QUEUE_FOR_KIND: dict[str, QueueName] = {
    "webhook": QueueName.WEBHOOKS,
    "sync": QueueName.MANYCHAT_SYNC,
    "email": QueueName.EMAIL,
    "analytics": QueueName.QR_ANALYTICS,
    "export": QueueName.DATA_EXPORT,
}


class BackoffPolicy(BaseModel):
    type: Literal["exponential", "fixed"] = "exponential"
    delay_ms: int = Field(default=settings.JOB_BACKOFF_DELAY_MS, ge=0)

    def to_retry_policy(self) -> RetryPolicy:
        if self.type == "fixed":
            return FixedDelay(self.delay_ms / 1000)
        return ExponentialBackoff(self.delay_ms / 1000)


class JobOptions(BaseModel):
    """
    Per-job options.

    priority is recorded for inspection only; queues are served in FIFO order.
    """
    priority: int | None = None
    attempts: int = Field(default=settings.JOB_DEFAULT_ATTEMPTS, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    delay_ms: int = Field(default=0, ge=0)
    job_id: str | None = None
    remove_on_complete: int = Field(default=settings.JOB_KEEP_COMPLETED, ge=0)
    remove_on_fail: int = Field(default=settings.JOB_KEEP_FAILED, ge=0)


class JobEnvelope(BaseModel):
    """What is actually stored on the queue."""
    payload: JobPayload
    options: JobOptions = Field(default_factory=JobOptions)
    enqueued_at: str


class QueuedJob(BaseModel):
    """Handle returned to producers."""
    job_id: str
    queue: QueueName
    kind: str
    enqueued_at: str
    options: JobOptions
    # True when a job with the same id was already queued
    duplicate: bool = False
