"""
Job API routes.

Submit ManyChat sync, email, QR analytics and export jobs to their queues and
read a job's state back. Job ids are prefixed with the caller's owner id so
state lookups stay scoped to the owner.
"""
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from playgram.database import get_db
from playgram.dependencies.auth import TokenPayload, get_current_owner
from playgram.dependencies.services import get_queues
from playgram.models.base import new_id
from playgram.models.contact import QRCode
from playgram.queue.jobs import AnalyticsJob, EmailJob, ExportJob, JobOptions, QueuedJob, QueueName, SyncJob
from playgram.queue.queues import Queues
from playgram.services.email_client import EMAIL_TEMPLATES

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


class SyncJobRequest(BaseModel):
    type: Literal["contact", "tag", "field"]
    action: Literal["create", "update", "delete"]
    target_id: str
    data: dict = Field(default_factory=dict)


class ExportJobRequest(BaseModel):
    export_type: Literal["csv", "json"]
    data_type: Literal["contacts", "qr_scans", "bookings"]
    filters: dict | None = None


class AnalyticsJobRequest(BaseModel):
    qr_code_id: str
    event: Literal["scan", "validation"]
    scanned_by: str | None = None


def owned_options(owner_id: str) -> JobOptions:
    return JobOptions(job_id=f"{owner_id}:{new_id()}")


def job_to_response(job: QueuedJob) -> dict:
    return {
        "job_id": job.job_id,
        "queue": job.queue.value,
        "kind": job.kind,
        "enqueued_at": job.enqueued_at,
        "status": "waiting",
    }


@router.post("/sync", status_code=status.HTTP_202_ACCEPTED, response_model=dict)
async def submit_sync_job(
    request: SyncJobRequest,
    owner: TokenPayload = Depends(get_current_owner),
    queues: Queues = Depends(get_queues),
):
    """Push one contact, tag or field change to ManyChat."""
    job = SyncJob(owner_id=owner.sub, **request.model_dump())
    return job_to_response(await queues.add_sync_job(job, owned_options(owner.sub)))


@router.post("/email", status_code=status.HTTP_202_ACCEPTED, response_model=dict)
async def submit_email_job(
    request: EmailJob,
    owner: TokenPayload = Depends(get_current_owner),
    queues: Queues = Depends(get_queues),
):
    if request.template not in EMAIL_TEMPLATES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown email template: {request.template}"
        )
    return job_to_response(await queues.add_email_job(request, owned_options(owner.sub)))


@router.post("/exports", status_code=status.HTTP_202_ACCEPTED, response_model=dict)
async def submit_export_job(
    request: ExportJobRequest,
    owner: TokenPayload = Depends(get_current_owner),
    queues: Queues = Depends(get_queues),
):
    job = ExportJob(owner_id=owner.sub, **request.model_dump())
    return job_to_response(await queues.add_export_job(job, owned_options(owner.sub)))


@router.post("/analytics", status_code=status.HTTP_202_ACCEPTED, response_model=dict)
async def submit_analytics_job(
    request: AnalyticsJobRequest,
    owner: TokenPayload = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
    queues: Queues = Depends(get_queues),
):
    """Record a QR scan or validation; the worker counts it and emits qr.scanned / qr.validated."""
    qr_code = await db.get(QRCode, request.qr_code_id)
    if qr_code is None or qr_code.owner_id != owner.sub:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="QR code not found"
        )

    data = {"scanned_by": request.scanned_by} if request.scanned_by else {}
    job = AnalyticsJob(entity_id=qr_code.id, event=request.event, data=data)
    return job_to_response(await queues.add_analytics_job(job, owned_options(owner.sub)))


@router.get("/{queue}/{job_id}", response_model=dict)
async def get_job(
    queue: QueueName,
    job_id: str,
    owner: TokenPayload = Depends(get_current_owner),
    queues: Queues = Depends(get_queues),
):
    state = None
    if job_id.startswith(f"{owner.sub}:"):
        state = await queues.get_job_state(queue, job_id)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )
    return {"job_id": job_id, "queue": queue.value, "status": state.value}
