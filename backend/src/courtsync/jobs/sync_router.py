from uuid import UUID

from fastapi import APIRouter, Depends

from courtsync.jobs.job_models import (
    CancelJobsRequest,
    CancelJobsResponse,
    EnqueueJobRequest,
    EnqueueJobResponse,
    JobSource,
    QueueStats,
    SyncJob,
)
from courtsync.main.container import Container
from courtsync.server.dependencies.container import get_container
from courtsync.upstream.upstream_models import RateLimitStatus

router = APIRouter()


@router.post("/jobs/", response_model=EnqueueJobResponse, status_code=201)
async def enqueue_sync_job(
    job: EnqueueJobRequest,
    container: Container = Depends(get_container()),
):
    job_id = await container.job_queue().enqueue(
        job.job_type,
        job.options,
        job.priority,
        run_after=job.run_after,
        source=JobSource.MANUAL,
    )
    return EnqueueJobResponse(job_id=job_id)


@router.post("/jobs/cancel/", response_model=CancelJobsResponse)
async def cancel_sync_jobs(
    request: CancelJobsRequest,
    container: Container = Depends(get_container()),
):
    """Cancel pending jobs and signal running ones, by type or by id."""
    cancelled = await container.job_queue().cancel(
        job_type=request.job_type, job_id=request.job_id
    )
    return CancelJobsResponse(cancelled=cancelled)


@router.get("/jobs/stats/", response_model=QueueStats)
async def get_queue_stats(container: Container = Depends(get_container())):
    return await container.job_queue().status()


@router.get("/jobs/{id}/", response_model=SyncJob)
async def get_sync_job(id: UUID, container: Container = Depends(get_container())):
    return await container.job_queue().get(id)


@router.get("/rate-limit/", response_model=RateLimitStatus)
async def get_rate_limit_status(container: Container = Depends(get_container())):
    usage = await container.rate_limiter().usage()
    circuit = await container.circuit_breaker().snapshot()
    return RateLimitStatus(rate_limit=usage.as_dict(), circuit=circuit.as_dict())
