"""
/api/v1/jobs endpoints.
Queue statistics, dead-letter inspection and manual re-enqueue.
"""

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_job_queue, verify_api_key
from app.schemas.api import DeadJobsResponse, JobOut, QueueStats
from app.worker.queue import JobQueue

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"], dependencies=[Depends(verify_api_key)])


@router.get("/stats", response_model=QueueStats)
async def queue_stats(queue: JobQueue = Depends(get_job_queue)):
    """Job counts by status."""
    return QueueStats(**await queue.stats())


@router.get("/dead", response_model=DeadJobsResponse)
async def dead_jobs(
    limit: int = Query(50, ge=1, le=500),
    queue: JobQueue = Depends(get_job_queue),
):
    """Jobs that exhausted their attempts, most recent first."""
    return DeadJobsResponse(jobs=[JobOut.model_validate(j) for j in await queue.list_dead(limit)])


@router.get("/{job_id}", response_model=JobOut)
async def get_job(job_id: str, queue: JobQueue = Depends(get_job_queue)):
    return JobOut.model_validate(await queue.get(job_id))


@router.post("/{job_id}/requeue", response_model=JobOut)
async def requeue_job(job_id: str, queue: JobQueue = Depends(get_job_queue)):
    """Return a dead job to the queue with a fresh attempt budget."""
    return JobOut.model_validate(await queue.requeue(job_id))
