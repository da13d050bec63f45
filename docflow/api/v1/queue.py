"""
Job queue routes.

Plain ``def`` handlers: the queue client is blocking (redis-py, kombu), so
FastAPI runs these in its threadpool.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from docflow.api.deps import get_owner_id, get_queue
from docflow.api.schemas.queue import JobCreate, JobResponse, JobSubmitResponse, QueueStatsResponse
from docflow.queue.job_queue import JobQueue

router = APIRouter(prefix="/queue", tags=["Queue"])


@router.post("/jobs", response_model=JobSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
def submit_job(
    body: JobCreate,
    owner_id: str | None = Depends(get_owner_id),
    queue: JobQueue = Depends(get_queue),
):
    """Enqueue a job.  ``job_id`` is null when the backend is unreachable."""
    job_id = queue.submit(body.type, body.payload, owner_id)
    if job_id is None and queue.last_error is not None:
        return {"job_id": None, "available": False, "error": queue.last_error.to_dict()}
    return {"job_id": job_id, "available": job_id is not None}


@router.get("/jobs")
def list_jobs(
    limit: int = 50,
    owner_id: str | None = Depends(get_owner_id),
    queue: JobQueue = Depends(get_queue),
):
    if not owner_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Owner-Id header is required")
    jobs = queue.list_for_owner(owner_id, limit)
    return {"data": [job.to_dict() for job in jobs], "total": len(jobs)}


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(job_id: str, queue: JobQueue = Depends(get_queue)):
    job = queue.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job.to_dict()


@router.post("/jobs/{job_id}/cancel")
def cancel_job(job_id: str, queue: JobQueue = Depends(get_queue)) -> dict[str, bool]:
    return {"cancelled": queue.cancel(job_id)}


@router.get("/stats", response_model=QueueStatsResponse)
def queue_stats(queue: JobQueue = Depends(get_queue)):
    return queue.stats()
