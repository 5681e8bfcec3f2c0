"""Background queue endpoints: drain, status, enqueue, re-arm."""

import structlog
from fastapi import APIRouter, Depends, HTTPException

from forgeflow.api.deps import get_queue
from forgeflow.queue.manager import QueueService
from forgeflow.schemas.queue import DrainResult, EnqueueJobRequest, QueueJob, QueueStatus

logger = structlog.get_logger(__name__)

router = APIRouter()


def _known_queue(queue: QueueService, name: str) -> str:
    if name not in queue.queue_names:
        raise HTTPException(status_code=404, detail=f"Unknown queue: {name}")
    return name


@router.post("/process", response_model=dict[str, DrainResult])
async def process_queues(queue: QueueService = Depends(get_queue)) -> dict[str, DrainResult]:
    """Drain every configured queue once. Meant to be called by a scheduler."""
    results = await queue.process_all()
    logger.info(
        "queues_processed",
        processed={name: r.processed for name, r in results.items()},
    )
    return results


@router.get("", response_model=dict[str, QueueStatus])
async def queue_status(queue: QueueService = Depends(get_queue)) -> dict[str, QueueStatus]:
    return {name: queue.get_queue_status(name) for name in queue.queue_names}


@router.post("/{name}/jobs", response_model=QueueJob)
async def enqueue_job(
    name: str,
    body: EnqueueJobRequest,
    queue: QueueService = Depends(get_queue),
) -> QueueJob:
    """Add a job. Unknown job types are accepted and fail when processed."""
    return queue.add_job(
        _known_queue(queue, name),
        body.type,
        body.payload,
        priority=body.priority,
        delay=body.delay_seconds,
        max_attempts=body.max_attempts,
    )


@router.post("/{name}/retry")
async def retry_failed(name: str, queue: QueueService = Depends(get_queue)) -> dict:
    rearmed = queue.retry_failed_jobs(_known_queue(queue, name))
    return {"queue": name, "rearmed": rearmed, "status": queue.get_queue_status(name)}
