"""QueueService: named in-memory priority queues with bounded retry.

- Jobs sort by priority descending; equal priorities keep insertion order
- A drain processes every pending job that is due, one at a time
- A failed job is retried after ``2 ** attempts`` seconds until max_attempts
- Concurrent drains of the same queue are no-ops (per-queue guard)
- Exhausted jobs move to a per-queue dead-letter list that
  retry_failed_jobs() can re-arm
"""

import time
from collections.abc import Callable

import structlog

from forgeflow.core.exceptions import UnknownJobTypeError
from forgeflow.core.retry import RetryPolicy
from forgeflow.queue.registry import JobHandlerRegistry
from forgeflow.schemas.queue import DrainResult, QueueJob, QueueJobStatus, QueueStatus

logger = structlog.get_logger(__name__)

DEAD_LETTER_LIMIT = 100


class QueueService:
    def __init__(
        self,
        handlers: JobHandlerRegistry,
        *,
        queue_names: list[str] | None = None,
        backoff: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.handlers = handlers
        self.backoff = backoff or RetryPolicy(max_attempts=3, backoff_base=2.0, backoff_unit=1.0)
        self._clock = clock
        self._queues: dict[str, list[QueueJob]] = {name: [] for name in queue_names or []}
        self._dead_letters: dict[str, list[QueueJob]] = {}
        self._draining: set[str] = set()

    @property
    def queue_names(self) -> list[str]:
        return list(self._queues)

    def add_job(
        self,
        queue_name: str,
        job_type: str,
        payload: dict | None = None,
        *,
        priority: int = 0,
        delay: float = 0,
        max_attempts: int = 3,
    ) -> QueueJob:
        """Enqueue a job. Unknown types are accepted here and fail when processed."""
        now = self._clock()
        job = QueueJob(
            type=str(job_type),
            payload=payload or {},
            priority=priority,
            created_at=now,
            scheduled_for=now + delay if delay else None,
            max_attempts=max_attempts,
        )
        queue = self._queues.setdefault(queue_name, [])
        queue.append(job)
        queue.sort(key=lambda j: -j.priority)  # stable: ties keep insertion order

        logger.info("job_enqueued", queue=queue_name, job_id=job.id, job_type=job.type, priority=priority)
        return job

    def jobs(self, queue_name: str) -> list[QueueJob]:
        return list(self._queues.get(queue_name, []))

    def dead_letters(self, queue_name: str) -> list[QueueJob]:
        return list(self._dead_letters.get(queue_name, []))

    async def process_queue(self, queue_name: str) -> DrainResult:
        """Drain one queue: run every pending job whose scheduled time has come."""
        if queue_name in self._draining:
            logger.debug("queue_drain_skipped", queue=queue_name)
            return DrainResult(queue=queue_name, skipped=True, status=self.get_queue_status(queue_name))

        self._draining.add(queue_name)
        result = DrainResult(queue=queue_name)
        try:
            queue = self._queues.get(queue_name, [])
            now = self._clock()
            ready = [
                job for job in queue
                if job.status == QueueJobStatus.PENDING
                and (job.scheduled_for is None or job.scheduled_for <= now)
            ]

            for job in ready:
                await self._process_job(queue_name, job)
                result.processed += 1
                if job.status == QueueJobStatus.COMPLETED:
                    result.succeeded += 1
                elif job.status == QueueJobStatus.PENDING:
                    result.rescheduled += 1
                else:
                    result.failed += 1

            self._compact(queue_name)
        finally:
            self._draining.discard(queue_name)

        result.status = self.get_queue_status(queue_name)
        return result

    async def process_all(self) -> dict[str, DrainResult]:
        return {name: await self.process_queue(name) for name in list(self._queues)}

    async def _process_job(self, queue_name: str, job: QueueJob) -> None:
        job.status = QueueJobStatus.PROCESSING
        job.attempts += 1

        try:
            handler = self.handlers.resolve(job.type)
        except UnknownJobTypeError as exc:
            job.status = QueueJobStatus.FAILED
            job.error = str(exc)
            job.attempts = max(job.attempts, job.max_attempts)  # never retried
            logger.error("job_unknown_type", queue=queue_name, job_id=job.id, job_type=job.type)
            return

        try:
            await handler(job.payload)
        except Exception as exc:
            job.error = str(exc)
            if job.attempts >= job.max_attempts:
                job.status = QueueJobStatus.FAILED
                logger.error(
                    "job_failed",
                    queue=queue_name,
                    job_id=job.id,
                    job_type=job.type,
                    attempts=job.attempts,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            else:
                job.status = QueueJobStatus.PENDING
                job.scheduled_for = self._clock() + self.backoff.delay_for(job.attempts)
                logger.warning(
                    "job_retry_scheduled",
                    queue=queue_name,
                    job_id=job.id,
                    job_type=job.type,
                    attempts=job.attempts,
                    scheduled_for=job.scheduled_for,
                    error=str(exc),
                )
            return

        job.status = QueueJobStatus.COMPLETED
        job.error = None
        logger.info("job_completed", queue=queue_name, job_id=job.id, job_type=job.type)

    def _compact(self, queue_name: str) -> None:
        """Drop completed jobs; move exhausted failures to the dead-letter list."""
        kept: list[QueueJob] = []
        dead = self._dead_letters.setdefault(queue_name, [])
        for job in self._queues.get(queue_name, []):
            if job.status == QueueJobStatus.COMPLETED:
                continue
            if job.status == QueueJobStatus.FAILED and job.attempts >= job.max_attempts:
                dead.append(job)
                continue
            kept.append(job)
        self._queues[queue_name] = kept
        del dead[:-DEAD_LETTER_LIMIT]

    def get_queue_status(self, queue_name: str) -> QueueStatus:
        jobs = self._queues.get(queue_name, [])
        counts = {status: 0 for status in QueueJobStatus}
        for job in jobs:
            counts[job.status] += 1
        return QueueStatus(
            pending=counts[QueueJobStatus.PENDING],
            processing=counts[QueueJobStatus.PROCESSING],
            completed=counts[QueueJobStatus.COMPLETED],
            failed=counts[QueueJobStatus.FAILED],
            dead_letter=len(self._dead_letters.get(queue_name, [])),
            total=len(jobs),
        )

    def retry_failed_jobs(self, queue_name: str) -> int:
        """Re-arm dead-lettered jobs of known types with a fresh attempt budget.

        Returns:
            Number of jobs moved back to pending
        """
        dead = self._dead_letters.get(queue_name, [])
        rearmed, remaining = [], []
        for job in dead:
            (rearmed if self.handlers.knows(job.type) else remaining).append(job)

        for job in rearmed:
            job.status = QueueJobStatus.PENDING
            job.attempts = 0
            job.scheduled_for = None
            job.error = None
            self._queues.setdefault(queue_name, []).append(job)

        if rearmed:
            self._queues[queue_name].sort(key=lambda j: -j.priority)
            logger.info("jobs_rearmed", queue=queue_name, count=len(rearmed))
        self._dead_letters[queue_name] = remaining
        return len(rearmed)
