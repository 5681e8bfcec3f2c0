"""Background job queue models."""

import uuid
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class JobType(StrEnum):
    """Closed set of background job kinds. Every member needs a registered handler."""

    SEND_NOTIFICATION = "send_notification"
    CLEANUP_SESSION = "cleanup_session"
    BACKUP_DATA = "backup_data"
    GENERATE_REPORT = "generate_report"


class QueueJobStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueJob(BaseModel):
    """A unit of best-effort background work.

    ``type`` is kept as a plain string so a job naming an unknown type can
    still be queued and then fail on its own without affecting its neighbours.
    Timestamps are epoch seconds from the queue's clock.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    created_at: float
    scheduled_for: float | None = None
    attempts: int = 0
    max_attempts: int = 3
    status: QueueJobStatus = QueueJobStatus.PENDING
    error: str | None = None


class EnqueueJobRequest(BaseModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    delay_seconds: float = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)


class QueueStatus(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    dead_letter: int = 0
    total: int = 0


class DrainResult(BaseModel):
    """Outcome of one drain pass over a queue."""

    queue: str
    skipped: bool = False  # another drain of this queue was already running
    processed: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    failed: int = 0
    status: QueueStatus = Field(default_factory=QueueStatus)
