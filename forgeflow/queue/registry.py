"""Job type -> handler dispatch table."""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from forgeflow.core.exceptions import UnknownJobTypeError
from forgeflow.schemas.queue import JobType

JobHandler = Callable[[dict[str, Any]], Awaitable[None]]


class JobHandlerRegistry:
    """Closed dispatch table: every JobType must have a handler at construction."""

    def __init__(self, handlers: Mapping[JobType, JobHandler]):
        missing = set(JobType) - set(handlers)
        if missing:
            raise ValueError(f"No handler registered for job types: {sorted(t.value for t in missing)}")
        self._handlers: dict[JobType, JobHandler] = dict(handlers)

    def knows(self, job_type: str) -> bool:
        return job_type in {t.value for t in JobType}

    def resolve(self, job_type: str) -> JobHandler:
        """Handler for ``job_type``.

        Raises:
            UnknownJobTypeError: If the type is not a JobType member
        """
        try:
            return self._handlers[JobType(job_type)]
        except ValueError:
            raise UnknownJobTypeError(job_type) from None
