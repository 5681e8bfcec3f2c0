"""Session checkpoints and audit log for one workflow run."""

import structlog

from forgeflow.core.exceptions import SessionNotFoundError, SessionTerminalError
from forgeflow.schemas.session import (
    TERMINAL_STATUSES,
    LogEntry,
    LogLevel,
    RetryInfo,
    Session,
    SessionStatus,
    utcnow,
)
from forgeflow.storage.session_store import SessionStore
from forgeflow.workflow.state_machine import STATUS_LABELS, SessionStateMachine

logger = structlog.get_logger(__name__)


class SessionTracker:
    """Read-modify-write wrapper around one session.

    Every status/progress change goes through checkpoint(), which enforces
    the state machine and monotone progress before writing.
    """

    def __init__(self, store: SessionStore, session_id: str):
        self.store = store
        self.session_id = session_id

    async def load(self) -> Session:
        session = await self.store.get(self.session_id)
        if session is None:
            raise SessionNotFoundError(self.session_id)
        return session

    async def checkpoint(
        self,
        *,
        status: SessionStatus | None = None,
        progress: int | None = None,
        current_step: str | None = None,
        **fields,
    ) -> Session:
        """Validate and persist a status/progress update plus any extra session fields.

        Raises:
            SessionTerminalError: The session already ended (e.g. operator cancel)
            InvalidTransitionError: Status out of order or progress decreasing
        """
        session = await self.load()
        if session.is_terminal:
            raise SessionTerminalError(self.session_id, session.status.value)

        new_status = status or session.status
        new_progress = session.progress if progress is None else progress
        SessionStateMachine.validate(session.status, new_status)
        SessionStateMachine.validate_progress(session.progress, new_progress, new_status)

        update = {"status": new_status, "progress": new_progress, **fields}
        if current_step is not None:
            update["current_step"] = current_step
        elif new_status != session.status:
            update["current_step"] = STATUS_LABELS[new_status]
        if new_status in TERMINAL_STATUSES:
            update["end_time"] = utcnow()

        updated = session.model_copy(update=update)
        await self.store.put(self.session_id, updated)

        if new_status != session.status:
            logger.info(
                "session_status_changed",
                session_id=self.session_id,
                from_status=session.status.value,
                to_status=new_status.value,
                progress=new_progress,
            )
        return updated

    async def fail(self, error: str) -> Session:
        return await self.checkpoint(status=SessionStatus.FAILED, error=error)

    async def record_retry(self, retry_info: RetryInfo) -> Session:
        return await self.checkpoint(retry_info=retry_info)

    async def log(self, message: str, level: LogLevel = LogLevel.INFO, **metadata) -> None:
        """Append a line to the session's audit log and mirror it to structlog."""
        entry = LogEntry(level=level, message=message, metadata=metadata)
        await self.store.append_log(self.session_id, entry)
        getattr(logger, level.value)(
            "session_log",
            session_id=self.session_id,
            message=message,
            **metadata,
        )
