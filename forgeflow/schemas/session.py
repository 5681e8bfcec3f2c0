"""Session records, log entries and session id generation."""

import secrets
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class SessionType(StrEnum):
    INIT = "INIT"
    DEPLOYMENT = "DEPLOYMENT"
    DEVELOPMENT = "DEVELOPMENT"
    CHANGE_REQUEST = "CHANGE_REQUEST"
    TEST = "TEST"


class SessionStatus(StrEnum):
    """Session lifecycle states, in pipeline order."""

    PENDING = "pending"
    INITIALIZING = "initializing"
    PREPARING = "preparing"
    SANDBOX_CREATING = "sandbox_creating"
    GENERATING = "generating"
    AI_PROCESSING = "ai_processing"
    COMMITTING = "committing"
    SETTING_UP_INFRASTRUCTURE = "setting_up_infrastructure"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"  # deploy triggered, readiness unconfirmed
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED})

# Short tags embedded in session ids
SESSION_TYPE_TAGS: dict[SessionType, str] = {
    SessionType.INIT: "init",
    SessionType.DEPLOYMENT: "deploy",
    SessionType.DEVELOPMENT: "dev",
    SessionType.CHANGE_REQUEST: "change",
    SessionType.TEST: "test",
}


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_session_id(session_type: SessionType, now: datetime | None = None) -> str:
    """Build ``{tag}_{epoch_ms}_{random}``.

    Epoch milliseconds are zero-padded so ids of one type sort by creation time.
    """
    now = now or utcnow()
    millis = int(now.timestamp() * 1000)
    return f"{SESSION_TYPE_TAGS[session_type]}_{millis:013d}_{secrets.token_hex(4)}"


class RetryInfo(BaseModel):
    attempt: int = 0
    max_retries: int
    last_error: str | None = None
    next_retry_at: datetime | None = None


class LogLevel(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogEntry(BaseModel):
    """One append-only line of a session's audit log."""

    timestamp: datetime = Field(default_factory=utcnow)
    level: LogLevel = LogLevel.INFO
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """Durable record of one workflow run."""

    id: str
    project_id: str | None = None
    type: SessionType
    status: SessionStatus = SessionStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    current_step: str = "Queued"
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    error: str | None = None
    retry_info: RetryInfo | None = None
    changes: list[dict[str, Any]] = Field(default_factory=list)
    log_count: int = 0

    # Type-specific
    repository_url: str | None = None
    template_id: str | None = None
    ai_provider: str | None = None
    model: str | None = None
    deployment_url: str | None = None
    site_id: str | None = None
    database_name: str | None = None
    generated_files: list[str] = Field(default_factory=list)

    # X-Request-ID of the request that created the session
    correlation_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class SessionView(Session):
    """Session plus its log, as returned by GET /api/sessions/{id}."""

    logs: list[LogEntry] = Field(default_factory=list)


class SessionSummary(BaseModel):
    id: str
    type: SessionType
    status: SessionStatus
    progress: int
    current_step: str
    project_id: str | None
    start_time: datetime
    end_time: datetime | None
