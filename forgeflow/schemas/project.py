"""Project records."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from forgeflow.schemas.session import utcnow


class ProjectStatus(StrEnum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    ARCHIVED = "archived"
    FAILED = "failed"


class DatabaseDescriptor(BaseModel):
    """Provisioned database reference. Credentials are never stored here."""

    provider: str = "mongodb_atlas"
    name: str
    host: str | None = None
    username: str | None = None


class ProjectSessions(BaseModel):
    initialization: str | None = None
    latest: str | None = None
    active: list[str] = Field(default_factory=list)


class ProjectStats(BaseModel):
    total_sessions: int = 0
    successful_deployments: int = 0
    failed_deployments: int = 0


class Project(BaseModel):
    id: str
    name: str
    template: str
    ai_provider: str | None = None
    model: str | None = None
    repository_url: str | None = None
    hosting_site_id: str | None = None
    hosting_url: str | None = None
    database: DatabaseDescriptor | None = None
    status: ProjectStatus = ProjectStatus.INITIALIZING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    sessions: ProjectSessions = Field(default_factory=ProjectSessions)
    stats: ProjectStats = Field(default_factory=ProjectStats)
