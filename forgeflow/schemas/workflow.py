"""Request/response models for starting a workflow."""

import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

_GITHUB_REPO_RE = re.compile(r"^https://github\.com/([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+?)(?:\.git)?/?$")


class AIProvider(StrEnum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    GROK = "grok"


class CommitStrategy(StrEnum):
    DIRECT = "direct"  # one commit per file on the base branch
    PULL_REQUEST = "pull_request"  # branch, commit, PR, merge, delete branch


class WorkflowRequest(BaseModel):
    """Body of POST /api/workflows.

    Supplying user_requirements selects the full AI pipeline; without it the
    template is deployed as-is.
    """

    model_config = ConfigDict(frozen=True)

    template_id: str = Field(min_length=1)
    repository_url: str
    user_requirements: str | None = None
    project_name: str | None = Field(default=None, max_length=100)
    project_id: str | None = None
    ai_provider: AIProvider = AIProvider.ANTHROPIC
    model: str | None = None
    commit_strategy: CommitStrategy = CommitStrategy.DIRECT
    auto_setup_database: bool = True

    @field_validator("repository_url")
    @classmethod
    def _github_https_url(cls, value: str) -> str:
        if not _GITHUB_REPO_RE.match(value.strip()):
            raise ValueError("repository_url must look like https://github.com/<owner>/<repo>")
        return value.strip()

    @field_validator("user_requirements")
    @classmethod
    def _blank_requirements_are_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def wants_ai(self) -> bool:
        return self.user_requirements is not None

    @property
    def repo_full_name(self) -> str:
        """``owner/repo`` parsed from repository_url."""
        match = _GITHUB_REPO_RE.match(self.repository_url)
        return f"{match.group(1)}/{match.group(2)}"

    @property
    def resolved_project_name(self) -> str:
        return self.project_name or self.repo_full_name.split("/", 1)[1]


class WorkflowStartResponse(BaseModel):
    session_id: str
    status_url: str
