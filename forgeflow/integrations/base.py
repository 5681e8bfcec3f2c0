"""Contracts the workflow relies on for each external service.

Phases depend on these protocols only; the concrete clients (GitHub,
Netlify, MongoDB Atlas, Anthropic) and the in-memory test fakes both
satisfy them.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class SiteInfo:
    site_id: str
    name: str
    url: str


@dataclass(frozen=True)
class DeployStatus:
    """Hosting-side state of one deploy.

    state is the provider's lifecycle word; "ready" and "error" are final.
    """

    deploy_id: str
    state: str
    url: str | None = None
    error_message: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.state == "ready"

    @property
    def is_error(self) -> bool:
        return self.state == "error"

    @property
    def is_final(self) -> bool:
        return self.is_ready or self.is_error


@dataclass(frozen=True)
class DatabaseCredentials:
    name: str
    connection_string: str
    username: str
    password: str = field(repr=False)
    host: str | None = None


@runtime_checkable
class SourceControl(Protocol):
    async def get_file_content(self, repo: str, path: str, ref: str | None = None) -> str | None: ...

    async def create_branch(self, repo: str, branch: str, from_branch: str) -> None: ...

    async def delete_branch(self, repo: str, branch: str) -> None: ...

    async def commit_files(self, repo: str, branch: str, files: dict[str, str], message: str) -> str: ...

    async def create_pull_request(self, repo: str, title: str, body: str, head: str, base: str) -> int: ...

    async def merge_pull_request(self, repo: str, number: int, commit_title: str | None = None) -> str: ...


@runtime_checkable
class Hosting(Protocol):
    async def create_site(self, name: str, repo: str, branch: str) -> SiteInfo: ...

    async def set_environment_variables(self, site_id: str, variables: dict[str, str]) -> None: ...

    async def trigger_deploy(self, site_id: str) -> str: ...

    async def get_deployment_status(self, deploy_id: str) -> DeployStatus: ...

    async def get_build_log(self, deploy_id: str) -> str: ...


@runtime_checkable
class AIGenerator(Protocol):
    async def generate(self, prompt: str, *, model: str | None = None, system: str | None = None) -> str: ...


@runtime_checkable
class DatabaseProvisioner(Protocol):
    async def create_database(self, name: str) -> DatabaseCredentials: ...
