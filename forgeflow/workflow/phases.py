"""Workflow phases.

A phase takes the current WorkflowContext and returns a new one. It may
only change the context fields listed in ``produces``; the executor
enforces this. Session-visible details (site id, generated files, ...) are
written through the SessionTracker the phase receives.
"""

import asyncio
import secrets
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import ClassVar

import structlog

from forgeflow.core.exceptions import (
    DatabaseProvisioningError,
    GitOperationError,
    HostingError,
    PhaseError,
)
from forgeflow.domain.templates import (
    get_template,
    provider_environment,
    template_environment,
    url_environment,
)
from forgeflow.integrations.base import (
    AIGenerator,
    DatabaseCredentials,
    DatabaseProvisioner,
    Hosting,
    SourceControl,
)
from forgeflow.integrations.llm import strip_code_fences
from forgeflow.queue.rate_limiter import RateLimiter
from forgeflow.recovery.loop import RecoveryLoop
from forgeflow.schemas.project import DatabaseDescriptor, Project
from forgeflow.schemas.session import LogLevel, SessionType
from forgeflow.schemas.workflow import AIProvider, CommitStrategy
from forgeflow.storage.project_store import ProjectStore
from forgeflow.workflow.context import (
    CommitRecord,
    DatabaseHandle,
    DeploymentState,
    GeneratedFile,
    InfrastructureHandles,
    TemplateBundle,
    TemplateFile,
    WorkflowContext,
)
from forgeflow.workflow.deploy_watcher import DeployWatcher
from forgeflow.workflow.prompts import GENERATION_SYSTEM_PROMPT, generation_prompt
from forgeflow.workflow.tracker import SessionTracker

logger = structlog.get_logger(__name__)


class Phase(ABC):
    name: ClassVar[str]
    produces: ClassVar[frozenset[str]]

    @abstractmethod
    async def run(self, ctx: WorkflowContext, tracker: SessionTracker) -> WorkflowContext:
        """Run the phase and return the evolved context. Raise to fail the session."""


def new_project_id() -> str:
    return f"proj_{secrets.token_hex(8)}"


# ---------------------------------------------------------------------------
# session-init
# ---------------------------------------------------------------------------


class SessionInitPhase(Phase):
    """Create (or reuse) the project and attach the session to it."""

    name = "session-init"
    produces = frozenset({"project_id"})

    def __init__(self, projects: ProjectStore, session_type: SessionType):
        self.projects = projects
        self.session_type = session_type

    async def run(self, ctx, tracker):
        request = ctx.request
        project = None
        if request.project_id:
            project = await self.projects.get_project(request.project_id)
            if project is None:
                raise PhaseError(self.name, f"Project {request.project_id} not found")

        if project is None:
            project = await self.projects.create_project(Project(
                id=new_project_id(),
                name=request.resolved_project_name,
                template=request.template_id,
                ai_provider=request.ai_provider.value,
                model=request.model,
                repository_url=request.repository_url,
            ))

        def attach(p: Project) -> None:
            if ctx.session_id not in p.sessions.active:
                p.sessions.active.append(ctx.session_id)
            p.sessions.latest = ctx.session_id
            if self.session_type == SessionType.INIT and p.sessions.initialization is None:
                p.sessions.initialization = ctx.session_id
            p.stats.total_sessions += 1

        project = await self.projects.update_project(project.id, attach)
        await tracker.checkpoint(project_id=project.id)
        await tracker.log(f"Session initialized for project {project.name}", project_id=project.id)
        return ctx.evolve(project_id=project.id)


# ---------------------------------------------------------------------------
# template-fetch
# ---------------------------------------------------------------------------


class TemplateFetchPhase(Phase):
    """Resolve the template; optionally pull its core files for AI customization."""

    name = "template-fetch"
    produces = frozenset({"template"})

    def __init__(self, source_control: SourceControl, *, metadata_only: bool = False):
        self.source_control = source_control
        self.metadata_only = metadata_only

    async def run(self, ctx, tracker):
        spec = get_template(ctx.request.template_id)
        await tracker.log(f"Using template: {spec.name}", template_id=spec.id)

        files: list[TemplateFile] = []
        if not self.metadata_only:
            for path in spec.core_files:
                try:
                    content = await self.source_control.get_file_content(spec.repository, path, spec.branch)
                except GitOperationError as exc:
                    await tracker.log(f"Could not retrieve {path}: {exc}", LogLevel.WARNING)
                    continue
                if content is None:
                    await tracker.log(f"Template file {path} not found", LogLevel.WARNING)
                    continue
                files.append(TemplateFile(path=path, purpose=spec.purpose_of(path), content=content))

            if not files:
                raise PhaseError(self.name, "No template files could be retrieved")
            await tracker.log(f"Retrieved {len(files)} template files for customization")

        return ctx.evolve(template=TemplateBundle(
            template_id=spec.id,
            name=spec.name,
            repository=spec.repository,
            branch=spec.branch,
            env_vars=spec.env_vars,
            needs_database=spec.needs_database,
            files=tuple(files),
        ))


# ---------------------------------------------------------------------------
# ai-generate
# ---------------------------------------------------------------------------


class AIGeneratePhase(Phase):
    """Customize each template file from the user's requirements."""

    name = "ai-generate"
    produces = frozenset({"generated_files"})

    SUPPORTED_PROVIDERS = frozenset({AIProvider.ANTHROPIC})
    RESET_MARGIN_SECONDS = 0.01

    def __init__(
        self,
        generator: AIGenerator,
        rate_limiter: RateLimiter,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.generator = generator
        self.rate_limiter = rate_limiter
        self._sleep = sleep
        self._clock = clock

    async def _admit(self, provider: str, caller_key: str, tracker: SessionTracker) -> None:
        """Wait until the rate limiter admits one more request."""
        while True:
            decision = self.rate_limiter.check_limit(provider, caller_key)
            if decision.allowed:
                return
            # A window only resets once now > reset_time
            wait = max(decision.reset_time - self._clock(), 0.0) + self.RESET_MARGIN_SECONDS
            await tracker.log(f"Rate limit reached for {provider}; waiting {wait:.0f}s", LogLevel.WARNING)
            await self._sleep(wait)

    async def run(self, ctx, tracker):
        request = ctx.request
        if not request.user_requirements:
            raise PhaseError(self.name, "No user requirements provided for AI generation")
        if ctx.template is None or not ctx.template.files:
            raise PhaseError(self.name, "No template files available for AI generation")
        if request.ai_provider not in self.SUPPORTED_PROVIDERS:
            raise PhaseError(self.name, f"AI provider '{request.ai_provider.value}' is not supported")

        provider = request.ai_provider.value
        caller_key = ctx.project_id or ctx.session_id
        generated: list[GeneratedFile] = []

        await tracker.log("Generating project files with AI")
        for template_file in ctx.template.files:
            await self._admit(provider, caller_key, tracker)
            response = await self.generator.generate(
                generation_prompt(
                    template_file.path,
                    template_file.purpose,
                    template_file.content,
                    request.user_requirements,
                    request.resolved_project_name,
                ),
                model=request.model,
                system=GENERATION_SYSTEM_PROMPT,
            )
            content = strip_code_fences(response)
            if not content:
                await tracker.log(f"No content generated for {template_file.path}", LogLevel.WARNING)
                continue
            generated.append(GeneratedFile(path=template_file.path, content=content))
            await tracker.log(f"Generated {template_file.path}")

        if not generated:
            raise PhaseError(self.name, "AI failed to generate any files")

        await tracker.checkpoint(generated_files=[f.path for f in generated])
        await tracker.log(f"AI generated {len(generated)} project files")
        return ctx.evolve(generated_files=tuple(generated))


# ---------------------------------------------------------------------------
# commit
# ---------------------------------------------------------------------------


class CommitPhase(Phase):
    """Commit generated files, one commit per file, directly or through a merged PR."""

    name = "commit"
    produces = frozenset({"commits"})

    def __init__(self, source_control: SourceControl, base_branch: str = "main"):
        self.source_control = source_control
        self.base_branch = base_branch

    async def _commit_each(self, ctx: WorkflowContext, repo: str, branch: str, tracker) -> list[CommitRecord]:
        records = []
        for generated in ctx.generated_files:
            message = f"AI-generated: {generated.path} for {ctx.request.resolved_project_name}"
            sha = await self.source_control.commit_files(repo, branch, {generated.path: generated.content}, message)
            records.append(CommitRecord(sha=sha, message=message, paths=(generated.path,)))
            await tracker.log(f"Committed changes to {generated.path}", sha=sha)
        return records

    async def run(self, ctx, tracker):
        if not ctx.generated_files:
            raise PhaseError(self.name, "No generated files to commit")

        repo = ctx.request.repo_full_name
        if ctx.request.commit_strategy == CommitStrategy.DIRECT:
            records = await self._commit_each(ctx, repo, self.base_branch, tracker)
            await tracker.log(f"Committed {len(records)} files directly to {self.base_branch}")
            return ctx.evolve(commits=tuple(records))

        branch = f"forgeflow/{ctx.session_id}"
        await self.source_control.create_branch(repo, branch, self.base_branch)
        records = await self._commit_each(ctx, repo, branch, tracker)

        number = await self.source_control.create_pull_request(
            repo,
            title=f"AI customization for {ctx.request.resolved_project_name}",
            body=f"Generated by session {ctx.session_id}:\n"
            + "\n".join(f"- {r.paths[0]}" for r in records),
            head=branch,
            base=self.base_branch,
        )
        await self.source_control.merge_pull_request(
            repo, number, commit_title=f"AI customization ({ctx.session_id})"
        )
        await tracker.log(f"Merged pull request #{number} into {self.base_branch}", pull_request=number)

        try:
            await self.source_control.delete_branch(repo, branch)
        except GitOperationError as exc:
            await tracker.log(f"Could not delete branch {branch}: {exc}", LogLevel.WARNING)

        return ctx.evolve(commits=tuple(records))


# ---------------------------------------------------------------------------
# infra-setup
# ---------------------------------------------------------------------------


class InfraSetupPhase(Phase):
    """Provision the database (best effort), create the site, set env vars."""

    name = "infra-setup"
    produces = frozenset({"infrastructure"})

    def __init__(
        self,
        hosting: Hosting,
        projects: ProjectStore,
        database: DatabaseProvisioner | None,
        *,
        base_branch: str = "main",
        provider_api_keys: dict[str, str] | None = None,
    ):
        self.hosting = hosting
        self.projects = projects
        self.database = database
        self.base_branch = base_branch
        self.provider_api_keys = provider_api_keys or {}

    async def _provision_database(self, ctx: WorkflowContext, tracker) -> DatabaseCredentials | None:
        if not (ctx.request.auto_setup_database and ctx.template.needs_database and self.database):
            return None
        try:
            creds = await self.database.create_database(ctx.request.resolved_project_name)
        except DatabaseProvisioningError as exc:
            # No rollback or hard failure; the site deploys without a database
            await tracker.log(f"Database setup failed, continuing without it: {exc}", LogLevel.WARNING)
            return None
        await tracker.log(f"Database {creds.name} provisioned", database=creds.name)
        return creds

    async def run(self, ctx, tracker):
        if ctx.template is None:
            raise PhaseError(self.name, "Template metadata missing")
        request = ctx.request
        template = get_template(ctx.template.template_id)

        creds = await self._provision_database(ctx, tracker)

        try:
            site = await self.hosting.create_site(
                request.resolved_project_name, request.repo_full_name, self.base_branch
            )
        except HostingError as exc:
            raise PhaseError(self.name, f"Could not create site: {exc}") from exc
        await tracker.log(f"Site created: {site.url}", site_id=site.site_id)

        database = (
            {"connection_string": creds.connection_string, "name": creds.name, "username": creds.username}
            if creds else None
        )
        env = template_environment(
            template,
            project_name=request.resolved_project_name,
            repository_url=request.repository_url,
            base_branch=self.base_branch,
            database=database,
            site_url=site.url,
        )
        env.update(provider_environment(self.provider_api_keys, request.ai_provider.value, request.model))
        await self.hosting.set_environment_variables(site.site_id, env)
        await tracker.log(f"Configured {len(env)} environment variables")

        handle = DatabaseHandle(name=creds.name, host=creds.host, username=creds.username) if creds else None
        await tracker.checkpoint(site_id=site.site_id, database_name=creds.name if creds else None)

        def link(p: Project) -> None:
            p.hosting_site_id = site.site_id
            p.hosting_url = site.url
            if handle is not None:
                p.database = DatabaseDescriptor(name=handle.name, host=handle.host, username=handle.username)

        await self.projects.update_project(ctx.project_id, link)

        return ctx.evolve(infrastructure=InfrastructureHandles(
            site_id=site.site_id,
            site_name=site.name,
            site_url=site.url,
            database=handle,
            env_var_names=tuple(sorted(env)),
        ))


# ---------------------------------------------------------------------------
# deploy
# ---------------------------------------------------------------------------


class DeployPhase(Phase):
    """Trigger a deploy, wait for it, and hand failures to the recovery loop."""

    name = "deploy"
    produces = frozenset({"deployment"})

    def __init__(
        self,
        hosting: Hosting,
        watcher: DeployWatcher,
        recovery: RecoveryLoop,
        projects: ProjectStore,
        *,
        base_branch: str = "main",
    ):
        self.hosting = hosting
        self.watcher = watcher
        self.recovery = recovery
        self.projects = projects
        self.base_branch = base_branch

    async def run(self, ctx, tracker):
        infra = ctx.infrastructure
        if infra is None or not infra.site_id:
            await tracker.log("No site to deploy; skipping deployment", LogLevel.WARNING)
            return ctx.evolve(deployment=DeploymentState(state="skipped"))

        deploy_id = await self.hosting.trigger_deploy(infra.site_id)
        await tracker.log("Deployment triggered", deploy_id=deploy_id)
        status = await self.watcher.wait(deploy_id, on_state=tracker.log)

        attempts = 0
        if status.is_error:
            # DeploymentFailedError propagates and fails the session with its diagnostic
            result = await self.recovery.run(
                tracker=tracker,
                repo=ctx.request.repo_full_name,
                branch=self.base_branch,
                site_id=infra.site_id,
                failed=status,
                model=ctx.request.model,
            )
            status, attempts = result.deploy, result.attempts

        url = status.url or infra.site_url
        state = "ready" if status.is_ready else "pending"
        await tracker.checkpoint(deployment_url=url)

        if status.is_ready and url and url != infra.site_url and ctx.template is not None:
            await self.hosting.set_environment_variables(
                infra.site_id, url_environment(get_template(ctx.template.template_id), url)
            )

        if status.is_ready:
            def publish(p: Project) -> None:
                p.hosting_url = url

            await self.projects.update_project(ctx.project_id, publish)
            await tracker.log(f"Deployment live at {url}", url=url, recovery_attempts=attempts)
        else:
            await tracker.log("Deployment triggered but not confirmed before timeout", LogLevel.WARNING)

        return ctx.evolve(deployment=DeploymentState(
            state=state, deploy_id=status.deploy_id, url=url, recovery_attempts=attempts
        ))
