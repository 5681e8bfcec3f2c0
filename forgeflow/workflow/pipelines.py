"""Pipeline definitions: which phases run, in what order, at which checkpoints."""

from dataclasses import dataclass

from forgeflow.core.config import Settings
from forgeflow.integrations.base import AIGenerator, DatabaseProvisioner, Hosting, SourceControl
from forgeflow.queue.rate_limiter import RateLimiter
from forgeflow.recovery.loop import RecoveryLoop
from forgeflow.schemas.session import SessionStatus, SessionType
from forgeflow.schemas.workflow import WorkflowRequest
from forgeflow.storage.project_store import ProjectStore
from forgeflow.workflow.deploy_watcher import DeployWatcher
from forgeflow.workflow.phases import (
    AIGeneratePhase,
    CommitPhase,
    DeployPhase,
    InfraSetupPhase,
    Phase,
    SessionInitPhase,
    TemplateFetchPhase,
)


@dataclass(frozen=True)
class PipelineStep:
    """One phase plus the checkpoint written before (status) and after (progress) it."""

    phase: Phase
    status: SessionStatus
    progress: int
    label: str


@dataclass
class PhaseDependencies:
    projects: ProjectStore
    source_control: SourceControl
    hosting: Hosting
    generator: AIGenerator
    database: DatabaseProvisioner | None
    rate_limiter: RateLimiter
    watcher: DeployWatcher
    recovery: RecoveryLoop
    settings: Settings

    @property
    def provider_api_keys(self) -> dict[str, str]:
        s = self.settings
        return {
            "anthropic": s.anthropic_api_key,
            "openai": s.openai_api_key,
            "google": s.google_api_key,
            "grok": s.xai_api_key,
        }


# Progress written once the session reaches a terminal/soft-terminal state
COMPLETED_PROGRESS = 100
UNCONFIRMED_PROGRESS = 98


def session_type_for(request: WorkflowRequest) -> SessionType:
    return SessionType.INIT if request.wants_ai else SessionType.DEPLOYMENT


def _infra(deps: PhaseDependencies) -> InfraSetupPhase:
    return InfraSetupPhase(
        deps.hosting,
        deps.projects,
        deps.database,
        base_branch=deps.settings.default_branch,
        provider_api_keys=deps.provider_api_keys,
    )


def _deploy(deps: PhaseDependencies) -> DeployPhase:
    return DeployPhase(
        deps.hosting,
        deps.watcher,
        deps.recovery,
        deps.projects,
        base_branch=deps.settings.default_branch,
    )


def full_pipeline(deps: PhaseDependencies) -> list[PipelineStep]:
    """AI customization pipeline, used when user requirements are supplied."""
    return [
        PipelineStep(SessionInitPhase(deps.projects, SessionType.INIT),
                     SessionStatus.INITIALIZING, 10, "Initializing session"),
        PipelineStep(TemplateFetchPhase(deps.source_control),
                     SessionStatus.PREPARING, 30, "Fetching template files"),
        PipelineStep(AIGeneratePhase(deps.generator, deps.rate_limiter),
                     SessionStatus.GENERATING, 50, "Generating code with AI"),
        PipelineStep(CommitPhase(deps.source_control, deps.settings.default_branch),
                     SessionStatus.COMMITTING, 60, "Committing generated files"),
        PipelineStep(_infra(deps),
                     SessionStatus.SETTING_UP_INFRASTRUCTURE, 80, "Setting up infrastructure"),
        PipelineStep(_deploy(deps),
                     SessionStatus.DEPLOYING, 90, "Deploying application"),
    ]


def standard_pipeline(deps: PhaseDependencies) -> list[PipelineStep]:
    """Deploy the template as-is."""
    return [
        PipelineStep(SessionInitPhase(deps.projects, SessionType.DEPLOYMENT),
                     SessionStatus.INITIALIZING, 10, "Initializing session"),
        PipelineStep(TemplateFetchPhase(deps.source_control, metadata_only=True),
                     SessionStatus.SETTING_UP_INFRASTRUCTURE, 40, "Resolving template"),
        PipelineStep(_infra(deps),
                     SessionStatus.SETTING_UP_INFRASTRUCTURE, 80, "Setting up infrastructure"),
        PipelineStep(_deploy(deps),
                     SessionStatus.DEPLOYING, 90, "Deploying application"),
    ]


def pipeline_for(request: WorkflowRequest, deps: PhaseDependencies) -> list[PipelineStep]:
    return full_pipeline(deps) if request.wants_ai else standard_pipeline(deps)
