"""Per-process service graph, built once at startup and kept on ``app.state``."""

from dataclasses import dataclass

from redis.asyncio import Redis

from forgeflow.core.config import Settings, get_settings
from forgeflow.integrations.atlas import AtlasClient
from forgeflow.integrations.base import AIGenerator, DatabaseProvisioner, Hosting, SourceControl
from forgeflow.integrations.github import GitHubClient
from forgeflow.integrations.llm import AnthropicGenerator
from forgeflow.integrations.netlify import NetlifyClient
from forgeflow.queue.handlers import BackgroundJobHandlers
from forgeflow.queue.manager import QueueService
from forgeflow.queue.rate_limiter import RateLimiter
from forgeflow.recovery.loop import RecoveryLoop
from forgeflow.services.workflow_service import WorkflowService
from forgeflow.storage.project_store import ProjectStore
from forgeflow.storage.session_store import SessionStore
from forgeflow.workflow.deploy_watcher import DeployWatcher
from forgeflow.workflow.pipelines import PhaseDependencies


@dataclass
class ServiceContainer:
    settings: Settings
    redis: Redis
    sessions: SessionStore
    projects: ProjectStore
    rate_limiter: RateLimiter
    queue: QueueService
    workflows: WorkflowService

    @classmethod
    def build(
        cls,
        redis: Redis,
        settings: Settings | None = None,
        *,
        sessions: SessionStore | None = None,
        source_control: SourceControl | None = None,
        hosting: Hosting | None = None,
        generator: AIGenerator | None = None,
        database: DatabaseProvisioner | None = None,
        watcher: DeployWatcher | None = None,
    ) -> "ServiceContainer":
        """Wire stores, collaborators, queue and workflow service.

        Keyword arguments replace the default store and the real API clients.
        """
        settings = settings or get_settings()
        sessions = sessions or SessionStore(
            redis,
            key_prefix=settings.key_prefix,
            change_request_ttl=settings.change_request_session_ttl_seconds,
            provisioning_ttl=settings.provisioning_session_ttl_seconds,
        )
        projects = ProjectStore(redis, key_prefix=settings.key_prefix, ttl=settings.project_ttl_seconds)

        source_control = source_control or GitHubClient(settings.github_token, settings.github_api_url)
        hosting = hosting or NetlifyClient(settings.netlify_token, settings.netlify_api_url)
        generator = generator or AnthropicGenerator(
            settings.anthropic_api_key, settings.default_model, settings.generation_max_tokens
        )
        if database is None:
            atlas = AtlasClient(
                settings.atlas_public_key,
                settings.atlas_private_key,
                settings.atlas_project_id,
                settings.atlas_cluster_host,
                base_url=settings.atlas_api_url,
            )
            database = atlas if atlas.configured else None

        watcher = watcher or DeployWatcher(
            hosting,
            timeout=settings.deploy_timeout_seconds,
            poll_interval=settings.deploy_poll_interval_seconds,
        )
        recovery = RecoveryLoop(
            hosting, source_control, generator, watcher, max_retries=settings.recovery_max_retries
        )
        rate_limiter = RateLimiter.from_settings(settings.provider_rate_limits)

        queue = QueueService(
            BackgroundJobHandlers(sessions, settings).registry(),
            queue_names=settings.queue_names,
        )
        deps = PhaseDependencies(
            projects=projects,
            source_control=source_control,
            hosting=hosting,
            generator=generator,
            database=database,
            rate_limiter=rate_limiter,
            watcher=watcher,
            recovery=recovery,
            settings=settings,
        )
        return cls(
            settings=settings,
            redis=redis,
            sessions=sessions,
            projects=projects,
            rate_limiter=rate_limiter,
            queue=queue,
            workflows=WorkflowService(sessions, projects, deps, queue),
        )
