"""Redis-backed project persistence."""

from collections.abc import Callable
from datetime import timedelta

import structlog
from redis.asyncio import Redis

from forgeflow.core.exceptions import ProjectNotFoundError
from forgeflow.schemas.project import Project
from forgeflow.schemas.session import utcnow

logger = structlog.get_logger(__name__)

PROJECT_TTL = int(timedelta(days=30).total_seconds())


class ProjectStore:
    """Projects live at ``{prefix}:project:{id}``. The workflow never deletes them."""

    def __init__(self, redis: Redis, *, key_prefix: str = "forgeflow", ttl: int = PROJECT_TTL):
        self.redis = redis
        self.key_prefix = key_prefix
        self.ttl = ttl

    def _key(self, project_id: str) -> str:
        return f"{self.key_prefix}:project:{project_id}"

    async def create_project(self, project: Project) -> Project:
        """Store a project unless one with the same id already exists.

        Returns:
            The stored project (the existing one if the id was taken)
        """
        created = await self.redis.set(
            self._key(project.id), project.model_dump_json(), nx=True, ex=self.ttl
        )
        if not created:
            existing = await self.get_project(project.id)
            if existing is not None:
                return existing
        logger.info("project_created", project_id=project.id, template=project.template)
        return project

    async def get_project(self, project_id: str) -> Project | None:
        raw = await self.redis.get(self._key(project_id))
        return Project.model_validate_json(raw) if raw else None

    async def put_project(self, project: Project) -> Project:
        """Overwrite a project and refresh its TTL.

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        project.updated_at = utcnow()
        written = await self.redis.set(
            self._key(project.id), project.model_dump_json(), xx=True, ex=self.ttl
        )
        if not written:
            raise ProjectNotFoundError(project.id)
        return project

    async def update_project(self, project_id: str, mutate: Callable[[Project], None]) -> Project:
        """Read-modify-write helper: apply ``mutate`` in place and store the result."""
        project = await self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        mutate(project)
        return await self.put_project(project)

    async def list_projects(self) -> list[Project]:
        keys = [key async for key in self.redis.scan_iter(match=f"{self.key_prefix}:project:*")]
        if not keys:
            return []
        projects = [Project.model_validate_json(raw) for raw in await self.redis.mget(keys) if raw]
        projects.sort(key=lambda p: p.created_at)
        return projects
