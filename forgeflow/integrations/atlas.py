"""MongoDB Atlas Integration: provision a database user per project.

MongoDB creates a database on first write, so provisioning means creating
a user scoped to the database and handing back a connection string for
the shared cluster.
"""

import re
import secrets

import httpx
import structlog

from forgeflow.core.config import get_settings
from forgeflow.core.exceptions import DatabaseProvisioningError
from forgeflow.integrations.base import DatabaseCredentials

logger = structlog.get_logger(__name__)


def database_name_for(project_name: str) -> str:
    """Atlas database names: lowercase, no dots/spaces, at most 38 characters."""
    name = re.sub(r"[^a-z0-9_-]", "_", project_name.lower()).strip("_-") or "app"
    return name[:38]


class AtlasClient:
    """Atlas Admin API (v1.0) client using HTTP digest auth."""

    def __init__(
        self,
        public_key: str | None = None,
        private_key: str | None = None,
        project_id: str | None = None,
        cluster_host: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.public_key = public_key if public_key is not None else settings.atlas_public_key
        self.private_key = private_key if private_key is not None else settings.atlas_private_key
        self.project_id = project_id if project_id is not None else settings.atlas_project_id
        self.cluster_host = cluster_host if cluster_host is not None else settings.atlas_cluster_host
        self.base_url = (base_url or settings.atlas_api_url).rstrip("/")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return all((self.public_key, self.private_key, self.project_id, self.cluster_host))

    async def create_database(self, name: str) -> DatabaseCredentials:
        """Create a readWrite user for database ``name`` and return its credentials."""
        if not self.configured:
            raise DatabaseProvisioningError("MongoDB Atlas is not configured")

        db_name = database_name_for(name)
        username = f"{db_name}_user"
        password = secrets.token_urlsafe(24)

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=httpx.DigestAuth(self.public_key, self.private_key),
                transport=self._transport,
                timeout=30.0,
            ) as client:
                response = await client.post(
                    f"/groups/{self.project_id}/databaseUsers",
                    json={
                        "databaseName": "admin",
                        "username": username,
                        "password": password,
                        "roles": [{"databaseName": db_name, "roleName": "readWrite"}],
                    },
                )
        except httpx.HTTPError as exc:
            raise DatabaseProvisioningError(f"Atlas request failed: {exc}") from exc

        if response.status_code >= 400:
            raise DatabaseProvisioningError(f"Atlas API error ({response.status_code}): {response.text}")

        logger.info("atlas_database_provisioned", database=db_name, username=username)
        return DatabaseCredentials(
            name=db_name,
            connection_string=(
                f"mongodb+srv://{username}:{password}@{self.cluster_host}/{db_name}"
                "?retryWrites=true&w=majority"
            ),
            username=username,
            password=password,
            host=self.cluster_host,
        )
