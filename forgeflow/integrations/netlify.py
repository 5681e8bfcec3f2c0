"""Netlify Integration: sites, environment variables, deploys and build logs."""

import re
import time

import httpx
import structlog

from forgeflow.core.config import get_settings
from forgeflow.core.exceptions import HostingError, HostingTransportError
from forgeflow.integrations.base import DeployStatus, SiteInfo

logger = structlog.get_logger(__name__)


def available_site_name(base_name: str) -> str:
    """Netlify subdomains are global; suffix a base36 timestamp to avoid collisions."""
    clean = re.sub(r"[^a-z0-9-]", "-", base_name.lower()).strip("-") or "site"
    return f"{clean}-{_base36(int(time.time() * 1000))}"


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out or "0"


class NetlifyClient:
    """Thin async client for the Netlify REST API.

    Connection-level failures raise HostingTransportError so callers can
    tell "Netlify said no" apart from "Netlify could not be reached".
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.token = token if token is not None else settings.netlify_token
        self.base_url = (base_url or settings.netlify_api_url).rstrip("/")
        self._transport = transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: dict | list | None = None,
        params: dict | None = None,
    ) -> dict | list | str:
        if not self.token:
            raise HostingError("Netlify token not configured")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, transport=self._transport, timeout=30.0
            ) as client:
                response = await client.request(
                    method,
                    endpoint,
                    headers={"Authorization": f"Bearer {self.token}"},
                    json=data,
                    params=params,
                )
        except httpx.TransportError as exc:
            raise HostingTransportError(f"Netlify unreachable ({method} {endpoint}): {exc}") from exc

        if response.status_code >= 400:
            raise HostingError(f"Netlify API error ({response.status_code}): {response.text}")

        if response.status_code == 204 or not response.content:
            return {}
        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return response.text

    async def create_site(self, name: str, repo: str, branch: str) -> SiteInfo:
        """Create a site linked to a GitHub repository.

        Args:
            name: Desired subdomain; a unique suffix is appended
            repo: GitHub ``owner/repo``
            branch: Branch Netlify builds from
        """
        site = await self._request(
            "POST",
            "/sites",
            data={
                "name": available_site_name(name),
                "repo": {
                    "provider": "github",
                    "repo": repo,
                    "branch": branch,
                    "cmd": "npm run build",
                    "dir": "dist",
                },
            },
        )
        info = SiteInfo(
            site_id=site["id"],
            name=site.get("name", name),
            url=site.get("ssl_url") or site.get("url") or f"https://{site.get('name', name)}.netlify.app",
        )
        logger.info("netlify_site_created", site_id=info.site_id, url=info.url)
        return info

    async def set_environment_variables(self, site_id: str, variables: dict[str, str]) -> None:
        """Create or overwrite site environment variables. Empty values are skipped."""
        variables = {k: v for k, v in variables.items() if v and v.strip()}
        if not variables:
            return

        site = await self._request("GET", f"/sites/{site_id}")
        account_id = site.get("account_id")
        if not account_id:
            raise HostingError(f"Could not determine account id for site {site_id}")

        existing = await self._request("GET", f"/accounts/{account_id}/env", params={"site_id": site_id})
        existing_keys = {item["key"] for item in existing} if isinstance(existing, list) else set()

        def env_body(key: str, value: str) -> dict:
            return {"key": key, "values": [{"value": value, "context": "all"}]}

        new_vars = [env_body(k, v) for k, v in variables.items() if k not in existing_keys]
        if new_vars:
            await self._request(
                "POST", f"/accounts/{account_id}/env", data=new_vars, params={"site_id": site_id}
            )
        for key, value in variables.items():
            if key in existing_keys:
                await self._request(
                    "PUT",
                    f"/accounts/{account_id}/env/{key}",
                    data=env_body(key, value),
                    params={"site_id": site_id},
                )

    async def trigger_deploy(self, site_id: str) -> str:
        """Start a build of the site's linked branch. Returns the deploy id."""
        build = await self._request("POST", f"/sites/{site_id}/builds")
        deploy_id = build.get("deploy_id") or build.get("id")
        if not deploy_id:
            raise HostingError(f"Netlify did not return a deploy id for site {site_id}")
        return deploy_id

    async def get_deployment_status(self, deploy_id: str) -> DeployStatus:
        deploy = await self._request("GET", f"/deploys/{deploy_id}")
        return DeployStatus(
            deploy_id=deploy_id,
            state=deploy.get("state", "unknown"),
            url=deploy.get("ssl_url") or deploy.get("deploy_ssl_url") or deploy.get("url"),
            error_message=deploy.get("error_message"),
        )

    async def get_build_log(self, deploy_id: str) -> str:
        """Raw build output of a deploy, one message per line."""
        log = await self._request("GET", f"/deploys/{deploy_id}/log")
        if isinstance(log, list):
            return "\n".join(str(entry.get("message", "")) for entry in log)
        if isinstance(log, dict):
            return str(log.get("log", ""))
        return log
