"""GitHub Integration: read template files, branch, commit, and merge.

Authenticates with a personal access / installation token from settings.
Repositories are addressed as ``owner/repo``.
"""

import base64

import httpx
import structlog

from forgeflow.core.config import get_settings
from forgeflow.core.exceptions import GitOperationError

logger = structlog.get_logger(__name__)


class GitHubClient:
    """Thin async client for the GitHub REST API."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.token = token if token is not None else settings.github_token
        self.base_url = (base_url or settings.github_api_url).rstrip("/")
        self._transport = transport

    async def _request(self, method: str, endpoint: str, data: dict | None = None) -> dict | list:
        """Make an authenticated request to the GitHub API."""
        if not self.token:
            raise GitOperationError("GitHub token not configured")

        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, transport=self._transport, timeout=30.0
            ) as client:
                response = await client.request(method, endpoint, headers=headers, json=data)
        except httpx.HTTPError as exc:
            raise GitOperationError(f"GitHub request failed ({method} {endpoint}): {exc}") from exc

        if response.status_code >= 400:
            raise GitOperationError(f"GitHub API error ({response.status_code}): {response.text}")

        if response.status_code == 204 or not response.content:
            return {}

        return response.json()

    # File operations

    async def get_file_content(self, repo: str, path: str, ref: str | None = None) -> str | None:
        """Decoded text of a file, or None if it does not exist at ``ref``."""
        endpoint = f"/repos/{repo}/contents/{path}"
        if ref:
            endpoint += f"?ref={ref}"

        try:
            data = await self._request("GET", endpoint)
        except GitOperationError as exc:
            if "(404)" in str(exc):
                return None
            raise

        if isinstance(data, list):
            raise GitOperationError(f"{path} is a directory in {repo}")
        return base64.b64decode(data.get("content", "")).decode("utf-8")

    # Branch operations

    async def _branch_sha(self, repo: str, branch: str) -> str:
        ref = await self._request("GET", f"/repos/{repo}/git/ref/heads/{branch}")
        return ref["object"]["sha"]

    async def create_branch(self, repo: str, branch: str, from_branch: str) -> None:
        sha = await self._branch_sha(repo, from_branch)
        await self._request(
            "POST",
            f"/repos/{repo}/git/refs",
            data={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        logger.info("github_branch_created", repo=repo, branch=branch, from_branch=from_branch)

    async def delete_branch(self, repo: str, branch: str) -> None:
        await self._request("DELETE", f"/repos/{repo}/git/refs/heads/{branch}")

    # Commit operations

    async def commit_files(self, repo: str, branch: str, files: dict[str, str], message: str) -> str:
        """Commit ``files`` ({path: content}) as a single commit via the Git Data API.

        Returns:
            SHA of the new commit
        """
        if not files:
            raise GitOperationError("Nothing to commit")

        base_sha = await self._branch_sha(repo, branch)
        base_commit = await self._request("GET", f"/repos/{repo}/git/commits/{base_sha}")

        tree_items = []
        for path, content in files.items():
            blob = await self._request(
                "POST",
                f"/repos/{repo}/git/blobs",
                data={"content": content, "encoding": "utf-8"},
            )
            tree_items.append({"path": path, "mode": "100644", "type": "blob", "sha": blob["sha"]})

        tree = await self._request(
            "POST",
            f"/repos/{repo}/git/trees",
            data={"base_tree": base_commit["tree"]["sha"], "tree": tree_items},
        )
        commit = await self._request(
            "POST",
            f"/repos/{repo}/git/commits",
            data={"message": message, "tree": tree["sha"], "parents": [base_sha]},
        )
        await self._request(
            "PATCH",
            f"/repos/{repo}/git/refs/heads/{branch}",
            data={"sha": commit["sha"]},
        )
        return commit["sha"]

    # Pull request operations

    async def create_pull_request(self, repo: str, title: str, body: str, head: str, base: str) -> int:
        pr = await self._request(
            "POST",
            f"/repos/{repo}/pulls",
            data={"title": title, "body": body, "head": head, "base": base},
        )
        return pr["number"]

    async def merge_pull_request(self, repo: str, number: int, commit_title: str | None = None) -> str:
        """Squash-merge a pull request. Returns the merge commit SHA."""
        data = {"merge_method": "squash"}
        if commit_title:
            data["commit_title"] = commit_title

        result = await self._request("PUT", f"/repos/{repo}/pulls/{number}/merge", data=data)
        if not result.get("merged", True):
            raise GitOperationError(f"Pull request #{number} was not merged: {result.get('message')}")
        return result.get("sha", "")
