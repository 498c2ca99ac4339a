"""
GitHub REST client for the backup repository.

Implements BackupRepositoryProtocol on top of the git data API (refs,
commits, trees, blobs) plus the two repository endpoints the export needs
to get started: repository lookup/creation and the contents API, which is
the only way to give an empty repository its first commit.

The token is sent as a bearer token; it is never logged.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Optional

import httpx

from .errors import RefConflictError, RepositoryError, RepositoryNotFoundError
from .types import RepoTreeItem, TreeEntry

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"

DEFAULT_TIMEOUT = 30.0
DEFAULT_BRANCH = "main"


class GitHubRepository:
    """One repository (``owner/repo``) accessed with a personal access token."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        *,
        base_url: str = GITHUB_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not token:
            raise ValueError("GitHub token is required")
        if not owner or not repo:
            raise ValueError("Repository owner and name are required")
        self.owner = owner
        self.repo = repo

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=DEFAULT_TIMEOUT,
            transport=transport,
        )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def _repo_url(self, suffix: str = "") -> str:
        return f"/repos/{self.owner}/{self.repo}{suffix}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RepositoryError(f"GitHub request failed ({method} {url}): {e}") from e

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            return resp.json().get("message") or resp.text
        except ValueError:
            return resp.text

    def _check(self, resp: httpx.Response, action: str) -> dict:
        """Raise the matching RepositoryError for a non-2xx response, else return JSON."""
        if resp.status_code == 404:
            raise RepositoryNotFoundError(
                f"{action}: {self.full_name} not found (check the token's repo scope)",
                status=404,
            )
        if resp.status_code >= 400:
            raise RepositoryError(
                f"{action} failed: {resp.status_code} {self._error_message(resp)}",
                status=resp.status_code,
            )
        return resp.json() if resp.content else {}

    # -------------------------------------------------------------------------
    # Repository
    # -------------------------------------------------------------------------

    async def get_default_branch(self) -> str:
        """GET /repos/{owner}/{repo} -> default branch name."""
        resp = await self._request("GET", self._repo_url())
        data = self._check(resp, "Get repository")
        return data.get("default_branch") or DEFAULT_BRANCH

    async def create_repository(self, *, private: bool = True, auto_init: bool = True) -> str:
        """POST /user/repos -> default branch of the new repository."""
        resp = await self._request(
            "POST", "/user/repos",
            json={"name": self.repo, "private": private, "auto_init": auto_init},
        )
        data = self._check(resp, f"Create repository {self.repo}")
        logger.info("Created repository %s", data.get("full_name", self.full_name))
        return data.get("default_branch") or DEFAULT_BRANCH

    # -------------------------------------------------------------------------
    # Git data
    # -------------------------------------------------------------------------

    async def get_branch_head(self, branch: str) -> Optional[str]:
        """Commit sha the branch points at; None when it has no commits yet."""
        resp = await self._request("GET", self._repo_url(f"/git/ref/heads/{branch}"))
        # 409: repository is empty; 404: branch does not exist
        if resp.status_code in (404, 409):
            return None
        data = self._check(resp, f"Get ref heads/{branch}")
        return data["object"]["sha"]

    async def get_commit_tree(self, commit_sha: str) -> str:
        resp = await self._request("GET", self._repo_url(f"/git/commits/{commit_sha}"))
        return self._check(resp, f"Get commit {commit_sha}")["tree"]["sha"]

    async def create_tree(self, entries: list[TreeEntry], *, base_tree: Optional[str] = None) -> str:
        payload: dict[str, Any] = {"tree": [e.to_dict() for e in entries]}
        # An empty repository has no base tree; the key must be absent
        if base_tree:
            payload["base_tree"] = base_tree
        resp = await self._request("POST", self._repo_url("/git/trees"), json=payload)
        return self._check(resp, "Create tree")["sha"]

    async def create_commit(self, message: str, tree_sha: str, parents: list[str]) -> str:
        resp = await self._request(
            "POST", self._repo_url("/git/commits"),
            json={"message": message, "tree": tree_sha, "parents": parents},
        )
        return self._check(resp, "Create commit")["sha"]

    async def create_branch(self, branch: str, sha: str) -> None:
        resp = await self._request(
            "POST", self._repo_url("/git/refs"),
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        if resp.status_code == 422:
            raise RefConflictError(
                f"Create ref heads/{branch}: {self._error_message(resp)}", status=422,
            )
        self._check(resp, f"Create ref heads/{branch}")

    async def update_branch(self, branch: str, sha: str) -> None:
        """Fast-forward the branch; a non-fast-forward update raises RefConflictError."""
        resp = await self._request(
            "PATCH", self._repo_url(f"/git/refs/heads/{branch}"),
            json={"sha": sha, "force": False},
        )
        if resp.status_code == 422:
            raise RefConflictError(
                f"Update ref heads/{branch}: {self._error_message(resp)}", status=422,
            )
        self._check(resp, f"Update ref heads/{branch}")

    async def list_tree(self, ref: str, *, recursive: bool = True) -> list[RepoTreeItem]:
        """Tree entries reachable from ``ref`` (a branch name or tree sha)."""
        params = {"recursive": "1"} if recursive else None
        resp = await self._request("GET", self._repo_url(f"/git/trees/{ref}"), params=params)
        if resp.status_code == 409:
            return []
        data = self._check(resp, f"Get tree {ref}")
        if data.get("truncated"):
            logger.warning("Tree listing for %s was truncated by GitHub", self.full_name)
        return [
            RepoTreeItem(path=item["path"], type=item["type"], sha=item["sha"])
            for item in data.get("tree", [])
        ]

    async def read_blob(self, sha: str) -> str:
        resp = await self._request("GET", self._repo_url(f"/git/blobs/{sha}"))
        data = self._check(resp, f"Get blob {sha}")
        content = data.get("content", "")
        if data.get("encoding") == "base64":
            return base64.b64decode(content).decode("utf-8")
        return content

    async def write_file(self, path: str, content: str, *, message: str, branch: str) -> None:
        """Create a file through the contents API (works on an empty repository)."""
        encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
        resp = await self._request(
            "PUT", self._repo_url(f"/contents/{path}"),
            json={"message": message, "content": encoded, "branch": branch},
        )
        self._check(resp, f"Write {path}")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubRepository":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
