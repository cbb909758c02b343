"""GitHubProvisioner: repository provisioner backed by the GitHub REST API.

The tenant repository is generated from a template repository when one is
configured (otherwise created empty with an initial commit), then the
tenant file set is pushed as a single commit through the git data API.
Deployments are triggered by pushing an empty commit to the default
branch, which the linked hosting project picks up.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..provisioning.models import DeploymentTrigger, ResourceKind
from ..provisioning.readiness import ProbeResult, ReadinessVerifier
from ..provisioning.registry import RepositoryHandle
from ..provisioning.slug import matches_resource, resource_name
from ..settings import FactorySettings
from .errors import ProviderError, ProviderNotFoundError
from .http import ProviderHTTPClient

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


class GitHubProvisioner:
    """Repository provisioner over the GitHub REST API."""

    def __init__(
        self,
        settings: FactorySettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = GITHUB_API_URL,
        verifier: ReadinessVerifier | None = None,
    ) -> None:
        if not settings.github_token or not settings.github_owner:
            raise ValueError("github_token and github_owner are required")
        self._settings = settings
        self._owner = settings.github_owner
        self._owner_is_user: bool | None = None
        self._branch = settings.github_default_branch
        self._verifier = verifier or ReadinessVerifier()
        self._api = ProviderHTTPClient(
            provider="github",
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {settings.github_token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
        )

    def _to_handle(self, repo: dict[str, Any]) -> RepositoryHandle:
        return RepositoryHandle(
            name=repo["name"],
            full_name=repo.get("full_name") or f"{self._owner}/{repo['name']}",
            url=repo.get("html_url") or f"https://github.com/{self._owner}/{repo['name']}",
            default_branch=repo.get("default_branch") or self._branch,
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    async def create(
        self, name: str, files: Mapping[str, str], *, description: str = "",
    ) -> RepositoryHandle:
        template = self._settings.github_template_repo
        if template:
            repo = await self._api.request_json(
                "POST",
                f"/repos/{template}/generate",
                json={
                    "owner": self._owner,
                    "name": name,
                    "description": description,
                    "private": True,
                    "include_all_branches": False,
                },
            )
        else:
            repo = await self._api.request_json(
                "POST",
                await self._create_path(),
                json={
                    "name": name,
                    "description": description,
                    "private": True,
                    "auto_init": True,
                },
            )
        handle = self._to_handle(repo)
        logger.info(
            "GitHub repository created: %s",
            handle.full_name,
            extra={"repository": handle.full_name, "template": template or None},
        )

        # Template generation is asynchronous; the branch appears later.
        outcome = await self._verifier.verify_with_budget(
            lambda: self._branch_exists(handle),
            self._settings.repository_budget,
            label="github:branch",
        )
        if not outcome.verified:
            raise ProviderError(
                "github", 0, f"default branch never appeared: {outcome.detail}",
            )

        if files:
            await self._commit_files(
                handle, files, f"Configure {name} platform",
            )
        return handle

    async def _create_path(self) -> str:
        """Repository creation endpoint that places the repo under ``github_owner``.

        ``/user/repos`` always creates under the token's user, so an
        organisation owner needs ``/orgs/{owner}/repos``; otherwise
        ``find`` (which looks under the owner) would miss the repository.
        """
        if self._owner_is_user is None:
            user = await self._api.request_json("GET", "/user")
            login = str(user.get("login", ""))
            self._owner_is_user = login.lower() == self._owner.lower()
        if self._owner_is_user:
            return "/user/repos"
        return f"/orgs/{self._owner}/repos"

    async def _branch_exists(self, handle: RepositoryHandle) -> ProbeResult:
        try:
            await self._head_sha(handle)
        except ProviderNotFoundError:
            return ProbeResult.not_ready(f"branch {handle.default_branch} not found")
        return ProbeResult.ready("branch exists")

    async def _head_sha(self, handle: RepositoryHandle) -> str:
        ref = await self._api.request_json(
            "GET", f"/repos/{handle.full_name}/git/ref/heads/{handle.default_branch}",
        )
        return ref["object"]["sha"]

    async def _commit_files(
        self, handle: RepositoryHandle, files: Mapping[str, str], message: str,
    ) -> str:
        repo = handle.full_name
        parent_sha = await self._head_sha(handle)
        parent = await self._api.request_json("GET", f"/repos/{repo}/git/commits/{parent_sha}")
        tree = await self._api.request_json(
            "POST",
            f"/repos/{repo}/git/trees",
            json={
                "base_tree": parent["tree"]["sha"],
                "tree": [
                    {"path": path, "mode": "100644", "type": "blob", "content": content}
                    for path, content in files.items()
                ],
            },
        )
        return await self._push_commit(handle, message, tree["sha"], parent_sha)

    async def _push_commit(
        self, handle: RepositoryHandle, message: str, tree_sha: str, parent_sha: str,
    ) -> str:
        repo = handle.full_name
        commit = await self._api.request_json(
            "POST",
            f"/repos/{repo}/git/commits",
            json={"message": message, "tree": tree_sha, "parents": [parent_sha]},
        )
        await self._api.request_json(
            "PATCH",
            f"/repos/{repo}/git/refs/heads/{handle.default_branch}",
            json={"sha": commit["sha"], "force": False},
        )
        return commit["sha"]

    async def probe(self, handle: RepositoryHandle) -> ProbeResult:
        repo = handle.full_name
        resp = await self._api.request(
            "GET",
            f"/repos/{repo}/commits",
            params={"sha": handle.default_branch, "per_page": "1"},
        )
        # 409: repository is empty.
        if resp.status_code in (404, 409):
            return ProbeResult.not_ready("default branch has no commits")
        self._api.raise_for_status(resp)
        if not resp.json():
            return ProbeResult.not_ready("default branch has no commits")

        marker = self._settings.repository_marker_file
        resp = await self._api.request(
            "GET", f"/repos/{repo}/contents/{marker}", params={"ref": handle.default_branch},
        )
        if resp.status_code == 404:
            return ProbeResult.not_ready(f"{marker} missing")
        self._api.raise_for_status(resp)

        tree = await self._api.request_json(
            "GET",
            f"/repos/{repo}/git/trees/{handle.default_branch}",
            params={"recursive": "1"},
        )
        blobs = [e for e in (tree or {}).get("tree", []) if e.get("type") == "blob"]
        if len(blobs) < self._settings.repository_min_files:
            return ProbeResult.not_ready(f"only {len(blobs)} files committed")
        return ProbeResult.ready(f"{len(blobs)} files on {handle.default_branch}")

    async def trigger_deployment(
        self, handle: RepositoryHandle, message: str,
    ) -> DeploymentTrigger:
        head_sha = await self._head_sha(handle)
        head = await self._api.request_json(
            "GET", f"/repos/{handle.full_name}/git/commits/{head_sha}",
        )
        sha = await self._push_commit(handle, message, head["tree"]["sha"], head_sha)
        logger.info(
            "Deployment commit pushed: repo=%s sha=%s",
            handle.full_name,
            sha[:7],
            extra={"repository": handle.full_name, "commit_sha": sha},
        )
        return DeploymentTrigger(commit_sha=sha, branch=handle.default_branch)

    # ── Lookup / deletion ────────────────────────────────────────────

    async def find(self, slug: str) -> list[RepositoryHandle]:
        name = resource_name(slug, ResourceKind.REPOSITORY)
        resp = await self._api.request("GET", f"/repos/{self._owner}/{name}")
        if resp.status_code == 404:
            return []
        self._api.raise_for_status(resp)
        repo = resp.json()
        # GitHub follows renames; only the exact name counts.
        if not matches_resource(repo.get("name", ""), slug, ResourceKind.REPOSITORY):
            return []
        return [self._to_handle(repo)]

    async def delete(self, handle: RepositoryHandle) -> str:
        outcome = await self._api.delete(f"/repos/{handle.full_name}")
        logger.info(
            "GitHub repository delete: %s outcome=%s",
            handle.full_name,
            outcome,
            extra={"repository": handle.full_name},
        )
        return outcome
