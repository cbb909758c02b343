"""VercelProvisioner: hosting provisioner backed by the Vercel REST API.

Creates a Next.js project linked to the tenant's GitHub repository and
sets its environment. ``NEXT_PUBLIC_*`` variables are stored plain, all
others encrypted. A deployment counts as live only when Vercel reports
it ``READY`` and the public URL answers.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..provisioning.content import redact_env
from ..provisioning.models import ResourceKind
from ..provisioning.readiness import ProbeResult
from ..provisioning.registry import HostingHandle, RepositoryHandle
from ..provisioning.slug import matches_resource, resource_name
from ..settings import FactorySettings
from .errors import ProviderNotFoundError
from .http import ProviderHTTPClient

logger = logging.getLogger(__name__)

VERCEL_API_URL = "https://api.vercel.com"

ENV_TARGETS = ("production", "preview", "development")


def public_url(project_name: str) -> str:
    return f"https://{project_name}.vercel.app"


def env_var_type(key: str) -> str:
    return "plain" if key.startswith("NEXT_PUBLIC_") else "encrypted"


class VercelProvisioner:
    """Hosting provisioner over the Vercel REST API."""

    def __init__(
        self,
        settings: FactorySettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = VERCEL_API_URL,
    ) -> None:
        if not settings.vercel_token:
            raise ValueError("vercel_token is required")
        self._settings = settings
        self._team_params = (
            {"teamId": settings.vercel_team_id} if settings.vercel_team_id else {}
        )
        self._api = ProviderHTTPClient(
            provider="vercel",
            base_url=base_url,
            headers={"Authorization": f"Bearer {settings.vercel_token}"},
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
        )

    def _params(self, **extra: str) -> dict[str, str]:
        return {**self._team_params, **extra}

    @staticmethod
    def _to_handle(project: dict[str, Any]) -> HostingHandle:
        return HostingHandle(
            project_id=project["id"],
            name=project["name"],
            url=public_url(project["name"]),
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    async def create(
        self,
        name: str,
        repository: RepositoryHandle,
        env: Mapping[str, str],
    ) -> HostingHandle:
        project = await self._api.request_json(
            "POST",
            "/v10/projects",
            params=self._params(),
            json={
                "name": name,
                "framework": "nextjs",
                "gitRepository": {"type": "github", "repo": repository.full_name},
                "buildCommand": "npm run build",
                "installCommand": "npm install",
                "outputDirectory": ".next",
            },
        )
        handle = self._to_handle(project)

        variables = {**env, "NEXT_PUBLIC_APP_URL": handle.url}
        await self._api.request_json(
            "POST",
            f"/v10/projects/{handle.project_id}/env",
            params=self._params(upsert="true"),
            json=[
                {
                    "key": key,
                    "value": value,
                    "type": env_var_type(key),
                    "target": list(ENV_TARGETS),
                }
                for key, value in variables.items()
                if value
            ],
        )
        logger.info(
            "Vercel project created: name=%s id=%s env_vars=%d",
            name,
            handle.project_id,
            len(variables),
            extra={
                "resource_name": name,
                "project_id": handle.project_id,
                "env": redact_env(variables),
            },
        )
        return handle

    async def probe_deployment(self, handle: HostingHandle) -> ProbeResult:
        body = await self._api.request_json(
            "GET",
            "/v6/deployments",
            params=self._params(
                projectId=handle.project_id, target="production", limit="1",
            ),
        )
        deployments = (body or {}).get("deployments") or []
        if not deployments:
            return ProbeResult.not_ready("no deployment yet")

        latest = deployments[0]
        state = latest.get("readyState") or latest.get("state") or ""
        if state == "ERROR":
            return ProbeResult.failed("deployment failed to build")
        if state == "CANCELED":
            return ProbeResult.canceled("deployment canceled")
        if state != "READY":
            return ProbeResult.not_ready(f"deployment {state or 'queued'}")

        code = await self._api.get_status(handle.url)
        if code >= 500:
            return ProbeResult.not_ready(f"{handle.url} returned {code}")
        return ProbeResult.ready(f"deployment READY, {handle.url} answered {code}")

    # ── Lookup / deletion ────────────────────────────────────────────

    async def find(self, slug: str) -> list[HostingHandle]:
        name = resource_name(slug, ResourceKind.HOSTING)
        try:
            project = await self._api.request_json(
                "GET", f"/v9/projects/{name}", params=self._params(),
            )
        except ProviderNotFoundError:
            return []
        if not matches_resource(project.get("name", ""), slug, ResourceKind.HOSTING):
            return []
        return [self._to_handle(project)]

    async def delete(self, handle: HostingHandle) -> str:
        resp = await self._api.request(
            "DELETE", f"/v9/projects/{handle.project_id}", params=self._params(),
        )
        if resp.status_code == 404:
            return "not_found"
        self._api.raise_for_status(resp)
        logger.info(
            "Vercel project deleted: id=%s",
            handle.project_id,
            extra={"project_id": handle.project_id},
        )
        return "deleted"
