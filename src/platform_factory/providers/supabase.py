"""SupabaseProvisioner: database provisioner backed by the Supabase Management API.

Creates one project per tenant, applies the tenant schema through the
Management API SQL endpoint, and configures auth redirect URLs. Readiness
is checked against both the Management API (project status) and the
project's own PostgREST endpoint (tables queryable).
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import replace
from typing import Any, Sequence

import httpx

from ..provisioning.models import AuthConfigOutput, MigrationOutput, ResourceKind
from ..provisioning.readiness import MISSING, ProbeResult
from ..provisioning.registry import DatabaseHandle
from ..provisioning.slug import matches_resource
from ..settings import FactorySettings
from .errors import ProviderError, ProviderNotFoundError
from .http import ProviderHTTPClient
from .schema import TENANT_SCHEMA_SQL

logger = logging.getLogger(__name__)

SUPABASE_API_URL = "https://api.supabase.com/v1"

HEALTHY_STATUS = "ACTIVE_HEALTHY"
# Project statuses that will never become healthy on their own.
FAILED_STATUSES = frozenset({"INIT_FAILED", "REMOVED", "GOING_DOWN", "INACTIVE"})


def project_url(project_ref: str) -> str:
    return f"https://{project_ref}.supabase.co"


class SupabaseProvisioner:
    """Database provisioner over the Supabase Management API."""

    def __init__(
        self,
        settings: FactorySettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = SUPABASE_API_URL,
    ) -> None:
        if not settings.supabase_access_token:
            raise ValueError("supabase_access_token is required")
        self._settings = settings
        self._api = ProviderHTTPClient(
            provider="supabase",
            base_url=base_url,
            headers={"Authorization": f"Bearer {settings.supabase_access_token}"},
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
        )

    def _rest_client(self, handle: DatabaseHandle) -> ProviderHTTPClient:
        return ProviderHTTPClient(
            provider="supabase-rest",
            base_url=f"{handle.url}/rest/v1",
            headers={
                "apikey": handle.service_key,
                "Authorization": f"Bearer {handle.service_key}",
            },
            http_client=self._api.http_client,
            timeout_seconds=self._settings.http_timeout_seconds,
            max_retries=0,
        )

    @staticmethod
    def _to_handle(project: dict[str, Any]) -> DatabaseHandle:
        ref = project["id"]
        return DatabaseHandle(project_id=ref, name=project["name"], url=project_url(ref))

    # ── Lifecycle ────────────────────────────────────────────────────

    async def create(self, name: str) -> DatabaseHandle:
        payload = {
            "name": name,
            "organization_id": self._settings.supabase_org_id,
            "db_pass": secrets.token_urlsafe(24),
            "region": self._settings.supabase_region,
            "plan": self._settings.supabase_plan,
        }
        project = await self._api.request_json("POST", "/projects", json=payload)
        handle = self._to_handle(project)
        logger.info(
            "Supabase project created: name=%s ref=%s",
            name,
            handle.project_id,
            extra={"resource_name": name, "project_ref": handle.project_id},
        )
        return handle

    async def probe(self, handle: DatabaseHandle) -> ProbeResult:
        try:
            project = await self._api.request_json(
                "GET", f"/projects/{handle.project_id}",
            )
        except ProviderNotFoundError:
            return ProbeResult.not_ready("project not visible yet")

        status = (project or {}).get("status", "")
        if status in FAILED_STATUSES:
            return ProbeResult.failed(f"project status {status}")
        if status != HEALTHY_STATUS:
            return ProbeResult.not_ready(f"project status {status or 'unknown'}")

        code = await self._api.get_status(f"{handle.url}/rest/v1/")
        if code >= 500:
            return ProbeResult.not_ready(f"REST endpoint returned {code}")
        return ProbeResult.ready(f"project {HEALTHY_STATUS}, REST endpoint answered {code}")

    async def fetch_credentials(self, handle: DatabaseHandle) -> DatabaseHandle:
        keys = await self._api.request_json(
            "GET", f"/projects/{handle.project_id}/api-keys",
        )
        by_name = {
            key.get("name"): key.get("api_key")
            for key in keys or []
            if isinstance(key, dict)
        }
        anon, service = by_name.get("anon"), by_name.get("service_role")
        if not anon or not service:
            raise ProviderError("supabase", 0, "project api keys incomplete")
        return replace(handle, anon_key=anon, service_key=service)

    async def run_migrations(self, handle: DatabaseHandle) -> MigrationOutput:
        await self._api.request_json(
            "POST",
            f"/projects/{handle.project_id}/database/query",
            json={"query": TENANT_SCHEMA_SQL},
        )
        logger.info(
            "Tenant schema applied: ref=%s",
            handle.project_id,
            extra={"project_ref": handle.project_id},
        )
        return MigrationOutput(tables=tuple(self._settings.expected_tables))

    async def probe_schema(
        self, handle: DatabaseHandle, tables: Sequence[str],
    ) -> ProbeResult:
        if not tables:
            return ProbeResult.not_ready("no tables to check")
        if not handle.service_key:
            return ProbeResult.not_ready("credentials not fetched")

        rest = self._rest_client(handle)
        for table in tables:
            resp = await rest.request(
                "GET", f"/{table}", params={"select": "*", "limit": "1"},
            )
            if resp.status_code == 404:
                return ProbeResult.not_ready(
                    f"relation {table!r} not found", reason=MISSING,
                )
            if resp.status_code >= 400:
                return ProbeResult.not_ready(
                    f"{table} query returned {resp.status_code}",
                )
        return ProbeResult.ready(f"{len(tables)} tables queryable")

    async def configure_auth(
        self,
        handle: DatabaseHandle,
        site_url: str,
        redirect_urls: Sequence[str],
    ) -> AuthConfigOutput:
        path = f"/projects/{handle.project_id}/config/auth"
        try:
            await self._api.request_json(
                "PATCH",
                path,
                json={"site_url": site_url, "uri_allow_list": ",".join(redirect_urls)},
            )
        except ProviderError as exc:
            if exc.status_code in (401, 403, 404):
                raise
            # Some plans reject the allow list; the site URL alone still works.
            logger.warning(
                "Auth redirect list rejected, setting site_url only: ref=%s",
                handle.project_id,
                extra={"project_ref": handle.project_id},
            )
            await self._api.request_json("PATCH", path, json={"site_url": site_url})
            return AuthConfigOutput(site_url=site_url)
        return AuthConfigOutput(site_url=site_url, redirect_urls=tuple(redirect_urls))

    # ── Lookup / deletion ────────────────────────────────────────────

    async def find(self, slug: str) -> list[DatabaseHandle]:
        projects = await self._api.request_json("GET", "/projects")
        if not isinstance(projects, list):
            raise ProviderError("supabase", 0, "expected a list from /projects")
        return [
            self._to_handle(p)
            for p in projects
            if matches_resource(p.get("name", ""), slug, ResourceKind.DATABASE)
        ]

    async def delete(self, handle: DatabaseHandle) -> str:
        outcome = await self._api.delete(f"/projects/{handle.project_id}")
        logger.info(
            "Supabase project delete: ref=%s outcome=%s",
            handle.project_id,
            outcome,
            extra={"project_ref": handle.project_id},
        )
        return outcome
