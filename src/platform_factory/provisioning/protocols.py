"""Provider-facing protocols for tenant provisioning.

Every resource provisioner exposes the same lifecycle: ``create``,
``probe`` (one readiness check, polled by ``ReadinessVerifier``), ``find``
(lookup by slug for pre-flight cleanup) and ``delete``. ``delete`` of an
already-absent resource returns ``'not_found'`` rather than raising.

Implementations: the httpx adapters in ``platform_factory.providers``
(production) and the twins in ``inmemory`` (testing, local development).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping, Protocol, Sequence

from .models import (
    AuthConfigOutput,
    DeploymentTrigger,
    MigrationOutput,
    NotificationReceipt,
    ResourceKind,
    VoiceAgentSpec,
    WelcomeMessage,
)
from .readiness import ProbeResult
from .registry import (
    DatabaseHandle,
    HostingHandle,
    RepositoryHandle,
    ResourceHandle,
    VoiceAgentHandle,
)

DeleteOutcome = Literal['deleted', 'not_found']


class ResourceProvisioner(Protocol):
    """Lookup and deletion shared by every resource kind."""

    async def find(self, slug: str) -> Sequence[ResourceHandle]:
        """Return resources whose name belongs to ``slug`` (exact match)."""
        ...

    async def delete(self, handle: ResourceHandle) -> DeleteOutcome:
        """Delete the resource; ``'not_found'`` when it is already gone."""
        ...


# ── Resource provisioners ───────────────────────────────────────────


class DatabaseProvisioner(ResourceProvisioner, Protocol):
    """Managed Postgres project plus schema and auth configuration."""

    async def create(self, name: str) -> DatabaseHandle:
        """Create the project. Returned handle may lack credentials."""
        ...

    async def probe(self, handle: DatabaseHandle) -> ProbeResult:
        """Project healthy and its REST endpoint answers."""
        ...

    async def fetch_credentials(self, handle: DatabaseHandle) -> DatabaseHandle:
        """Return ``handle`` with anon and service keys filled in."""
        ...

    async def run_migrations(self, handle: DatabaseHandle) -> MigrationOutput:
        """Apply the tenant schema."""
        ...

    async def probe_schema(
        self, handle: DatabaseHandle, tables: Sequence[str],
    ) -> ProbeResult:
        """Every table in ``tables`` is queryable.

        A missing relation is reported ``not_ready`` with reason
        ``'missing'``; the caller decides when repeated misses are final.
        """
        ...

    async def configure_auth(
        self,
        handle: DatabaseHandle,
        site_url: str,
        redirect_urls: Sequence[str],
    ) -> AuthConfigOutput:
        ...


class RepositoryProvisioner(ResourceProvisioner, Protocol):
    """Source repository holding the tenant application."""

    async def create(
        self, name: str, files: Mapping[str, str], *, description: str = '',
    ) -> RepositoryHandle:
        """Create the repository and commit ``files`` (path -> content)."""
        ...

    async def probe(self, handle: RepositoryHandle) -> ProbeResult:
        """Default branch has commits, marker file and enough files."""
        ...

    async def trigger_deployment(
        self, handle: RepositoryHandle, message: str,
    ) -> DeploymentTrigger:
        """Push a commit to the default branch so hosting redeploys."""
        ...


class HostingProvisioner(ResourceProvisioner, Protocol):
    """Hosting project linked to the tenant repository."""

    async def create(
        self,
        name: str,
        repository: RepositoryHandle,
        env: Mapping[str, str],
    ) -> HostingHandle:
        ...

    async def probe_deployment(self, handle: HostingHandle) -> ProbeResult:
        """Latest deployment ready and the public URL answers."""
        ...


class VoiceAgentProvisioner(ResourceProvisioner, Protocol):
    """Conversational voice agent for the tenant."""

    async def create(self, spec: VoiceAgentSpec) -> VoiceAgentHandle:
        ...

    async def probe(self, handle: VoiceAgentHandle) -> ProbeResult:
        ...


class Notifier(Protocol):
    """Outbound notification channel (no resource is created)."""

    async def send(self, message: WelcomeMessage) -> NotificationReceipt:
        ...


# ── Bundle ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Provisioners:
    """The collaborator set one coordinator runs against.

    ``voice_agent`` and ``notifier`` are optional; their steps are
    skipped when absent.
    """

    database: DatabaseProvisioner
    repository: RepositoryProvisioner
    hosting: HostingProvisioner
    voice_agent: VoiceAgentProvisioner | None = None
    notifier: Notifier | None = None

    def for_kind(self, kind: ResourceKind) -> ResourceProvisioner | None:
        return {
            ResourceKind.DATABASE: self.database,
            ResourceKind.REPOSITORY: self.repository,
            ResourceKind.HOSTING: self.hosting,
            ResourceKind.VOICE_AGENT: self.voice_agent,
        }[kind]
