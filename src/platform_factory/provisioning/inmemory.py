"""In-memory provisioners for testing and local development.

All provisioners built on one ``InMemoryCloud`` share its state, so a
second orchestration run sees (and pre-flight cleanup can delete) what a
first run left behind. Each provisioner has a ``fail_on`` set of
operation names that raise ``InMemoryProvisionerError`` when called, plus
a few state switches for readiness scenarios.
"""

from __future__ import annotations

import hashlib
import itertools
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Sequence

from ..settings import DEFAULT_EXPECTED_TABLES
from .content import MARKER_FILE
from .models import (
    AuthConfigOutput,
    DeploymentTrigger,
    MigrationOutput,
    NotificationReceipt,
    ResourceKind,
    VoiceAgentSpec,
    WelcomeMessage,
)
from .protocols import DeleteOutcome, Provisioners
from .readiness import MISSING, ProbeResult
from .registry import (
    DatabaseHandle,
    HostingHandle,
    RepositoryHandle,
    ResourceHandle,
    VoiceAgentHandle,
)
from .slug import resource_name


class InMemoryProvisionerError(RuntimeError):
    """Raised by an in-memory provisioner operation listed in ``fail_on``."""


@dataclass
class StoredResource:
    kind: ResourceKind
    resource_id: str
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)


class InMemoryCloud:
    """Shared resource store standing in for every external provider."""

    def __init__(self) -> None:
        self._resources: dict[ResourceKind, dict[str, StoredResource]] = {
            kind: {} for kind in ResourceKind
        }
        self._ids = itertools.count(1)

    def add(self, kind: ResourceKind, name: str, **attributes: Any) -> StoredResource:
        resource_id = f'{kind.value}-{next(self._ids)}'
        stored = StoredResource(kind, resource_id, name, dict(attributes))
        self._resources[kind][resource_id] = stored
        return stored

    def get(self, kind: ResourceKind, resource_id: str) -> StoredResource | None:
        return self._resources[kind].get(resource_id)

    def find(self, kind: ResourceKind, name: str) -> list[StoredResource]:
        wanted = name.lower()
        return [r for r in self._resources[kind].values() if r.name.lower() == wanted]

    def remove(self, kind: ResourceKind, resource_id: str) -> bool:
        return self._resources[kind].pop(resource_id, None) is not None

    def names(self, kind: ResourceKind) -> list[str]:
        return [r.name for r in self._resources[kind].values()]

    def count(self, kind: ResourceKind | None = None) -> int:
        if kind is not None:
            return len(self._resources[kind])
        return sum(len(bucket) for bucket in self._resources.values())


class _InMemoryProvisioner:
    kind: ResourceKind

    def __init__(self, cloud: InMemoryCloud, *, fail_on: Sequence[str] = ()) -> None:
        self.cloud = cloud
        self.fail_on: set[str] = set(fail_on)
        self.calls: list[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise InMemoryProvisionerError(
                f'{self.kind.value} {operation} failed (simulated)'
            )

    def _to_handle(self, stored: StoredResource) -> ResourceHandle:
        raise NotImplementedError

    async def find(self, slug: str) -> list[ResourceHandle]:
        self._check('find')
        name = resource_name(slug, self.kind)
        return [self._to_handle(r) for r in self.cloud.find(self.kind, name)]

    async def delete(self, handle: ResourceHandle) -> DeleteOutcome:
        self._check('delete')
        if self.cloud.remove(self.kind, handle.resource_id):
            return 'deleted'
        return 'not_found'

    def _create(self, name: str, **attributes: Any) -> StoredResource:
        if self.cloud.find(self.kind, name):
            raise InMemoryProvisionerError(
                f'{self.kind.value} {name!r} already exists'
            )
        return self.cloud.add(self.kind, name, **attributes)


class InMemoryDatabaseProvisioner(_InMemoryProvisioner):
    kind = ResourceKind.DATABASE

    def __init__(
        self,
        cloud: InMemoryCloud,
        *,
        fail_on: Sequence[str] = (),
        tables: Sequence[str] = DEFAULT_EXPECTED_TABLES,
        apply_schema: bool = True,
        status: str = 'ACTIVE_HEALTHY',
    ) -> None:
        super().__init__(cloud, fail_on=fail_on)
        self.tables = tuple(tables)
        self.apply_schema = apply_schema
        self.status = status

    def _to_handle(self, stored: StoredResource) -> DatabaseHandle:
        return DatabaseHandle(
            project_id=stored.resource_id,
            name=stored.name,
            url=stored.attributes['url'],
        )

    async def create(self, name: str) -> DatabaseHandle:
        self._check('create')
        stored = self._create(name, tables=set(), status=self.status)
        stored.attributes['url'] = f'https://{stored.resource_id}.db.local'
        return self._to_handle(stored)

    async def probe(self, handle: DatabaseHandle) -> ProbeResult:
        self._check('probe')
        stored = self.cloud.get(self.kind, handle.project_id)
        if stored is None:
            return ProbeResult.not_ready('project not found')
        status = stored.attributes['status']
        if status != 'ACTIVE_HEALTHY':
            return ProbeResult.not_ready(f'project status {status}')
        return ProbeResult.ready('project healthy')

    async def fetch_credentials(self, handle: DatabaseHandle) -> DatabaseHandle:
        self._check('fetch_credentials')
        digest = hashlib.sha256(handle.project_id.encode()).hexdigest()[:16]
        return replace(
            handle, anon_key=f'anon-{digest}', service_key=f'service-{digest}',
        )

    async def run_migrations(self, handle: DatabaseHandle) -> MigrationOutput:
        self._check('run_migrations')
        stored = self.cloud.get(self.kind, handle.project_id)
        if stored is None:
            raise InMemoryProvisionerError(f'project {handle.project_id} not found')
        if self.apply_schema:
            stored.attributes['tables'].update(self.tables)
        return MigrationOutput(tables=self.tables)

    async def probe_schema(
        self, handle: DatabaseHandle, tables: Sequence[str],
    ) -> ProbeResult:
        self._check('probe_schema')
        stored = self.cloud.get(self.kind, handle.project_id)
        present = stored.attributes['tables'] if stored else set()
        if not tables:
            return ProbeResult.not_ready('no tables to check')
        for table in tables:
            if table not in present:
                return ProbeResult.not_ready(
                    f'relation {table!r} not found', reason=MISSING,
                )
        return ProbeResult.ready(f'{len(tables)} tables queryable')

    async def configure_auth(
        self,
        handle: DatabaseHandle,
        site_url: str,
        redirect_urls: Sequence[str],
    ) -> AuthConfigOutput:
        self._check('configure_auth')
        stored = self.cloud.get(self.kind, handle.project_id)
        if stored is not None:
            stored.attributes['site_url'] = site_url
            stored.attributes['redirect_urls'] = list(redirect_urls)
        return AuthConfigOutput(site_url=site_url, redirect_urls=tuple(redirect_urls))


class InMemoryRepositoryProvisioner(_InMemoryProvisioner):
    kind = ResourceKind.REPOSITORY

    def __init__(
        self,
        cloud: InMemoryCloud,
        *,
        fail_on: Sequence[str] = (),
        owner: str = 'tenants',
        marker_file: str = MARKER_FILE,
        min_files: int = 3,
    ) -> None:
        super().__init__(cloud, fail_on=fail_on)
        self.owner = owner
        self.marker_file = marker_file
        self.min_files = min_files

    def _to_handle(self, stored: StoredResource) -> RepositoryHandle:
        full_name = f'{self.owner}/{stored.name}'
        return RepositoryHandle(
            name=stored.name,
            full_name=full_name,
            url=f'https://git.local/{full_name}',
        )

    async def create(
        self, name: str, files: Mapping[str, str], *, description: str = '',
    ) -> RepositoryHandle:
        self._check('create')
        stored = self._create(name, files=dict(files), commits=1 if files else 0)
        return self._to_handle(stored)

    async def probe(self, handle: RepositoryHandle) -> ProbeResult:
        self._check('probe')
        stored = self._by_name(handle.name)
        if stored is None:
            return ProbeResult.not_ready('repository not found')
        if stored.attributes['commits'] < 1:
            return ProbeResult.not_ready('default branch has no commits')
        files = stored.attributes['files']
        if self.marker_file not in files:
            return ProbeResult.not_ready(f'{self.marker_file} missing')
        if len(files) < self.min_files:
            return ProbeResult.not_ready(f'only {len(files)} files committed')
        return ProbeResult.ready(f'{len(files)} files on default branch')

    async def trigger_deployment(
        self, handle: RepositoryHandle, message: str,
    ) -> DeploymentTrigger:
        self._check('trigger_deployment')
        stored = self._by_name(handle.name)
        if stored is None:
            raise InMemoryProvisionerError(f'repository {handle.name!r} not found')
        stored.attributes['commits'] += 1
        sha = hashlib.sha1(
            f'{handle.name}:{stored.attributes["commits"]}:{message}'.encode()
        ).hexdigest()
        return DeploymentTrigger(commit_sha=sha, branch=handle.default_branch)

    async def delete(self, handle: ResourceHandle) -> DeleteOutcome:
        self._check('delete')
        stored = self._by_name(handle.resource_id)
        if stored is not None and self.cloud.remove(self.kind, stored.resource_id):
            return 'deleted'
        return 'not_found'

    def _by_name(self, name: str) -> StoredResource | None:
        found = self.cloud.find(self.kind, name)
        return found[0] if found else None


class InMemoryHostingProvisioner(_InMemoryProvisioner):
    kind = ResourceKind.HOSTING

    def __init__(
        self,
        cloud: InMemoryCloud,
        *,
        fail_on: Sequence[str] = (),
        deployment_state: str | None = 'READY',
        domain: str = 'hosting.local',
    ) -> None:
        super().__init__(cloud, fail_on=fail_on)
        self.deployment_state = deployment_state
        self.domain = domain

    def _to_handle(self, stored: StoredResource) -> HostingHandle:
        return HostingHandle(
            project_id=stored.resource_id,
            name=stored.name,
            url=f'https://{stored.name}.{self.domain}',
        )

    async def create(
        self,
        name: str,
        repository: RepositoryHandle,
        env: Mapping[str, str],
    ) -> HostingHandle:
        self._check('create')
        stored = self._create(name, repository=repository.full_name, env=dict(env))
        return self._to_handle(stored)

    async def probe_deployment(self, handle: HostingHandle) -> ProbeResult:
        self._check('probe_deployment')
        if self.cloud.get(self.kind, handle.project_id) is None:
            return ProbeResult.not_ready('project not found')
        state = self.deployment_state
        if state == 'READY':
            return ProbeResult.ready(f'{handle.url} live')
        if state == 'ERROR':
            return ProbeResult.failed('deployment failed')
        if state == 'CANCELED':
            return ProbeResult.canceled('deployment canceled')
        return ProbeResult.not_ready(f'deployment state {state or "none"}')


class InMemoryVoiceAgentProvisioner(_InMemoryProvisioner):
    kind = ResourceKind.VOICE_AGENT

    def __init__(
        self,
        cloud: InMemoryCloud,
        *,
        fail_on: Sequence[str] = (),
        agent_status: str = 'active',
    ) -> None:
        super().__init__(cloud, fail_on=fail_on)
        self.agent_status = agent_status

    def _to_handle(self, stored: StoredResource) -> VoiceAgentHandle:
        return VoiceAgentHandle(agent_id=stored.resource_id, name=stored.name)

    async def create(self, spec: VoiceAgentSpec) -> VoiceAgentHandle:
        self._check('create')
        stored = self._create(spec.name, voice_gender=spec.voice_gender)
        return self._to_handle(stored)

    async def probe(self, handle: VoiceAgentHandle) -> ProbeResult:
        self._check('probe')
        if self.cloud.get(self.kind, handle.agent_id) is None:
            return ProbeResult.not_ready('agent not found')
        if self.agent_status in ('active', 'published'):
            return ProbeResult.ready(f'agent {self.agent_status}')
        if self.agent_status in ('draft', 'unpublished'):
            return ProbeResult.failed(f'agent is {self.agent_status}')
        return ProbeResult.not_ready(f'agent status {self.agent_status}')


class InMemoryNotifier:
    def __init__(self, *, fail_on: Sequence[str] = ()) -> None:
        self.fail_on: set[str] = set(fail_on)
        self.sent: list[WelcomeMessage] = []

    async def send(self, message: WelcomeMessage) -> NotificationReceipt:
        if 'send' in self.fail_on:
            raise InMemoryProvisionerError('notification send failed (simulated)')
        self.sent.append(message)
        return NotificationReceipt(
            recipient=message.recipient, message_id=f'msg-{len(self.sent)}',
        )


def build_inmemory_provisioners(
    cloud: InMemoryCloud | None = None,
    *,
    voice_agent: bool = True,
    notifier: bool = True,
) -> Provisioners:
    """Provisioner bundle over one shared ``InMemoryCloud``."""
    cloud = cloud or InMemoryCloud()
    return Provisioners(
        database=InMemoryDatabaseProvisioner(cloud),
        repository=InMemoryRepositoryProvisioner(cloud),
        hosting=InMemoryHostingProvisioner(cloud),
        voice_agent=InMemoryVoiceAgentProvisioner(cloud) if voice_agent else None,
        notifier=InMemoryNotifier() if notifier else None,
    )
