"""Resource handles and the per-run resource registry.

The registry is the sole input to rollback: a handle is registered only
once the step that created it reached ``success``, so compensation never
targets a resource whose creation was not confirmed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Union

from .models import ResourceKind


@dataclass(frozen=True, slots=True)
class DatabaseHandle:
    """Database project plus the credentials dependent steps wire in."""

    project_id: str
    name: str
    url: str
    anon_key: str = field(default='', repr=False)
    service_key: str = field(default='', repr=False)
    kind: ResourceKind = field(default=ResourceKind.DATABASE, init=False)

    @property
    def resource_id(self) -> str:
        return self.project_id

    def public_payload(self) -> dict[str, Any]:
        return {'projectId': self.project_id, 'name': self.name, 'url': self.url}


@dataclass(frozen=True, slots=True)
class RepositoryHandle:
    name: str
    full_name: str
    url: str
    default_branch: str = 'main'
    kind: ResourceKind = field(default=ResourceKind.REPOSITORY, init=False)

    @property
    def resource_id(self) -> str:
        return self.name

    def public_payload(self) -> dict[str, Any]:
        return {
            'repoName': self.name,
            'fullName': self.full_name,
            'repoUrl': self.url,
            'defaultBranch': self.default_branch,
        }


@dataclass(frozen=True, slots=True)
class HostingHandle:
    project_id: str
    name: str
    url: str
    kind: ResourceKind = field(default=ResourceKind.HOSTING, init=False)

    @property
    def resource_id(self) -> str:
        return self.project_id

    def public_payload(self) -> dict[str, Any]:
        return {'projectId': self.project_id, 'name': self.name, 'url': self.url}


@dataclass(frozen=True, slots=True)
class VoiceAgentHandle:
    agent_id: str
    name: str
    kind: ResourceKind = field(default=ResourceKind.VOICE_AGENT, init=False)

    @property
    def resource_id(self) -> str:
        return self.agent_id

    def public_payload(self) -> dict[str, Any]:
        return {'agentId': self.agent_id, 'name': self.name}


ResourceHandle = Union[DatabaseHandle, RepositoryHandle, HostingHandle, VoiceAgentHandle]
RESOURCE_HANDLE_TYPES = (DatabaseHandle, RepositoryHandle, HostingHandle, VoiceAgentHandle)


class DuplicateResourceError(ValueError):
    """Raised when a resource kind is registered twice in one run."""

    def __init__(self, kind: ResourceKind) -> None:
        self.resource_kind = kind
        super().__init__(f'resource already registered: {kind.value!r}')


class ResourceRegistry:
    """Ordered map of resource kind -> handle for one orchestration run."""

    def __init__(self) -> None:
        self._handles: dict[ResourceKind, ResourceHandle] = {}

    def register(self, handle: ResourceHandle) -> None:
        if handle.kind in self._handles:
            raise DuplicateResourceError(handle.kind)
        self._handles[handle.kind] = handle

    def get(self, kind: ResourceKind) -> ResourceHandle | None:
        return self._handles.get(kind)

    def __contains__(self, kind: object) -> bool:
        return kind in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[ResourceHandle]:
        return iter(self.handles())

    def handles(self) -> list[ResourceHandle]:
        """Handles in registration order."""
        return list(self._handles.values())

    def kinds(self) -> list[ResourceKind]:
        return list(self._handles)

    @property
    def database(self) -> DatabaseHandle | None:
        return self._handles.get(ResourceKind.DATABASE)  # type: ignore[return-value]

    @property
    def repository(self) -> RepositoryHandle | None:
        return self._handles.get(ResourceKind.REPOSITORY)  # type: ignore[return-value]

    @property
    def hosting(self) -> HostingHandle | None:
        return self._handles.get(ResourceKind.HOSTING)  # type: ignore[return-value]

    @property
    def voice_agent(self) -> VoiceAgentHandle | None:
        return self._handles.get(ResourceKind.VOICE_AGENT)  # type: ignore[return-value]

    def to_payload(self) -> dict[str, dict[str, Any] | None]:
        """Serialisable view; database keys are never included."""
        return {
            kind.value: (
                self._handles[kind].public_payload()
                if kind in self._handles
                else None
            )
            for kind in ResourceKind
        }
