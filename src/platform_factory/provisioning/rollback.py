"""Compensation for a failed run: delete what this run created.

The registry is the only input. Handles are deleted in reverse
registration order and every deletion is attempted regardless of how the
previous ones went. Rollback errors are reported, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..observability import get_logger
from ..observability.metrics import PROVISION_ROLLBACKS_TOTAL
from .models import ResourceKind
from .protocols import Provisioners
from .registry import ResourceRegistry

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RollbackEntry:
    kind: ResourceKind
    resource_id: str
    outcome: str
    """One of: deleted, not_found, error."""

    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in ('deleted', 'not_found')

    def to_payload(self) -> dict[str, Any]:
        return {
            'kind': self.kind.value,
            'resourceId': self.resource_id,
            'outcome': self.outcome,
            'error': self.error,
        }


@dataclass(frozen=True, slots=True)
class RollbackReport:
    performed: bool
    details: tuple[RollbackEntry, ...] = ()

    @property
    def all_deleted(self) -> bool:
        return all(entry.ok for entry in self.details)

    def to_payload(self) -> dict[str, Any]:
        return {
            'performed': self.performed,
            'allDeleted': self.all_deleted,
            'details': [entry.to_payload() for entry in self.details],
        }


NOT_PERFORMED = RollbackReport(performed=False)


class RollbackEngine:
    """Delete every registered resource, newest first. Single use."""

    def __init__(self, provisioners: Provisioners) -> None:
        self._provisioners = provisioners
        self._used = False

    @property
    def used(self) -> bool:
        return self._used

    async def rollback(self, registry: ResourceRegistry, *, slug: str = '') -> RollbackReport:
        if self._used:
            raise RuntimeError('rollback already performed for this run')
        self._used = True

        details = []
        for handle in reversed(registry.handles()):
            entry = await self._delete(handle)
            PROVISION_ROLLBACKS_TOTAL.labels(
                kind=entry.kind.value, outcome=entry.outcome,
            ).inc()
            logger.info(
                'rollback_entry',
                slug=slug,
                kind=entry.kind.value,
                resource_id=entry.resource_id,
                outcome=entry.outcome,
                error=entry.error,
            )
            details.append(entry)
        return RollbackReport(performed=True, details=tuple(details))

    async def _delete(self, handle) -> RollbackEntry:
        provisioner = self._provisioners.for_kind(handle.kind)
        if provisioner is None:
            return RollbackEntry(
                kind=handle.kind,
                resource_id=handle.resource_id,
                outcome='error',
                error='no provisioner configured',
            )
        try:
            outcome = await provisioner.delete(handle)
        except Exception as exc:
            return RollbackEntry(
                kind=handle.kind,
                resource_id=handle.resource_id,
                outcome='error',
                error=str(exc) or type(exc).__name__,
            )
        return RollbackEntry(
            kind=handle.kind, resource_id=handle.resource_id, outcome=outcome,
        )
