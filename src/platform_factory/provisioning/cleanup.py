"""Pre-flight cleanup of resources left behind by earlier runs.

Resources are located by the deterministic names derived from the slug,
deleted, and then confirmed absent through the readiness verifier. Each
resource kind is handled independently: an error on one never prevents
the others from being attempted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from ..observability import get_logger
from ..observability.metrics import CLEANUP_ENTRIES_TOTAL
from ..settings import FactorySettings
from .models import ResourceKind, StepKind
from .protocols import Provisioners, ResourceProvisioner
from .readiness import ProbeResult, ReadinessVerifier
from .registry import ResourceHandle

logger = get_logger(__name__)

# Dependents first: hosting links the repository, the database is last.
CLEANUP_ORDER: tuple[ResourceKind, ...] = (
    ResourceKind.HOSTING,
    ResourceKind.REPOSITORY,
    ResourceKind.VOICE_AGENT,
    ResourceKind.DATABASE,
)


class CleanupOutcome(str, Enum):
    NOT_FOUND = 'not_found'
    DELETED = 'deleted'
    ERROR = 'error'
    SKIPPED = 'skipped'


RESOLVED_OUTCOMES = frozenset({
    CleanupOutcome.NOT_FOUND,
    CleanupOutcome.DELETED,
    CleanupOutcome.SKIPPED,
})


@dataclass(frozen=True, slots=True)
class CleanupEntry:
    kind: ResourceKind
    outcome: CleanupOutcome
    found: bool = False
    deleted: bool = False
    verified: bool = False
    attempts: int = 0
    resource_ids: tuple[str, ...] = ()
    error: str | None = None

    @property
    def resolved(self) -> bool:
        return self.outcome in RESOLVED_OUTCOMES

    def to_payload(self) -> dict[str, Any]:
        return {
            'kind': self.kind.value,
            'outcome': self.outcome.value,
            'found': self.found,
            'deleted': self.deleted,
            'verified': self.verified,
            'attempts': self.attempts,
            'resourceIds': list(self.resource_ids),
            'error': self.error,
        }


@dataclass(frozen=True, slots=True)
class CleanupReport:
    slug: str
    entries: tuple[CleanupEntry, ...] = ()
    kind: StepKind = field(default=StepKind.CLEANUP, init=False)

    @property
    def resolved(self) -> bool:
        """True when no stale resource remains (every kind resolved)."""
        return all(entry.resolved for entry in self.entries)

    @property
    def unresolved(self) -> list[CleanupEntry]:
        return [entry for entry in self.entries if not entry.resolved]

    def entry(self, kind: ResourceKind) -> CleanupEntry | None:
        for entry in self.entries:
            if entry.kind is kind:
                return entry
        return None

    def summary(self) -> str:
        deleted = [e.kind.value for e in self.entries if e.outcome is CleanupOutcome.DELETED]
        failed = [e.kind.value for e in self.unresolved]
        if failed:
            return f'unresolved stale resources: {", ".join(failed)}'
        if deleted:
            return f'deleted stale resources: {", ".join(deleted)}'
        return 'no stale resources found'

    def to_payload(self) -> dict[str, Any]:
        return {
            'slug': self.slug,
            'resolved': self.resolved,
            'entries': [entry.to_payload() for entry in self.entries],
        }


class PreflightCleaner:
    """Find, delete and confirm absence of stale resources for a slug."""

    def __init__(
        self,
        provisioners: Provisioners,
        settings: FactorySettings,
        *,
        verifier: ReadinessVerifier | None = None,
        kinds: Sequence[ResourceKind] = CLEANUP_ORDER,
    ) -> None:
        self._provisioners = provisioners
        self._settings = settings
        self._verifier = verifier or ReadinessVerifier()
        self._kinds = tuple(kinds)

    async def cleanup(self, slug: str) -> CleanupReport:
        entries = []
        for kind in self._kinds:
            entry = await self._cleanup_kind(slug, kind)
            CLEANUP_ENTRIES_TOTAL.labels(
                kind=kind.value, outcome=entry.outcome.value,
            ).inc()
            logger.info(
                'cleanup_entry',
                slug=slug,
                kind=kind.value,
                outcome=entry.outcome.value,
                attempts=entry.attempts,
                error=entry.error,
            )
            entries.append(entry)
        return CleanupReport(slug=slug, entries=tuple(entries))

    async def _cleanup_kind(self, slug: str, kind: ResourceKind) -> CleanupEntry:
        provisioner = self._provisioners.for_kind(kind)
        if provisioner is None:
            return CleanupEntry(kind=kind, outcome=CleanupOutcome.SKIPPED)

        try:
            found = list(await provisioner.find(slug))
        except Exception as exc:
            return CleanupEntry(
                kind=kind, outcome=CleanupOutcome.ERROR, error=f'lookup failed: {exc}',
            )
        if not found:
            return CleanupEntry(kind=kind, outcome=CleanupOutcome.NOT_FOUND)

        resource_ids = tuple(handle.resource_id for handle in found)
        last_error = ''
        attempts = 0
        for attempts in range(1, self._settings.cleanup_max_attempts + 1):
            try:
                await self._delete_all(provisioner, found)
            except Exception as exc:
                last_error = f'delete failed: {exc}'
                logger.warning(
                    'cleanup_delete_failed',
                    slug=slug,
                    kind=kind.value,
                    attempt=attempts,
                    error=str(exc),
                )
                continue

            outcome = await self._verifier.verify_with_budget(
                lambda: _absence_probe(provisioner, slug),
                self._settings.cleanup_budget,
                label=f'cleanup:{kind.value}',
            )
            if outcome.verified:
                return CleanupEntry(
                    kind=kind,
                    outcome=CleanupOutcome.DELETED,
                    found=True,
                    deleted=True,
                    verified=True,
                    attempts=attempts,
                    resource_ids=resource_ids,
                )
            last_error = f'still present after delete: {outcome.detail}'
            try:
                found = list(await provisioner.find(slug)) or found
            except Exception as exc:
                last_error = f'lookup failed: {exc}'

        return CleanupEntry(
            kind=kind,
            outcome=CleanupOutcome.ERROR,
            found=True,
            attempts=attempts,
            resource_ids=resource_ids,
            error=last_error,
        )

    @staticmethod
    async def _delete_all(
        provisioner: ResourceProvisioner, handles: Sequence[ResourceHandle],
    ) -> None:
        for handle in handles:
            # 'not_found' means someone else got there first; that is fine.
            await provisioner.delete(handle)


async def _absence_probe(provisioner: ResourceProvisioner, slug: str) -> ProbeResult:
    remaining = await provisioner.find(slug)
    if remaining:
        return ProbeResult.not_ready(f'{len(remaining)} still listed')
    return ProbeResult.ready('absent')
