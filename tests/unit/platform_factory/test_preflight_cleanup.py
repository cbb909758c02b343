"""Tests for pre-flight cleanup of stale tenant resources."""

from __future__ import annotations

import pytest

from platform_factory.provisioning.cleanup import (
    CLEANUP_ORDER,
    CleanupOutcome,
    PreflightCleaner,
)
from platform_factory.provisioning.content import build_voice_agent_spec
from platform_factory.provisioning.inmemory import (
    InMemoryHostingProvisioner,
    build_inmemory_provisioners,
)
from platform_factory.provisioning.models import ProvisioningRequest, ResourceKind
from platform_factory.provisioning.protocols import Provisioners
from platform_factory.settings import FactorySettings

SLUG = 'acme-ventures'


def _request() -> ProvisioningRequest:
    return ProvisioningRequest(
        company_name='Acme Ventures',
        company_email='hello@acme.vc',
        admin_email='admin@acme.vc',
    )


async def _seed(provisioners: Provisioners, name: str = SLUG) -> None:
    """Leave behind a full set of resources, as an aborted run would."""
    await provisioners.database.create(name)
    repo = await provisioners.repository.create(
        name, {'platform.config.json': '{}', 'README.md': '', '.env.example': ''},
    )
    await provisioners.hosting.create(name, repo, {})
    if provisioners.voice_agent is not None:
        await provisioners.voice_agent.create(
            build_voice_agent_spec(_request(), f'{name}-voice'),
        )


def _cleaner(provisioners, verifier, **settings) -> PreflightCleaner:
    return PreflightCleaner(provisioners, FactorySettings(**settings), verifier=verifier)


@pytest.mark.asyncio
async def test_nothing_to_clean(cloud, verifier):
    provisioners = build_inmemory_provisioners(cloud)
    report = await _cleaner(provisioners, verifier).cleanup(SLUG)

    assert [e.kind for e in report.entries] == list(CLEANUP_ORDER)
    assert all(e.outcome is CleanupOutcome.NOT_FOUND for e in report.entries)
    assert report.resolved
    assert report.summary() == 'no stale resources found'


@pytest.mark.asyncio
async def test_deletes_and_confirms_absence_of_every_stale_resource(cloud, verifier):
    provisioners = build_inmemory_provisioners(cloud)
    await _seed(provisioners)
    assert cloud.count() == 4

    report = await _cleaner(provisioners, verifier).cleanup(SLUG)

    assert cloud.count() == 0
    for entry in report.entries:
        assert entry.outcome is CleanupOutcome.DELETED
        assert entry.found and entry.deleted and entry.verified
        assert entry.attempts == 1
        assert len(entry.resource_ids) == 1
    assert report.resolved
    assert report.summary().startswith('deleted stale resources: hosting')


@pytest.mark.asyncio
async def test_cleanup_is_idempotent(cloud, verifier):
    provisioners = build_inmemory_provisioners(cloud)
    await _seed(provisioners)
    cleaner = _cleaner(provisioners, verifier)

    await cleaner.cleanup(SLUG)
    second = await cleaner.cleanup(SLUG)

    assert all(e.outcome is CleanupOutcome.NOT_FOUND for e in second.entries)


@pytest.mark.asyncio
async def test_deletes_dependents_before_database(cloud, verifier):
    provisioners = build_inmemory_provisioners(cloud)
    await _seed(provisioners)
    order = []
    for kind in CLEANUP_ORDER:
        provisioner = provisioners.for_kind(kind)
        original = provisioner.delete

        async def tracked(handle, _original=original, _kind=kind):
            order.append(_kind)
            return await _original(handle)

        provisioner.delete = tracked

    await _cleaner(provisioners, verifier).cleanup(SLUG)

    assert order == [
        ResourceKind.HOSTING,
        ResourceKind.REPOSITORY,
        ResourceKind.VOICE_AGENT,
        ResourceKind.DATABASE,
    ]


@pytest.mark.asyncio
async def test_only_exact_names_are_touched(cloud, verifier):
    provisioners = build_inmemory_provisioners(cloud)
    await _seed(provisioners, name='acme-ventures-2')
    await provisioners.database.create('acme')

    report = await _cleaner(provisioners, verifier).cleanup(SLUG)

    assert all(e.outcome is CleanupOutcome.NOT_FOUND for e in report.entries)
    assert cloud.count() == 5


@pytest.mark.asyncio
async def test_one_failing_kind_does_not_block_the_others(cloud, verifier):
    provisioners = build_inmemory_provisioners(cloud)
    await _seed(provisioners)
    provisioners.repository.fail_on.add('delete')

    report = await _cleaner(provisioners, verifier, cleanup_max_attempts=3).cleanup(SLUG)

    repo = report.entry(ResourceKind.REPOSITORY)
    assert repo.outcome is CleanupOutcome.ERROR
    assert repo.attempts == 3
    assert 'delete failed' in repo.error
    assert provisioners.repository.calls.count('delete') == 3
    for kind in (ResourceKind.HOSTING, ResourceKind.VOICE_AGENT, ResourceKind.DATABASE):
        assert report.entry(kind).outcome is CleanupOutcome.DELETED
    assert not report.resolved
    assert report.unresolved == [repo]
    assert report.summary() == 'unresolved stale resources: repository'
    assert cloud.names(ResourceKind.REPOSITORY) == [SLUG]


@pytest.mark.asyncio
async def test_lookup_failure_is_an_error_entry(cloud, verifier):
    provisioners = build_inmemory_provisioners(cloud)
    provisioners.database.fail_on.add('find')

    report = await _cleaner(provisioners, verifier).cleanup(SLUG)

    entry = report.entry(ResourceKind.DATABASE)
    assert entry.outcome is CleanupOutcome.ERROR
    assert entry.error.startswith('lookup failed')


class _StubbornHosting(InMemoryHostingProvisioner):
    """Accepts deletes but never actually removes anything."""

    async def delete(self, handle):
        self._check('delete')
        return 'deleted'


@pytest.mark.asyncio
async def test_resource_still_listed_after_delete_is_unresolved(cloud, verifier, clock):
    base = build_inmemory_provisioners(cloud)
    provisioners = Provisioners(
        database=base.database,
        repository=base.repository,
        hosting=_StubbornHosting(cloud),
        voice_agent=base.voice_agent,
        notifier=base.notifier,
    )
    await _seed(provisioners)

    report = await _cleaner(provisioners, verifier, cleanup_max_attempts=2).cleanup(SLUG)

    entry = report.entry(ResourceKind.HOSTING)
    assert entry.outcome is CleanupOutcome.ERROR
    assert entry.attempts == 2
    assert entry.verified is False
    assert 'still present after delete' in entry.error
    assert clock.sleeps


@pytest.mark.asyncio
async def test_missing_optional_provisioner_is_skipped(cloud, verifier):
    provisioners = build_inmemory_provisioners(cloud, voice_agent=False)
    report = await _cleaner(provisioners, verifier).cleanup(SLUG)

    assert report.entry(ResourceKind.VOICE_AGENT).outcome is CleanupOutcome.SKIPPED
    assert report.resolved


@pytest.mark.asyncio
async def test_report_payload(cloud, verifier):
    provisioners = build_inmemory_provisioners(cloud)
    await provisioners.database.create(SLUG)
    report = await _cleaner(provisioners, verifier).cleanup(SLUG)
    payload = report.to_payload()

    assert payload['slug'] == SLUG
    assert payload['resolved'] is True
    database = payload['entries'][-1]
    assert database['kind'] == 'database'
    assert database['outcome'] == 'deleted'
    assert database['resourceIds'] == ['database-1']
