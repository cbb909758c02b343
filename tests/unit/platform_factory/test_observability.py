"""Tests for request-ID log correlation, metrics export and middleware."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from platform_factory.main import create_app
from platform_factory.observability import (
    metrics_text,
    provisioning_ctx,
    provisioning_scope,
    request_id_ctx,
)
from platform_factory.observability.logging import (
    REDACTED,
    _add_provisioning_scope,
    _add_request_id,
    _redact_secrets,
)
from platform_factory.observability.metrics import HTTP_REQUESTS_TOTAL, PROVISION_RUNS_TOTAL
from platform_factory.observability.middleware import UNMATCHED_ROUTE, RequestIdMiddleware
from platform_factory.provisioning.coordinator import ProvisioningCoordinator
from platform_factory.provisioning.inmemory import build_inmemory_provisioners
from platform_factory.provisioning.models import ProvisioningRequest
from platform_factory.settings import FactorySettings


def test_request_id_added_to_log_events():
    token = request_id_ctx.set('req-abcdef12')
    try:
        event = _add_request_id(None, 'info', {'event': 'step_started'})
    finally:
        request_id_ctx.reset(token)
    assert event['request_id'] == 'req-abcdef12'


def test_no_request_id_outside_requests():
    assert 'request_id' not in _add_request_id(None, 'info', {'event': 'x'})


def test_metrics_text_exposes_provisioning_counters():
    PROVISION_RUNS_TOTAL.labels(outcome='success').inc()
    content, content_type = metrics_text()
    assert content_type.startswith('text/plain')
    assert b'platform_factory_provision_runs_total' in content


def _echo_app() -> TestClient:
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get('/rid')
    async def rid():
        return {'ctx': request_id_ctx.get()}

    return TestClient(app)


def test_valid_incoming_request_id_is_kept_and_bound():
    resp = _echo_app().get('/rid', headers={'X-Request-ID': 'abc-12345678'})
    assert resp.headers['X-Request-ID'] == 'abc-12345678'
    assert resp.json()['ctx'] == 'abc-12345678'


def test_malformed_request_id_is_replaced():
    resp = _echo_app().get('/rid', headers={'X-Request-ID': 'bad id!'})
    assert resp.headers['X-Request-ID'] != 'bad id!'
    assert len(resp.headers['X-Request-ID']) == 36


# ── Provisioning correlation ─────────────────────────────────────────


def test_provisioning_scope_adds_slug_and_step():
    with provisioning_scope(slug='acme-ventures'):
        with provisioning_scope(step='create-database'):
            event = _add_provisioning_scope(None, 'info', {'event': 'step_started'})
        outer = _add_provisioning_scope(None, 'info', {'event': 'provisioning_finished'})

    assert event['slug'] == 'acme-ventures'
    assert event['step'] == 'create-database'
    assert outer == {'event': 'provisioning_finished', 'slug': 'acme-ventures'}
    assert dict(provisioning_ctx.get()) == {}


def test_explicit_slug_wins_over_scope():
    with provisioning_scope(slug='acme-ventures'):
        event = _add_provisioning_scope(None, 'info', {'slug': 'other'})
    assert event['slug'] == 'other'


def test_secret_fields_are_redacted():
    event = _redact_secrets(None, 'info', {
        'event': 'x',
        'api_token': 'sekret',
        'service_role_key': 'srk',
        'agent_id': 'agent_1',
        'password': '',
    })
    assert event['api_token'] == REDACTED
    assert event['service_role_key'] == REDACTED
    assert event['agent_id'] == 'agent_1'
    assert event['password'] == ''


@pytest.mark.asyncio
async def test_step_actions_run_inside_provisioning_scope(cloud, clock, verifier, monkeypatch):
    provisioners = build_inmemory_provisioners(cloud)
    seen = {}
    create = provisioners.database.create

    async def recording_create(name):
        seen.update(provisioning_ctx.get())
        return await create(name)

    monkeypatch.setattr(provisioners.database, 'create', recording_create)
    coordinator = ProvisioningCoordinator(
        provisioners, FactorySettings(), verifier=verifier, clock=clock,
    )

    result = await coordinator.run(ProvisioningRequest(
        company_name='Acme Ventures',
        company_email='hello@acme.vc',
        admin_email='admin@acme.vc',
    ))

    assert result.success
    assert seen == {'slug': 'acme-ventures', 'step': 'create-database'}
    assert dict(provisioning_ctx.get()) == {}


# ── Metric labels ────────────────────────────────────────────────────


def _path_labels() -> set[str]:
    return {
        sample.labels['path']
        for metric in HTTP_REQUESTS_TOTAL.collect()
        for sample in metric.samples
        if sample.name.endswith('_total')
    }


def test_unknown_paths_share_one_metric_label():
    client = TestClient(create_app(FactorySettings()))
    before = _path_labels()

    for i in range(25):
        assert client.get(f'/scan/{i}').status_code == 404
    client.get('/health')
    client.get('/api/v1/platforms')

    added = _path_labels() - before
    assert added <= {UNMATCHED_ROUTE, '/health', '/api/v1/platforms'}
    assert UNMATCHED_ROUTE in _path_labels()
    assert not any(label.startswith('/scan/') for label in _path_labels())
