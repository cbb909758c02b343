"""Tests for the FastAPI app factory and the platform routes."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from platform_factory import create_app
from platform_factory.providers import SupabaseProvisioner
from platform_factory.provisioning.inmemory import (
    InMemoryCloud,
    build_inmemory_provisioners,
)
from platform_factory.routes.platforms import PlatformRequest
from platform_factory.settings import FactorySettings

BODY = {
    'companyName': 'Acme Ventures',
    'companyEmail': 'hello@acme.vc',
    'adminEmail': 'admin@acme.vc',
    'adminFirstName': 'Ada',
    'platformMode': 'coaching',
    'voiceGender': 'male',
}


def _client(verifier, settings=None, provisioners=None) -> TestClient:
    app = create_app(
        settings or FactorySettings(),
        provisioners=provisioners,
        verifier=verifier,
    )
    return TestClient(app)


# ── App factory ──────────────────────────────────────────────────


def test_health(verifier):
    resp = _client(verifier).get('/health')
    assert resp.status_code == 200
    assert resp.json()['status'] == 'ok'
    assert resp.json()['environment'] == 'local'
    assert 'X-Request-ID' in resp.headers


def test_request_id_is_propagated(verifier):
    resp = _client(verifier).get('/health', headers={'X-Request-ID': 'req-12345678'})
    assert resp.headers['X-Request-ID'] == 'req-12345678'


def test_metrics_endpoint(verifier):
    client = _client(verifier)
    client.get('/health')
    resp = client.get('/metrics')
    assert resp.status_code == 200
    assert 'platform_factory_http_requests_total' in resp.text


def test_local_app_uses_inmemory_provisioners(verifier):
    app = create_app(FactorySettings(), verifier=verifier)
    assert type(app.state.deps.provisioners.database).__name__ == 'InMemoryDatabaseProvisioner'
    assert app.state.settings.is_local


def test_non_local_without_credentials_is_rejected():
    with pytest.raises(ValueError, match='settings validation failed'):
        create_app(FactorySettings(environment='production'))


def test_non_local_builds_provider_adapters(verifier):
    settings = FactorySettings(
        environment='staging',
        supabase_access_token='sbp',
        supabase_org_id='org',
        github_token='ghp',
        github_owner='tenants',
        vercel_token='vc',
    )
    app = create_app(settings, verifier=verifier)
    provisioners = app.state.deps.provisioners
    assert isinstance(provisioners.database, SupabaseProvisioner)
    assert provisioners.voice_agent is None


# ── POST /api/v1/platforms ───────────────────────────────────────


def test_create_platform_success(verifier):
    cloud = InMemoryCloud()
    client = _client(verifier, provisioners=build_inmemory_provisioners(cloud))

    resp = client.post('/api/v1/platforms', json=BODY)

    assert resp.status_code == 200
    data = resp.json()
    assert data['success'] is True
    assert data['fullyVerified'] is True
    assert data['slug'] == 'acme-ventures'
    assert data['platformUrl'] == 'https://acme-ventures.hosting.local'
    assert data['requestId'] == resp.headers['X-Request-ID']
    assert [s['status'] for s in data['steps']] == ['success'] * 10
    assert data['resources']['database']['name'] == 'acme-ventures'
    assert cloud.count() == 4


def test_create_platform_fatal_failure_returns_500_with_document(verifier):
    provisioners = build_inmemory_provisioners()
    provisioners.repository.fail_on.add('create')
    client = _client(verifier, provisioners=provisioners)

    resp = client.post('/api/v1/platforms', json=BODY)

    assert resp.status_code == 500
    data = resp.json()
    assert data['success'] is False
    assert data['failedStep'] == 'create-repository'
    assert data['error'].startswith('create-repository:')
    assert data['rollback']['performed'] is True
    assert [d['kind'] for d in data['rollback']['details']] == ['voice_agent', 'database']


def test_degraded_run_is_still_200(verifier):
    provisioners = build_inmemory_provisioners()
    provisioners.voice_agent.fail_on.add('create')
    resp = _client(verifier, provisioners=provisioners).post('/api/v1/platforms', json=BODY)

    assert resp.status_code == 200
    assert resp.json()['success'] is True
    assert resp.json()['fullyVerified'] is False


@pytest.mark.parametrize(
    'overrides',
    [
        {'companyName': '!!!'},
        {'companyName': ''},
        {'adminEmail': 'not-an-email'},
        {'platformMode': 'trading'},
        {'voiceGender': 'robot'},
    ],
)
def test_invalid_request_is_422(verifier, overrides):
    resp = _client(verifier).post('/api/v1/platforms', json={**BODY, **overrides})
    assert resp.status_code == 422


def test_missing_required_field_is_422(verifier):
    body = {k: v for k, v in BODY.items() if k != 'companyEmail'}
    resp = _client(verifier).post('/api/v1/platforms', json=body)
    assert resp.status_code == 422


def test_platform_request_accepts_field_names():
    request = PlatformRequest(
        company_name='Acme', company_email='a@acme.vc', admin_email='b@acme.vc',
    ).to_request()
    assert request.company_name == 'Acme'
    assert request.platform_mode == 'screening'
    assert request.rollback_on_failure is True


def test_platform_request_aliases():
    request = PlatformRequest.model_validate({
        **BODY,
        'skipPreflightCleanup': True,
        'rollbackOnFailure': False,
        'voiceAgentEnabled': False,
        'branding': {'colors': {'primary': '#111'}},
    }).to_request()
    assert request.skip_preflight_cleanup is True
    assert request.rollback_on_failure is False
    assert request.voice_agent_enabled is False
    assert request.branding['colors'] == {'primary': '#111'}


# ── GET /api/v1/platforms ────────────────────────────────────────


def test_metadata(verifier):
    resp = _client(verifier).get('/api/v1/platforms')
    assert resp.status_code == 200
    data = resp.json()
    assert data['service'] == 'platform-factory'
    assert data['version'] == '0.1.0'
    assert len(data['sequence']) == 10
    assert data['sequence'][0]['id'] == 'preflight-cleanup'
    assert data['rollback']['order'] == 'reverse-registration'
    assert data['verificationPolicy']['warningsLowerFullVerification'] is True


# ── Auth ─────────────────────────────────────────────────────────


def test_token_required_when_configured(verifier):
    client = _client(verifier, settings=FactorySettings(api_token='s3cret'))

    resp = client.post('/api/v1/platforms', json=BODY)
    assert resp.status_code == 401
    assert resp.json()['code'] == 'AUTH_REQUIRED'
    assert resp.headers['WWW-Authenticate'].startswith('Bearer')

    wrong = client.get('/api/v1/platforms', headers={'Authorization': 'Bearer nope'})
    assert wrong.status_code == 401

    ok = client.get('/api/v1/platforms', headers={'Authorization': 'Bearer s3cret'})
    assert ok.status_code == 200


def test_health_never_requires_token(verifier):
    client = _client(verifier, settings=FactorySettings(api_token='s3cret'))
    assert client.get('/health').status_code == 200
