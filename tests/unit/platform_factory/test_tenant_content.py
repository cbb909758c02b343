"""Tests for the pure content builders."""

from __future__ import annotations

import json

import pytest

from platform_factory.provisioning.content import (
    MARKER_FILE,
    auth_redirect_urls,
    build_hosting_env,
    build_repository_files,
    build_voice_agent_spec,
    build_welcome_message,
    redact_env,
)
from platform_factory.provisioning.models import ProvisioningRequest
from platform_factory.provisioning.registry import DatabaseHandle, VoiceAgentHandle


def _request(**overrides) -> ProvisioningRequest:
    fields = {
        'company_name': 'Acme Ventures',
        'company_email': 'hello@acme.vc',
        'admin_email': 'admin@acme.vc',
        'admin_first_name': 'Ada',
    }
    fields.update(overrides)
    return ProvisioningRequest(**fields)


def _database() -> DatabaseHandle:
    return DatabaseHandle(
        project_id='p1',
        name='acme-ventures',
        url='https://p1.supabase.co',
        anon_key='anon',
        service_key='service',
    )


def test_request_rejects_unknown_mode_and_gender():
    with pytest.raises(ValueError, match='platform_mode'):
        _request(platform_mode='trading')
    with pytest.raises(ValueError, match='voice_gender'):
        _request(voice_gender='robot')
    with pytest.raises(ValueError, match='admin_email'):
        _request(admin_email='  ')


def test_request_branding_is_frozen():
    request = _request(branding={'company': {'name': 'Acme'}})
    with pytest.raises(TypeError):
        request.branding['company'] = {}


def test_repository_files_contain_marker_with_default_branding():
    files = build_repository_files(_request(), 'acme-ventures')

    assert set(files) == {MARKER_FILE, 'README.md', '.env.example'}
    config = json.loads(files[MARKER_FILE])
    assert config['slug'] == 'acme-ventures'
    assert config['platformMode'] == 'screening'
    assert config['branding']['company']['name'] == 'Acme Ventures'
    assert config['admin']['email'] == 'admin@acme.vc'
    assert files['README.md'].startswith('# Acme Ventures')


def test_repository_files_keep_supplied_branding_and_marker_name():
    branding = {'company': {'name': 'Acme'}, 'colors': {'primary': '#000'}}
    files = build_repository_files(
        _request(branding=branding), 'acme', marker_file='tenant.json',
    )
    assert json.loads(files['tenant.json'])['branding'] == branding


def test_voice_agent_prompt_depends_on_mode():
    screening = build_voice_agent_spec(_request(), 'acme-ventures-voice')
    coaching = build_voice_agent_spec(
        _request(platform_mode='coaching', agent_name='Sam', voice_gender='male'),
        'acme-ventures-voice',
    )
    assert screening.name == 'acme-ventures-voice'
    assert 'investment associate' in screening.prompt
    assert 'pitch coach' in coaching.prompt
    assert coaching.first_message.startswith("Hi, I'm Sam from Acme Ventures")
    assert coaching.voice_gender == 'male'


def test_hosting_env_drops_empty_values():
    env = build_hosting_env(_request(), _database(), None)
    assert env['NEXT_PUBLIC_SUPABASE_URL'] == 'https://p1.supabase.co'
    assert env['SUPABASE_SERVICE_ROLE_KEY'] == 'service'
    assert env['IS_ADMIN_PLATFORM'] == 'false'
    assert 'ELEVENLABS_AGENT_ID' not in env

    with_voice = build_hosting_env(
        _request(), _database(), VoiceAgentHandle('agent-9', 'acme-ventures-voice'),
    )
    assert with_voice['ELEVENLABS_AGENT_ID'] == 'agent-9'


def test_redact_env_masks_server_secrets():
    redacted = redact_env(build_hosting_env(_request(), _database(), None))
    assert redacted['SUPABASE_SERVICE_ROLE_KEY'] == '***'
    assert redacted['NEXT_PUBLIC_COMPANY_NAME'] == 'Acme Ventures'


def test_auth_redirect_urls():
    assert auth_redirect_urls('https://acme.vercel.app/') == [
        'https://acme.vercel.app/auth/callback',
        'https://acme.vercel.app/callback',
        'https://acme.vercel.app/login',
    ]


def test_welcome_message_escapes_html():
    message = build_welcome_message(
        _request(company_name='Acme <script>', admin_first_name=''),
        'https://acme.vercel.app',
        'https://github.com/tenants/acme',
    )
    assert message.recipient == 'admin@acme.vc'
    assert message.subject == 'Your Acme <script> platform is ready'
    assert '<script>' not in message.html
    assert '&lt;script&gt;' in message.html
    assert 'Hi Admin,' in message.text
    assert 'Source: https://github.com/tenants/acme' in message.text


def test_welcome_message_without_repository():
    message = build_welcome_message(_request(), 'https://acme.vercel.app')
    assert 'Source:' not in message.text
    assert 'Repository' not in message.html
