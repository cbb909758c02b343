"""Tenant content derived from a provisioning request.

Pure builders: the initial repository file set, the voice-agent
definition, hosting environment variables, auth redirect URLs and the
welcome email. Nothing here performs I/O.
"""

from __future__ import annotations

import html
import json
from typing import Mapping, Sequence

from .models import ProvisioningRequest, VoiceAgentSpec, WelcomeMessage
from .registry import DatabaseHandle, VoiceAgentHandle

MARKER_FILE = 'platform.config.json'

_AUTH_CALLBACK_PATHS = ('/auth/callback', '/callback', '/login')


# ── Repository files ────────────────────────────────────────────────


def platform_config(request: ProvisioningRequest, slug: str) -> dict:
    """The marker document committed as ``platform.config.json``."""
    return {
        'slug': slug,
        'platformMode': request.platform_mode,
        'branding': dict(request.resolved_branding()),
        'admin': {
            'firstName': request.admin_first_name,
            'lastName': request.admin_last_name,
            'email': request.admin_email,
            'phone': request.admin_phone,
        },
        'voiceAgent': {
            'enabled': request.voice_agent_enabled,
            'name': request.agent_name,
            'voiceGender': request.voice_gender,
        },
    }


def build_repository_files(
    request: ProvisioningRequest,
    slug: str,
    *,
    marker_file: str = MARKER_FILE,
) -> dict[str, str]:
    """Initial file set committed to a new tenant repository."""
    config = json.dumps(platform_config(request, slug), indent=2, sort_keys=True)
    readme = '\n'.join([
        f'# {request.company_name}',
        '',
        f'Pitch {request.platform_mode} platform for {request.company_name}.',
        '',
        f'Tenant configuration lives in `{marker_file}`.',
        '',
    ])
    env_example = '\n'.join([
        'NEXT_PUBLIC_SUPABASE_URL=',
        'NEXT_PUBLIC_SUPABASE_ANON_KEY=',
        'SUPABASE_SERVICE_ROLE_KEY=',
        'ELEVENLABS_AGENT_ID=',
        'NEXT_PUBLIC_COMPANY_NAME=',
        'NEXT_PUBLIC_PLATFORM_MODE=',
        '',
    ])
    return {
        marker_file: config + '\n',
        'README.md': readme,
        '.env.example': env_example,
    }


# ── Voice agent ─────────────────────────────────────────────────────


def build_voice_agent_spec(
    request: ProvisioningRequest, name: str,
) -> VoiceAgentSpec:
    company = request.company_name
    if request.platform_mode == 'coaching':
        role = (
            f'You are {request.agent_name}, a pitch coach working with '
            f'founders on behalf of {company}. Help them sharpen their '
            'story, their numbers and their ask.'
        )
    else:
        role = (
            f'You are {request.agent_name}, an investment associate at '
            f'{company}. Interview founders about their company to decide '
            'whether the opportunity fits the fund thesis.'
        )
    return VoiceAgentSpec(
        name=name,
        agent_name=request.agent_name,
        voice_gender=request.voice_gender,
        company_name=company,
        platform_mode=request.platform_mode,
        first_message=(
            f"Hi, I'm {request.agent_name} from {company}. "
            'Tell me about what you are building.'
        ),
        prompt=role,
    )


# ── Hosting and auth ────────────────────────────────────────────────


def build_hosting_env(
    request: ProvisioningRequest,
    database: DatabaseHandle,
    voice_agent: VoiceAgentHandle | None,
) -> dict[str, str]:
    """Environment for the hosting project; empty values are dropped."""
    env = {
        'NEXT_PUBLIC_SUPABASE_URL': database.url,
        'NEXT_PUBLIC_SUPABASE_ANON_KEY': database.anon_key,
        'SUPABASE_SERVICE_ROLE_KEY': database.service_key,
        'ELEVENLABS_AGENT_ID': voice_agent.agent_id if voice_agent else '',
        'NEXT_PUBLIC_COMPANY_NAME': request.company_name,
        'NEXT_PUBLIC_PLATFORM_MODE': request.platform_mode,
        'IS_ADMIN_PLATFORM': 'false',
    }
    return {key: value for key, value in env.items() if value}


def auth_redirect_urls(site_url: str) -> list[str]:
    base = site_url.rstrip('/')
    return [f'{base}{path}' for path in _AUTH_CALLBACK_PATHS]


# ── Notification ────────────────────────────────────────────────────


def build_welcome_message(
    request: ProvisioningRequest,
    platform_url: str,
    repository_url: str | None = None,
) -> WelcomeMessage:
    first_name = request.admin_first_name or 'Admin'
    company = request.company_name
    subject = f'Your {company} platform is ready'

    text_lines = [
        f'Hi {first_name},',
        '',
        f"{company}'s pitch {request.platform_mode} platform has been "
        'created and deployed.',
        '',
        f'Platform: {platform_url}',
    ]
    if repository_url:
        text_lines.append(f'Source: {repository_url}')
    text_lines += [
        f'Admin email: {request.admin_email}',
        '',
        'Next steps:',
        '1. Sign up on the platform with this email address.',
        '2. Invite your founders.',
    ]

    rows = [('Platform URL', platform_url, platform_url)]
    if repository_url:
        rows.append(('Source code', repository_url, 'Repository'))
    rows.append(('Admin email', None, request.admin_email))
    html_body = _render_welcome_html(
        first_name=first_name, company=company, rows=rows, url=platform_url,
    )
    return WelcomeMessage(
        recipient=request.admin_email,
        subject=subject,
        html=html_body,
        text='\n'.join(text_lines) + '\n',
    )


def _render_welcome_html(
    *,
    first_name: str,
    company: str,
    rows: Sequence[tuple[str, str | None, str]],
    url: str,
) -> str:
    esc = html.escape
    table = ''.join(
        '<tr><td>{label}</td><td>{value}</td></tr>'.format(
            label=esc(label),
            value=(
                f'<a href="{esc(href)}">{esc(text)}</a>' if href else esc(text)
            ),
        )
        for label, href, text in rows
    )
    return (
        '<!DOCTYPE html><html><body>'
        f'<h1>Your platform is ready</h1>'
        f'<p>Hi {esc(first_name)},</p>'
        f"<p>{esc(company)}'s platform has been created and deployed.</p>"
        f'<p><a href="{esc(url)}">Access your platform</a></p>'
        f'<table>{table}</table>'
        '</body></html>'
    )


def redact_env(env: Mapping[str, str]) -> dict[str, str]:
    """Env map safe to log: only ``NEXT_PUBLIC_*`` values are shown."""
    return {
        key: value if key.startswith('NEXT_PUBLIC_') else '***'
        for key, value in env.items()
    }
