"""Request and step-output models for tenant platform provisioning.

Each provisioning step produces one tagged output type keyed by
``StepKind``. Resource handles (the outputs that name an external
resource) live in ``registry``; the remaining outputs are defined here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class ResourceKind(str, Enum):
    """External resource kinds owned by a tenant platform."""

    DATABASE = 'database'
    REPOSITORY = 'repository'
    HOSTING = 'hosting'
    VOICE_AGENT = 'voice_agent'


class StepKind(str, Enum):
    """Step kinds; each maps to exactly one output type."""

    CLEANUP = 'cleanup'
    DATABASE = 'database'
    MIGRATION = 'migration'
    VOICE_AGENT = 'voice_agent'
    REPOSITORY = 'repository'
    HOSTING = 'hosting'
    AUTH_CONFIG = 'auth_config'
    DEPLOY_TRIGGER = 'deploy_trigger'
    DEPLOY_VERIFY = 'deploy_verify'
    NOTIFY = 'notify'


PLATFORM_MODES = frozenset({'screening', 'coaching'})
VOICE_GENDERS = frozenset({'female', 'male'})


@dataclass(frozen=True, slots=True)
class ProvisioningRequest:
    """Immutable tenant provisioning request.

    ``branding`` is opaque to the orchestrator; it is written into the
    tenant repository and otherwise passed through untouched.
    """

    company_name: str
    company_email: str
    admin_email: str
    admin_first_name: str = ''
    admin_last_name: str = ''
    admin_phone: str | None = None
    company_website: str | None = None
    agent_name: str = 'Maya'
    voice_gender: str = 'female'
    branding: Mapping[str, Any] | None = None
    platform_mode: str = 'screening'
    skip_preflight_cleanup: bool = False
    rollback_on_failure: bool = True
    voice_agent_enabled: bool = True

    def __post_init__(self) -> None:
        for name in ('company_name', 'company_email', 'admin_email'):
            if not getattr(self, name).strip():
                raise ValueError(f'{name} is required')
        if self.platform_mode not in PLATFORM_MODES:
            raise ValueError(
                f'platform_mode must be one of {sorted(PLATFORM_MODES)}'
            )
        if self.voice_gender not in VOICE_GENDERS:
            raise ValueError(
                f'voice_gender must be one of {sorted(VOICE_GENDERS)}'
            )
        if self.branding is not None and not isinstance(
            self.branding, MappingProxyType,
        ):
            object.__setattr__(
                self, 'branding', MappingProxyType(dict(self.branding)),
            )

    def resolved_branding(self) -> Mapping[str, Any]:
        """Return the request branding, or a default derived from the name."""
        if self.branding is not None:
            return self.branding
        return default_branding(self)


def default_branding(request: ProvisioningRequest) -> Mapping[str, Any]:
    """Build the fallback branding document used when none was extracted."""
    return MappingProxyType({
        'company': {
            'name': request.company_name,
            'tagline': 'AI-Powered Pitch Coaching',
            'description': (
                f'{request.company_name} helps founders perfect their pitch.'
            ),
            'website': request.company_website or '',
        },
        'colors': {
            'primary': '#8B5CF6',
            'accent': '#10B981',
            'background': '#0F172A',
            'text': '#F8FAFC',
        },
        'logo': {'url': None, 'base64': None},
        'thesis': {
            'focusAreas': ['Technology', 'Innovation'],
            'sectors': ['Software', 'Fintech'],
            'stages': ['Pre-Seed', 'Seed', 'Series A'],
            'philosophy': 'We back exceptional founders.',
            'idealFounder': '',
        },
        'contact': {
            'email': request.company_email,
            'phone': None,
            'linkedin': None,
        },
        'platformType': 'commercial_investor',
    })


# ── Non-resource step outputs ───────────────────────────────────────


@dataclass(frozen=True, slots=True)
class MigrationOutput:
    kind: StepKind = field(default=StepKind.MIGRATION, init=False)
    tables: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AuthConfigOutput:
    kind: StepKind = field(default=StepKind.AUTH_CONFIG, init=False)
    site_url: str = ''
    redirect_urls: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class DeploymentTrigger:
    kind: StepKind = field(default=StepKind.DEPLOY_TRIGGER, init=False)
    commit_sha: str = ''
    branch: str = 'main'


@dataclass(frozen=True, slots=True)
class DeploymentOutput:
    kind: StepKind = field(default=StepKind.DEPLOY_VERIFY, init=False)
    url: str = ''
    state: str | None = None


@dataclass(frozen=True, slots=True)
class NotificationReceipt:
    kind: StepKind = field(default=StepKind.NOTIFY, init=False)
    recipient: str = ''
    message_id: str = ''


# ── Step inputs built from the request ─────────────────────────────


@dataclass(frozen=True, slots=True)
class VoiceAgentSpec:
    """What the voice-agent provisioner needs to create the tenant agent."""

    name: str
    agent_name: str
    voice_gender: str
    company_name: str
    platform_mode: str
    first_message: str
    prompt: str


@dataclass(frozen=True, slots=True)
class WelcomeMessage:
    recipient: str
    subject: str
    html: str
    text: str
