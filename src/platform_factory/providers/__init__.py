"""Provider adapters for the platform factory."""

from __future__ import annotations

import httpx

from ..provisioning.protocols import Provisioners
from ..provisioning.readiness import ReadinessVerifier
from ..settings import FactorySettings
from .elevenlabs import ElevenLabsProvisioner
from .errors import (
    ProviderAuthError,
    ProviderConflictError,
    ProviderError,
    ProviderNotFoundError,
    ProviderTimeoutError,
)
from .github import GitHubProvisioner
from .http import ProviderHTTPClient
from .resend import ResendNotifier
from .supabase import SupabaseProvisioner
from .vercel import VercelProvisioner


def build_provisioners(
    settings: FactorySettings,
    *,
    http_client: httpx.AsyncClient | None = None,
    verifier: ReadinessVerifier | None = None,
) -> Provisioners:
    """Real provider adapters; optional providers only when credentials exist."""
    return Provisioners(
        database=SupabaseProvisioner(settings, http_client=http_client),
        repository=GitHubProvisioner(
            settings, http_client=http_client, verifier=verifier,
        ),
        hosting=VercelProvisioner(settings, http_client=http_client),
        voice_agent=(
            ElevenLabsProvisioner(settings, http_client=http_client)
            if settings.voice_agent_configured
            else None
        ),
        notifier=(
            ResendNotifier(settings, http_client=http_client)
            if settings.notifier_configured
            else None
        ),
    )


__all__ = [
    "ElevenLabsProvisioner",
    "GitHubProvisioner",
    "ProviderAuthError",
    "ProviderConflictError",
    "ProviderError",
    "ProviderHTTPClient",
    "ProviderNotFoundError",
    "ProviderTimeoutError",
    "ResendNotifier",
    "SupabaseProvisioner",
    "VercelProvisioner",
    "build_provisioners",
]
