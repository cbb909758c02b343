"""Tenant slug resolution and deterministic resource naming.

The slug is the idempotency key of a provisioning run: every external
resource is named from it, and pre-flight cleanup uses the same names to
find leftovers of an earlier attempt for the same tenant.

  "Acme Ventures"  ->  "acme-ventures"

Resource names:
  database / repository / hosting : ``{slug}``
  voice agent                     : ``{slug}-voice``
"""

from __future__ import annotations

import re

from .models import ResourceKind

SLUG_MAX_LENGTH = 40
VOICE_AGENT_SUFFIX = 'voice'
_SLUG_SANITIZE_RE = re.compile(r'[^a-z0-9]+')


def resolve_slug(display_name: str, *, max_length: int = SLUG_MAX_LENGTH) -> str:
    """Derive a stable, URL-safe slug from a tenant display name.

    Raises:
        ValueError: If the name contains no slug-safe characters.
    """
    if max_length < 1:
        raise ValueError('max_length must be >= 1')
    lowered = display_name.strip().lower()
    squashed = _SLUG_SANITIZE_RE.sub('-', lowered).strip('-')
    truncated = squashed[:max_length].rstrip('-')
    if not truncated:
        raise ValueError(
            f'display name {display_name!r} must contain at least one '
            'slug-safe character'
        )
    return truncated


def resource_name(slug: str, kind: ResourceKind) -> str:
    """External name for the resource of ``kind`` owned by ``slug``."""
    if kind is ResourceKind.VOICE_AGENT:
        return f'{slug}-{VOICE_AGENT_SUFFIX}'
    return slug


def matches_resource(name: str, slug: str, kind: ResourceKind) -> bool:
    """Whether an external resource name belongs to ``slug``.

    Only exact (case-insensitive) names match; ``acme`` never matches
    ``acme-ventures``.
    """
    return name.strip().lower() == resource_name(slug, kind)
