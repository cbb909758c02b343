"""Tenant platform provisioning API.

  POST /api/v1/platforms  -> run the full provisioning sequence
  GET  /api/v1/platforms  -> service metadata (step list, rollback policy)

Response contracts:
  - POST returns the complete orchestration result document: 200 when
    the run succeeded, 500 (same document) when a fatal step failed.
  - Malformed request bodies are rejected by pydantic with 422.
  - When ``api_token`` is configured both endpoints require
    ``Authorization: Bearer <token>``; otherwise 401.
"""

from __future__ import annotations

import secrets
from typing import Any, Literal

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..observability import get_logger
from ..provisioning.coordinator import (
    SERVICE_NAME,
    ProvisioningCoordinator,
    describe_sequence,
)
from ..provisioning.models import ProvisioningRequest
from ..provisioning.slug import resolve_slug
from ..settings import FactorySettings

logger = get_logger(__name__)


# ── Request schema ────────────────────────────────────────────────────


class PlatformRequest(BaseModel):
    """Provisioning request document (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )

    company_name: str = Field(min_length=1, max_length=200)
    company_email: str = Field(min_length=3)
    admin_email: str = Field(min_length=3)
    admin_first_name: str = ''
    admin_last_name: str = ''
    admin_phone: str | None = None
    company_website: str | None = None
    agent_name: str = 'Maya'
    voice_gender: Literal['female', 'male'] = 'female'
    branding: dict[str, Any] | None = None
    platform_mode: Literal['screening', 'coaching'] = 'screening'
    skip_preflight_cleanup: bool = False
    rollback_on_failure: bool = True
    voice_agent_enabled: bool = True

    @field_validator('company_name')
    @classmethod
    def _company_name_has_slug(cls, value: str) -> str:
        resolve_slug(value)
        return value.strip()

    @field_validator('company_email', 'admin_email')
    @classmethod
    def _looks_like_email(cls, value: str) -> str:
        value = value.strip()
        if '@' not in value:
            raise ValueError('must be an email address')
        return value

    def to_request(self) -> ProvisioningRequest:
        return ProvisioningRequest(**self.model_dump(by_alias=False))


# ── Route factory ─────────────────────────────────────────────────────


def _unauthorized(request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={
            'code': 'AUTH_REQUIRED',
            'message': 'Authentication required',
            'request_id': getattr(request.state, 'request_id', None),
        },
        headers={'WWW-Authenticate': 'Bearer realm="platform-factory"'},
    )


def create_platforms_router(
    coordinator: ProvisioningCoordinator,
    settings: FactorySettings,
    *,
    version: str = '0.1.0',
) -> APIRouter:
    """Create the provisioning router.

    Args:
        coordinator: Runs provisioning for each POST.
        settings: Supplies the optional API token and feature flags.
        version: Reported by the metadata endpoint.
    """
    router = APIRouter(prefix='/api/v1', tags=['platforms'])

    def authorized(request: Request) -> bool:
        if not settings.api_token:
            return True
        header = request.headers.get('authorization', '')
        scheme, _, token = header.partition(' ')
        if scheme.lower() != 'bearer' or not token:
            return False
        return secrets.compare_digest(token.strip(), settings.api_token)

    @router.get('/platforms')
    async def platform_metadata(request: Request):
        if not authorized(request):
            return _unauthorized(request)
        return {
            'service': SERVICE_NAME,
            'version': version,
            'environment': settings.environment,
            'sequence': describe_sequence(),
            'rollback': {
                'defaultEnabled': True,
                'order': 'reverse-registration',
                'scope': 'resources whose step succeeded in the failed run',
            },
            'verificationPolicy': {
                'warningsLowerFullVerification': (
                    coordinator.policy.warnings_lower_full_verification
                ),
            },
            'providers': {
                'voiceAgent': settings.voice_agent_configured or settings.is_local,
                'notifier': settings.notifier_configured or settings.is_local,
            },
        }

    @router.post('/platforms')
    async def create_platform(body: PlatformRequest, request: Request):
        if not authorized(request):
            return _unauthorized(request)

        result = await coordinator.run(body.to_request())
        payload = result.to_payload()
        payload['requestId'] = getattr(request.state, 'request_id', None)
        if not result.success:
            logger.warning(
                'platform_provisioning_failed',
                slug=result.slug,
                failed_step=result.failed_step,
                error=result.error,
            )
            return JSONResponse(status_code=500, content=payload)
        return JSONResponse(status_code=200, content=payload)

    return router
