"""ElevenLabsProvisioner: voice-agent provisioner over the ElevenLabs Conversational AI API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..provisioning.models import ResourceKind, VoiceAgentSpec
from ..provisioning.readiness import ProbeResult
from ..provisioning.registry import VoiceAgentHandle
from ..provisioning.slug import matches_resource, resource_name
from ..settings import FactorySettings
from .errors import ProviderError, ProviderNotFoundError
from .http import ProviderHTTPClient

logger = logging.getLogger(__name__)

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1"

READY_STATUSES = frozenset({"active", "published"})
# Created but not usable; these do not change without operator action.
TERMINAL_STATUSES = frozenset({"draft", "unpublished"})


class ElevenLabsProvisioner:
    """Voice-agent provisioner backed by ElevenLabs ``convai/agents``."""

    def __init__(
        self,
        settings: FactorySettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = ELEVENLABS_API_URL,
    ) -> None:
        if not settings.elevenlabs_api_key:
            raise ValueError("elevenlabs_api_key is required")
        self._settings = settings
        self._api = ProviderHTTPClient(
            provider="elevenlabs",
            base_url=base_url,
            headers={"xi-api-key": settings.elevenlabs_api_key},
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
        )

    def _agent_payload(self, spec: VoiceAgentSpec) -> dict[str, Any]:
        voice_id = self._settings.elevenlabs_voice_ids.get(spec.voice_gender, "")
        return {
            "name": spec.name,
            "conversation_config": {
                "agent": {
                    "first_message": spec.first_message,
                    "language": "en",
                    "prompt": {"prompt": spec.prompt},
                },
                "tts": {"voice_id": voice_id},
            },
            "platform_settings": {
                "auth": {"enable_auth": False},
            },
            "tags": [spec.platform_mode, spec.company_name],
        }

    async def create(self, spec: VoiceAgentSpec) -> VoiceAgentHandle:
        body = await self._api.request_json(
            "POST", "/convai/agents/create", json=self._agent_payload(spec),
        )
        agent_id = (body or {}).get("agent_id")
        if not agent_id:
            raise ProviderError("elevenlabs", 0, "create response missing agent_id")
        logger.info(
            "Voice agent created: name=%s id=%s",
            spec.name,
            agent_id,
            extra={"resource_name": spec.name, "agent_id": agent_id},
        )
        return VoiceAgentHandle(agent_id=agent_id, name=spec.name)

    async def probe(self, handle: VoiceAgentHandle) -> ProbeResult:
        try:
            agent = await self._api.request_json(
                "GET", f"/convai/agents/{handle.agent_id}",
            )
        except ProviderNotFoundError:
            return ProbeResult.not_ready("agent not visible yet")
        if not agent:
            return ProbeResult.not_ready("empty agent document")

        status = str(agent.get("status") or "").lower()
        if not status:
            # No status field: require the agent to echo our id with its config.
            if (
                agent.get("agent_id") == handle.agent_id
                and agent.get("conversation_config")
            ):
                return ProbeResult.ready("agent retrievable with configuration")
            return ProbeResult.not_ready("agent status unknown")
        if status in READY_STATUSES:
            return ProbeResult.ready(f"agent {status}")
        if status in TERMINAL_STATUSES:
            return ProbeResult.failed(f"agent is {status}")
        return ProbeResult.not_ready(f"agent status {status}")

    async def find(self, slug: str) -> list[VoiceAgentHandle]:
        name = resource_name(slug, ResourceKind.VOICE_AGENT)
        body = await self._api.request_json(
            "GET", "/convai/agents", params={"search": name, "page_size": "100"},
        )
        return [
            VoiceAgentHandle(agent_id=a["agent_id"], name=a["name"])
            for a in (body or {}).get("agents", [])
            if matches_resource(a.get("name", ""), slug, ResourceKind.VOICE_AGENT)
        ]

    async def delete(self, handle: VoiceAgentHandle) -> str:
        outcome = await self._api.delete(f"/convai/agents/{handle.agent_id}")
        logger.info(
            "Voice agent delete: id=%s outcome=%s",
            handle.agent_id,
            outcome,
            extra={"agent_id": handle.agent_id},
        )
        return outcome
