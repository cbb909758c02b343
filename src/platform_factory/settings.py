"""Platform factory configuration settings.

FactorySettings is the single configuration object accepted by create_app()
and ProvisioningCoordinator. It is intentionally a plain dataclass (not
env-coupled) so tests can inject config without touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True, slots=True)
class ReadinessBudget:
    """Polling budget for one readiness check."""

    timeout_seconds: float
    poll_interval_seconds: float
    backoff_step_seconds: float = 0.0
    max_interval_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.timeout_seconds < 0:
            raise ValueError("timeout_seconds must be >= 0")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        if self.backoff_step_seconds < 0:
            raise ValueError("backoff_step_seconds must be >= 0")


DEFAULT_NOTIFY_FROM = "Platform Factory <onboarding@resend.dev>"

DEFAULT_CORS_ORIGINS: tuple[str, ...] = (
    "http://localhost:5173",
    "http://localhost:3000",
)

DEFAULT_EXPECTED_TABLES: tuple[str, ...] = (
    "user_roles",
    "investor_profiles",
    "founder_profiles",
    "pitch_decks",
    "coaching_sessions",
)


@dataclass(frozen=True, slots=True)
class FactorySettings:
    """Configuration for the platform factory.

    All fields have sensible defaults for local development, where the
    in-memory provisioners are used. Non-local environments must supply
    credentials for every fatal-class provider (database, repository,
    hosting).
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Supabase (database provisioner) ────────────────────────────
    supabase_access_token: str = ""
    """Management API token. Never log this."""

    supabase_org_id: str = ""
    supabase_region: str = "us-east-1"
    supabase_plan: str = "free"

    # ── GitHub (repository provisioner) ────────────────────────────
    github_token: str = ""
    github_owner: str = ""
    github_template_repo: str = ""
    """Optional ``owner/repo`` template the tenant repository is generated from."""

    github_default_branch: str = "main"

    # ── Vercel (hosting provisioner) ───────────────────────────────
    vercel_token: str = ""
    vercel_team_id: str = ""

    # ── ElevenLabs (voice-agent provisioner) ───────────────────────
    elevenlabs_api_key: str = ""
    elevenlabs_voice_ids: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({
            "female": "21m00Tcm4TlvDq8ikWAM",
            "male": "TxGEqnHWrfWFTfGW9XjX",
        })
    )
    """Immutable mapping of voice gender -> ElevenLabs voice id."""

    # ── Resend (notifier) ──────────────────────────────────────────
    resend_api_key: str = ""
    notify_from: str = DEFAULT_NOTIFY_FROM

    # ── Readiness budgets ──────────────────────────────────────────
    database_budget: ReadinessBudget = ReadinessBudget(300.0, 10.0)
    schema_budget: ReadinessBudget = ReadinessBudget(60.0, 3.0, 1.0, 10.0)
    repository_budget: ReadinessBudget = ReadinessBudget(60.0, 3.0)
    deployment_budget: ReadinessBudget = ReadinessBudget(600.0, 10.0, 5.0, 30.0)
    voice_agent_budget: ReadinessBudget = ReadinessBudget(30.0, 3.0)
    cleanup_budget: ReadinessBudget = ReadinessBudget(10.0, 2.0)

    # ── Retries and thresholds ─────────────────────────────────────
    http_max_retries: int = 3
    http_timeout_seconds: float = 30.0
    cleanup_max_attempts: int = 3
    schema_missing_table_attempts: int = 10
    expected_tables: tuple[str, ...] = DEFAULT_EXPECTED_TABLES
    repository_marker_file: str = "platform.config.json"
    repository_min_files: int = 3

    # ── Policy ─────────────────────────────────────────────────────
    warnings_lower_full_verification: bool = True
    """Whether a non-fatal ``warning`` step counts against ``fully_verified``."""

    # ── HTTP surface ───────────────────────────────────────────────
    api_token: str = ""
    """When set, provisioning endpoints require ``Authorization: Bearer``."""

    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    @property
    def voice_agent_configured(self) -> bool:
        return bool(self.elevenlabs_api_key)

    @property
    def notifier_configured(self) -> bool:
        return bool(self.resend_api_key)

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.cleanup_max_attempts < 1:
            errors.append("cleanup_max_attempts must be >= 1")
        if self.http_max_retries < 0:
            errors.append("http_max_retries must be >= 0")
        if self.schema_missing_table_attempts < 1:
            errors.append("schema_missing_table_attempts must be >= 1")
        if not self.expected_tables:
            errors.append("expected_tables must not be empty")
        if not self.is_local:
            required = {
                "supabase_access_token": self.supabase_access_token,
                "supabase_org_id": self.supabase_org_id,
                "github_token": self.github_token,
                "github_owner": self.github_owner,
                "vercel_token": self.vercel_token,
            }
            for name, value in required.items():
                if not value:
                    errors.append(f"{self.environment}: {name} is required")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> FactorySettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct FactorySettings directly.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = (
            tuple(o.strip() for o in cors_raw.split(",") if o.strip())
            if cors_raw
            else DEFAULT_CORS_ORIGINS
        )

        tables_raw = env.get("EXPECTED_TABLES", "")
        tables = (
            tuple(t.strip() for t in tables_raw.split(",") if t.strip())
            if tables_raw
            else DEFAULT_EXPECTED_TABLES
        )

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            supabase_access_token=env.get("SUPABASE_ACCESS_TOKEN", ""),
            supabase_org_id=env.get("SUPABASE_ORG_ID", ""),
            supabase_region=env.get("SUPABASE_REGION", "us-east-1"),
            supabase_plan=env.get("SUPABASE_PLAN", "free"),
            github_token=env.get("GITHUB_TOKEN", ""),
            github_owner=env.get("GITHUB_OWNER", ""),
            github_template_repo=env.get("GITHUB_TEMPLATE_REPO", ""),
            github_default_branch=env.get("GITHUB_DEFAULT_BRANCH", "main"),
            vercel_token=env.get("VERCEL_TOKEN", ""),
            vercel_team_id=env.get("VERCEL_TEAM_ID", ""),
            elevenlabs_api_key=env.get("ELEVENLABS_API_KEY", ""),
            resend_api_key=env.get("RESEND_API_KEY", ""),
            notify_from=env.get("NOTIFY_FROM", DEFAULT_NOTIFY_FROM),
            http_max_retries=int(env.get("HTTP_MAX_RETRIES", "3")),
            cleanup_max_attempts=int(env.get("CLEANUP_MAX_ATTEMPTS", "3")),
            expected_tables=tables,
            warnings_lower_full_verification=(
                env.get("WARNINGS_LOWER_FULL_VERIFICATION", "true").lower()
                not in ("0", "false", "no")
            ),
            api_token=env.get("PLATFORM_FACTORY_API_TOKEN", ""),
            cors_origins=cors,
        )
