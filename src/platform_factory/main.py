"""Platform factory FastAPI application factory.

The create_app() factory is the single entry point for building the
provisioning ASGI application. It wires middleware (request-ID, metrics,
request logging, CORS), the platform routes, and injects provider
implementations via dependency injection.

Usage:
    # Local development (in-memory providers)
    from platform_factory import create_app, FactorySettings
    app = create_app(FactorySettings())

    # Non-local (real provider adapters built from credentials)
    settings = FactorySettings.from_env()
    app = create_app(settings)

    # Testing (full DI control)
    app = create_app(settings, provisioners=build_inmemory_provisioners(cloud))
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .observability import configure_logging, metrics_text
from .observability.middleware import (
    MetricsMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
)
from .providers import build_provisioners
from .providers.http import close_shared_async_client
from .provisioning.coordinator import ProvisioningCoordinator
from .provisioning.protocols import Provisioners
from .provisioning.readiness import ReadinessVerifier
from .routes import create_platforms_router
from .settings import FactorySettings

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


@dataclass(frozen=True)
class AppDependencies:
    """Container for the injected provisioners and the coordinator.

    Stored on ``app.state.deps`` so route handlers and tests can reach them.
    """

    provisioners: Provisioners
    coordinator: ProvisioningCoordinator


def _build_inmemory_provisioners() -> Provisioners:
    """Construct all-InMemory provisioners for local development."""
    from .provisioning.inmemory import build_inmemory_provisioners

    return build_inmemory_provisioners()


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: FactorySettings | None = None,
    *,
    provisioners: Provisioners | None = None,
    verifier: ReadinessVerifier | None = None,
) -> FastAPI:
    """Create a configured platform factory FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        provisioners: Provider overrides. When None, local mode uses
            InMemory implementations and non-local mode builds the real
            adapters from the credentials in ``settings``.
        verifier: Readiness verifier override (tests inject fake clocks).

    Returns:
        Configured FastAPI application ready for uvicorn.run().

    Raises:
        ValueError: If settings validation fails (non-local without credentials).
    """
    if settings is None:
        settings = FactorySettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Platform factory settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    configure_logging()

    if provisioners is None:
        if settings.is_local:
            provisioners = _build_inmemory_provisioners()
        else:
            provisioners = build_provisioners(settings, verifier=verifier)

    coordinator = ProvisioningCoordinator(provisioners, settings, verifier=verifier)
    deps = AppDependencies(provisioners=provisioners, coordinator=coordinator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Platform factory startup (environment=%s)", settings.environment)
        yield
        await close_shared_async_client()
        logger.info("Platform factory shutdown")

    app = FastAPI(
        title="Platform Factory",
        description="Provisions and verifies complete tenant platforms",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestId -> Metrics -> RequestLogging -> CORS -> route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    @app.get("/metrics")
    async def metrics():
        content, content_type = metrics_text()
        return Response(content=content, media_type=content_type)

    app.include_router(
        create_platforms_router(coordinator, settings, version=APP_VERSION)
    )

    return app


# For uvicorn: uvicorn platform_factory.main:create_app --factory
