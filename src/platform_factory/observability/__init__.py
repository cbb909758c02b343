"""Observability infrastructure for the platform factory.

Structured logging with request and provisioning correlation, Prometheus
metrics, and the HTTP middleware that feeds both.
"""

from .logging import (
    configure_logging,
    get_logger,
    provisioning_ctx,
    provisioning_scope,
    request_id_ctx,
)
from .metrics import metrics_text

__all__ = [
    "configure_logging",
    "get_logger",
    "metrics_text",
    "provisioning_ctx",
    "provisioning_scope",
    "request_id_ctx",
]
