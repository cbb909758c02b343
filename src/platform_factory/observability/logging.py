"""Structured logging for the platform factory.

Every log line carries the correlation fields of the work it belongs to:

* ``request_id`` from :data:`request_id_ctx` (set by the request-ID middleware)
* ``slug`` / ``step`` from :func:`provisioning_scope` (set by the coordinator)

so an operator can follow one tenant through the provisioning sequence
without every call site repeating ``slug=...``. Provider adapters log with
stdlib ``logging`` and ``extra=``; those records pass through the same
processors, including secret redaction.

Usage::

    configure_logging()
    logger = get_logger(__name__)
    with provisioning_scope(slug="acme-ventures", step="create-database"):
        logger.info("step_started")   # -> slug=acme-ventures step=create-database
"""

from __future__ import annotations

import logging
import os
import re
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType
from typing import Any, Iterator, Mapping

import structlog

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

provisioning_ctx: ContextVar[Mapping[str, str]] = ContextVar(
    "provisioning", default=MappingProxyType({}),
)

REDACTED = "***"

# Event keys whose values are credentials.
_SECRET_KEY_RE = re.compile(
    r"(token|secret|password|api_key|anon_key|service_role)", re.IGNORECASE,
)

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}

_configured = False


@contextmanager
def provisioning_scope(**fields: str) -> Iterator[Mapping[str, str]]:
    """Bind provisioning correlation fields for the enclosed code.

    Scopes nest: an inner ``step=`` keeps the outer ``slug=``. Each asyncio
    task sees its own copy, so concurrent runs never mix their fields.
    """
    merged = MappingProxyType({**provisioning_ctx.get(), **fields})
    token = provisioning_ctx.set(merged)
    try:
        yield merged
    finally:
        provisioning_ctx.reset(token)


def _add_request_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict["request_id"] = rid
    return event_dict


def _add_provisioning_scope(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Fill ``slug``/``step`` from the active scope; explicit keys win."""
    for key, value in provisioning_ctx.get().items():
        event_dict.setdefault(key, value)
    return event_dict


def _redact_secrets(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    for key, value in event_dict.items():
        if value and _SECRET_KEY_RE.search(key):
            event_dict[key] = REDACTED
    return event_dict


def _correlation_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        _add_provisioning_scope,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_secrets,
        structlog.processors.format_exc_info,
    ]


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Configure structlog and route stdlib records through it.

    Idempotent. ``level`` defaults to ``LOG_LEVEL`` (INFO); JSON output is
    used unless ``LOG_FORMAT`` is set to something other than ``json``.
    """
    global _configured
    if _configured:
        return
    _configured = True

    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") == "json"

    processors = _correlation_processors()
    structlog.configure(
        processors=[
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            # Provider adapters log with extra=; lift those fields into the event.
            foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *processors],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))
    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
