"""
Structured logging for the dispatch engine (structlog over stdlib logging).

Push endpoints are capability URLs: anyone holding one can post to the
browser. Log lines therefore carry only an endpoint prefix, and the
Authorization header never reaches a renderer.

Environment:
    PUSHDISPATCH_LOG_LEVEL   DEBUG | INFO | WARNING | ERROR (default INFO)
    PUSHDISPATCH_LOG_FORMAT  "json" for JSON lines, anything else for console

Usage:
    from pushdispatch.logging_config import get_logger, setup_logging

    setup_logging()
    logger = get_logger(__name__)
    logger.info("dispatch_delivered", message_id=message.id)
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

ENDPOINT_PREFIX_LENGTH = 60
_SECRET_FIELDS = ("authorization", "auth_key", "p256dh_key")

# httpx logs every request URL at INFO, which would leak full endpoints
_NOISY_LIBRARIES = ("httpx", "httpcore")


def endpoint_prefix(endpoint: str, length: int = ENDPOINT_PREFIX_LENGTH) -> str:
    """Shorten an endpoint URL for log lines; the tail is the secret part."""
    return endpoint[:length]


def redact_push_secrets(logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: trim endpoints and drop key material."""
    endpoint = event_dict.get("endpoint")
    if isinstance(endpoint, str):
        event_dict["endpoint"] = endpoint_prefix(endpoint)
    for name in _SECRET_FIELDS:
        if name in event_dict:
            event_dict[name] = "[redacted]"
    return event_dict


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    level = level or os.environ.get("PUSHDISPATCH_LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("PUSHDISPATCH_LOG_FORMAT", "").lower() == "json"

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_push_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = ["endpoint_prefix", "get_logger", "redact_push_secrets", "setup_logging"]
