"""Structured logging for the batch job (structlog on top of stdlib logging)."""

from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping, Optional

import structlog

# Event keys whose values must never reach a log line
_SECRET_KEYS = frozenset({"api_key", "gemini_api_key", "password", "email_password", "x-goog-api-key"})

# Chatty libraries: httpx logs every request URL at INFO
_QUIET_LOGGERS = ("httpcore", "httpx", "openpyxl")


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking credential-looking keys."""
    for key in event_dict:
        if key.lower() in _SECRET_KEYS:
            event_dict[key] = "***"
    return event_dict


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging(level: str = "INFO", log_file: Optional[str] = None, json_console: bool = False) -> None:
    """Configure structlog and stdlib logging for one run.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        log_file: optional path that receives the same events as JSON lines.
        json_console: render stdout as JSON too, for cron jobs whose output
            is collected by a log shipper.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=_renderer(json_console), foreign_pre_chain=pre_chain)
    )
    handlers.append(stdout_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(), foreign_pre_chain=pre_chain
            )
        )
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        handler.setLevel(log_level)
        root.addHandler(handler)
    root.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
