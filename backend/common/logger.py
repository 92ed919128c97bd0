# -*- coding: utf-8 -*-
"""
Structured logging for the auth service.

structlog with ISO timestamps, level and an `event` key per call:
    logger = get_logger(__name__)
    logger.info("session_issued", address=addr, expires_at=ts)

LOG_FORMAT=json (default) renders one JSON object per line, LOG_FORMAT=console
renders human-readable lines for local runs.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()


def _add_timestamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_structlog() -> None:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
    ]
    if LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name).bind(logger=name)
