"""
Structured logging setup (structlog).

Call `configure_logging()` once at app startup. Output is JSON by default
(App Service log streaming picks it up line by line); set LOG_JSON=false for
human-readable console output while developing.

Environment variables:
  - LOG_LEVEL (default: INFO)
  - LOG_JSON (default: true)
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

import structlog

_SENSITIVE_KEYS = ("token", "secret", "authorization", "password", "code")


def _redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask values logged under credential-looking keys."""
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            val = event_dict[key]
            if isinstance(val, str) and len(val) > 4:
                event_dict[key] = val[:2] + "***" + val[-2:]
            elif val:
                event_dict[key] = "***"
    return event_dict


def configure_logging(log_level: str | None = None, json_output: bool | None = None) -> None:
    log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = os.getenv("LOG_JSON", "true").lower() in {"1", "true", "yes", "on"}

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
