"""Structured logging for the monitor, built on structlog.

JSON lines by default, colored console when MODE=dev.
RPC URLs and API keys are masked before anything is rendered.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import Any

import structlog

_SECRET_KEYS = re.compile(
    r"(password|token|secret|api_key|api[-_]?key|apikey|authorization)",
    re.IGNORECASE,
)
# Polygon.io and hosted RPC providers embed the key in the URL itself
_KEY_IN_URL = re.compile(r"(apikey=|/v2/|/v3/)([A-Za-z0-9_\-]{16,})")
_MASK = "***REDACTED***"


def _mask_secrets(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Mask secret-looking keys and API keys embedded in URLs."""
    for key in list(event_dict.keys()):
        if _SECRET_KEYS.search(key):
            event_dict[key] = _MASK
        elif isinstance(event_dict[key], str):
            event_dict[key] = _KEY_IN_URL.sub(rf"\1{_MASK}", event_dict[key])
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool | None = None) -> None:
    """Configure structlog and stdlib logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: Force JSON output. If None, JSON unless MODE=dev.
    """
    if json_output is None:
        json_output = os.getenv("MODE", "live") != "dev"

    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _mask_secrets,
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # stderr keeps the status lines on stdout readable
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for noisy in ("aiohttp", "asyncio", "web3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(module: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger with module context.

    Args:
        module: Module name for context binding.

    Returns:
        A structlog bound logger instance.
    """
    return structlog.get_logger(module=module)
