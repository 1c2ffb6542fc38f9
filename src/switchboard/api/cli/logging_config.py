"""Logging setup for the bridge process.

stdout carries the envelope protocol, so every log line, including those of
the service library's stdlib loggers, goes to stderr.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Mapping

import structlog


def resolve_level(debug: bool = False, env: Mapping[str, str] | None = None) -> int:
    """``--debug`` wins; otherwise ``LOGLEVEL`` (default ``INFO``)."""
    if debug:
        return logging.DEBUG
    env = os.environ if env is None else env
    name = env.get("LOGLEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, stream=sys.stderr, format="%(message)s", force=True)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )
