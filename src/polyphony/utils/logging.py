"""
structlog setup shared by the API server and the CLI.

Level and format default to ``PlaygroundSettings.log_level`` and
``log_format``; both write to stderr so CLI output on stdout stays clean.
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor

from polyphony.core.config import get_settings


def _renderer(json_format: bool) -> list[Processor]:
    if json_format:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def setup_logging(
    level: str | None = None,
    json_format: bool | None = None,
) -> None:
    """
    Configure stdlib logging and structlog.

    Args:
        level: Log level name; defaults to settings
        json_format: JSON lines instead of the console renderer
    """
    playground = get_settings().playground
    numeric_level = logging.getLevelName((level or playground.log_level).upper())
    if json_format is None:
        json_format = playground.log_format == "json"

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            *_renderer(json_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
