"""Structured logging configuration using structlog.

Modules log through the standard library (``logging.getLogger(__name__)``);
records are rendered by structlog's ``ProcessorFormatter`` on one root
handler, so stdlib records and structlog loggers share a single format.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from catalogsync.config.settings import ObservabilitySettings

HANDLER_NAME = "catalogsync"

# Client libraries that log every HTTP round-trip at INFO.
_NOISY_LOGGERS = ("elastic_transport", "elasticsearch", "opensearch", "sqlalchemy.engine", "httpx")


def build_formatter(log_format: str = "json") -> structlog.stdlib.ProcessorFormatter:
    """Return the formatter rendering stdlib and structlog records alike."""
    renderer: list = (
        [structlog.dev.ConsoleRenderer()]
        if log_format == "console"
        else [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    )
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderer],
    )


def setup_logging(settings: ObservabilitySettings | None = None) -> None:
    """Configure structured logging for catalogsync.

    Safe to call more than once: the previously installed handler is
    replaced rather than duplicated.

    Args:
        settings: Observability settings. Uses defaults if None.
    """
    log_level = settings.log_level.upper() if settings else "INFO"
    log_format = settings.log_format if settings else "json"
    level = getattr(logging, log_level, logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(build_formatter(log_format))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    quiet = logging.WARNING if log_level != "DEBUG" else logging.NOTSET
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
