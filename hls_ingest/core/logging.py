"""Structured logging setup for the ingest service.

structlog is layered over the standard library so that third-party loggers
(asyncio, pyrtmp) and our own structured events end up in the same stream.
"""

import logging
import sys

import structlog

from hls_ingest.core.config import Settings

_CONFIGURED = False


def configure_logging(settings: Settings, *, force: bool = False) -> None:
    """Configure structlog and the root logger from settings.

    Safe to call more than once; only the first call takes effect unless
    ``force`` is set.
    """
    global _CONFIGURED

    if _CONFIGURED and not force:
        return

    level = getattr(logging, settings.log_level)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json_format
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True
    structlog.get_logger(__name__).debug(
        "Logging configured", level=settings.log_level, json=settings.log_json_format
    )

