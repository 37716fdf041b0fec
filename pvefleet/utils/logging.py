"""structlog configuration shared by the whole service."""

from __future__ import annotations

import logging
import sys

import structlog

from pvefleet.config import settings


def setup_logging(level: str | None = None, *, json: bool | None = None) -> None:
    """Configure stdlib logging and structlog once at startup."""
    lvl = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    as_json = settings.log_json if json is None else json

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=lvl)
    # paramiko is chatty at INFO (banner, auth attempts)
    logging.getLogger("paramiko").setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if as_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
