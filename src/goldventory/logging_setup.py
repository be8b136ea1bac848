"""Logging configuration for the service."""
from __future__ import annotations

import logging

from .config import Settings, get_settings

_HANDLER_NAME = "goldventory-console"


def configure_logging(settings: Settings | None = None) -> logging.Logger:
    """Install a single console handler on the root logger.

    Calling this more than once only updates the level and formatter.
    """

    settings = settings or get_settings()
    root_logger = logging.getLogger()
    level = getattr(logging, settings.log_level, logging.INFO)
    root_logger.setLevel(level)

    handler = next((h for h in root_logger.handlers if h.get_name() == _HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        root_logger.addHandler(handler)
    handler.setFormatter(logging.Formatter(settings.log_format))

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.echo_sql else logging.WARNING
    )
    return root_logger


__all__ = ["configure_logging"]
