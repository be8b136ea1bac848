"""Utility helpers for administrative tasks."""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from . import models  # noqa: F401
from .database import Base, engine
from .logging_setup import configure_logging

logger = logging.getLogger(__name__)


async def init_database(db_engine: AsyncEngine | None = None) -> None:
    """Create the document, order and audit tables."""

    engine_to_use = db_engine or engine
    async with engine_to_use.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created tables: %s", ", ".join(sorted(Base.metadata.tables)))


def cli_init_database() -> None:
    """CLI wrapper executed from :mod:`python -m`."""

    configure_logging()
    asyncio.run(init_database())


if __name__ == "__main__":
    cli_init_database()
