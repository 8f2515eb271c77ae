"""Utility helpers for administrative tasks."""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from .config import get_settings
from .database import Base, engine
from .logging_setup import setup_logging
from . import models  # noqa: F401  registers the tables on Base.metadata

logger = logging.getLogger(__name__)


async def init_database(db_engine: AsyncEngine | None = None) -> None:
    """Create database tables for the application."""

    engine_to_use = db_engine or engine
    async with engine_to_use.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready at %s", engine_to_use.url.render_as_string(hide_password=True))


def cli_init_database() -> None:
    """CLI wrapper executed from :mod:`python -m`."""

    settings = get_settings()
    setup_logging(settings.log_level, echo_sql=settings.echo_sql)
    asyncio.run(init_database())


if __name__ == "__main__":
    cli_init_database()
