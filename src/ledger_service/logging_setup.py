"""Console logging configuration shared by the API and the CLI."""
from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = [
    "aiosqlite",
    "sqlalchemy.engine",
    "httpx",
    "asyncio",
]


def setup_logging(level: str | int = logging.INFO, *, echo_sql: bool = False) -> logging.Logger:
    """Install a single console handler on the root logger.

    Calling it again replaces the handler instead of stacking a new one.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, "_ledger_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    handler._ledger_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        if name == "sqlalchemy.engine" and echo_sql:
            continue
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


__all__ = ["setup_logging", "LOG_FORMAT"]
