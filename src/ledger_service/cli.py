"""Command line import of report workbooks."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import get_settings
from .database import create_engine, create_session_factory
from .errors import LedgerError
from .imports import import_workbook
from .logging_setup import setup_logging
from .management import init_database
from .schemas import ImportSummary

logger = logging.getLogger(__name__)


async def run_import(path: Path, database_url: str | None = None) -> ImportSummary:
    db_engine = create_engine(database_url)
    try:
        await init_database(db_engine)
        session_factory = create_session_factory(db_engine)
        return await import_workbook(session_factory, path.read_bytes())
    finally:
        await db_engine.dispose()


def _print_summary(summary: ImportSummary) -> None:
    print(f"Period:  {summary.month:02d}/{summary.year}")
    print(f"Created: {summary.created}")
    print(f"Updated: {summary.updated}")
    print(f"Skipped: {summary.skipped}")
    print(f"Errors:  {len(summary.errors)}")
    for error in summary.errors:
        print(f"  row {error.row} ({error.item or '-'}): {error.error}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Import a monthly stock report workbook (.xls) into the ledger"
    )
    parser.add_argument("workbook", type=Path, help="Path to the .xls report")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override the configured database URL",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.log_level, echo_sql=settings.echo_sql)

    if not args.workbook.is_file():
        logger.error("Workbook not found: %s", args.workbook)
        return 2
    try:
        summary = asyncio.run(run_import(args.workbook, args.database_url))
    except LedgerError as exc:
        logger.error("Import failed: %s", exc)
        return 2
    _print_summary(summary)
    return 1 if summary.errors else 0


if __name__ == "__main__":
    sys.exit(main())
