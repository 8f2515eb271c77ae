"""Exception types raised by the ledger engine."""
from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger failures."""


class ValidationError(LedgerError, ValueError):
    """Input could not be interpreted (row fields, dates, titles, numbers)."""


class NotFoundError(LedgerError, LookupError):
    """A referenced item or period does not exist."""


class ConflictError(LedgerError):
    """A period was modified concurrently; the unit of work must be retried."""


__all__ = ["LedgerError", "ValidationError", "NotFoundError", "ConflictError"]
