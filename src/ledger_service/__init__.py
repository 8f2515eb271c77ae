"""Monthly stock balance ledger with spreadsheet imports."""

__version__ = "0.1.0"
