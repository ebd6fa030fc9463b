"""Exception taxonomy for the ledger.

Integrity findings are *not* exceptions; they are returned as
:class:`prd_ledger.models.IntegrityIssue` records inside reports.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger failures."""


class LedgerIOError(LedgerError):
    """An index or source file could not be read or written."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


class ParseError(LedgerError):
    """A JSON index is malformed or does not match the expected schema."""

    def __init__(
        self,
        message: str,
        path: Optional[Path] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        location = ""
        if path is not None:
            location = str(path)
            if line is not None:
                location += f":{line}"
                if column is not None:
                    location += f":{column}"
            message = f"{location}: {message}"
        super().__init__(message)
        self.path = path
        self.line = line
        self.column = column


class MigrationError(LedgerError):
    """A migration could not run at all (per-record failures are counted instead)."""


class SchemaError(LedgerError):
    """A relational ALTER/CREATE statement failed; the migration run is aborted."""
