"""Provide the public `prd_ledger` package exports."""

from __future__ import annotations

from .config import LedgerConfig, load_ledger_config
from .db import Database, DatabaseMetadataStore, open_database
from .engine import IntegrityEngine
from .errors import LedgerError, LedgerIOError, MigrationError, ParseError, SchemaError
from .lifecycle import extract_prd_archive, read_prd_archive
from .logging_utils import configure_logging
from .migrations import (
    migrate_directory_structure,
    migrate_json_to_database,
    migrate_prd_analysis,
    needs_migration,
)
from .models import IntegrityIssue, IntegrityReport, PrdRecord, TaskRecord
from .store import BaseMetadataStore, JsonMetadataStore

__all__ = [
    "BaseMetadataStore",
    "Database",
    "DatabaseMetadataStore",
    "IntegrityEngine",
    "IntegrityIssue",
    "IntegrityReport",
    "JsonMetadataStore",
    "LedgerConfig",
    "LedgerError",
    "LedgerIOError",
    "MigrationError",
    "ParseError",
    "PrdRecord",
    "SchemaError",
    "TaskRecord",
    "configure_logging",
    "extract_prd_archive",
    "load_ledger_config",
    "migrate_directory_structure",
    "migrate_json_to_database",
    "migrate_prd_analysis",
    "needs_migration",
    "open_database",
    "read_prd_archive",
]
