"""One-shot migrations: directory layout, JSON to SQLite, relational schema."""

from .json_to_db import JsonMigrationReport, is_json_migration_needed, migrate_json_to_database
from .layout import get_structure_path, migrate_directory_structure, needs_migration
from .prd_analysis import is_prd_analysis_migration_needed, migrate_prd_analysis

__all__ = [
    "JsonMigrationReport",
    "get_structure_path",
    "is_json_migration_needed",
    "is_prd_analysis_migration_needed",
    "migrate_directory_structure",
    "migrate_json_to_database",
    "migrate_prd_analysis",
    "needs_migration",
]
