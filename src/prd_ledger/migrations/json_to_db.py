"""Copy the JSON indices into the embedded relational store.

Rows are matched by identifier, so running the migration again only adds
records that are new since the previous run. A record that cannot be inserted
is counted and the batch moves on.
"""

from __future__ import annotations

import shutil
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ..config import LedgerConfig, load_ledger_config
from ..db import Database, DatabaseMetadataStore, insert_task, open_database, task_identifier, task_metadata
from ..errors import LedgerError, MigrationError
from ..io_utils import _read_json_document
from ..models import PrdRecord, TaskRecord
from ..paths import ProjectPaths
from ..utils import _now_iso, _utc_stamp_ms


@dataclass
class CollectionCounts:
    migrated: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"migrated": self.migrated, "skipped": self.skipped, "errors": self.errors}


@dataclass
class JsonMigrationReport:
    tasks: CollectionCounts = field(default_factory=CollectionCounts)
    prds: CollectionCounts = field(default_factory=CollectionCounts)
    project_id: Optional[int] = None
    backup_path: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.tasks.errors == 0 and self.prds.errors == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "projectId": self.project_id,
            "tasks": self.tasks.to_dict(),
            "prds": self.prds.to_dict(),
            "backupPath": str(self.backup_path) if self.backup_path else None,
        }


def _read_collection(path: Path, key: str) -> list[Any]:
    try:
        data = _read_json_document(path)
    except LedgerError as exc:
        raise MigrationError(f"Cannot read {path}: {exc}") from exc
    if data is None:
        return []
    items = data.get(key) or []
    if not isinstance(items, list):
        raise MigrationError(f"{path}: '{key}' must be a list")
    return items


def _existing_identifiers(db: Database, table: str, column: str, project_id: int) -> dict[str, int]:
    rows = db.conn.execute(
        f"SELECT id, {column} FROM {table} WHERE project_id = ?",
        (project_id,),
    ).fetchall()
    return {row[column]: row["id"] for row in rows}


def _migrate_prds(store: DatabaseMetadataStore, items: list[Any], counts: CollectionCounts) -> dict[str, int]:
    db = store.db
    existing = _existing_identifiers(db, "prds", "prd_identifier", store.project_id)
    for raw in items:
        label = raw.get("id") if isinstance(raw, dict) else raw
        try:
            prd = PrdRecord.from_dict(raw)
            if prd.id in existing:
                logger.debug("Skipping PRD {} (already exists)", prd.id)
                counts.skipped += 1
                continue
            with db.conn:
                existing[prd.id] = store.insert_prd(prd)
            counts.migrated += 1
            logger.info("Migrated PRD {}: {}", prd.id, prd.title)
        except (KeyError, TypeError, ValueError, AttributeError, sqlite3.Error) as exc:
            counts.errors += 1
            logger.error("Error migrating PRD {}: {}", label, exc)
    return existing


def _migrate_tasks(
    store: DatabaseMetadataStore,
    items: list[Any],
    prd_rows: dict[str, int],
    counts: CollectionCounts,
) -> None:
    db = store.db
    existing = _existing_identifiers(db, "tasks", "task_identifier", store.project_id)
    if existing:
        logger.warning("Database already contains {} task(s); only new tasks are added", len(existing))
    migrated_at = _now_iso()
    for raw in items:
        label = raw.get("id") if isinstance(raw, dict) else raw
        try:
            task = TaskRecord.from_dict(raw)
            identifier = task_identifier(task.id)
            if identifier in existing:
                logger.debug("Skipping task {} (already exists)", task.id)
                counts.skipped += 1
                continue
            metadata = task_metadata(task)
            metadata["migratedAt"] = migrated_at
            prd_row = None
            if task.prd_source is not None and task.prd_source.prd_id:
                prd_row = prd_rows.get(task.prd_source.prd_id)
            with db.conn:
                existing[identifier] = insert_task(db, store.project_id, task, prd_row, metadata)
            counts.migrated += 1
            logger.info("Migrated task {}: {}", task.id, task.title)
        except (KeyError, TypeError, ValueError, AttributeError, sqlite3.Error) as exc:
            counts.errors += 1
            logger.error("Error migrating task {}: {}", label, exc)


def _link_listed_tasks(store: DatabaseMetadataStore, prds: list[Any], prd_rows: dict[str, int]) -> None:
    """Point unlinked task rows at the PRD that lists them."""
    with store.db.conn:
        for raw in prds:
            if not isinstance(raw, dict) or str(raw.get("id")) not in prd_rows:
                continue
            row_id = prd_rows[str(raw.get("id"))]
            for task_id in raw.get("linkedTasks") or raw.get("linkedTaskIds") or []:
                store.db.conn.execute(
                    "UPDATE tasks SET prd_id = ? WHERE project_id = ? AND task_identifier = ? AND prd_id IS NULL",
                    (row_id, store.project_id, task_identifier(task_id)),
                )


def migrate_json_to_database(
    project_root: Path | str,
    config: Optional[LedgerConfig] = None,
) -> JsonMigrationReport:
    """Migrate the PRD and task indices into ``.taskmaster/<db_file>``.

    PRDs go first so tasks can be pointed at their PRD rows. After at least
    one task migrated, the task index is copied to
    ``tasks.json.backup.<epoch ms>``.

    Raises:
        MigrationError: The indices or the database could not be opened.
    """
    root = Path(project_root)
    if config is None:
        config, err = load_ledger_config(root)
        if err:
            logger.warning("Ledger config problem (using defaults where invalid): {}", err)
    paths = ProjectPaths(root, config)
    report = JsonMigrationReport()

    tasks_path = paths.tasks_index_path
    task_items = _read_collection(tasks_path, "tasks")
    prd_items = _read_collection(paths.prds_index_path, "prds")
    if not task_items and not prd_items:
        logger.info("No tasks or PRDs found in the JSON indices. Nothing to migrate.")
        return report

    try:
        db = open_database(paths.db_path)
    except (LedgerError, sqlite3.Error) as exc:
        raise MigrationError(f"Cannot open database {paths.db_path}: {exc}") from exc

    try:
        store = DatabaseMetadataStore(db, paths.project_root)
        report.project_id = store.project_id
        logger.info("Migrating {} PRD(s) and {} task(s) into {}", len(prd_items), len(task_items), paths.db_path)
        prd_rows = _migrate_prds(store, prd_items, report.prds)
        _migrate_tasks(store, task_items, prd_rows, report.tasks)
        _link_listed_tasks(store, prd_items, prd_rows)
    except sqlite3.Error as exc:
        raise MigrationError(f"Migration into {paths.db_path} failed: {exc}") from exc
    finally:
        db.close()

    if report.tasks.migrated > 0 and tasks_path.exists():
        backup = tasks_path.with_name(f"{tasks_path.name}.backup.{_utc_stamp_ms()}")
        try:
            shutil.copy2(tasks_path, backup)
        except OSError as exc:
            raise MigrationError(f"Tasks migrated but the JSON backup failed: {exc}") from exc
        report.backup_path = backup
        logger.info("JSON file backed up to: {}", backup)

    logger.info(
        "Migration summary: tasks {} migrated, {} skipped, {} failed; PRDs {} migrated, {} skipped, {} failed",
        report.tasks.migrated,
        report.tasks.skipped,
        report.tasks.errors,
        report.prds.migrated,
        report.prds.skipped,
        report.prds.errors,
    )
    return report


def is_json_migration_needed(project_root: Path | str, config: Optional[LedgerConfig] = None) -> bool:
    """True when the task index holds more tasks than the database."""
    root = Path(project_root)
    paths = ProjectPaths(root, config or load_ledger_config(root)[0])
    try:
        task_items = _read_collection(paths.tasks_index_path, "tasks")
    except MigrationError as exc:
        logger.warning("Could not check JSON migration status: {}", exc)
        return False
    if not task_items:
        return False
    if not paths.db_path.exists():
        return True
    db = open_database(paths.db_path)
    try:
        project_id = db.current_project_id(paths.project_root)
        row = db.conn.execute(
            "SELECT COUNT(*) AS n FROM tasks WHERE project_id = ? AND parent_task_id IS NULL",
            (project_id,),
        ).fetchone()
    finally:
        db.close()
    return int(row["n"]) < len(task_items)
