"""Embedded relational store used by the database-backed interface.

The schema mirrors the JSON indices: one ``projects`` row per project root,
``prds`` keyed by ``prd_identifier`` and ``tasks`` keyed by
``task_identifier`` (the JSON id rendered as a string). Fields the columns do
not cover travel in each row's JSON ``metadata`` column.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .errors import LedgerIOError, ParseError
from .models import PrdRecord, TaskRecord
from .store import BaseMetadataStore

PROJECTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    root_path TEXT NOT NULL UNIQUE,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    status TEXT DEFAULT 'active' CHECK (status IN ('active', 'archived', 'deleted')),
    metadata TEXT DEFAULT '{}'
)
"""

PRDS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS prds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL,
    prd_identifier TEXT NOT NULL,
    title TEXT NOT NULL,
    file_name TEXT NOT NULL,
    file_path TEXT NOT NULL,
    file_hash TEXT,
    file_size INTEGER,
    status TEXT DEFAULT 'pending' CHECK (status IN ('pending', 'in-progress', 'done', 'archived')),
    complexity TEXT DEFAULT 'medium' CHECK (complexity IN ('low', 'medium', 'high')),
    priority TEXT DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
    description TEXT,
    tags TEXT DEFAULT '[]',
    created_date DATETIME DEFAULT CURRENT_TIMESTAMP,
    last_modified DATETIME DEFAULT CURRENT_TIMESTAMP,
    task_stats TEXT DEFAULT '{}',
    metadata TEXT DEFAULT '{}',
    FOREIGN KEY (project_id) REFERENCES projects(id)
)
"""

TASKS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL,
    prd_id INTEGER,
    parent_task_id INTEGER,
    task_identifier TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    details TEXT,
    test_strategy TEXT,
    status TEXT DEFAULT 'pending' CHECK (status IN ('pending', 'in-progress', 'done', 'review', 'blocked', 'deferred', 'cancelled')),
    priority TEXT DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
    complexity_score REAL DEFAULT 0.0,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    metadata TEXT DEFAULT '{}',
    FOREIGN KEY (project_id) REFERENCES projects(id),
    FOREIGN KEY (prd_id) REFERENCES prds(id),
    FOREIGN KEY (parent_task_id) REFERENCES tasks(id)
)
"""

ANALYSIS_COLUMNS = ("analysis_status", "tasks_status", "analysis_data", "analyzed_at", "estimated_effort")

# Key inside a PRD row's metadata column holding ledger-only fields
_LEDGER_KEY = "ledger"


def _json_loads(raw: Optional[str], default: Any, table: str, row_id: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParseError(
            f"Malformed JSON in {table} row {row_id}: {exc.msg}", line=exc.lineno, column=exc.colno
        ) from exc


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _insert(conn: sqlite3.Connection, table: str, values: dict[str, Any]) -> int:
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    cursor = conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(values.values()))
    return int(cursor.lastrowid)


def task_identifier(task_id: Any) -> str:
    return str(task_id)


def task_id_from_identifier(identifier: str) -> Any:
    """Restore the JSON form of a task id (numeric ids are ints)."""
    return int(identifier) if identifier.isdigit() else identifier


class Database:
    """A SQLite connection with foreign keys on and ``sqlite3.Row`` rows."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        assert self._conn is not None
        return self._conn

    def connect(self) -> sqlite3.Connection:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path))
        except (OSError, sqlite3.Error) as exc:
            raise LedgerIOError(f"Failed to open database {self.path}: {exc}", path=self.path) from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        self._conn = conn
        return conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "Database":
        if self._conn is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def table_columns(self, table: str) -> list[str]:
        rows = self.conn.execute(f"PRAGMA table_info({table})").fetchall()
        return [row[1] for row in rows]

    def ensure_schema(self) -> None:
        """Create the base tables when they do not exist yet."""
        with self.conn:
            self.conn.execute(PROJECTS_TABLE_SQL)
            self.conn.execute(PRDS_TABLE_SQL)
            self.conn.execute(TASKS_TABLE_SQL)

    def current_project_id(self, root_path: Path) -> int:
        """Return the project row for *root_path*, creating one when needed.

        A project registered for this root wins; otherwise the most recent
        active project is used, and a fresh row is inserted when there is none.
        """
        root = str(root_path)
        row = self.conn.execute("SELECT id FROM projects WHERE root_path = ?", (root,)).fetchone()
        if row is None:
            row = self.conn.execute(
                "SELECT id FROM projects WHERE status = 'active' ORDER BY created_at DESC, id DESC LIMIT 1"
            ).fetchone()
        if row is not None:
            return int(row["id"])
        with self.conn:
            cursor = self.conn.execute(
                "INSERT INTO projects (name, description, root_path) VALUES (?, ?, ?)",
                (root_path.name or "Default Project", "Default TaskHero project", root),
            )
        logger.info("Created project row {} for {}", cursor.lastrowid, root)
        return int(cursor.lastrowid)


def open_database(path: Path) -> Database:
    db = Database(path)
    db.connect()
    db.ensure_schema()
    return db


class DatabaseMetadataStore(BaseMetadataStore):
    """Metadata Store backed by the relational tables of one project."""

    def __init__(self, db: Database, project_root: Path) -> None:
        self.db = db
        self.project_root = Path(project_root)
        self.db.ensure_schema()
        self._project_id: Optional[int] = None

    @property
    def project_id(self) -> int:
        if self._project_id is None:
            self._project_id = self.db.current_project_id(self.project_root)
        return self._project_id

    def _has_analysis_columns(self) -> bool:
        columns = self.db.table_columns("prds")
        return all(column in columns for column in ANALYSIS_COLUMNS)

    # ------------------------------------------------------------------
    # PRDs
    # ------------------------------------------------------------------

    def load_prds(self) -> list[PrdRecord]:
        conn = self.db.conn
        rows = conn.execute(
            "SELECT * FROM prds WHERE project_id = ? ORDER BY id", (self.project_id,)
        ).fetchall()
        with_analysis = self._has_analysis_columns()
        prds: list[PrdRecord] = []
        for row in rows:
            metadata = _json_loads(row["metadata"], {}, "prds", row["id"])
            ledger = metadata.pop(_LEDGER_KEY, {}) if isinstance(metadata, dict) else {}
            linked = ledger.get("linkedTasks")
            if linked is None:
                linked_rows = conn.execute(
                    "SELECT task_identifier FROM tasks WHERE prd_id = ? AND parent_task_id IS NULL ORDER BY id",
                    (row["id"],),
                ).fetchall()
                linked = [task_id_from_identifier(r["task_identifier"]) for r in linked_rows]
            data: dict[str, Any] = dict(ledger.get("extra") or {})
            data.update(
                {
                    "id": row["prd_identifier"],
                    "title": row["title"],
                    "fileName": row["file_name"],
                    "filePath": row["file_path"],
                    "fileHash": row["file_hash"],
                    "fileSize": row["file_size"],
                    "status": row["status"],
                    "complexity": row["complexity"],
                    "priority": row["priority"],
                    "description": row["description"] or "",
                    "tags": _json_loads(row["tags"], [], "prds", row["id"]),
                    "createdDate": row["created_date"],
                    "lastModified": row["last_modified"],
                    "taskStats": _json_loads(row["task_stats"], {}, "prds", row["id"]),
                    "linkedTasks": linked,
                    "metadata": metadata if isinstance(metadata, dict) else {},
                    "versionHistory": ledger.get("versionHistory") or [],
                    "currentVersion": ledger.get("currentVersion"),
                }
            )
            if with_analysis:
                data["analysisStatus"] = row["analysis_status"]
                data["tasksStatus"] = row["tasks_status"]
                data["analysisData"] = _json_loads(row["analysis_data"], None, "prds", row["id"])
                data["analyzedAt"] = row["analyzed_at"]
                data["estimatedEffort"] = row["estimated_effort"]
            prds.append(PrdRecord.from_dict(data))
        return prds

    def prd_row_values(self, prd: PrdRecord) -> dict[str, Any]:
        """Column values for *prd* without the project and identifier columns."""
        metadata = dict(prd.metadata)
        metadata[_LEDGER_KEY] = {
            "linkedTasks": list(prd.linked_tasks),
            "versionHistory": [entry.to_dict() for entry in prd.version_history],
            "currentVersion": prd.current_version,
            "extra": dict(prd.extra),
        }
        values: dict[str, Any] = {
            "title": prd.title or prd.file_name,
            "file_name": prd.file_name,
            "file_path": prd.file_path,
            "file_hash": prd.file_hash,
            "file_size": prd.file_size,
            "status": prd.status,
            "complexity": prd.complexity,
            "priority": prd.priority,
            "description": prd.description,
            "tags": _json_dumps(prd.tags),
            "created_date": prd.created_date,
            "last_modified": prd.last_modified,
            "task_stats": _json_dumps(prd.task_stats.to_dict()),
            "metadata": _json_dumps(metadata),
        }
        if self._has_analysis_columns():
            values.update(
                {
                    "analysis_status": prd.analysis_status,
                    "tasks_status": prd.tasks_status,
                    "analysis_data": _json_dumps(prd.analysis_data) if prd.analysis_data is not None else None,
                    "analyzed_at": prd.analyzed_at,
                    "estimated_effort": prd.estimated_effort,
                }
            )
        return values

    def insert_prd(self, prd: PrdRecord) -> int:
        """Insert *prd* as a new row of this project; returns the row id."""
        values = {"project_id": self.project_id, "prd_identifier": prd.id, **self.prd_row_values(prd)}
        return _insert(self.db.conn, "prds", values)

    def save_prds(self, prds: list[PrdRecord]) -> None:
        conn = self.db.conn
        project_id = self.project_id
        with conn:
            existing = {
                row["prd_identifier"]: row["id"]
                for row in conn.execute(
                    "SELECT id, prd_identifier FROM prds WHERE project_id = ?", (project_id,)
                ).fetchall()
            }
            kept: set[str] = set()
            for prd in prds:
                row_id = existing.get(prd.id)
                if row_id is None:
                    row_id = self.insert_prd(prd)
                else:
                    values = self.prd_row_values(prd)
                    assignments = ", ".join(f"{column} = ?" for column in values)
                    conn.execute(f"UPDATE prds SET {assignments} WHERE id = ?", (*values.values(), row_id))
                kept.add(prd.id)
                for task_id in prd.linked_tasks:
                    conn.execute(
                        "UPDATE tasks SET prd_id = ? WHERE project_id = ? AND task_identifier = ? AND parent_task_id IS NULL",
                        (row_id, project_id, task_identifier(task_id)),
                    )
            for identifier, row_id in existing.items():
                if identifier in kept:
                    continue
                conn.execute("UPDATE tasks SET prd_id = NULL WHERE prd_id = ?", (row_id,))
                conn.execute("DELETE FROM prds WHERE id = ?", (row_id,))
        logger.debug("Saved {} PRD row(s) for project {}", len(prds), project_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def load_tasks(self) -> list[TaskRecord]:
        rows = self.db.conn.execute(
            """
            SELECT t.*, p.prd_identifier AS joined_prd_identifier, p.file_name AS joined_file_name,
                   p.file_path AS joined_file_path, p.file_hash AS joined_file_hash
            FROM tasks t
            LEFT JOIN prds p ON t.prd_id = p.id
            WHERE t.project_id = ? AND t.parent_task_id IS NULL
            ORDER BY t.id
            """,
            (self.project_id,),
        ).fetchall()
        tasks: list[TaskRecord] = []
        for row in rows:
            metadata = _json_loads(row["metadata"], {}, "tasks", row["id"])
            if not isinstance(metadata, dict):
                metadata = {}
            written_here = "originalId" in metadata
            data: dict[str, Any] = dict(metadata.get("extra") or {})
            data.update(
                {
                    "id": metadata["originalId"] if written_here else task_id_from_identifier(row["task_identifier"]),
                    "title": row["title"],
                    "description": row["description"] or "",
                    "details": row["details"] or "",
                    "testStrategy": row["test_strategy"] or "",
                    "status": row["status"],
                    "priority": metadata.get("priority") if written_here else row["priority"],
                    "dependencies": metadata.get("dependencies") or [],
                    "subtasks": metadata.get("subtasks") or [],
                    "complexityScore": metadata.get("complexityScore") if written_here else row["complexity_score"],
                }
            )
            source = metadata.get("prdSource")
            # Rows from other writers only carry the prd_id column
            if source is None and not written_here and row["joined_prd_identifier"] is not None:
                source = {
                    "prdId": row["joined_prd_identifier"],
                    "fileName": row["joined_file_name"],
                    "filePath": row["joined_file_path"],
                    "fileHash": row["joined_file_hash"],
                }
            if source is not None:
                data["prdSource"] = source
            tasks.append(TaskRecord.from_dict(data))
        return tasks

    def save_tasks(self, tasks: list[TaskRecord]) -> None:
        conn = self.db.conn
        project_id = self.project_id
        with conn:
            existing = {
                row["task_identifier"]: (row["id"], _json_loads(row["metadata"], {}, "tasks", row["id"]))
                for row in conn.execute(
                    "SELECT id, task_identifier, metadata FROM tasks WHERE project_id = ? AND parent_task_id IS NULL",
                    (project_id,),
                ).fetchall()
            }
            prd_rows = {
                row["prd_identifier"]: row["id"]
                for row in conn.execute(
                    "SELECT id, prd_identifier FROM prds WHERE project_id = ?", (project_id,)
                ).fetchall()
            }
            kept: set[str] = set()
            for task in tasks:
                identifier = task_identifier(task.id)
                row_id, metadata = existing.get(identifier, (None, {}))
                metadata = dict(metadata) if isinstance(metadata, dict) else {}
                fields = task_metadata(task)
                metadata.update(fields)
                for optional in ("prdSource", "subtasks", "extra"):
                    if optional not in fields:
                        metadata.pop(optional, None)
                prd_row = None
                if task.prd_source is not None and task.prd_source.prd_id:
                    prd_row = prd_rows.get(task.prd_source.prd_id)
                values = task_row_values(task, prd_row, metadata)
                if row_id is None:
                    _insert(conn, "tasks", {"project_id": project_id, "task_identifier": identifier, **values})
                else:
                    assignments = ", ".join(f"{column} = ?" for column in values)
                    conn.execute(
                        f"UPDATE tasks SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                        (*values.values(), row_id),
                    )
                kept.add(identifier)
            for identifier, (row_id, _) in existing.items():
                if identifier in kept:
                    continue
                conn.execute("DELETE FROM tasks WHERE parent_task_id = ?", (row_id,))
                conn.execute("DELETE FROM tasks WHERE id = ?", (row_id,))
        logger.debug("Saved {} task row(s) for project {}", len(tasks), project_id)


def task_row_values(task: TaskRecord, prd_row: Optional[int], metadata: dict[str, Any]) -> dict[str, Any]:
    return {
        "prd_id": prd_row,
        "title": task.title or f"Task {task.id}",
        "description": task.description,
        "details": task.details,
        "test_strategy": task.test_strategy,
        "status": task.status,
        "priority": task.priority or "medium",
        "complexity_score": task.complexity_score if task.complexity_score is not None else 0.0,
        "metadata": _json_dumps(metadata),
    }


def insert_task(
    db: Database,
    project_id: int,
    task: TaskRecord,
    prd_row: Optional[int],
    metadata: dict[str, Any],
) -> int:
    """Insert *task* as a top-level row keyed by its identifier."""
    values = {
        "project_id": project_id,
        "task_identifier": task_identifier(task.id),
        **task_row_values(task, prd_row, metadata),
    }
    return _insert(db.conn, "tasks", values)


def task_metadata(task: TaskRecord) -> dict[str, Any]:
    """Fields of a task that live in the ``metadata`` column."""
    metadata: dict[str, Any] = {
        "dependencies": list(task.dependencies),
        "originalId": task.id,
        "priority": task.priority,
        "complexityScore": task.complexity_score,
    }
    if task.prd_source is not None:
        metadata["prdSource"] = task.prd_source.to_dict()
    if task.subtasks:
        metadata["subtasks"] = [subtask.to_dict() for subtask in task.subtasks]
    if task.extra:
        metadata["extra"] = dict(task.extra)
    return metadata

