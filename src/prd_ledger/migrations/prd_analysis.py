"""Add the PRD analysis columns and the ``prd_task_stats`` view."""

from __future__ import annotations

import sqlite3

from loguru import logger

from ..db import Database
from ..errors import SchemaError

ANALYSIS_COLUMN_DDL = {
    "analysis_status": (
        "ALTER TABLE prds ADD COLUMN analysis_status TEXT DEFAULT 'not-analyzed' "
        "CHECK (analysis_status IN ('not-analyzed', 'analyzing', 'analyzed'))"
    ),
    "tasks_status": (
        "ALTER TABLE prds ADD COLUMN tasks_status TEXT DEFAULT 'no-tasks' "
        "CHECK (tasks_status IN ('no-tasks', 'generating', 'generated'))"
    ),
    "analysis_data": "ALTER TABLE prds ADD COLUMN analysis_data TEXT DEFAULT NULL",
    "analyzed_at": "ALTER TABLE prds ADD COLUMN analyzed_at DATETIME DEFAULT NULL",
    "estimated_effort": "ALTER TABLE prds ADD COLUMN estimated_effort TEXT DEFAULT NULL",
}

# estimated_effort predates the analysis feature in some databases
REQUIRED_COLUMNS = ("analysis_status", "tasks_status", "analysis_data", "analyzed_at")

TASK_STATS_VIEW_SQL = """
CREATE VIEW prd_task_stats AS
SELECT
    prd_id,
    COUNT(*) AS total_tasks,
    COUNT(CASE WHEN status = 'done' THEN 1 END) AS completed_tasks,
    ROUND(COUNT(CASE WHEN status = 'done' THEN 1 END) * 100.0 / COUNT(*), 2) AS completion_percentage,
    COUNT(CASE WHEN status = 'pending' THEN 1 END) AS pending_tasks,
    COUNT(CASE WHEN status = 'in-progress' THEN 1 END) AS in_progress_tasks,
    COUNT(CASE WHEN status = 'blocked' THEN 1 END) AS blocked_tasks
FROM tasks
WHERE prd_id IS NOT NULL
GROUP BY prd_id
"""

BACKFILL_SQL = """
UPDATE prds
SET analysis_status = COALESCE(analysis_status, 'not-analyzed'),
    tasks_status = COALESCE(
        tasks_status,
        CASE WHEN EXISTS (SELECT 1 FROM tasks WHERE tasks.prd_id = prds.id) THEN 'generated' ELSE 'no-tasks' END
    )
WHERE analysis_status IS NULL OR tasks_status IS NULL
"""


def is_prd_analysis_migration_needed(db: Database) -> bool:
    try:
        columns = db.table_columns("prds")
    except sqlite3.Error as exc:
        logger.warning("Could not check PRD analysis migration status: {}", exc)
        return False
    return any(column not in columns for column in REQUIRED_COLUMNS)


def migrate_prd_analysis(db: Database) -> list[str]:
    """Bring the ``prds`` table up to the analysis schema.

    Safe to run repeatedly: only missing columns are added and the view is
    recreated each time. Returns the names of the columns that were added.

    Raises:
        SchemaError: An ALTER/CREATE/UPDATE statement failed.
    """
    added: list[str] = []
    try:
        db.ensure_schema()
        existing = db.table_columns("prds")
        with db.conn:
            for column, ddl in ANALYSIS_COLUMN_DDL.items():
                if column in existing:
                    continue
                db.conn.execute(ddl)
                added.append(column)
                logger.info("Added {} column", column)
            db.conn.execute("DROP VIEW IF EXISTS prd_task_stats")
            db.conn.execute(TASK_STATS_VIEW_SQL)
            cursor = db.conn.execute(BACKFILL_SQL)
    except sqlite3.Error as exc:
        logger.error("PRD analysis migration failed: {}", exc)
        raise SchemaError(f"PRD analysis migration failed: {exc}") from exc

    logger.info(
        "PRD analysis migration completed: {} column(s) added, {} PRD(s) backfilled",
        len(added),
        cursor.rowcount,
    )
    return added
