"""The :class:`IntegrityEngine` facade.

One engine serves one project root. It wires the store, the checkers and the
repair components together and exposes the operations callers use; each
operation reloads the indices so the engine holds no state between calls.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .autofix import AutoFixEngine
from .config import LedgerConfig, load_ledger_config
from .constants import (
    ISSUE_MISSING_TASK_LINK,
    RECOMMENDATION_ERRORS,
    RECOMMENDATION_PASSED,
    RECOMMENDATION_WARNINGS,
)
from .errors import LedgerError
from .integrity import check_all_prd_files
from .lifecycle import PrdLifecycle
from .linking import check_linking_consistency, find_prd, find_task, link_task, unlink_task
from .logging_utils import pretty, summarize_report
from .models import AutoFixResults, IntegrityReport, TaskId
from .organizer import FileOrganizer
from .paths import ProjectPaths
from .status_automation import StatusAutomation, refresh_task_stats
from .store import BaseMetadataStore, JsonMetadataStore
from .versions import VersionTracker


def build_recommendations(report: IntegrityReport, auto_fix: Optional[AutoFixResults]) -> list[str]:
    recommendations: list[str] = []
    if auto_fix is not None:
        if auto_fix.file_integrity.success and auto_fix.file_integrity.fixed > 0:
            recommendations.append(f"Auto-fixed {auto_fix.file_integrity.fixed} file integrity issues")
        if auto_fix.task_links.success and auto_fix.task_links.fixed > 0:
            recommendations.append(f"Auto-fixed {auto_fix.task_links.fixed} missing task links")

    if report.error_count > 0:
        recommendations.append(RECOMMENDATION_ERRORS)
    if report.warning_count > 0:
        recommendations.append(RECOMMENDATION_WARNINGS)
    if report.valid:
        recommendations.append(RECOMMENDATION_PASSED)

    if auto_fix is None and report.linking is not None:
        missing_links = sum(1 for issue in report.linking.issues if issue.type == ISSUE_MISSING_TASK_LINK)
        if missing_links:
            recommendations.append(
                f"Run integrity check with --auto-fix to automatically fix {missing_links} missing task links"
            )
    return recommendations


class IntegrityEngine:
    """Consistency engine for one project's PRD and task ledgers.

    Args:
        project_root: Directory holding the project's ``.taskmaster`` tree (or
            the legacy flat layout).
        config: Explicit configuration. When omitted, ``.taskmaster/ledger.yaml``
            is loaded; problems with it are logged and defaults are used.
        store: Metadata store to read and write through. Defaults to the JSON
            indices under the project root.
    """

    def __init__(
        self,
        project_root: Path | str,
        config: Optional[LedgerConfig] = None,
        store: Optional[BaseMetadataStore] = None,
    ) -> None:
        root = Path(project_root)
        if config is None:
            config, err = load_ledger_config(root)
            if err:
                logger.warning("Ledger config problem (using defaults where invalid): {}", err)
        self.config = config
        self.paths = ProjectPaths(root, config)
        self.store = store or JsonMetadataStore(self.paths)

        self.auto_fixer = AutoFixEngine(self.store, self.paths, self.config)
        self.status = StatusAutomation(self.store)
        self.organizer = FileOrganizer(self.store, self.paths, self.config)
        self.versions = VersionTracker(self.store, self.paths, self.config)
        self.lifecycle = PrdLifecycle(self.store, self.paths, self.config)

    @property
    def project_root(self) -> Path:
        return self.paths.project_root

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def perform_integrity_check(self, auto_fix: bool = False) -> IntegrityReport:
        """Check every PRD file and every link, optionally repairing first.

        With ``auto_fix`` the repairs run before the checks, so the report
        describes the state left behind. Raises only when an index cannot be
        read or parsed.
        """
        fix_results: Optional[AutoFixResults] = None
        if auto_fix:
            fix_results = self.auto_fixer.apply()

        prds = self.store.load_prds()
        tasks = self.store.load_tasks()
        report = IntegrityReport(
            file_integrity=check_all_prd_files(prds, self.paths),
            linking=check_linking_consistency(prds, tasks),
            auto_fix=fix_results,
        )
        report.recommendations = build_recommendations(report, fix_results)
        logger.info(
            "Integrity check: {} error(s), {} warning(s) across {} PRD(s)",
            report.error_count,
            report.warning_count,
            len(prds),
        )
        logger.debug("Integrity summary:\n{}", pretty(summarize_report(report)))
        return report

    def reconcile(self, dry_run: bool = False) -> dict[str, Any]:
        """Check and repair, then sync statuses and organize files.

        A dry run only checks and reports what the status sync and the
        organizer would do.
        """
        report = self.perform_integrity_check(auto_fix=not dry_run)
        statuses = self.status.update_all_prd_statuses(dry_run=dry_run)
        organization = self.organizer.organize_all_prd_files(dry_run=dry_run)
        return {
            "success": report.valid and statuses["success"] and organization["success"],
            "dryRun": dry_run,
            "integrity": report.to_dict(),
            "statusUpdate": statuses,
            "organization": organization,
        }

    # ------------------------------------------------------------------
    # Statistics, status and placement
    # ------------------------------------------------------------------

    def update_prd_task_statistics(self, prd_id: str) -> dict[str, Any]:
        return self.status.update_prd_task_statistics(prd_id)

    def update_prd_status_based_on_tasks(
        self,
        prd_id: str,
        force: bool = False,
        dry_run: bool = False,
        allow_manual_override: bool = True,
    ) -> dict[str, Any]:
        return self.status.update_prd_status_based_on_tasks(
            prd_id, force=force, dry_run=dry_run, allow_manual_override=allow_manual_override
        )

    def update_all_prd_statuses(
        self,
        force: bool = False,
        dry_run: bool = False,
        allow_manual_override: bool = True,
    ) -> dict[str, Any]:
        return self.status.update_all_prd_statuses(
            force=force, dry_run=dry_run, allow_manual_override=allow_manual_override
        )

    def organize_all_prd_files(self, dry_run: bool = False) -> dict[str, Any]:
        return self.organizer.organize_all_prd_files(dry_run=dry_run)

    def move_prd_file_to_status_directory(self, prd_id: str, new_status: str, dry_run: bool = False) -> dict[str, Any]:
        return self.organizer.move_prd_file_to_status_directory(prd_id, new_status, dry_run=dry_run)

    def aggregate_statistics(self) -> dict[str, Any]:
        return self.store.aggregate_statistics()

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def get_version_history(
        self,
        prd_id: str,
        limit: Optional[int] = None,
        change_type: Optional[str] = None,
        author: Optional[str] = None,
    ) -> dict[str, Any]:
        return self.versions.get_version_history(prd_id, limit=limit, change_type=change_type, author=author)

    def compare_versions(self, prd_id: str, version1: str, version2: str) -> dict[str, Any]:
        return self.versions.compare_versions(prd_id, version1, version2)

    def track_file_changes(self, prd_id: str, author: Optional[str] = None) -> dict[str, Any]:
        return self.versions.track_file_changes(prd_id, author=author)

    def add_version_entry(
        self,
        prd_id: str,
        change_type: str,
        change_details: Optional[dict[str, Any]] = None,
        author: Optional[str] = None,
        version_type: str = "patch",
    ) -> dict[str, Any]:
        return self.versions.add_version_entry(prd_id, change_type, change_details, author, version_type)

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def link_task_to_prd(self, task_id: TaskId, prd_id: str) -> dict[str, Any]:
        """Link a task and a PRD in both directions and refresh the PRD's stats."""
        try:
            tasks = self.store.load_tasks()
            task = find_task(tasks, task_id)
            if task is None:
                return {"success": False, "error": f"Task with ID {task_id} not found"}
            prds = self.store.load_prds()
            prd = find_prd(prds, prd_id)
            if prd is None:
                return {"success": False, "error": f"PRD with ID {prd_id} not found"}

            previous_source = task.prd_source
            link_task(prd, task)
            refresh_task_stats(prd, tasks)
            self.store.save_tasks(tasks)
            try:
                self.store.save_prds(prds)
            except LedgerError:
                task.prd_source = previous_source
                self.store.save_tasks(tasks)
                raise
        except LedgerError as exc:
            logger.error("Error linking task {} to PRD {}: {}", task_id, prd_id, exc)
            return {"success": False, "error": str(exc)}
        logger.info("Successfully linked task {} to PRD {}", task_id, prd_id)
        return {
            "success": True,
            "data": {"taskId": task_id, "prdId": prd_id, "prdSource": task.prd_source.to_dict()},
        }

    def unlink_task_from_prd(self, task_id: TaskId, prd_id: str) -> dict[str, Any]:
        try:
            tasks = self.store.load_tasks()
            task = find_task(tasks, task_id)
            if task is None:
                return {"success": False, "error": f"Task with ID {task_id} not found"}
            prds = self.store.load_prds()
            prd = find_prd(prds, prd_id)
            if prd is None:
                return {"success": False, "error": f"PRD with ID {prd_id} not found"}

            previous_source = task.prd_source
            removed = unlink_task(prd, task)
            refresh_task_stats(prd, tasks)
            self.store.save_tasks(tasks)
            try:
                self.store.save_prds(prds)
            except LedgerError:
                task.prd_source = previous_source
                self.store.save_tasks(tasks)
                raise
        except LedgerError as exc:
            logger.error("Error unlinking task {} from PRD {}: {}", task_id, prd_id, exc)
            return {"success": False, "error": str(exc)}
        logger.info("Successfully unlinked task {} from PRD {}", task_id, prd_id)
        return {
            "success": True,
            "data": {
                "taskId": task_id,
                "prdId": prd_id,
                "removedPrdSource": removed.to_dict() if removed else None,
            },
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def register_prd_from_file(self, file_path: Path | str, **kwargs: Any) -> dict[str, Any]:
        return self.lifecycle.register_prd_from_file(file_path, **kwargs)

    def archive_prd(
        self, prd_id: str, force: bool = False, dry_run: bool = False, bundle: bool = True
    ) -> dict[str, Any]:
        return self.lifecycle.archive_prd(prd_id, force=force, dry_run=dry_run, bundle=bundle)

    def delete_prd(self, prd_id: str, force: bool = False, remove_file: bool = False) -> dict[str, Any]:
        return self.lifecycle.delete_prd(prd_id, force=force, remove_file=remove_file)
