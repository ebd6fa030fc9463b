"""Repair the integrity findings that have an unambiguous fix.

Missing files, orphaned task links and references to unknown PRDs are never
repaired: they need a human decision and stay in the report.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from .config import LedgerConfig
from .constants import (
    AUTO_FIX_AUTHOR,
    CHANGE_TYPE_INTEGRITY_FIX,
    ISSUE_CHECK_ERROR,
    ISSUE_HASH_MISMATCH,
    ISSUE_SIZE_MISMATCH,
    ISSUE_WRONG_DIRECTORY,
)
from .errors import LedgerError
from .integrity import check_prd_file_integrity, is_stale_path, resolve_prd_file
from .linking import find_prd_by_file_name, find_task, restamp_prd_source
from .models import AutoFixResults, FixSection, PrdRecord, TaskRecord
from .organizer import place_prd_file
from .paths import ProjectPaths
from .status_automation import refresh_task_stats
from .store import BaseMetadataStore
from .utils import _contains_task_id, _file_size, _hash_file
from .versions import append_version, file_change_details


class AutoFixEngine:
    def __init__(
        self,
        store: BaseMetadataStore,
        paths: ProjectPaths,
        config: Optional[LedgerConfig] = None,
    ) -> None:
        self.store = store
        self.paths = paths
        self.config = config or paths.config

    def apply(
        self,
        prds: Optional[list[PrdRecord]] = None,
        tasks: Optional[list[TaskRecord]] = None,
    ) -> AutoFixResults:
        """Fix what can be fixed and persist each collection at most once.

        Running ``apply`` again on its own output changes nothing.
        """
        if prds is None:
            prds = self.store.load_prds()
        if tasks is None:
            tasks = self.store.load_tasks()

        results = AutoFixResults()
        prds_changed = self._fix_files(prds, results.file_integrity)
        links_changed, tasks_changed = self._fix_links(prds, tasks, results.task_links)

        if prds_changed or links_changed:
            try:
                self.store.save_prds(prds)
            except LedgerError as exc:
                logger.error("Auto-fix could not save the PRD index: {}", exc)
                results.file_integrity.errors.append(f"Failed to save PRD index: {exc}")
        if tasks_changed:
            try:
                self.store.save_tasks(tasks)
            except LedgerError as exc:
                logger.error("Auto-fix could not save the task index: {}", exc)
                results.task_links.errors.append(f"Failed to save task index: {exc}")

        if results.total_fixed:
            logger.info(
                "Auto-fix repaired {} file issue(s) and {} link issue(s)",
                results.file_integrity.fixed,
                results.task_links.fixed,
            )
        return results

    # ------------------------------------------------------------------
    # File facts
    # ------------------------------------------------------------------

    def _fix_files(self, prds: list[PrdRecord], section: FixSection) -> bool:
        changed = False
        for prd in prds:
            check = check_prd_file_integrity(prd, self.paths)
            if check.resolved_path is None or check.has_issue(ISSUE_CHECK_ERROR):
                continue
            fixed = False
            try:
                if check.has_issue(ISSUE_WRONG_DIRECTORY):
                    placement = place_prd_file(prd, prds, self.paths, self.config)
                    if placement.ok:
                        section.details.append(f"PRD {prd.id}: {placement.message}")
                        fixed = True
                    else:
                        section.errors.append(f"Failed to fix wrong_directory for PRD {prd.id}: {placement.message}")
                elif is_stale_path(prd, check, self.paths):
                    prd.file_path = self.paths.relative(check.resolved_path)
                    prd.touch()
                    section.details.append(f"Updated file path for PRD {prd.id} to {prd.file_path}")
                    fixed = True

                if check.has_issue(ISSUE_HASH_MISMATCH) or check.has_issue(ISSUE_SIZE_MISMATCH):
                    fixed = self._restamp(prd, section) or fixed
            except (LedgerError, OSError) as exc:
                section.errors.append(f"Failed to fix file integrity for PRD {prd.id}: {exc}")

            if fixed:
                section.fixed += 1
                changed = True
        return changed

    def _restamp(self, prd: PrdRecord, section: FixSection) -> bool:
        location = resolve_prd_file(prd, self.paths)
        if location is None:
            return False
        new_hash = _hash_file(location)
        new_size = _file_size(location)
        previous_hash, previous_size = prd.file_hash, prd.file_size
        prd.file_hash = new_hash
        prd.file_size = new_size
        prd.touch()
        if previous_hash != new_hash:
            append_version(
                prd,
                CHANGE_TYPE_INTEGRITY_FIX,
                file_change_details(previous_hash, new_hash, previous_size, new_size),
                AUTO_FIX_AUTHOR,
            )
        section.details.append(f"Updated hash and size for PRD {prd.id} ({prd.file_name})")
        return True

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def _fix_links(
        self,
        prds: list[PrdRecord],
        tasks: list[TaskRecord],
        section: FixSection,
    ) -> tuple[bool, bool]:
        prds_changed = False
        tasks_changed = False

        # Back-references go first so a renamed PRD is found by its new name below
        for prd in prds:
            for task_id in prd.linked_tasks:
                task = find_task(tasks, task_id)
                source = task.prd_source if task else None
                if source is None or not source.file_name or source.file_name == prd.file_name:
                    continue
                if source.prd_id != prd.id:
                    continue
                restamp_prd_source(task, prd)
                section.fixed += 1
                section.details.append(f"Updated PRD source of task {task.id} to {prd.file_name}")
                tasks_changed = True

        affected: set[str] = set()
        for task in tasks:
            source = task.prd_source
            if source is None or not source.file_name:
                continue
            prd = find_prd_by_file_name(prds, source.file_name)
            if prd is None or _contains_task_id(prd.linked_tasks, task.id):
                continue
            prd.linked_tasks.append(task.id)
            prd.touch()
            affected.add(prd.id)
            section.fixed += 1
            section.details.append(f"Added task {task.id} to PRD {prd.id} linkedTasks")
            prds_changed = True

        for prd in prds:
            if prd.id in affected:
                refresh_task_stats(prd, tasks)
        return prds_changed, tasks_changed
