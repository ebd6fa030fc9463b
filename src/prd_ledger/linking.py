"""Bidirectional PRD <-> task link checks and edits.

A PRD lists its tasks in ``linked_tasks``; a task points back through
``prd_source.file_name``. Ids are compared natively and as strings, so ``7``
and ``"7"`` are the same task.
"""

from __future__ import annotations

from typing import Any, Optional

from .constants import (
    ISSUE_MISSING_PRD_REFERENCE,
    ISSUE_MISSING_TASK_LINK,
    ISSUE_ORPHANED_TASK_LINK,
    ISSUE_PRD_SOURCE_MISMATCH,
    SEVERITY_ERROR,
    SEVERITY_WARNING,
)
from .models import IntegrityIssue, LinkingResult, PrdRecord, PrdSource, TaskRecord
from .utils import _contains_task_id, _same_task_id


def find_task(tasks: list[TaskRecord], task_id: Any) -> Optional[TaskRecord]:
    for task in tasks:
        if _same_task_id(task.id, task_id):
            return task
    return None


def find_prd(prds: list[PrdRecord], prd_id: str) -> Optional[PrdRecord]:
    for prd in prds:
        if prd.id == prd_id:
            return prd
    return None


def find_prd_by_file_name(prds: list[PrdRecord], file_name: str) -> Optional[PrdRecord]:
    for prd in prds:
        if prd.file_name == file_name:
            return prd
    return None


def get_tasks_linked_to_prd(prd: PrdRecord, tasks: list[TaskRecord]) -> list[TaskRecord]:
    return [task for task in tasks if _contains_task_id(prd.linked_tasks, task.id)]


def check_linking_consistency(prds: list[PrdRecord], tasks: list[TaskRecord]) -> LinkingResult:
    result = LinkingResult()

    for prd in prds:
        for task_id in prd.linked_tasks:
            task = find_task(tasks, task_id)
            if task is None:
                result.issues.append(
                    IntegrityIssue(
                        type=ISSUE_ORPHANED_TASK_LINK,
                        severity=SEVERITY_ERROR,
                        message=f"PRD {prd.id} references non-existent task {task_id}",
                        prd_id=prd.id,
                        task_id=task_id,
                    )
                )
                continue
            source = task.prd_source
            if source is not None and source.file_name and source.file_name != prd.file_name:
                result.issues.append(
                    IntegrityIssue(
                        type=ISSUE_PRD_SOURCE_MISMATCH,
                        severity=SEVERITY_WARNING,
                        message=f"Task {task_id} has mismatched PRD source reference",
                        prd_id=prd.id,
                        task_id=task_id,
                        expected=prd.file_name,
                        actual=source.file_name,
                    )
                )

    for task in tasks:
        source = task.prd_source
        if source is None or not source.file_name:
            continue
        prd = find_prd_by_file_name(prds, source.file_name)
        if prd is None:
            result.issues.append(
                IntegrityIssue(
                    type=ISSUE_MISSING_PRD_REFERENCE,
                    severity=SEVERITY_WARNING,
                    message=f"Task {task.id} references non-existent PRD {source.file_name}",
                    task_id=task.id,
                    file_name=source.file_name,
                )
            )
        elif not _contains_task_id(prd.linked_tasks, task.id):
            result.issues.append(
                IntegrityIssue(
                    type=ISSUE_MISSING_TASK_LINK,
                    severity=SEVERITY_WARNING,
                    message=f"PRD {prd.id} missing link to task {task.id}",
                    prd_id=prd.id,
                    task_id=task.id,
                    file_name=prd.file_name,
                )
            )

    return result


def link_task(prd: PrdRecord, task: TaskRecord) -> bool:
    """Point *task* at *prd* and list it on the PRD. Returns True on change."""
    changed = False
    if not _contains_task_id(prd.linked_tasks, task.id):
        prd.linked_tasks.append(task.id)
        prd.touch()
        changed = True
    current = task.prd_source
    if current is None or current.prd_id != prd.id or current.file_name != prd.file_name:
        task.prd_source = PrdSource.from_prd(prd)
        changed = True
    return changed


def unlink_task(prd: PrdRecord, task: TaskRecord) -> Optional[PrdSource]:
    """Remove the link in both directions; returns the removed back-reference."""
    remaining = [task_id for task_id in prd.linked_tasks if not _same_task_id(task_id, task.id)]
    if len(remaining) != len(prd.linked_tasks):
        prd.linked_tasks = remaining
        prd.touch()
    removed = task.prd_source
    if removed is not None and (removed.prd_id in (None, prd.id) or removed.file_name == prd.file_name):
        task.prd_source = None
        return removed
    return None


def restamp_prd_source(task: TaskRecord, prd: PrdRecord) -> None:
    """Refresh a task's back-reference from *prd*, keeping the original parse date."""
    parsed_date = task.prd_source.parsed_date if task.prd_source else None
    task.prd_source = PrdSource.from_prd(prd)
    if parsed_date:
        task.prd_source.parsed_date = parsed_date
