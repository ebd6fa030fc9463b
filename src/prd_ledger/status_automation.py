"""Task statistics and opt-in PRD status derivation.

Statistics are a pure function of the linked tasks' statuses. PRD status is
only ever changed here when a caller asks for it; nothing else in the
package derives status from tasks, and status changes never move files.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from .constants import (
    PRD_STATUS_ARCHIVED,
    PRD_STATUS_DONE,
    PRD_STATUS_IN_PROGRESS,
    PRD_STATUS_PENDING,
)
from .errors import LedgerError
from .linking import find_prd, get_tasks_linked_to_prd
from .models import ItemResult, PrdRecord, TaskRecord, TaskStats
from .store import BaseMetadataStore
from .utils import _completion_percentage, _now_iso

STATUS_UPDATE_REASON = "Automated update based on linked task completion"


def compute_task_statistics(tasks: list[TaskRecord]) -> TaskStats:
    def count(status: str) -> int:
        return sum(1 for task in tasks if task.status == status)

    completed = count("done")
    return TaskStats(
        total_tasks=len(tasks),
        completed_tasks=completed,
        pending_tasks=count("pending"),
        in_progress_tasks=count("in-progress"),
        blocked_tasks=count("blocked"),
        deferred_tasks=count("deferred"),
        cancelled_tasks=count("cancelled"),
        completion_percentage=_completion_percentage(completed, len(tasks)),
    )


def task_status_breakdown(tasks: list[TaskRecord]) -> dict[str, int]:
    breakdown = {
        "total": len(tasks),
        "pending": 0,
        "in-progress": 0,
        "done": 0,
        "blocked": 0,
        "deferred": 0,
        "cancelled": 0,
    }
    for task in tasks:
        if task.status in breakdown:
            breakdown[task.status] += 1
    return breakdown


def determine_appropriate_status(prd: PrdRecord, linked_tasks: list[TaskRecord]) -> str:
    """Derive the status a PRD should have from its linked tasks.

    Mixed task states with nothing in progress keep the current status, except
    that a ``done`` PRD with unfinished work drops back to ``in-progress``.
    """
    if not linked_tasks:
        return PRD_STATUS_PENDING
    statuses = [task.status for task in linked_tasks]
    if all(status == "done" for status in statuses):
        return PRD_STATUS_DONE
    if any(status == "in-progress" for status in statuses):
        return PRD_STATUS_IN_PROGRESS
    if all(status == "pending" for status in statuses):
        return PRD_STATUS_PENDING
    return PRD_STATUS_IN_PROGRESS if prd.status == PRD_STATUS_DONE else prd.status


def refresh_task_stats(prd: PrdRecord, tasks: list[TaskRecord]) -> bool:
    """Recompute *prd*'s statistics in place; returns True when they changed."""
    stats = compute_task_statistics(get_tasks_linked_to_prd(prd, tasks))
    if stats == prd.task_stats:
        return False
    prd.task_stats = stats
    prd.touch()
    return True


class StatusAutomation:
    def __init__(self, store: BaseMetadataStore) -> None:
        self.store = store

    def update_prd_task_statistics(self, prd_id: str) -> dict[str, Any]:
        try:
            prds = self.store.load_prds()
            prd = find_prd(prds, prd_id)
            if prd is None:
                return {"success": False, "error": f"PRD with ID {prd_id} not found"}
            tasks = self.store.load_tasks()
            if refresh_task_stats(prd, tasks):
                self.store.save_prds(prds)
            logger.info(
                "Updated task statistics for PRD {}: {}% complete",
                prd_id,
                prd.task_stats.completion_percentage,
            )
            return {"success": True, "data": prd.task_stats.to_dict()}
        except LedgerError as exc:
            logger.error("Error updating PRD task statistics for {}: {}", prd_id, exc)
            return {"success": False, "error": str(exc)}

    def _evaluate(
        self,
        prd: PrdRecord,
        tasks: list[TaskRecord],
        *,
        force: bool,
        dry_run: bool,
        allow_manual_override: bool,
    ) -> tuple[ItemResult, bool]:
        """Decide one PRD's status. Returns the item result and whether *prd* was mutated."""
        linked = get_tasks_linked_to_prd(prd, tasks)
        current = prd.status
        data = {
            "currentStatus": current,
            "linkedTasksCount": len(linked),
            "taskStatusBreakdown": task_status_breakdown(linked),
        }
        if current == PRD_STATUS_ARCHIVED:
            data["recommendedStatus"] = current
            return ItemResult(prd.id, "unchanged", message="Archived PRDs keep their status", data=data), False

        recommended = determine_appropriate_status(prd, linked)
        data["recommendedStatus"] = recommended
        if current == recommended and not force:
            return ItemResult(prd.id, "unchanged", message="PRD status is already appropriate", data=data), False
        if not allow_manual_override and prd.metadata.get("manualStatusOverride"):
            return (
                ItemResult(
                    prd.id,
                    "error",
                    success=False,
                    message="PRD has manual status override protection enabled",
                    data=data,
                ),
                False,
            )
        if dry_run:
            data["dryRun"] = True
            return ItemResult(prd.id, "would-update", message=f"{current} -> {recommended}", data=data), False

        prd.status = recommended
        prd.metadata["statusUpdatedAt"] = _now_iso()
        prd.metadata["statusUpdateReason"] = STATUS_UPDATE_REASON
        prd.task_stats = compute_task_statistics(linked)
        prd.touch()
        data.update({"previousStatus": current, "newStatus": recommended})
        return ItemResult(prd.id, "updated", message=f"{current} -> {recommended}", data=data), True

    def update_prd_status_based_on_tasks(
        self,
        prd_id: str,
        force: bool = False,
        dry_run: bool = False,
        allow_manual_override: bool = True,
    ) -> dict[str, Any]:
        try:
            prds = self.store.load_prds()
            prd = find_prd(prds, prd_id)
            if prd is None:
                return {"success": False, "error": f"PRD with ID {prd_id} not found"}
            item, mutated = self._evaluate(
                prd,
                self.store.load_tasks(),
                force=force,
                dry_run=dry_run,
                allow_manual_override=allow_manual_override,
            )
            if mutated:
                self.store.save_prds(prds)
                logger.info("Updated PRD {} status: {}", prd_id, item.message)
        except LedgerError as exc:
            logger.error("Error updating PRD status for {}: {}", prd_id, exc)
            return {"success": False, "error": str(exc)}
        if not item.success:
            return {"success": False, "error": item.message, "data": item.to_dict()}
        return {"success": True, "data": item.to_dict()}

    def update_all_prd_statuses(
        self,
        force: bool = False,
        dry_run: bool = False,
        allow_manual_override: bool = True,
    ) -> dict[str, Any]:
        """Re-derive every PRD's status from its tasks.

        The counts of a dry run equal the counts the real run would report.
        Each changed PRD is persisted before the next one is examined.
        """
        summary: dict[str, Any] = {
            "success": True,
            "processed": 0,
            "updated": 0,
            "unchanged": 0,
            "errors": 0,
            "details": [],
        }
        prds = self.store.load_prds()
        tasks = self.store.load_tasks()
        for prd in prds:
            summary["processed"] += 1
            item, mutated = self._evaluate(
                prd,
                tasks,
                force=force,
                dry_run=dry_run,
                allow_manual_override=allow_manual_override,
            )
            if mutated:
                try:
                    self.store.save_prds(prds)
                except LedgerError as exc:
                    logger.error("Failed to persist status of PRD {}: {}", prd.id, exc)
                    item = ItemResult(prd.id, "error", success=False, message=str(exc), data=item.data)
            if not item.success:
                summary["errors"] += 1
            elif item.action in ("updated", "would-update"):
                summary["updated"] += 1
            else:
                summary["unchanged"] += 1
            summary["details"].append(item.to_dict())
        summary["success"] = summary["errors"] == 0
        logger.info(
            "Batch PRD status update completed{}: {} updated, {} unchanged, {} errors",
            " (dry run)" if dry_run else "",
            summary["updated"],
            summary["unchanged"],
            summary["errors"],
        )
        return summary
