"""Keep PRD source files inside the directory matching their status.

Files are moved before the index records the move, and the index is saved
after every PRD, so an interrupted batch leaves at most one PRD whose
recorded path lags behind the file; the next integrity check repoints it.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import LedgerConfig
from .constants import COLLISION_OVERWRITE, PRD_STATUSES
from .errors import LedgerError, LedgerIOError
from .integrity import resolve_prd_file
from .io_utils import _move_file
from .linking import find_prd
from .models import ItemResult, PrdRecord
from .paths import ProjectPaths
from .store import BaseMetadataStore
from .utils import _file_size, _hash_file

ACTION_MOVED = "moved"
ACTION_REPOINTED = "repointed"
ACTION_ALREADY_CORRECT = "already-correct"
ACTION_REJECTED = "rejected"
ACTION_MISSING = "missing"


@dataclass
class Placement:
    """What placing one PRD file did, or would do under ``dry_run``."""

    action: str
    target: Path
    source: Optional[Path] = None
    message: str = ""
    overwrote: bool = False
    metadata_changed: bool = False

    @property
    def ok(self) -> bool:
        return self.action not in (ACTION_REJECTED, ACTION_MISSING)

    @property
    def relocated(self) -> bool:
        return self.action in (ACTION_MOVED, ACTION_REPOINTED)


def _recorded_by_other(prd: PrdRecord, prds: list[PrdRecord], target: Path, paths: ProjectPaths) -> Optional[PrdRecord]:
    target_key = paths.relative(target)
    for other in prds:
        if other.id == prd.id or not other.file_path:
            continue
        if paths.relative(paths.resolve(other.file_path)) == target_key:
            return other
    return None


def place_prd_file(
    prd: PrdRecord,
    prds: list[PrdRecord],
    paths: ProjectPaths,
    config: LedgerConfig,
    status: Optional[str] = None,
    dry_run: bool = False,
) -> Placement:
    """Put *prd*'s file into the directory for *status* (default: its own).

    On success outside ``dry_run`` the record's ``file_path`` points at the
    target. The record's status is not touched here.
    """
    status = status or prd.status
    target = paths.expected_path(status, prd.file_name)
    source = resolve_prd_file(prd, paths)
    if source is None:
        return Placement(ACTION_MISSING, target, message=f"Source PRD file not found: {prd.file_path}")

    recorded = paths.relative(paths.resolve(prd.file_path)) if prd.file_path else None
    target_rel = paths.relative(target)

    if paths.relative(source) == target_rel:
        placement = Placement(ACTION_ALREADY_CORRECT, target, source, "File is already in the correct location")
        if recorded != target_rel:
            placement.metadata_changed = True
            if not dry_run:
                prd.file_path = target_rel
                prd.touch()
        return placement

    owner = _recorded_by_other(prd, prds, target, paths)
    if owner is not None:
        return Placement(
            ACTION_REJECTED,
            target,
            source,
            f"Target path {target_rel} is recorded by PRD {owner.id}",
        )

    if target.exists():
        if _hash_file(target) == _hash_file(source):
            placement = Placement(
                ACTION_REPOINTED,
                target,
                source,
                f"Identical file already at {target_rel}; recorded path updated",
                metadata_changed=True,
            )
            if not dry_run:
                prd.file_path = target_rel
                prd.touch()
            return placement
        if config.collision_policy != COLLISION_OVERWRITE:
            return Placement(ACTION_REJECTED, target, source, f"Target file already exists: {target_rel}")
        logger.warning("Overwriting {} with {} for PRD {}", target, source, prd.id)
        placement = Placement(
            ACTION_MOVED,
            target,
            source,
            f"Moved {paths.relative(source)} to {target_rel}, overwriting a different file",
            overwrote=True,
            metadata_changed=True,
        )
    else:
        placement = Placement(
            ACTION_MOVED,
            target,
            source,
            f"Moved {paths.relative(source)} to {target_rel}",
            metadata_changed=True,
        )

    if not dry_run:
        _move_file(source, target)
        logger.info("Moved PRD file from {} to {}", source, target)
        prd.file_path = target_rel
        prd.touch()
    return placement


class FileOrganizer:
    def __init__(
        self,
        store: BaseMetadataStore,
        paths: ProjectPaths,
        config: Optional[LedgerConfig] = None,
    ) -> None:
        self.store = store
        self.paths = paths
        self.config = config or paths.config

    def _item(self, prd: PrdRecord, placement: Placement, status: str, dry_run: bool) -> ItemResult:
        if not placement.ok:
            action = "error"
        elif placement.relocated:
            action = "would-move" if dry_run else placement.action
        else:
            action = ACTION_ALREADY_CORRECT
        data: dict[str, Any] = {
            "fileName": prd.file_name,
            "status": status,
            "targetPath": self.paths.relative(placement.target),
        }
        if placement.source is not None:
            data["currentPath"] = self.paths.relative(placement.source)
        if placement.overwrote:
            data["overwrote"] = True
        if dry_run:
            data["dryRun"] = True
        return ItemResult(prd.id, action, success=placement.ok, message=placement.message, data=data)

    def _persist(self, prds: list[PrdRecord], prd: PrdRecord, item: ItemResult) -> ItemResult:
        try:
            self.store.save_prds(prds)
        except LedgerError as exc:
            logger.error("File for PRD {} moved but the index could not be saved: {}", prd.id, exc)
            return ItemResult(
                prd.id,
                "error",
                success=False,
                message=f"File placed but metadata not saved: {exc}",
                data=item.data,
            )
        return item

    def move_prd_file_to_status_directory(
        self,
        prd_id: str,
        new_status: str,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        """Move one PRD's file into the directory for *new_status* and record the status."""
        if new_status not in PRD_STATUSES:
            return {"success": False, "error": f"Unknown PRD status '{new_status}'"}
        try:
            prds = self.store.load_prds()
            prd = find_prd(prds, prd_id)
            if prd is None:
                return {"success": False, "error": f"PRD with ID {prd_id} not found"}
            previous_status = prd.status
            placement = place_prd_file(prd, prds, self.paths, self.config, status=new_status, dry_run=dry_run)
            item = self._item(prd, placement, new_status, dry_run)
            item.data["previousStatus"] = previous_status
            item.data["newStatus"] = new_status
            if placement.ok and not dry_run:
                prd.status = new_status
                if placement.action == ACTION_MOVED:
                    prd.file_hash = _hash_file(placement.target)
                    prd.file_size = _file_size(placement.target)
                prd.touch()
                item = self._persist(prds, prd, item)
        except (LedgerError, OSError) as exc:
            logger.error("Error moving PRD file for {}: {}", prd_id, exc)
            return {"success": False, "error": str(exc)}
        if not item.success:
            return {"success": False, "error": item.message, "data": item.to_dict()}
        return {"success": True, "data": item.to_dict()}

    def organize_all_prd_files(self, dry_run: bool = False) -> dict[str, Any]:
        """Place every PRD file according to its current status.

        A dry run reports the same counts the real run would produce.
        """
        summary: dict[str, Any] = {
            "success": True,
            "processed": 0,
            "moved": 0,
            "alreadyCorrect": 0,
            "errors": 0,
            "details": [],
        }
        prds = self.store.load_prds()
        for prd in prds:
            summary["processed"] += 1
            try:
                placement = place_prd_file(prd, prds, self.paths, self.config, dry_run=dry_run)
                item = self._item(prd, placement, prd.status, dry_run)
                if placement.ok and placement.metadata_changed and not dry_run:
                    item = self._persist(prds, prd, item)
            except (LedgerIOError, OSError) as exc:
                logger.error("Error organizing PRD file for {}: {}", prd.id, exc)
                item = ItemResult(prd.id, "error", success=False, message=str(exc), data={"fileName": prd.file_name})
            if not item.success:
                summary["errors"] += 1
            elif item.action == ACTION_ALREADY_CORRECT:
                summary["alreadyCorrect"] += 1
            else:
                summary["moved"] += 1
            summary["details"].append(item.to_dict())
        summary["success"] = summary["errors"] == 0
        logger.info(
            "PRD file organization {}: {} moved, {} already correct, {} errors",
            "analyzed" if dry_run else "organized",
            summary["moved"],
            summary["alreadyCorrect"],
            summary["errors"],
        )
        return summary
