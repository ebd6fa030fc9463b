"""Per-PRD version history.

Each history entry snapshots the PRD's classification and file facts.
Versions are ``major.minor.patch`` strings: the first entry is ``1.0.0`` and
later entries bump the patch number unless a minor or major bump is asked for.
"""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger

from .config import LedgerConfig
from .constants import CHANGE_TYPE_FILE_MODIFIED, INITIAL_VERSION
from .errors import LedgerError
from .integrity import resolve_prd_file
from .linking import find_prd
from .models import PrdRecord, VersionEntry
from .paths import ProjectPaths
from .store import BaseMetadataStore
from .utils import _file_size, _hash_file, _now_iso

VERSION_TYPES = ("patch", "minor", "major")

# Snapshot keys compared by compare_versions, then entry-level file facts
_SNAPSHOT_FIELDS = ("status", "priority", "complexity", "tags", "linkedTaskCount")
_ENTRY_FIELDS = (("fileSize", "file_size"), ("fileHash", "file_hash"))


def _parse_version(value: str) -> tuple[int, int, int]:
    try:
        major, minor, patch = (int(part) for part in value.split("."))
    except ValueError as exc:
        raise ValueError(f"Invalid version '{value}'; expected major.minor.patch") from exc
    return major, minor, patch


def next_version(history: list[VersionEntry], version_type: str = "patch") -> str:
    if version_type not in VERSION_TYPES:
        raise ValueError(f"version_type must be one of {VERSION_TYPES}, got '{version_type}'")
    if not history:
        return INITIAL_VERSION
    major, minor, patch = _parse_version(history[-1].version)
    if version_type == "major":
        return f"{major + 1}.0.0"
    if version_type == "minor":
        return f"{major}.{minor + 1}.0"
    return f"{major}.{minor}.{patch + 1}"


def snapshot(prd: PrdRecord) -> dict[str, Any]:
    return {
        "status": prd.status,
        "priority": prd.priority,
        "complexity": prd.complexity,
        "tags": list(prd.tags),
        "linkedTaskCount": len(prd.linked_tasks),
        "linkedTasks": list(prd.linked_tasks),
        "taskStats": prd.task_stats.to_dict(),
    }


def append_version(
    prd: PrdRecord,
    change_type: str,
    change_details: Optional[dict[str, Any]] = None,
    author: str = "system",
    version_type: str = "patch",
) -> VersionEntry:
    """Append a history entry to *prd* in place and make it current."""
    entry = VersionEntry(
        version=next_version(prd.version_history, version_type),
        timestamp=_now_iso(),
        change_type=change_type,
        author=author,
        file_hash=prd.file_hash,
        file_size=prd.file_size,
        change_details=dict(change_details or {}),
        snapshot=snapshot(prd),
    )
    prd.version_history.append(entry)
    prd.current_version = entry.version
    prd.touch()
    return entry


def file_change_details(
    previous_hash: Optional[str],
    new_hash: str,
    previous_size: Optional[int],
    new_size: int,
) -> dict[str, Any]:
    return {
        "previousHash": previous_hash,
        "newHash": new_hash,
        "previousSize": previous_size,
        "newSize": new_size,
        "sizeChange": new_size - (previous_size or 0),
    }


class VersionTracker:
    def __init__(
        self,
        store: BaseMetadataStore,
        paths: ProjectPaths,
        config: Optional[LedgerConfig] = None,
    ) -> None:
        self.store = store
        self.paths = paths
        self.config = config or paths.config

    def add_version_entry(
        self,
        prd_id: str,
        change_type: str,
        change_details: Optional[dict[str, Any]] = None,
        author: Optional[str] = None,
        version_type: str = "patch",
    ) -> dict[str, Any]:
        try:
            prds = self.store.load_prds()
            prd = find_prd(prds, prd_id)
            if prd is None:
                return {"success": False, "error": f"PRD with ID {prd_id} not found"}
            entry = append_version(
                prd,
                change_type,
                change_details,
                author or self.config.default_author,
                version_type,
            )
            self.store.save_prds(prds)
        except (LedgerError, ValueError) as exc:
            logger.error("Error adding version entry to PRD {}: {}", prd_id, exc)
            return {"success": False, "error": str(exc)}
        logger.info("Added version {} to PRD {} ({})", entry.version, prd_id, change_type)
        return {
            "success": True,
            "data": {
                "prdId": prd_id,
                "version": entry.version,
                "changeType": change_type,
                "versionEntry": entry.to_dict(),
            },
        }

    def track_file_changes(self, prd_id: str, author: Optional[str] = None) -> dict[str, Any]:
        """Record a ``file_modified`` version when the PRD's file changed on disk."""
        try:
            prds = self.store.load_prds()
            prd = find_prd(prds, prd_id)
            if prd is None:
                return {"success": False, "error": f"PRD with ID {prd_id} not found"}
            resolved = resolve_prd_file(prd, self.paths)
            if resolved is None:
                return {"success": False, "error": f"PRD file not found: {prd.file_path}"}
            current_hash = _hash_file(resolved)
            current_size = _file_size(resolved)
            if current_hash == prd.file_hash and current_size == prd.file_size:
                return {
                    "success": True,
                    "data": {"prdId": prd_id, "changed": False, "message": "No changes detected"},
                }
            details = file_change_details(prd.file_hash, current_hash, prd.file_size, current_size)
            prd.file_hash = current_hash
            prd.file_size = current_size
            entry = append_version(
                prd,
                CHANGE_TYPE_FILE_MODIFIED,
                details,
                author or self.config.default_author,
            )
            self.store.save_prds(prds)
        except (LedgerError, OSError) as exc:
            logger.error("Error tracking file changes for PRD {}: {}", prd_id, exc)
            return {"success": False, "error": str(exc)}
        logger.info("PRD {} changed on disk; recorded version {}", prd_id, entry.version)
        return {
            "success": True,
            "data": {
                "prdId": prd_id,
                "changed": True,
                "version": entry.version,
                "changeDetails": details,
            },
        }

    def get_version_history(
        self,
        prd_id: str,
        limit: Optional[int] = None,
        change_type: Optional[str] = None,
        author: Optional[str] = None,
    ) -> dict[str, Any]:
        try:
            prd = self.store.find_prd_by_id(prd_id)
        except LedgerError as exc:
            logger.error("Error getting version history for PRD {}: {}", prd_id, exc)
            return {"success": False, "error": str(exc)}
        if prd is None:
            return {"success": False, "error": f"PRD with ID {prd_id} not found"}

        history = list(prd.version_history)
        if change_type:
            history = [entry for entry in history if entry.change_type == change_type]
        if author:
            history = [entry for entry in history if entry.author == author]
        if limit and limit > 0:
            history = history[-limit:]
        return {
            "success": True,
            "data": {
                "prdId": prd_id,
                "currentVersion": prd.current_version or INITIAL_VERSION,
                "totalVersions": len(prd.version_history),
                "history": [entry.to_dict() for entry in history],
            },
        }

    def compare_versions(self, prd_id: str, version1: str, version2: str) -> dict[str, Any]:
        try:
            prd = self.store.find_prd_by_id(prd_id)
        except LedgerError as exc:
            logger.error("Error comparing versions for PRD {}: {}", prd_id, exc)
            return {"success": False, "error": str(exc)}
        if prd is None:
            return {"success": False, "error": f"PRD with ID {prd_id} not found"}

        by_version = {entry.version: entry for entry in prd.version_history}
        first = by_version.get(version1)
        second = by_version.get(version2)
        if first is None or second is None:
            return {"success": False, "error": "One or both versions not found"}

        differences: dict[str, dict[str, Any]] = {}
        for key in _SNAPSHOT_FIELDS:
            before = first.snapshot.get(key)
            after = second.snapshot.get(key)
            differences[key] = {"changed": before != after, "from": before, "to": after}
        for key, attr in _ENTRY_FIELDS:
            before = getattr(first, attr)
            after = getattr(second, attr)
            differences[key] = {"changed": before != after, "from": before, "to": after}

        def describe(entry: VersionEntry) -> dict[str, Any]:
            return {
                "version": entry.version,
                "timestamp": entry.timestamp,
                "snapshot": dict(entry.snapshot),
                "fileHash": entry.file_hash,
                "fileSize": entry.file_size,
            }

        return {
            "success": True,
            "data": {
                "prdId": prd_id,
                "version1": describe(first),
                "version2": describe(second),
                "differences": differences,
                "hasChanges": any(diff["changed"] for diff in differences.values()),
            },
        }
