"""Ingest, archive and delete PRDs."""

from __future__ import annotations

import json
import re
import shutil
import zipfile
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import LedgerConfig
from .constants import (
    ARCHIVE_FORMAT_VERSION,
    ARCHIVE_METADATA_FILE,
    ARCHIVE_TASKS_FILE,
    CHANGE_TYPE_ARCHIVED,
    CHANGE_TYPE_CREATED,
    PRD_FILE_EXTENSIONS,
    PRD_STATUS_ARCHIVED,
    PRD_STATUS_DONE,
    PRD_STATUSES,
)
from .errors import LedgerError, LedgerIOError, ParseError
from .linking import find_prd, find_prd_by_file_name, get_tasks_linked_to_prd
from .models import PrdRecord, TaskRecord
from .organizer import ACTION_MOVED, place_prd_file
from .paths import ProjectPaths
from .store import BaseMetadataStore, JsonMetadataStore
from .utils import _contains_task_id, _file_size, _file_stamp, _hash_file, _now_iso, _utc_stamp_ms
from .versions import append_version

_PRD_ID_RE = re.compile(r"^prd_(\d+)$")


def generate_prd_id(prds: list[PrdRecord]) -> str:
    """Next sequential id (``prd_001``, ``prd_002``...)."""
    highest = 0
    for prd in prds:
        match = _PRD_ID_RE.match(prd.id)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"prd_{highest + 1:03d}"


def _task_summary(task: TaskRecord) -> dict[str, Any]:
    return {"id": task.id, "title": task.title, "status": task.status}


# ---------------------------------------------------------------------------
# Archive bundles
# ---------------------------------------------------------------------------

def create_prd_archive(
    prd: PrdRecord,
    linked_tasks: list[TaskRecord],
    paths: ProjectPaths,
    original_path: Optional[str] = None,
) -> tuple[Path, dict[str, Any]]:
    """Bundle a PRD file and its linked tasks into ``<prdId>_<stamp>.zip``.

    The bundle lands in the archived status directory and holds
    ``metadata.json``, the PRD file, ``tasks.json`` with the linked task
    records and any ``tasks/task_NNN.txt`` files found next to the task index.
    """
    archive_dir = paths.status_directory(PRD_STATUS_ARCHIVED)
    archive_path = archive_dir / f"{prd.id}_{_file_stamp()}.zip"
    metadata = {
        "prdId": prd.id,
        "prdTitle": prd.title,
        "archivedDate": _now_iso(),
        "originalPrdPath": original_path or prd.file_path,
        "linkedTaskIds": [task.id for task in linked_tasks],
        "taskCount": len(linked_tasks),
        "archiveVersion": ARCHIVE_FORMAT_VERSION,
    }
    prd_file = paths.resolve(prd.file_path)
    tasks_dir = paths.tasks_index_path.parent
    try:
        archive_dir.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive_path, "w", zipfile.ZIP_DEFLATED) as bundle:
            bundle.writestr(ARCHIVE_METADATA_FILE, json.dumps(metadata, indent=2))
            if prd_file.is_file():
                bundle.write(prd_file, prd_file.name)
            tasks_doc = {"tasks": [task.to_dict() for task in linked_tasks]}
            bundle.writestr(ARCHIVE_TASKS_FILE, json.dumps(tasks_doc, indent=2))
            for task in linked_tasks:
                task_file = tasks_dir / f"task_{str(task.id).zfill(3)}.txt"
                if task_file.is_file():
                    bundle.write(task_file, f"tasks/{task_file.name}")
    except OSError as exc:
        archive_path.unlink(missing_ok=True)
        raise LedgerIOError(f"Failed to write archive {archive_path}: {exc}", path=archive_path) from exc
    logger.info("Created PRD archive {} ({} linked task(s))", archive_path, len(linked_tasks))
    return archive_path, metadata


def read_prd_archive(archive_path: Path | str) -> dict[str, Any]:
    """Return the metadata, member names and task records of a bundle."""
    path = Path(archive_path)
    if not zipfile.is_zipfile(path):
        raise LedgerIOError(f"Not a PRD archive: {path}", path=path)
    with zipfile.ZipFile(path) as bundle:
        names = bundle.namelist()
        if ARCHIVE_METADATA_FILE not in names:
            raise LedgerIOError(f"{ARCHIVE_METADATA_FILE} not found in archive {path}", path=path)
        try:
            metadata = json.loads(bundle.read(ARCHIVE_METADATA_FILE))
            tasks = []
            if ARCHIVE_TASKS_FILE in names:
                tasks = json.loads(bundle.read(ARCHIVE_TASKS_FILE)).get("tasks", [])
        except json.JSONDecodeError as exc:
            raise ParseError(exc.msg, path=path, line=exc.lineno, column=exc.colno) from exc
    return {"archivePath": str(path), "metadata": metadata, "files": names, "tasks": tasks}


def extract_prd_archive(archive_path: Path | str, target_dir: Path | str) -> list[Path]:
    """Unpack a bundle into *target_dir*; returns the extracted files."""
    path = Path(archive_path)
    target = Path(target_dir)
    if not zipfile.is_zipfile(path):
        raise LedgerIOError(f"Not a PRD archive: {path}", path=path)
    target.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path) as bundle:
        bundle.extractall(target)
        names = [name for name in bundle.namelist() if not name.endswith("/")]
    logger.info("Extracted {} file(s) from {} to {}", len(names), path, target)
    return [target / name for name in names]


class PrdLifecycle:
    def __init__(
        self,
        store: BaseMetadataStore,
        paths: ProjectPaths,
        config: Optional[LedgerConfig] = None,
    ) -> None:
        self.store = store
        self.paths = paths
        self.config = config or paths.config

    def register_prd_from_file(
        self,
        file_path: str | Path,
        title: Optional[str] = None,
        description: str = "",
        tags: Optional[list[str]] = None,
        priority: str = "medium",
        complexity: str = "medium",
        status: str = "pending",
        place: bool = True,
        author: Optional[str] = None,
    ) -> dict[str, Any]:
        """Start tracking a PRD file.

        With ``place`` the file is moved into the directory for *status*;
        otherwise its current location is recorded as-is.
        """
        if status not in PRD_STATUSES:
            return {"success": False, "error": f"Unknown PRD status '{status}'"}
        source = self.paths.resolve(str(file_path))
        if not source.is_file():
            return {"success": False, "error": f"PRD file not found: {file_path}"}
        if source.suffix.lower() not in PRD_FILE_EXTENSIONS:
            logger.warning("Registering {} with unexpected extension {}", source.name, source.suffix)

        try:
            prds = self.store.load_prds()
            if find_prd_by_file_name(prds, source.name) is not None:
                return {"success": False, "error": f"A PRD named '{source.name}' is already tracked"}

            prd = PrdRecord(
                id=generate_prd_id(prds),
                title=title or source.stem,
                file_name=source.name,
                file_path=self.paths.relative(source),
                status=status,
                complexity=complexity,
                priority=priority,
                description=description,
                tags=list(dict.fromkeys(tags or [])),
            )
            if place:
                placement = place_prd_file(prd, prds, self.paths, self.config)
                if not placement.ok:
                    return {"success": False, "error": placement.message}
            location = self.paths.resolve(prd.file_path)
            prd.file_hash = _hash_file(location)
            prd.file_size = _file_size(location)
            append_version(prd, CHANGE_TYPE_CREATED, {"source": self.paths.relative(source)}, author or self.config.default_author)
            prds.append(prd)
            self.store.save_prds(prds)
        except (LedgerError, OSError) as exc:
            logger.error("Error creating PRD from file {}: {}", file_path, exc)
            return {"success": False, "error": str(exc)}
        logger.info("Registered PRD {} from {}", prd.id, prd.file_path)
        return {"success": True, "data": prd.to_dict()}

    def archive_prd(
        self, prd_id: str, force: bool = False, dry_run: bool = False, bundle: bool = True
    ) -> dict[str, Any]:
        """Mark a finished PRD archived and move its file to the archive directory.

        Requires status ``done`` and every linked task done unless ``force``.
        With ``bundle`` a zip of the PRD file and its linked tasks is written
        next to it (see :func:`create_prd_archive`); the PRD stays tracked.
        """
        try:
            prds = self.store.load_prds()
            prd = find_prd(prds, prd_id)
            if prd is None:
                return {"success": False, "error": f"PRD with ID {prd_id} not found"}
            if prd.status == PRD_STATUS_ARCHIVED:
                return {"success": False, "error": f"PRD {prd_id} is already archived"}
            if prd.status != PRD_STATUS_DONE and not force:
                return {
                    "success": False,
                    "error": f"PRD {prd_id} status is '{prd.status}', not 'done'. Use force to override.",
                }
            linked = get_tasks_linked_to_prd(prd, self.store.load_tasks())
            incomplete = [task for task in linked if task.status != "done"]
            if incomplete and not force:
                return {
                    "success": False,
                    "error": f"{len(incomplete)} tasks are not completed. Use force to override.",
                    "data": {"incompleteTasks": [_task_summary(task) for task in incomplete]},
                }
            original_path = prd.file_path
            placement = place_prd_file(prd, prds, self.paths, self.config, status=PRD_STATUS_ARCHIVED, dry_run=dry_run)
            data = {
                "prdId": prd_id,
                "previousStatus": prd.status,
                "linkedTasks": [_task_summary(task) for task in linked],
                "targetPath": self.paths.relative(placement.target),
            }
            if not placement.ok:
                return {"success": False, "error": placement.message, "data": data}
            if dry_run:
                data["dryRun"] = True
                return {"success": True, "data": data}

            previous = prd.status
            prd.status = PRD_STATUS_ARCHIVED
            if placement.action == ACTION_MOVED:
                prd.file_hash = _hash_file(placement.target)
                prd.file_size = _file_size(placement.target)
            entry = append_version(
                prd,
                CHANGE_TYPE_ARCHIVED,
                {"previousStatus": previous, "forced": force},
                self.config.default_author,
                version_type="minor",
            )
            archive_path = None
            if bundle:
                archive_path, _ = create_prd_archive(prd, linked, self.paths, original_path)
                data["archivePath"] = self.paths.relative(archive_path)
                prd.metadata["archivePath"] = data["archivePath"]
            try:
                self.store.save_prds(prds)
            except LedgerError:
                if archive_path is not None:
                    archive_path.unlink(missing_ok=True)
                raise
        except (LedgerError, OSError) as exc:
            logger.error("Error archiving PRD {}: {}", prd_id, exc)
            return {"success": False, "error": str(exc)}
        logger.info("Archived PRD {} (version {})", prd_id, entry.version)
        data["filePath"] = prd.file_path
        data["version"] = entry.version
        return {"success": True, "data": data}

    def delete_prd(self, prd_id: str, force: bool = False, remove_file: bool = False) -> dict[str, Any]:
        """Stop tracking a PRD. Only with ``force``; linked tasks are removed too.

        Both indices are copied aside first and restored if either write fails.
        """
        if not force:
            return {
                "success": False,
                "error": f"PRD {prd_id} is not deleted without force; archive it instead",
            }
        prds_path = self.paths.prds_index_path
        tasks_path = self.paths.tasks_index_path
        suffix = f".backup.{_utc_stamp_ms()}"
        backups: list[tuple[Path, Path]] = []
        try:
            prds = self.store.load_prds()
            prd = find_prd(prds, prd_id)
            if prd is None:
                return {"success": False, "error": f"PRD with ID {prd_id} not found"}
            tasks = self.store.load_tasks()
            removed_ids = [task.id for task in get_tasks_linked_to_prd(prd, tasks)]

            index_files = (prds_path, tasks_path) if isinstance(self.store, JsonMetadataStore) else ()
            for index_path in index_files:
                if index_path.exists():
                    backup = index_path.with_name(index_path.name + suffix)
                    shutil.copy2(index_path, backup)
                    backups.append((index_path, backup))

            remaining_tasks = [task for task in tasks if not _contains_task_id(removed_ids, task.id)]
            for task in remaining_tasks:
                if task.prd_source is not None and task.prd_source.prd_id == prd.id:
                    task.prd_source = None
            try:
                self.store.save_prds([other for other in prds if other.id != prd.id])
                self.store.save_tasks(remaining_tasks)
            except LedgerError:
                for index_path, backup in backups:
                    shutil.copy2(backup, index_path)
                logger.error("Rolled back indices after failed delete of PRD {}", prd_id)
                raise
            if remove_file:
                location = self.paths.resolve(prd.file_path)
                if location.is_file():
                    location.unlink()
                    logger.info("Deleted PRD file {}", location)
        except (LedgerError, OSError) as exc:
            logger.error("Error deleting PRD {}: {}", prd_id, exc)
            return {"success": False, "error": str(exc)}
        finally:
            for _, backup in backups:
                backup.unlink(missing_ok=True)
        logger.info("Deleted PRD {} and {} linked task(s)", prd_id, len(removed_ids))
        return {
            "success": True,
            "data": {"prdId": prd_id, "removedTasks": removed_ids, "fileRemoved": remove_file},
        }
