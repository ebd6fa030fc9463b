from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from loguru import logger

from .constants import (
    COMPLEXITIES,
    INDEX_FORMAT_VERSION,
    INDEX_SCHEMA_VERSION,
    PRD_STATUSES,
    PRIORITIES,
)
from .io_utils import _atomic_write_json, _read_json_document
from .models import PrdRecord, TaskRecord
from .paths import ProjectPaths
from .schema import validate_prd_index, validate_task_index
from .utils import _now_iso


class BaseMetadataStore(ABC):
    """Persistence seam for the PRD and task collections.

    Implementations load and save whole collections; lookups and aggregates
    are built on top of :meth:`load_prds`.
    """

    @abstractmethod
    def load_prds(self) -> list[PrdRecord]:
        raise NotImplementedError

    @abstractmethod
    def load_tasks(self) -> list[TaskRecord]:
        raise NotImplementedError

    @abstractmethod
    def save_prds(self, prds: list[PrdRecord]) -> None:
        raise NotImplementedError

    @abstractmethod
    def save_tasks(self, tasks: list[TaskRecord]) -> None:
        raise NotImplementedError

    def find_prd_by_id(self, prd_id: str) -> Optional[PrdRecord]:
        for prd in self.load_prds():
            if prd.id == prd_id:
                return prd
        return None

    def find_prd_by_file_name(self, file_name: str) -> Optional[PrdRecord]:
        for prd in self.load_prds():
            if prd.file_name == file_name:
                return prd
        return None

    def find_prds_by_status(self, status: str) -> list[PrdRecord]:
        return [prd for prd in self.load_prds() if prd.status == status]

    def aggregate_statistics(self) -> dict[str, Any]:
        prds = self.load_prds()
        total_linked = sum(len(prd.linked_tasks) for prd in prds)
        return {
            "total": len(prds),
            "byStatus": {status: sum(1 for p in prds if p.status == status) for status in PRD_STATUSES},
            "byPriority": {priority: sum(1 for p in prds if p.priority == priority) for priority in PRIORITIES},
            "byComplexity": {level: sum(1 for p in prds if p.complexity == level) for level in COMPLEXITIES},
            "totalLinkedTasks": total_linked,
            "averageTasksPerPrd": round(total_linked / len(prds), 2) if prds else 0,
        }


class JsonMetadataStore(BaseMetadataStore):
    """Store both collections in the project's JSON index files.

    Document-level keys other than the collection itself are remembered on
    load and written back on save.
    """

    def __init__(self, paths: ProjectPaths) -> None:
        self.paths = paths
        self._prd_document: dict[str, Any] = {}
        self._task_document: dict[str, Any] = {}

    def load_prds(self) -> list[PrdRecord]:
        path = self.paths.prds_index_path
        data = _read_json_document(path)
        if data is None:
            return []
        validate_prd_index(data, path)
        self._prd_document = {k: v for k, v in data.items() if k != "prds"}
        return [PrdRecord.from_dict(item) for item in data.get("prds") or []]

    def load_tasks(self) -> list[TaskRecord]:
        path = self.paths.tasks_index_path
        data = _read_json_document(path)
        if data is None:
            return []
        validate_task_index(data, path)
        self._task_document = {k: v for k, v in data.items() if k != "tasks"}
        return [TaskRecord.from_dict(item) for item in data.get("tasks") or []]

    def save_prds(self, prds: list[PrdRecord]) -> None:
        path = self.paths.prds_index_path
        document = dict(self._prd_document)
        metadata = dict(document.get("metadata") or {})
        metadata.setdefault("version", INDEX_FORMAT_VERSION)
        metadata["lastUpdated"] = _now_iso()
        metadata["totalPrds"] = len(prds)
        metadata["schemaVersion"] = INDEX_SCHEMA_VERSION
        document["prds"] = [prd.to_dict() for prd in prds]
        document["metadata"] = metadata
        _atomic_write_json(path, document)
        self._prd_document = {k: v for k, v in document.items() if k != "prds"}
        logger.debug("Wrote {} PRD(s) to {}", len(prds), path)

    def save_tasks(self, tasks: list[TaskRecord]) -> None:
        path = self.paths.tasks_index_path
        document = dict(self._task_document)
        document["tasks"] = [task.to_dict() for task in tasks]
        _atomic_write_json(path, document)
        logger.debug("Wrote {} task(s) to {}", len(tasks), path)
