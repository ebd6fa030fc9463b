from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Optional

import pytest

from prd_ledger.engine import IntegrityEngine


def sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class ProjectFactory:
    """Builds a `.taskmaster` project on disk for a test."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.prd_dir = root / ".taskmaster" / "prd"
        self.tasks_dir = root / ".taskmaster" / "tasks"
        self.prd_dir.mkdir(parents=True, exist_ok=True)
        self.tasks_dir.mkdir(parents=True, exist_ok=True)

    @property
    def prds_path(self) -> Path:
        return self.prd_dir / "prds.json"

    @property
    def tasks_path(self) -> Path:
        return self.tasks_dir / "tasks.json"

    def write(self, relative: str, content: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def prd(
        self,
        prd_id: str,
        file_name: str,
        status: str = "pending",
        content: str = "# Feature\n\nRequirements.\n",
        directory: Optional[str] = None,
        linked: Optional[list[Any]] = None,
        **fields: Any,
    ) -> dict[str, Any]:
        """Write a PRD source file and return its index entry, hash and size stamped."""
        relative = f".taskmaster/prd/{directory or status}/{file_name}"
        self.write(relative, content)
        entry = {
            "id": prd_id,
            "title": file_name.rsplit(".", 1)[0].replace("-", " ").title(),
            "fileName": file_name,
            "filePath": relative,
            "fileHash": sha256(content),
            "fileSize": len(content.encode("utf-8")),
            "status": status,
            "complexity": "medium",
            "priority": "medium",
            "description": "",
            "tags": [],
            "createdDate": "2024-01-01T00:00:00+00:00",
            "lastModified": "2024-01-01T00:00:00+00:00",
            "linkedTasks": list(linked or []),
            "metadata": {},
        }
        entry.update(fields)
        return entry

    def task(
        self,
        task_id: Any,
        status: str = "pending",
        prd: Optional[dict[str, Any]] = None,
        **fields: Any,
    ) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "id": task_id,
            "title": f"Task {task_id}",
            "description": "",
            "details": "",
            "testStrategy": "",
            "status": status,
            "priority": "medium",
            "dependencies": [],
        }
        if prd is not None:
            entry["prdSource"] = {
                "prdId": prd["id"],
                "fileName": prd["fileName"],
                "filePath": prd["filePath"],
                "fileHash": prd["fileHash"],
                "parsedDate": "2024-01-02T00:00:00+00:00",
            }
        entry.update(fields)
        return entry

    def save(self, prds: list[dict[str, Any]], tasks: Optional[list[dict[str, Any]]] = None) -> None:
        self.prds_path.write_text(
            json.dumps({"prds": prds, "metadata": {"version": "1.0.0", "totalPrds": len(prds)}}, indent=2),
            encoding="utf-8",
        )
        self.tasks_path.write_text(json.dumps({"tasks": tasks or []}, indent=2), encoding="utf-8")

    def load_prds(self) -> list[dict[str, Any]]:
        return json.loads(self.prds_path.read_text(encoding="utf-8"))["prds"]

    def load_prd(self, prd_id: str) -> dict[str, Any]:
        return next(prd for prd in self.load_prds() if prd["id"] == prd_id)

    def load_tasks(self) -> list[dict[str, Any]]:
        return json.loads(self.tasks_path.read_text(encoding="utf-8"))["tasks"]

    def engine(self, **kwargs: Any) -> IntegrityEngine:
        return IntegrityEngine(self.root, **kwargs)


@pytest.fixture
def project(tmp_path: Path) -> ProjectFactory:
    return ProjectFactory(tmp_path / "repo")
