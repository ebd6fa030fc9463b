"""Typed records for PRDs, tasks, version history and integrity reports.

The JSON indices use camelCase keys; records use snake_case attributes and
convert at the ``from_dict`` / ``to_dict`` boundary. Keys a record does not
know about are kept in ``extra`` and written back unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from .constants import (
    PRD_STATUS_PENDING,
    SEVERITY_ERROR,
    SEVERITY_WARNING,
)
from .utils import _now_iso

TaskId = Union[int, str]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _unique_tags(values: Any) -> list[str]:
    tags: list[str] = []
    for value in values or []:
        tag = str(value)
        if tag not in tags:
            tags.append(tag)
    return tags


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


# ---------------------------------------------------------------------------
# Task side
# ---------------------------------------------------------------------------

@dataclass
class TaskStats:
    total_tasks: int = 0
    completed_tasks: int = 0
    pending_tasks: int = 0
    in_progress_tasks: int = 0
    blocked_tasks: int = 0
    deferred_tasks: int = 0
    cancelled_tasks: int = 0
    completion_percentage: int = 0

    _KEYS = (
        ("total_tasks", "totalTasks"),
        ("completed_tasks", "completedTasks"),
        ("pending_tasks", "pendingTasks"),
        ("in_progress_tasks", "inProgressTasks"),
        ("blocked_tasks", "blockedTasks"),
        ("deferred_tasks", "deferredTasks"),
        ("cancelled_tasks", "cancelledTasks"),
        ("completion_percentage", "completionPercentage"),
    )

    def to_dict(self) -> dict[str, int]:
        return {camel: getattr(self, attr) for attr, camel in self._KEYS}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "TaskStats":
        data = data or {}
        values = {}
        for attr, camel in cls._KEYS:
            raw = data.get(camel, 0)
            values[attr] = raw if isinstance(raw, int) else int(raw or 0)
        return cls(**values)


@dataclass
class PrdSource:
    """Back-reference from a task to the PRD it was generated from."""

    prd_id: Optional[str] = None
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    file_hash: Optional[str] = None
    file_size: Optional[int] = None
    parsed_date: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("prdId", "fileName", "filePath", "fileHash", "fileSize", "parsedDate")

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(
            _drop_none(
                {
                    "prdId": self.prd_id,
                    "fileName": self.file_name,
                    "filePath": self.file_path,
                    "fileHash": self.file_hash,
                    "fileSize": self.file_size,
                    "parsedDate": self.parsed_date,
                }
            )
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PrdSource":
        return cls(
            prd_id=data.get("prdId"),
            file_name=data.get("fileName"),
            file_path=data.get("filePath"),
            file_hash=data.get("fileHash"),
            file_size=data.get("fileSize"),
            parsed_date=data.get("parsedDate"),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN},
        )

    @classmethod
    def from_prd(cls, prd: "PrdRecord") -> "PrdSource":
        return cls(
            prd_id=prd.id,
            file_name=prd.file_name,
            file_path=prd.file_path,
            file_hash=prd.file_hash,
            file_size=prd.file_size,
            parsed_date=_now_iso(),
        )


@dataclass
class TaskRecord:
    id: TaskId
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: str = "pending"
    priority: Optional[str] = None
    dependencies: list[TaskId] = field(default_factory=list)
    prd_source: Optional[PrdSource] = None
    subtasks: list["TaskRecord"] = field(default_factory=list)
    complexity_score: Optional[float] = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = (
        "id",
        "title",
        "description",
        "details",
        "testStrategy",
        "status",
        "priority",
        "dependencies",
        "prdSource",
        "subtasks",
        "complexityScore",
    )

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "id": self.id,
                "title": self.title,
                "description": self.description,
                "details": self.details,
                "testStrategy": self.test_strategy,
                "status": self.status,
                "dependencies": list(self.dependencies),
            }
        )
        if self.priority is not None:
            data["priority"] = self.priority
        if self.prd_source is not None:
            data["prdSource"] = self.prd_source.to_dict()
        if self.subtasks:
            data["subtasks"] = [subtask.to_dict() for subtask in self.subtasks]
        if self.complexity_score is not None:
            data["complexityScore"] = self.complexity_score
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskRecord":
        source = data.get("prdSource")
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            description=data.get("description") or "",
            details=data.get("details") or "",
            test_strategy=data.get("testStrategy") or "",
            status=data.get("status") or "pending",
            priority=data.get("priority"),
            dependencies=list(data.get("dependencies") or []),
            prd_source=PrdSource.from_dict(source) if isinstance(source, dict) else None,
            subtasks=[cls.from_dict(item) for item in data.get("subtasks") or []],
            complexity_score=data.get("complexityScore"),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN},
        )


# ---------------------------------------------------------------------------
# PRD side
# ---------------------------------------------------------------------------

@dataclass
class VersionEntry:
    version: str
    timestamp: str
    change_type: str
    author: str
    file_hash: Optional[str] = None
    file_size: Optional[int] = None
    change_details: dict[str, Any] = field(default_factory=dict)
    snapshot: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "changeType": self.change_type,
            "author": self.author,
            "fileHash": self.file_hash,
            "fileSize": self.file_size,
            "changeDetails": dict(self.change_details),
            "snapshot": dict(self.snapshot),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VersionEntry":
        return cls(
            version=str(data.get("version", "")),
            timestamp=str(data.get("timestamp", "")),
            change_type=str(data.get("changeType", "")),
            author=str(data.get("author", "")),
            file_hash=data.get("fileHash"),
            file_size=data.get("fileSize"),
            change_details=dict(data.get("changeDetails") or {}),
            snapshot=dict(data.get("snapshot") or {}),
        )


@dataclass
class PrdRecord:
    """A requirements document tracked by the ledger.

    ``linked_tasks`` is the single canonical list of linked task ids; the
    legacy ``linkedTaskIds`` key is folded into it on load and never written
    back.
    """

    id: str
    title: str = ""
    file_name: str = ""
    file_path: str = ""
    file_hash: Optional[str] = None
    file_size: Optional[int] = None
    status: str = PRD_STATUS_PENDING
    complexity: str = "medium"
    priority: str = "medium"
    description: str = ""
    tags: list[str] = field(default_factory=list)
    created_date: str = field(default_factory=_now_iso)
    last_modified: str = field(default_factory=_now_iso)
    task_stats: TaskStats = field(default_factory=TaskStats)
    linked_tasks: list[TaskId] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    # Analysis state (mirrors the relational columns)
    analysis_status: str = "not-analyzed"
    tasks_status: str = "no-tasks"
    analysis_data: Optional[Any] = None
    analyzed_at: Optional[str] = None
    estimated_effort: Optional[str] = None

    version_history: list[VersionEntry] = field(default_factory=list)
    current_version: Optional[str] = None

    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = (
        "id",
        "title",
        "fileName",
        "filePath",
        "fileHash",
        "fileSize",
        "status",
        "complexity",
        "priority",
        "description",
        "tags",
        "createdDate",
        "lastModified",
        "taskStats",
        "linkedTasks",
        "linkedTaskIds",
        "metadata",
        "analysisStatus",
        "tasksStatus",
        "analysisData",
        "analyzedAt",
        "estimatedEffort",
        "versionHistory",
        "currentVersion",
    )

    def touch(self) -> None:
        self.last_modified = _now_iso()

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "id": self.id,
                "title": self.title,
                "fileName": self.file_name,
                "filePath": self.file_path,
                "fileHash": self.file_hash,
                "fileSize": self.file_size,
                "status": self.status,
                "complexity": self.complexity,
                "priority": self.priority,
                "description": self.description,
                "tags": list(self.tags),
                "createdDate": self.created_date,
                "lastModified": self.last_modified,
                "taskStats": self.task_stats.to_dict(),
                "linkedTasks": list(self.linked_tasks),
                "metadata": dict(self.metadata),
                "analysisStatus": self.analysis_status,
                "tasksStatus": self.tasks_status,
            }
        )
        data.update(
            _drop_none(
                {
                    "analysisData": self.analysis_data,
                    "analyzedAt": self.analyzed_at,
                    "estimatedEffort": self.estimated_effort,
                    "currentVersion": self.current_version,
                }
            )
        )
        if self.version_history:
            data["versionHistory"] = [entry.to_dict() for entry in self.version_history]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PrdRecord":
        linked = data.get("linkedTasks") or data.get("linkedTaskIds") or []
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            file_name=data.get("fileName") or "",
            file_path=data.get("filePath") or "",
            file_hash=data.get("fileHash"),
            file_size=data.get("fileSize"),
            status=data.get("status") or PRD_STATUS_PENDING,
            complexity=data.get("complexity") or "medium",
            priority=data.get("priority") or "medium",
            description=data.get("description") or "",
            tags=_unique_tags(data.get("tags")),
            created_date=data.get("createdDate") or _now_iso(),
            last_modified=data.get("lastModified") or _now_iso(),
            task_stats=TaskStats.from_dict(data.get("taskStats")),
            linked_tasks=list(linked),
            metadata=dict(data.get("metadata") or {}),
            analysis_status=data.get("analysisStatus") or "not-analyzed",
            tasks_status=data.get("tasksStatus") or "no-tasks",
            analysis_data=data.get("analysisData"),
            analyzed_at=data.get("analyzedAt"),
            estimated_effort=data.get("estimatedEffort"),
            version_history=[VersionEntry.from_dict(item) for item in data.get("versionHistory") or []],
            current_version=data.get("currentVersion"),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN},
        )


# ---------------------------------------------------------------------------
# Integrity findings and reports
# ---------------------------------------------------------------------------

@dataclass
class IntegrityIssue:
    type: str
    severity: str
    message: str
    prd_id: Optional[str] = None
    task_id: Optional[TaskId] = None
    file_name: Optional[str] = None
    expected: Optional[Any] = None
    actual: Optional[Any] = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "type": self.type,
                "severity": self.severity,
                "message": self.message,
                "prdId": self.prd_id,
                "taskId": self.task_id,
                "fileName": self.file_name,
                "expected": self.expected,
                "actual": self.actual,
            }
        )


def _count(issues: list[IntegrityIssue], severity: str) -> int:
    return sum(1 for issue in issues if issue.severity == severity)


@dataclass
class FileIntegrityResult:
    prd_id: str
    file_name: str
    issues: list[IntegrityIssue] = field(default_factory=list)
    resolved_path: Optional[Path] = None
    actual_hash: Optional[str] = None
    actual_size: Optional[int] = None

    @property
    def valid(self) -> bool:
        return _count(self.issues, SEVERITY_ERROR) == 0

    def has_issue(self, issue_type: str) -> bool:
        return any(issue.type == issue_type for issue in self.issues)

    def to_dict(self) -> dict[str, Any]:
        return {
            "prdId": self.prd_id,
            "fileName": self.file_name,
            "valid": self.valid,
            "issues": [issue.to_dict() for issue in self.issues],
            "resolvedPath": str(self.resolved_path) if self.resolved_path else None,
        }


@dataclass
class LinkingResult:
    issues: list[IntegrityIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return _count(self.issues, SEVERITY_ERROR) == 0

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "issues": [issue.to_dict() for issue in self.issues]}


@dataclass
class FixSection:
    """Outcome of one family of repairs."""

    fixed: int = 0
    details: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class AutoFixResults:
    file_integrity: FixSection = field(default_factory=FixSection)
    task_links: FixSection = field(default_factory=FixSection)

    @property
    def total_fixed(self) -> int:
        return self.file_integrity.fixed + self.task_links.fixed

    @property
    def errors(self) -> list[str]:
        return self.file_integrity.errors + self.task_links.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileIntegrity": {
                "success": self.file_integrity.success,
                "filesFixed": self.file_integrity.fixed,
                "errors": list(self.file_integrity.errors),
                "details": list(self.file_integrity.details),
            },
            "taskLinks": {
                "success": self.task_links.success,
                "linksFixed": self.task_links.fixed,
                "errors": list(self.task_links.errors),
                "details": list(self.task_links.details),
            },
            "totalFixed": self.total_fixed,
        }


@dataclass
class IntegrityReport:
    timestamp: str = field(default_factory=_now_iso)
    file_integrity: list[FileIntegrityResult] = field(default_factory=list)
    linking: Optional[LinkingResult] = None
    auto_fix: Optional[AutoFixResults] = None
    recommendations: list[str] = field(default_factory=list)

    def all_issues(self) -> list[IntegrityIssue]:
        issues = [issue for result in self.file_integrity for issue in result.issues]
        if self.linking is not None:
            issues.extend(self.linking.issues)
        return issues

    @property
    def error_count(self) -> int:
        return _count(self.all_issues(), SEVERITY_ERROR)

    @property
    def warning_count(self) -> int:
        return _count(self.all_issues(), SEVERITY_WARNING)

    @property
    def valid(self) -> bool:
        return self.error_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "overall": {
                "valid": self.valid,
                "errorCount": self.error_count,
                "warningCount": self.warning_count,
            },
            "fileIntegrity": [result.to_dict() for result in self.file_integrity],
            "linkingConsistency": self.linking.to_dict() if self.linking else None,
            "autoFixResults": self.auto_fix.to_dict() if self.auto_fix else None,
            "recommendations": list(self.recommendations),
        }


@dataclass
class ItemResult:
    """Per-PRD outcome of a batch operation."""

    prd_id: str
    action: str
    success: bool = True
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = {"prdId": self.prd_id, "action": self.action, "success": self.success}
        if self.message:
            result["message"] = self.message
        result.update(self.data)
        return result
