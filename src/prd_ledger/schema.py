"""Pydantic models that validate the JSON index documents on load.

Validation is fail-fast: the first invalid document raises
:class:`~prd_ledger.errors.ParseError` naming the offending field. Unknown keys
are allowed everywhere so hand-edited indices keep their extra data.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ParseError

PrdStatusLiteral = Literal["pending", "in-progress", "done", "archived"]
TaskStatusLiteral = Literal["pending", "in-progress", "done", "review", "blocked", "deferred", "cancelled"]
PriorityLiteral = Literal["low", "medium", "high", "urgent"]
ComplexityLiteral = Literal["low", "medium", "high"]
AnalysisStatusLiteral = Literal["not-analyzed", "analyzing", "analyzed"]
TasksStatusLiteral = Literal["no-tasks", "generating", "generated"]


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class PrdSourceModel(_Lenient):
    prd_id: Optional[str] = Field(default=None, alias="prdId")
    file_name: Optional[str] = Field(default=None, alias="fileName")
    file_path: Optional[str] = Field(default=None, alias="filePath")
    file_hash: Optional[str] = Field(default=None, alias="fileHash")
    file_size: Optional[int] = Field(default=None, alias="fileSize")
    parsed_date: Optional[str] = Field(default=None, alias="parsedDate")


class TaskModel(_Lenient):
    id: Union[int, str]
    title: Optional[str] = None
    status: Optional[TaskStatusLiteral] = None
    priority: Optional[PriorityLiteral] = None
    dependencies: Optional[list[Union[int, str]]] = None
    prd_source: Optional[PrdSourceModel] = Field(default=None, alias="prdSource")
    subtasks: Optional[list["TaskModel"]] = None
    complexity_score: Optional[float] = Field(default=None, alias="complexityScore")


class TaskStatsModel(_Lenient):
    total_tasks: int = Field(default=0, ge=0, alias="totalTasks")
    completed_tasks: int = Field(default=0, ge=0, alias="completedTasks")
    completion_percentage: float = Field(default=0, ge=0, le=100, alias="completionPercentage")


class VersionEntryModel(_Lenient):
    version: str = Field(pattern=r"^\d+\.\d+\.\d+$")
    timestamp: str
    change_type: str = Field(alias="changeType")
    author: Optional[str] = None


class PrdModel(_Lenient):
    id: str = Field(min_length=1)
    title: Optional[str] = None
    file_name: str = Field(alias="fileName", min_length=1)
    file_path: str = Field(alias="filePath", min_length=1)
    file_hash: Optional[str] = Field(default=None, alias="fileHash")
    file_size: Optional[int] = Field(default=None, ge=0, alias="fileSize")
    status: PrdStatusLiteral = "pending"
    complexity: Optional[ComplexityLiteral] = None
    priority: Optional[PriorityLiteral] = None
    tags: Optional[list[str]] = None
    task_stats: Optional[TaskStatsModel] = Field(default=None, alias="taskStats")
    linked_tasks: Optional[list[Union[int, str]]] = Field(default=None, alias="linkedTasks")
    linked_task_ids: Optional[list[Union[int, str]]] = Field(default=None, alias="linkedTaskIds")
    metadata: Optional[dict[str, Any]] = None
    analysis_status: Optional[AnalysisStatusLiteral] = Field(default=None, alias="analysisStatus")
    tasks_status: Optional[TasksStatusLiteral] = Field(default=None, alias="tasksStatus")
    version_history: Optional[list[VersionEntryModel]] = Field(default=None, alias="versionHistory")
    current_version: Optional[str] = Field(default=None, alias="currentVersion")


class PrdIndexDocument(_Lenient):
    prds: list[PrdModel] = Field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None


class TaskIndexDocument(_Lenient):
    tasks: list[TaskModel] = Field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None


def _describe(exc: ValidationError, limit: int = 3) -> str:
    parts = []
    for error in exc.errors()[:limit]:
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    remaining = exc.error_count() - limit
    if remaining > 0:
        parts.append(f"(+{remaining} more)")
    return "; ".join(parts)


def validate_prd_index(data: dict[str, Any], path: Optional[Path] = None) -> PrdIndexDocument:
    """Validate a PRD index document; raise ``ParseError`` on the first problem."""
    try:
        document = PrdIndexDocument.model_validate(data)
    except ValidationError as exc:
        raise ParseError(f"invalid PRD index: {_describe(exc)}", path=path) from exc
    seen: set[str] = set()
    for prd in document.prds:
        if prd.id in seen:
            raise ParseError(f"invalid PRD index: duplicate PRD id '{prd.id}'", path=path)
        seen.add(prd.id)
    return document


def validate_task_index(data: dict[str, Any], path: Optional[Path] = None) -> TaskIndexDocument:
    """Validate a task index document; raise ``ParseError`` on the first problem."""
    try:
        return TaskIndexDocument.model_validate(data)
    except ValidationError as exc:
        raise ParseError(f"invalid task index: {_describe(exc)}", path=path) from exc
