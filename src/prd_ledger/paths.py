"""Resolve every on-disk location from an explicit project root.

Nothing here consults the process working directory: callers pass the root
they want and get back absolute paths. Recorded PRD paths are stored
project-relative in POSIX form so the index stays portable.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .config import LedgerConfig
from .constants import (
    CONFIG_FILE,
    LEGACY_CONFIG_FILE,
    LEGACY_PRD_DIR,
    LEGACY_REPORTS_DIR,
    LEGACY_TASKS_DIR,
    LEGACY_TEMPLATES_DIR,
    PRD_DIR_NAME,
    PRD_STATUSES,
    PRDS_INDEX_FILE,
    PROJECT_DIR_NAME,
    REPORTS_DIR_NAME,
    TASKS_DIR_NAME,
    TASKS_INDEX_FILE,
    TEMPLATES_DIR_NAME,
)

NEW_STRUCTURE = {
    "tasks": f"{PROJECT_DIR_NAME}/{TASKS_DIR_NAME}",
    "prd": f"{PROJECT_DIR_NAME}/{PRD_DIR_NAME}",
    "reports": f"{PROJECT_DIR_NAME}/{REPORTS_DIR_NAME}",
    "templates": f"{PROJECT_DIR_NAME}/{TEMPLATES_DIR_NAME}",
    "config": f"{PROJECT_DIR_NAME}/config.json",
}

OLD_STRUCTURE = {
    "tasks": LEGACY_TASKS_DIR,
    "prd": LEGACY_PRD_DIR,
    "reports": LEGACY_REPORTS_DIR,
    "templates": LEGACY_TEMPLATES_DIR,
    "config": LEGACY_CONFIG_FILE,
}


def get_structure_path(project_root: Path, kind: str) -> Path:
    """Return the location of *kind* for the layout the project uses.

    The consolidated layout wins whenever it exists; the legacy location is
    used only when it alone exists; otherwise the consolidated path is
    returned so it can be created.
    """
    if kind not in NEW_STRUCTURE:
        raise ValueError(f"Unknown structure kind '{kind}'; expected one of {sorted(NEW_STRUCTURE)}")
    new_path = project_root / NEW_STRUCTURE[kind]
    old_path = project_root / OLD_STRUCTURE[kind]
    if new_path.exists():
        return new_path
    if old_path.exists():
        return old_path
    return new_path


def _same_path(left: Path, right: Path) -> bool:
    return left.resolve() == right.resolve()


class ProjectPaths:
    """Path layout for one project root."""

    def __init__(self, project_root: Path, config: Optional[LedgerConfig] = None) -> None:
        self.project_root = Path(project_root).resolve()
        self.config = config or LedgerConfig()

    @property
    def project_dir(self) -> Path:
        return self.project_root / PROJECT_DIR_NAME

    @property
    def prd_base_dir(self) -> Path:
        return get_structure_path(self.project_root, "prd")

    @property
    def prds_index_path(self) -> Path:
        return self.prd_base_dir / PRDS_INDEX_FILE

    @property
    def tasks_index_path(self) -> Path:
        return get_structure_path(self.project_root, "tasks") / TASKS_INDEX_FILE

    @property
    def config_path(self) -> Path:
        return self.project_dir / CONFIG_FILE

    @property
    def db_path(self) -> Path:
        return self.project_dir / self.config.db_file

    def status_directory(self, status: str) -> Path:
        if status not in PRD_STATUSES:
            raise ValueError(f"Unknown PRD status '{status}'")
        relative = self.config.status_directories.get(status, status)
        return self.prd_base_dir / relative if relative else self.prd_base_dir

    def status_for_directory_name(self, name: str) -> Optional[str]:
        """Map a directory name back to a status (legacy paths embed it)."""
        for status in PRD_STATUSES:
            relative = self.config.status_directories.get(status, status)
            if relative and Path(relative).name == name:
                return status
        return name if name in PRD_STATUSES else None

    def resolve(self, recorded: str) -> Path:
        path = Path(recorded)
        if path.is_absolute():
            return path
        return self.project_root / path

    def relative(self, path: Path) -> str:
        """Express *path* the way the index records it."""
        absolute = path if path.is_absolute() else self.project_root / path
        try:
            return absolute.resolve().relative_to(self.project_root).as_posix()
        except ValueError:
            return absolute.as_posix()

    def expected_path(self, status: str, file_name: str) -> Path:
        return self.status_directory(status) / file_name

    def is_in_status_directory(self, path: Path, status: str) -> bool:
        return _same_path(path.parent, self.status_directory(status))
