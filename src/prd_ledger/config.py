"""Load optional ledger configuration from `.taskmaster/ledger.yaml`."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .constants import (
    COLLISION_POLICIES,
    COLLISION_REJECT,
    CONFIG_FILE,
    DEFAULT_AUTHOR,
    DEFAULT_DB_FILE,
    PRD_STATUSES,
    PROJECT_DIR_NAME,
)
from .io_utils import _load_data_with_error


def _default_status_directories() -> dict[str, str]:
    return {status: status for status in PRD_STATUSES}


@dataclass
class LedgerConfig:
    """Settings that shape path layout and repair behaviour.

    ``status_directories`` maps each PRD status to a directory relative to the
    PRD base directory. An empty string means the base directory itself, which
    reproduces the older "only archived PRDs move" layout.
    """

    status_directories: dict[str, str] = field(default_factory=_default_status_directories)
    collision_policy: str = COLLISION_REJECT
    default_author: str = DEFAULT_AUTHOR
    db_file: str = DEFAULT_DB_FILE

    def to_dict(self) -> dict[str, Any]:
        return {
            "status_directories": dict(self.status_directories),
            "collision_policy": self.collision_policy,
            "default_author": self.default_author,
            "db_file": self.db_file,
        }


def config_path(project_root: Path) -> Path:
    return project_root / PROJECT_DIR_NAME / CONFIG_FILE


def parse_ledger_config(raw: dict[str, Any]) -> tuple[LedgerConfig, list[str]]:
    """Build a :class:`LedgerConfig` from a raw mapping.

    Invalid values fall back to defaults; each fallback produces a warning.
    """
    config = LedgerConfig()
    warnings: list[str] = []

    dirs = raw.get("status_directories")
    if dirs is not None:
        if not isinstance(dirs, dict):
            warnings.append("status_directories must be a mapping; using defaults")
        else:
            for status, directory in dirs.items():
                if status not in PRD_STATUSES:
                    warnings.append(f"status_directories: unknown status '{status}' ignored")
                    continue
                if not isinstance(directory, str) or Path(directory).is_absolute() or ".." in Path(directory).parts:
                    warnings.append(f"status_directories.{status} must be a relative path; using default")
                    continue
                config.status_directories[status] = directory.strip("/")

    policy = raw.get("collision_policy")
    if policy is not None:
        if policy in COLLISION_POLICIES:
            config.collision_policy = policy
        else:
            warnings.append(
                f"collision_policy must be one of {list(COLLISION_POLICIES)}, got '{policy}'; using '{COLLISION_REJECT}'"
            )

    author = raw.get("default_author")
    if author is not None:
        if isinstance(author, str) and author.strip():
            config.default_author = author.strip()
        else:
            warnings.append("default_author must be a non-empty string; using default")

    db_file = raw.get("db_file")
    if db_file is not None:
        if isinstance(db_file, str) and db_file.strip():
            config.db_file = db_file.strip()
        else:
            warnings.append("db_file must be a non-empty string; using default")

    return config, warnings


def load_ledger_config(project_root: Path) -> tuple[LedgerConfig, str | None]:
    """Load the optional ledger config file.

    Args:
        project_root: Project root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns
        the defaults and `None`. Validation warnings are joined into the
        error message while the valid parts of the file still apply.
    """
    path = config_path(project_root)
    data, err = _load_data_with_error(path, {})
    if err:
        return LedgerConfig(), err
    config, warnings = parse_ledger_config(data)
    if warnings:
        return config, f"{path.name}: " + "; ".join(warnings)
    return config, None
