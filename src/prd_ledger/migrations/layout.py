"""Move a project from the legacy flat layout into ``.taskmaster/``.

Legacy projects keep ``tasks/``, ``prd/`` and ``templates/`` at the root,
complexity reports among the files in ``scripts/`` and configuration in
``.taskmasterconfig``. Everything is copied; the legacy sources are removed
only when the caller opts out of preserving them.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from loguru import logger

from ..io_utils import _copy_recursive
from ..paths import NEW_STRUCTURE, OLD_STRUCTURE, get_structure_path

__all__ = ["get_structure_path", "migrate_directory_structure", "needs_migration"]

_DIRECTORY_KINDS = ("tasks", "prd", "templates")
_REPORT_MARKERS = ("complexity", "report")


def needs_migration(project_root: Path) -> bool:
    root = Path(project_root)
    if (root / NEW_STRUCTURE["tasks"]).exists():
        return False
    return any((root / OLD_STRUCTURE[kind]).exists() for kind in ("tasks", "prd"))


def _report_files(scripts_dir: Path) -> list[Path]:
    if not scripts_dir.is_dir():
        return []
    return [
        path
        for path in sorted(scripts_dir.iterdir())
        if path.is_file() and any(marker in path.name for marker in _REPORT_MARKERS)
    ]


def _create_new_directories(root: Path) -> None:
    for kind in ("tasks", "prd", "reports", "templates"):
        directory = root / NEW_STRUCTURE[kind]
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            logger.info("Created directory: {}", NEW_STRUCTURE[kind])


def _remove_legacy_sources(root: Path, reports: list[Path]) -> None:
    for kind in _DIRECTORY_KINDS:
        legacy = root / OLD_STRUCTURE[kind]
        if legacy.is_dir():
            shutil.rmtree(legacy)
            logger.info("Removed legacy directory {}", OLD_STRUCTURE[kind])
    for report in reports:
        report.unlink(missing_ok=True)
    legacy_config = root / OLD_STRUCTURE["config"]
    if legacy_config.is_file():
        legacy_config.unlink()
        logger.info("Removed legacy config {}", OLD_STRUCTURE["config"])


def migrate_directory_structure(project_root: Path, preserve_old: bool = True) -> bool:
    """Copy the legacy layout into ``.taskmaster/``.

    Args:
        project_root: Project root directory.
        preserve_old: Keep the legacy files after copying (the default).

    Returns:
        True when the project is (now) on the new layout, False when the
        migration failed. Failures are logged, not raised.
    """
    root = Path(project_root)
    if not needs_migration(root):
        logger.debug("No layout migration needed for {}", root)
        return True

    try:
        logger.info("Starting directory structure migration...")
        _create_new_directories(root)

        for kind in _DIRECTORY_KINDS:
            source = root / OLD_STRUCTURE[kind]
            if source.exists():
                copied = _copy_recursive(source, root / NEW_STRUCTURE[kind])
                logger.info("Migrated {} file(s) from {} to {}", copied, OLD_STRUCTURE[kind], NEW_STRUCTURE[kind])

        reports = _report_files(root / OLD_STRUCTURE["reports"])
        for report in reports:
            shutil.copy2(report, root / NEW_STRUCTURE["reports"] / report.name)
            logger.info("Migrated report: {}", report.name)

        legacy_config = root / OLD_STRUCTURE["config"]
        if legacy_config.is_file():
            shutil.copy2(legacy_config, root / NEW_STRUCTURE["config"])
            logger.info("Configuration migrated from {} to {}", OLD_STRUCTURE["config"], NEW_STRUCTURE["config"])

        if not preserve_old:
            _remove_legacy_sources(root, reports)
    except OSError as exc:
        logger.error("Migration failed: {}", exc)
        return False

    logger.info("Directory structure migration completed successfully")
    return True
