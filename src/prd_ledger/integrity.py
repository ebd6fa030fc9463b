"""Compare each PRD's recorded file facts with what is on disk.

Checks are read-only. Findings come back as :class:`IntegrityIssue` records;
only a broken index raises.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from loguru import logger

from .constants import (
    ISSUE_CHECK_ERROR,
    ISSUE_HASH_MISMATCH,
    ISSUE_MISSING_FILE,
    ISSUE_SIZE_MISMATCH,
    ISSUE_WRONG_DIRECTORY,
    SEVERITY_ERROR,
    SEVERITY_WARNING,
)
from .models import FileIntegrityResult, IntegrityIssue, PrdRecord
from .paths import ProjectPaths
from .utils import _file_size, _hash_file


def candidate_paths(prd: PrdRecord, paths: ProjectPaths) -> list[Path]:
    """Locations where *prd*'s file may live, most authoritative first."""
    candidates: list[Path] = []
    if prd.file_path:
        candidates.append(paths.resolve(prd.file_path))
    if prd.file_name:
        try:
            candidates.append(paths.expected_path(prd.status, prd.file_name))
        except ValueError:
            pass
        if prd.file_path:
            # A path recorded under another layout still names its status directory
            parent_status = paths.status_for_directory_name(Path(prd.file_path).parent.name)
            if parent_status is not None:
                candidates.append(paths.expected_path(parent_status, prd.file_name))
    return candidates


def resolve_prd_file(prd: PrdRecord, paths: ProjectPaths) -> Optional[Path]:
    for candidate in candidate_paths(prd, paths):
        if candidate.is_file():
            return candidate
    return None


def is_stale_path(prd: PrdRecord, result: FileIntegrityResult, paths: ProjectPaths) -> bool:
    """True when the file was found somewhere other than the recorded path."""
    if result.resolved_path is None:
        return False
    return paths.relative(result.resolved_path) != paths.relative(paths.resolve(prd.file_path))


def check_prd_file_integrity(prd: PrdRecord, paths: ProjectPaths) -> FileIntegrityResult:
    result = FileIntegrityResult(prd_id=prd.id, file_name=prd.file_name)
    try:
        resolved = resolve_prd_file(prd, paths)
        if resolved is None:
            result.issues.append(
                IntegrityIssue(
                    type=ISSUE_MISSING_FILE,
                    severity=SEVERITY_ERROR,
                    message=f"PRD file not found: {prd.file_path}",
                    prd_id=prd.id,
                    file_name=prd.file_name,
                    expected=prd.file_path,
                )
            )
            return result

        result.resolved_path = resolved
        result.actual_hash = _hash_file(resolved)
        result.actual_size = _file_size(resolved)

        if result.actual_hash != prd.file_hash:
            result.issues.append(
                IntegrityIssue(
                    type=ISSUE_HASH_MISMATCH,
                    severity=SEVERITY_WARNING,
                    message=f"File hash mismatch for {prd.file_name}. File may have been modified.",
                    prd_id=prd.id,
                    file_name=prd.file_name,
                    expected=prd.file_hash,
                    actual=result.actual_hash,
                )
            )
        if result.actual_size != prd.file_size:
            result.issues.append(
                IntegrityIssue(
                    type=ISSUE_SIZE_MISMATCH,
                    severity=SEVERITY_WARNING,
                    message=f"File size mismatch for {prd.file_name}",
                    prd_id=prd.id,
                    file_name=prd.file_name,
                    expected=prd.file_size,
                    actual=result.actual_size,
                )
            )
        if not paths.is_in_status_directory(resolved, prd.status):
            result.issues.append(
                IntegrityIssue(
                    type=ISSUE_WRONG_DIRECTORY,
                    severity=SEVERITY_ERROR,
                    message=f"PRD {prd.file_name} is in wrong directory for status {prd.status}",
                    prd_id=prd.id,
                    file_name=prd.file_name,
                    expected=paths.relative(paths.status_directory(prd.status)),
                    actual=paths.relative(resolved.parent),
                )
            )
    except Exception as exc:
        logger.warning("Integrity check failed for PRD {}: {}", prd.id, exc)
        result.issues.append(
            IntegrityIssue(
                type=ISSUE_CHECK_ERROR,
                severity=SEVERITY_ERROR,
                message=f"Error checking file integrity: {exc}",
                prd_id=prd.id,
                file_name=prd.file_name,
            )
        )
    return result


def check_all_prd_files(prds: list[PrdRecord], paths: ProjectPaths) -> list[FileIntegrityResult]:
    return [check_prd_file_integrity(prd, paths) for prd in prds]
