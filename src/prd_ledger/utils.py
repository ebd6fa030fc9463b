"""Provide helpers for timestamps, content hashing and task id comparison."""

from __future__ import annotations

import hashlib
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _utc_stamp_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def _file_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def _hash_file(path: Path) -> str:
    """Return the sha256 hex digest of *path*'s bytes.

    Raises ``OSError`` when the file cannot be read; callers decide how to
    report it.
    """
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _file_size(path: Path) -> int:
    return path.stat().st_size


def _same_task_id(left: Any, right: Any) -> bool:
    """Compare two task identifiers natively and as strings.

    ``7`` and ``"7"`` name the same task; ``"1.2"`` only matches ``"1.2"``.
    """
    if left == right:
        return True
    return str(left) == str(right)


def _contains_task_id(ids: Iterable[Any], task_id: Any) -> bool:
    return any(_same_task_id(existing, task_id) for existing in ids)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _completion_percentage(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return _round_half_up(completed * 100 / total)
