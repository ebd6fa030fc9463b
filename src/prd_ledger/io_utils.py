from __future__ import annotations

import json
import os
import shutil
from pathlib import Path
from typing import Any

import yaml

from .errors import LedgerIOError, ParseError


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    """Write *data* as pretty-printed JSON via write-tmp-then-rename."""
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise LedgerIOError(f"Failed to write {path}: {exc}", path=path) from exc


def _read_json_document(path: Path) -> dict[str, Any] | None:
    """Read a JSON index document.

    Returns ``None`` when *path* does not exist. Raises :class:`ParseError`
    for malformed JSON or a non-object top level, and :class:`LedgerIOError`
    when the file exists but cannot be read.
    """
    if not path.exists():
        return None
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise LedgerIOError(f"Failed to read {path}: {exc}", path=path) from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(exc.msg, path=path, line=exc.lineno, column=exc.colno) from exc
    if not isinstance(data, dict):
        raise ParseError(f"expected object, got {type(data).__name__}", path=path)
    return data


def _load_data_with_error(
    path: Path,
    default: dict[str, Any],
) -> tuple[dict[str, Any], str | None]:
    """
    Load JSON/YAML and return (data, error_message).

    Used for optional files (configuration) where a broken file should be
    reported to the caller rather than abort the operation.
    """
    if not path.exists():
        return default, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            if path.suffix in {".yaml", ".yml"}:
                data = yaml.safe_load(handle)
            else:
                data = json.load(handle)
        if data is None:
            return default, None
        if not isinstance(data, dict):
            return default, f"{path.name}: expected object, got {type(data).__name__}"
        return data, None
    except OSError as exc:
        return default, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except json.JSONDecodeError as exc:
        return default, f"{path.name}: JSONDecodeError: {exc}"
    except yaml.YAMLError as exc:
        return default, f"{path.name}: YAMLError: {exc}"


def _copy_recursive(source: Path, target: Path) -> int:
    """Copy a file or directory tree, returning the number of files copied.

    Existing files at the destination are overwritten; nothing is removed.
    """
    if not source.exists():
        return 0
    if source.is_dir():
        target.mkdir(parents=True, exist_ok=True)
        copied = 0
        for child in sorted(source.iterdir()):
            copied += _copy_recursive(child, target / child.name)
        return copied
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, target)
    return 1


def _move_file(source: Path, target: Path) -> None:
    """Move *source* to *target*, creating the destination directory."""
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        os.replace(source, target)
    except OSError:
        # os.replace cannot cross filesystems
        try:
            shutil.move(str(source), str(target))
        except OSError as exc:
            raise LedgerIOError(f"Failed to move {source} to {target}: {exc}", path=source) from exc
