"""Configure logging and summarize integrity reports for log lines."""

import json
import sys
from typing import Any

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
    "{message}"
)

_SAMPLE_SIZE = 3


def configure_logging(level: str = "INFO") -> None:
    """Route loguru output to stderr at *level*, replacing existing sinks."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)


def summarize_report(report: Any) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of an integrity report.

    Args:
        report: An :class:`~prd_ledger.models.IntegrityReport` or its
            ``to_dict()`` form (or None).

    Returns:
        A dictionary with issue counts by type, a few sample messages and the
        auto-fix totals when repairs ran.
    """
    if report is None:
        return {"report": None}
    data = report.to_dict() if hasattr(report, "to_dict") else dict(report)

    issues: list[dict[str, Any]] = []
    for result in data.get("fileIntegrity") or []:
        issues.extend(result.get("issues") or [])
    linking = data.get("linkingConsistency") or {}
    issues.extend(linking.get("issues") or [])

    by_type: dict[str, int] = {}
    for issue in issues:
        by_type[issue.get("type", "unknown")] = by_type.get(issue.get("type", "unknown"), 0) + 1

    overall = data.get("overall") or {}
    d: dict[str, Any] = {
        "valid": bool(overall.get("valid", False)),
        "errors": overall.get("errorCount", 0),
        "warnings": overall.get("warningCount", 0),
        "prds_checked": len(data.get("fileIntegrity") or []),
        "by_type": by_type,
    }
    errors = [issue.get("message") for issue in issues if issue.get("severity") == "error"]
    if errors:
        d["error_sample"] = errors[:_SAMPLE_SIZE]

    fixes = data.get("autoFixResults")
    if fixes:
        d["fixed_files"] = fixes.get("fileIntegrity", {}).get("filesFixed", 0)
        d["fixed_links"] = fixes.get("taskLinks", {}).get("linksFixed", 0)
        fix_errors = (fixes.get("fileIntegrity", {}).get("errors") or []) + (
            fixes.get("taskLinks", {}).get("errors") or []
        )
        if fix_errors:
            d["fix_errors_n"] = len(fix_errors)
    return d


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except (TypeError, ValueError):
        return str(obj)
