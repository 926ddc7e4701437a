"""
Markdown summary of applied card changes, used as the review request body.
"""

import json
import logging
from pathlib import Path
from typing import Any, List, Optional

from .models import AppliedChangeSet

logger = logging.getLogger(__name__)

SUMMARY_FILE = Path(".card-update-summary.md")

REVIEW_CHECKLIST = (
    "### How to Review\n"
    "1. Verify each change against the linked source\n"
    "2. Check that the values match the official card terms\n"
    "3. Remove any changes that look incorrect\n"
    "4. Re-run the card data validation before merging\n"
    "\n"
    "---\n"
    "*Automated update. Review carefully before merging.*\n"
)


def format_value(value: Any) -> str:
    """Render a value for the report: JSON for containers, 'none' for null."""
    if value is None:
        return "none"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def format_change_line(field_path: str, old_value: Any, new_value: Any, citation_url: str) -> str:
    source = f" ([source]({citation_url}))" if citation_url else ""
    return f"- **{field_path}**: {format_value(old_value)} → {format_value(new_value)}{source}"


def summarize(applied_change_sets: List[AppliedChangeSet]) -> str:
    """
    Build the review summary.

    Args:
        applied_change_sets: Changes written in this run, one set per record

    Returns:
        Markdown text, or "" when nothing was applied
    """
    sets = [s for s in applied_change_sets if s.changes]
    if not sets:
        return ""

    lines = [
        "## Auto Card Data Updates",
        "",
        "The following card data changes were detected:",
        "",
    ]
    for change_set in sets:
        lines.append(f"### {change_set.record_name or change_set.record_id}")
        for change in change_set.changes:
            lines.append(format_change_line(
                change.field_path, change.old_value, change.new_value, change.citation_url
            ))
        lines.append("")

    return "\n".join(lines) + "\n" + REVIEW_CHECKLIST


def write_summary(summary: str, path: Path = SUMMARY_FILE) -> Optional[Path]:
    """
    Write the summary, or remove a stale one when there is nothing to report.

    Returns:
        Path written, or None when the summary was empty
    """
    path = Path(path)
    if not summary:
        if path.exists():
            path.unlink()
            logger.info(f"Removed stale summary {path}")
        return None

    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(summary, encoding="utf-8")
    return path
