"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_cycle_report`` -- full post-sync summary.
- ``format_conflict_diff`` -- unified diff for interactive conflict review.
- ``format_sync_log`` -- the bounded sync log, oldest first.
- ``format_record`` -- one-line quote listing entry.
- ``report_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

import difflib
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable

from .models import ConflictKind

if TYPE_CHECKING:
    from .models import Conflict, CycleReport, Record, SyncLogEntry


def format_timestamp(ms: int | None) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string."""
    if ms is None:
        return "never"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(
        timespec="seconds"
    )


def format_record(record: Record) -> str:
    """Format one record as ``[id] "text" (category, vN)``."""
    marker = " [conflict copy]" if record.payload.conflict_marked else ""
    return (
        f'[{record.id}] "{record.payload.text}" '
        f"({record.payload.category}, v{record.version}){marker}"
    )


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_cycle_report(report: CycleReport) -> str:
    """Format a complete cycle report as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        report: The finished cycle report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    lines.append(report.summary())
    lines.append(f"Started: {format_timestamp(report.started_at)}")
    if report.completed_at is not None:
        lines.append(f"Completed: {format_timestamp(report.completed_at)}")
    lines.append("")

    if report.error:
        lines.append("Pending changes were kept and will be retried.")
        return "\n".join(lines).rstrip()

    if report.conflicts:
        lines.append("Conflicts:")
        for conflict, resolution in zip(report.conflicts, report.resolutions):
            lines.append(
                f"  {conflict.kind.value} #{conflict.record_id} -> {resolution.value}"
            )
        lines.append("")

    for label, ids in (
        ("Added", report.added_ids),
        ("Updated", report.updated_ids),
        ("Removed", report.removed_ids),
        ("Re-queued for next sync", report.requeued_ids),
    ):
        if ids:
            lines.append(f"{label}: {', '.join(str(i) for i in ids)}")

    if report.skipped:
        lines.append("")
        lines.append("Skipped:")
        for message in report.skipped:
            lines.append(f"  {message}")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflict diff
# ------------------------------------------------------------------


def _record_lines(record: Record | None) -> list[str]:
    if record is None:
        return []
    return [
        f"text: {record.payload.text}\n",
        f"category: {record.payload.category}\n",
        f"version: {record.version}\n",
        f"last_modified: {format_timestamp(record.last_modified)}\n",
    ]


def format_conflict_diff(conflict: Conflict) -> str:
    """Format a single conflict for interactive review.

    Shows a unified diff between the local and remote copies of the
    record; a side that does not exist shows as empty.

    Args:
        conflict: The conflict details.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append(f"Conflict ({conflict.kind.value}): record {conflict.record_id}")
    if conflict.kind == ConflictKind.ADDITION:
        lines.append("  Present only on the remote.")
    elif conflict.kind == ConflictKind.DELETION:
        lines.append("  Deleted on the remote, still present locally.")
    lines.append("")

    diff = difflib.unified_diff(
        _record_lines(conflict.local),
        _record_lines(conflict.remote),
        fromfile=f"local: {conflict.record_id}",
        tofile=f"remote: {conflict.record_id}",
    )
    diff_text = "".join(diff)
    if diff_text:
        lines.append(diff_text.rstrip())
    else:
        lines.append("(no differences)")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Sync log
# ------------------------------------------------------------------


def format_sync_log(entries: Iterable[SyncLogEntry]) -> str:
    """Format sync log entries one per line, oldest first."""
    lines = [
        f"{format_timestamp(e.timestamp)} [{e.level.upper()}] {e.message}"
        for e in entries
    ]
    if not lines:
        return "Sync log is empty."
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: CycleReport) -> dict:
    """Convert a cycle report to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.

    Args:
        report: The cycle report.

    Returns:
        Dict with status, timings, counts, and per-conflict details.
    """
    conflicts_list = []
    for i, conflict in enumerate(report.conflicts):
        entry: dict = {
            "record_id": conflict.record_id,
            "kind": conflict.kind.value,
        }
        if i < len(report.resolutions):
            entry["resolution"] = report.resolutions[i].value
        conflicts_list.append(entry)

    result: dict = {
        "status": report.status.value,
        "summary": report.summary(),
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "pushed": report.pushed,
            "pulled": report.pulled,
            "added": len(report.added_ids),
            "updated": len(report.updated_ids),
            "removed": len(report.removed_ids),
            "requeued": len(report.requeued_ids),
            "conflicts": len(report.conflicts),
            "skipped": len(report.skipped),
        },
        "added_ids": list(report.added_ids),
        "updated_ids": list(report.updated_ids),
        "removed_ids": list(report.removed_ids),
        "conflicts": conflicts_list,
    }
    if report.skipped:
        result["skipped"] = list(report.skipped)
    if report.error:
        result["error"] = report.error
    return result
