"""Tests for sync reporter formatting functions.

Covers:
- format_cycle_report for success, conflicts, skips and failures
- format_conflict_diff for each conflict kind
- format_sync_log and format_record
- report_to_json structure and completeness
"""

from __future__ import annotations

import json

from quote_sync.sync.models import (
    Conflict,
    ConflictKind,
    CycleReport,
    Quote,
    Record,
    Resolution,
    SyncLogEntry,
    SyncStatus,
)
from quote_sync.sync.reporter import (
    format_conflict_diff,
    format_cycle_report,
    format_record,
    format_sync_log,
    format_timestamp,
    report_to_json,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _rec(record_id=1, text="text", version=1, conflict_marked=False):
    return Record(
        id=record_id,
        payload=Quote(
            text=text, category="Life", conflict_marked=conflict_marked
        ),
        version=version,
        last_modified=0,
    )


def _update_conflict(record_id=1):
    return Conflict(
        kind=ConflictKind.UPDATE,
        record_id=record_id,
        local=_rec(record_id, "local words", version=2),
        remote=_rec(record_id, "remote words", version=3),
        detected_at=0,
    )


def _make_report(**overrides) -> CycleReport:
    """Build a CycleReport with sensible defaults."""
    defaults = dict(started_at=0, completed_at=1000, pushed=1, pulled=3)
    defaults.update(overrides)
    return CycleReport(**defaults)


# ---------------------------------------------------------------------------
# format_timestamp / format_record
# ---------------------------------------------------------------------------


class TestSmallFormatters:
    def test_timestamp(self):
        assert format_timestamp(None) == "never"
        assert format_timestamp(0) == "1970-01-01T00:00:00+00:00"

    def test_record(self):
        assert format_record(_rec(4, "Hi", version=2)) == '[4] "Hi" (Life, v2)'

    def test_conflict_copy_marker(self):
        assert format_record(_rec(conflict_marked=True)).endswith(
            "[conflict copy]"
        )


# ---------------------------------------------------------------------------
# format_cycle_report
# ---------------------------------------------------------------------------


class TestFormatCycleReport:
    def test_success(self):
        text = format_cycle_report(_make_report(added_ids=[4, 5]))
        assert text.startswith("Sync completed: 1 pushed, 3 pulled")
        assert "Started: 1970-01-01T00:00:00+00:00" in text
        assert "Completed: 1970-01-01T00:00:01+00:00" in text
        assert "Added: 4, 5" in text
        assert "Removed" not in text

    def test_conflicts_and_requeue(self):
        report = _make_report(
            conflicts=[_update_conflict(2)],
            resolutions=[Resolution.LOCAL],
            requeued_ids=[2],
        )
        text = format_cycle_report(report)
        assert "Conflicts:" in text
        assert "update #2 -> local" in text
        assert "Re-queued for next sync: 2" in text

    def test_skipped(self):
        text = format_cycle_report(
            _make_report(skipped=["record 3: duplicate id in remote snapshot"])
        )
        assert "Skipped:" in text
        assert "record 3: duplicate id" in text

    def test_failure(self):
        report = CycleReport(
            started_at=0, status=SyncStatus.ERROR, error="network down"
        )
        text = format_cycle_report(report)
        assert text.startswith("Sync failed: network down")
        assert "Pending changes were kept" in text
        assert "Completed" not in text


# ---------------------------------------------------------------------------
# format_conflict_diff
# ---------------------------------------------------------------------------


class TestFormatConflictDiff:
    def test_update_diff(self):
        text = format_conflict_diff(_update_conflict(7))
        assert text.startswith("Conflict (update): record 7")
        assert "--- local: 7" in text
        assert "+++ remote: 7" in text
        assert "-text: local words" in text
        assert "+text: remote words" in text

    def test_addition(self):
        conflict = Conflict(
            kind=ConflictKind.ADDITION,
            record_id=9,
            remote=_rec(9, "new"),
            detected_at=0,
        )
        text = format_conflict_diff(conflict)
        assert "Present only on the remote." in text
        assert "+text: new" in text

    def test_deletion(self):
        conflict = Conflict(
            kind=ConflictKind.DELETION,
            record_id=3,
            local=_rec(3, "old"),
            detected_at=0,
        )
        text = format_conflict_diff(conflict)
        assert "Deleted on the remote" in text
        assert "-text: old" in text

    def test_no_differences(self):
        same = _rec(1)
        conflict = Conflict(
            kind=ConflictKind.UPDATE,
            record_id=1,
            local=same,
            remote=same,
            detected_at=0,
        )
        assert "(no differences)" in format_conflict_diff(conflict)


# ---------------------------------------------------------------------------
# format_sync_log
# ---------------------------------------------------------------------------


class TestFormatSyncLog:
    def test_entries(self):
        entries = [
            SyncLogEntry(timestamp=0, level="info", message="Starting"),
            SyncLogEntry(timestamp=1000, level="success", message="Done"),
        ]
        assert format_sync_log(entries).splitlines() == [
            "1970-01-01T00:00:00+00:00 [INFO] Starting",
            "1970-01-01T00:00:01+00:00 [SUCCESS] Done",
        ]

    def test_empty(self):
        assert format_sync_log([]) == "Sync log is empty."


# ---------------------------------------------------------------------------
# report_to_json
# ---------------------------------------------------------------------------


class TestReportToJson:
    def test_structure(self):
        report = _make_report(
            conflicts=[_update_conflict(2)],
            resolutions=[Resolution.KEEP_BOTH],
            added_ids=[10],
            requeued_ids=[2, 10],
        )
        data = report_to_json(report)
        assert data["status"] == "success"
        assert data["counts"] == {
            "pushed": 1,
            "pulled": 3,
            "added": 1,
            "updated": 0,
            "removed": 0,
            "requeued": 2,
            "conflicts": 1,
            "skipped": 0,
        }
        assert data["conflicts"] == [
            {"record_id": 2, "kind": "update", "resolution": "keep-both"}
        ]
        assert "error" not in data
        assert "skipped" not in data
        json.dumps(data)

    def test_error(self):
        report = CycleReport(
            started_at=0, status=SyncStatus.ERROR, error="boom"
        )
        data = report_to_json(report)
        assert data["status"] == "error"
        assert data["error"] == "boom"
        assert data["completed_at"] is None
