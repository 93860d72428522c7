"""Local-first quote synchronisation engine.

Public API for keeping a local quote collection consistent with a remote
snapshot.

Architecture
------------
Local writes are applied to the record store immediately and tracked as
pending changes.  Each **sync cycle** pushes pending changes in creation
order, pulls the full remote snapshot (authoritative), detects conflicts
against the local store, resolves them under the configured strategy (or
merges when there are none) and writes the result back as one unit.

Modules:

- ``engine``      -- ``SyncEngine``: facade wiring every component.
- ``context``     -- ``SyncContext``: all mutable sync state, no globals.
- ``store``       -- ``RecordStore``: versioned records keyed by id.
- ``tracker``     -- ``ChangeTracker``: local writes + pending changes.
- ``gateway``     -- ``RemoteGateway`` contract, in-memory and HTTP remotes.
- ``detector``    -- ``detect_conflicts``: update/addition/deletion.
- ``resolver``    -- Strategy resolvers and ``apply_resolutions``.
- ``merger``      -- ``merge_snapshots`` for conflict-free cycles.
- ``cycle``       -- ``SyncCycle``: one push/pull/reconcile pass.
- ``scheduler``   -- ``SyncScheduler``: timer, re-entrancy guard, backoff.
- ``persistence`` -- Key/value persistence (memory and JSON files).
- ``reporter``    -- Human-readable and JSON report formatting.

Usage example
-------------
::

    import asyncio
    from quote_sync.config import Config
    from quote_sync.sync import SyncEngine, InMemoryGateway, SystemClock

    clock = SystemClock()
    engine = SyncEngine(Config(data_dir="/tmp/quotes"), InMemoryGateway(clock))
    engine.add_quote("Simplicity is prerequisite for reliability.", "Wisdom")

    report = asyncio.run(engine.trigger_sync())
    print(report.summary())
"""

from .context import SyncContext, SystemClock
from .engine import SyncEngine, build_engine
from .errors import (
    ConflictResolutionError,
    GatewayError,
    InvariantViolation,
    RecordNotFoundError,
    SyncError,
)
from .gateway import HttpGateway, InMemoryGateway, RemoteGateway, RemoteSnapshot
from .models import (
    ChangeKind,
    Conflict,
    ConflictKind,
    ConflictStrategy,
    CycleReport,
    PendingChange,
    Quote,
    Record,
    Resolution,
    SchedulerState,
    SyncEvent,
    SyncLogEntry,
    SyncStatus,
)
from .persistence import JsonFileStore, MemoryKeyValueStore
from .reporter import (
    format_conflict_diff,
    format_cycle_report,
    format_sync_log,
    report_to_json,
)
from .resolver import ConflictInbox, create_resolver

__all__ = [
    "ChangeKind",
    "Conflict",
    "ConflictInbox",
    "ConflictKind",
    "ConflictResolutionError",
    "ConflictStrategy",
    "CycleReport",
    "GatewayError",
    "HttpGateway",
    "InMemoryGateway",
    "InvariantViolation",
    "JsonFileStore",
    "MemoryKeyValueStore",
    "PendingChange",
    "Quote",
    "Record",
    "RecordNotFoundError",
    "RemoteGateway",
    "RemoteSnapshot",
    "Resolution",
    "SchedulerState",
    "SyncContext",
    "SyncEngine",
    "SyncError",
    "SyncEvent",
    "SyncLogEntry",
    "SyncStatus",
    "SystemClock",
    "build_engine",
    "create_resolver",
    "format_conflict_diff",
    "format_cycle_report",
    "format_sync_log",
    "report_to_json",
]
