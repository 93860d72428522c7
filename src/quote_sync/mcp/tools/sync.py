"""MCP tool handlers for quote synchronisation.

Defines five tools:

- ``sync_now`` -- start a sync cycle (in the background by default).
- ``sync_status`` -- scheduler state, pending changes, last result.
- ``sync_log`` -- recent entries of the bounded sync log.
- ``sync_conflicts`` -- conflicts awaiting manual resolution, with diffs.
- ``sync_resolve`` -- answer the outstanding conflict batch.

A cycle run under the ``manual`` strategy suspends until ``sync_resolve``
is called, which is why ``sync_now`` does not block by default.
"""

from __future__ import annotations

import asyncio
import logging

import mcp.types as types

from ...sync.engine import SyncEngine
from ...sync.reporter import (
    format_conflict_diff,
    format_cycle_report,
    format_sync_log,
    format_timestamp,
    report_to_json,
)
from .errors import build_error_response
from .registry import SYNC_RESOLVE, SYNC_RUN, SYNC_VIEW, ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_WAIT_SECONDS = 30.0
DEFAULT_LOG_LIMIT = 20

# Strong references so background cycles are not garbage-collected
_background_tasks: set[asyncio.Task] = set()


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="sync_now",
        description=(
            "Start a sync cycle: push pending local changes, pull the remote "
            "snapshot, and resolve conflicts with the configured strategy. "
            "Runs in the background unless wait=true."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "wait": {
                    "type": "boolean",
                    "default": False,
                    "description": "Wait for the cycle to finish and return its report",
                },
                "timeout": {
                    "type": "number",
                    "default": DEFAULT_WAIT_SECONDS,
                    "description": "Seconds to wait when wait=true",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_status",
        description=(
            "Show sync state -- scheduler state, strategy, pending changes, last sync time, failures and backoff."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_log",
        description="Show the most recent sync log entries, oldest first.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "default": DEFAULT_LOG_LIMIT,
                    "description": "Maximum number of entries",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_conflicts",
        description=(
            "List conflicts awaiting manual resolution with a diff of the local and remote copies."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_resolve",
        description=(
            "Resolve the outstanding conflict batch. Give 'resolutions' as an object "
            "mapping record id to remote, local or keep-both, or 'all' to apply one "
            "choice to every conflict."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "resolutions": {
                    "type": "object",
                    "description": "Record id -> 'remote' | 'local' | 'keep-both'",
                    "additionalProperties": {
                        "type": "string",
                        "enum": ["remote", "local", "keep-both"],
                    },
                },
                "all": {
                    "type": "string",
                    "enum": ["remote", "local", "keep-both"],
                    "description": "Apply this choice to every outstanding conflict",
                },
            },
            "required": [],
        },
    ),
]


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_sync_now(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    """Handle the ``sync_now`` tool."""
    if engine.context.in_flight:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text="A sync is already in progress. Use sync_status to follow it.",
                )
            ],
            structuredContent={"started": False, "state": engine.context.state.value},
        )

    task = asyncio.create_task(engine.trigger_sync())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    if not args.get("wait", False):
        # let the cycle claim the in-flight guard before replying
        await asyncio.sleep(0)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text="Sync started in the background. Use sync_status or sync_log to follow it.",
                )
            ],
            structuredContent={"started": True, "state": engine.context.state.value},
        )

    timeout = float(args.get("timeout", DEFAULT_WAIT_SECONDS))
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if not done:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=(
                        f"Sync still running after {timeout:g}s "
                        f"(state: {engine.context.state.value}). "
                        "Use sync_conflicts if it awaits resolution."
                    ),
                )
            ],
            structuredContent={"started": True, "state": engine.context.state.value},
        )

    report = task.result()
    if report is None:
        return build_error_response(
            "sync_busy",
            "Another sync claimed the engine first.",
            "Use sync_status to follow the running cycle.",
        )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_cycle_report(report))],
        structuredContent=report_to_json(report),
        isError=report.error is not None,
    )


async def _handle_sync_status(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    """Handle the ``sync_status`` tool."""
    status = engine.status()
    lines = [
        "Sync status",
        f"  State:           {status['state']}",
        f"  Strategy:        {status['strategy']}",
        f"  Quotes:          {status['records']}",
        f"  Pending changes: {status['pending_changes']}",
        f"  Last sync:       {format_timestamp(status['last_sync_at'])}",
        f"  Auto sync:       {'on' if status['timer_running'] else 'off'}"
        f" (every {status['sync_interval_ms'] // 1000}s)",
    ]
    if status["consecutive_failures"]:
        lines.append(
            f"  Failures:        {status['consecutive_failures']} "
            f"(backing off until {format_timestamp(status['backoff_until'])})"
        )
    if status["awaiting_resolution"]:
        lines.append(
            f"  Awaiting resolution: {status['awaiting_resolution']} conflicts"
        )
    if status["last_result"]:
        lines.append(f"  Last result:     {status['last_result']}")

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=status,
    )


async def _handle_sync_log(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    """Handle the ``sync_log`` tool."""
    limit = int(args.get("limit", DEFAULT_LOG_LIMIT))
    if limit < 1:
        raise ValueError("limit must be at least 1")
    entries = engine.sync_log(limit)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_sync_log(entries))],
        structuredContent={
            "entries": [e.model_dump(mode="json") for e in entries]
        },
    )


async def _handle_sync_conflicts(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    """Handle the ``sync_conflicts`` tool."""
    conflicts = engine.inbox.pending
    if not conflicts:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text", text="No conflicts are awaiting resolution."
                )
            ],
            structuredContent={"conflicts": []},
        )

    text = "\n\n".join(format_conflict_diff(c) for c in conflicts)
    text += (
        "\n\nResolve with sync_resolve: remote (take the remote copy), "
        "local (keep and re-push the local copy), keep-both (keep both copies)."
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={
            "conflicts": [
                c.model_dump(mode="json", by_alias=False) for c in conflicts
            ]
        },
    )


async def _handle_sync_resolve(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    """Handle the ``sync_resolve`` tool."""
    pending = engine.inbox.pending
    if "all" in args and args["all"] is not None:
        choices = [args["all"]] * len(pending)
    elif args.get("resolutions"):
        choices = args["resolutions"]
    else:
        raise ValueError("Provide 'resolutions' or 'all'")

    resolutions = engine.resolve_conflicts(choices)
    logger.info("Submitted %d manual resolutions", len(resolutions))
    summary = ", ".join(
        f"{c.record_id}={r.value}" for c, r in zip(pending, resolutions)
    )
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=f"Submitted {len(resolutions)} resolutions ({summary}). The sync continues in the background.",
            )
        ],
        structuredContent={
            "resolutions": {
                str(c.record_id): r.value for c, r in zip(pending, resolutions)
            }
        },
    )


# ToolSpec list for registry-based dispatch
SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_TOOLS[0],
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_sync_now,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[1],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_status,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[2],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_log,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[3],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_conflicts,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[4],
        permissions=frozenset({SYNC_RESOLVE}),
        handler=_handle_sync_resolve,
    ),
]
