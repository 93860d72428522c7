"""Quote tool handlers for MCP server.

This module implements the local quote collection tools: list, add, update,
and delete.  Writes are applied to the local store immediately and queued
as pending changes for the next sync.
"""

import mcp.types as types

from ...sync.engine import ALL_CATEGORIES, SyncEngine
from ...sync.reporter import format_record
from .errors import require_int, require_str
from .registry import QUOTE_MODIFY, QUOTE_VIEW, ToolSpec

# Tool definitions for list_tools()
QUOTE_TOOLS = [
    types.Tool(
        name="quote_list",
        description="List local quotes, optionally filtered by category. Returns id, text, category, and version for each quote plus the list of known categories.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "category": {
                    "type": "string",
                    "description": "Only return quotes in this category (default: all)",
                },
                "random": {
                    "type": "boolean",
                    "description": "Return one random quote instead of the full list (default: false)",
                    "default": False,
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="quote_add",
        description="Add a quote locally. It is pushed to the remote on the next sync.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "text": {
                    "type": "string",
                    "description": "Quote text (required)",
                },
                "category": {
                    "type": "string",
                    "description": "Category label (required)",
                },
            },
            "required": ["text", "category"],
        },
    ),
    types.Tool(
        name="quote_update",
        description="Change the text and/or category of a local quote. Identical values are a no-op.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "id": {
                    "type": "integer",
                    "description": "Quote id (required)",
                },
                "text": {
                    "type": "string",
                    "description": "New quote text",
                },
                "category": {
                    "type": "string",
                    "description": "New category label",
                },
            },
            "required": ["id"],
        },
    ),
    types.Tool(
        name="quote_delete",
        description="Delete a local quote. The deletion is pushed to the remote on the next sync.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "id": {
                    "type": "integer",
                    "description": "Quote id (required)",
                },
            },
            "required": ["id"],
        },
    ),
]


def _record_json(record) -> dict:
    return {
        "id": record.id,
        "text": record.payload.text,
        "category": record.payload.category,
        "version": record.version,
        "last_modified": record.last_modified,
        "conflict_marked": record.payload.conflict_marked,
    }


async def _handle_list(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    """Handle quote_list."""
    category = args.get("category") or ALL_CATEGORIES

    if args.get("random", False):
        record = engine.random_quote(category)
        records = [record] if record is not None else []
    else:
        records = engine.filter_by_category(category)

    if not records:
        text = (
            "No quotes found."
            if category == ALL_CATEGORIES
            else f"No quotes found in category '{category}'."
        )
    else:
        text = "\n".join(format_record(r) for r in records)

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={
            "quotes": [_record_json(r) for r in records],
            "categories": engine.categories(),
        },
    )


async def _handle_add(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    """Handle quote_add."""
    record = engine.add_quote(
        require_str(args, "text"), require_str(args, "category")
    )
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text", text=f"Added {format_record(record)}"
            )
        ],
        structuredContent=_record_json(record),
    )


async def _handle_update(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    """Handle quote_update."""
    record_id = require_int(args, "id")
    text = args.get("text")
    category = args.get("category")
    if text is None and category is None:
        raise ValueError("Provide text and/or category to update")

    record = engine.update_quote(record_id, text=text, category=category)
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text", text=f"Updated {format_record(record)}"
            )
        ],
        structuredContent=_record_json(record),
    )


async def _handle_delete(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    """Handle quote_delete."""
    record = engine.delete_quote(require_int(args, "id"))
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text", text=f"Deleted {format_record(record)}"
            )
        ],
        structuredContent={"deleted": record.id},
    )


# ToolSpec list for registry-based dispatch
QUOTE_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=QUOTE_TOOLS[0],
        permissions=frozenset({QUOTE_VIEW}),
        handler=_handle_list,
    ),
    ToolSpec(
        tool=QUOTE_TOOLS[1],
        permissions=frozenset({QUOTE_MODIFY}),
        handler=_handle_add,
    ),
    ToolSpec(
        tool=QUOTE_TOOLS[2],
        permissions=frozenset({QUOTE_MODIFY}),
        handler=_handle_update,
    ),
    ToolSpec(
        tool=QUOTE_TOOLS[3],
        permissions=frozenset({QUOTE_MODIFY}),
        handler=_handle_delete,
    ),
]
