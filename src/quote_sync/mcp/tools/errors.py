"""Error response builders and shared utilities for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention, plus
shared argument helpers used across tool modules.
"""

from typing import Any

import mcp.types as types

from ...sync.errors import (
    ConflictResolutionError,
    GatewayError,
    RecordNotFoundError,
    SyncError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, resolution_error, sync_error, validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Record 12 not found", "Use quote_list to see existing quotes.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_sync_error(error: SyncError) -> types.CallToolResult:
    """Translate an engine exception to a structured error response."""
    match error:
        case RecordNotFoundError():
            return build_error_response(
                "not_found",
                str(error),
                "Use quote_list to see existing quote ids.",
            )
        case ConflictResolutionError():
            return build_error_response(
                "resolution_error",
                str(error),
                "Use sync_conflicts to review the outstanding batch, then call "
                "sync_resolve with one of remote, local, keep-both per record id.",
            )
        case GatewayError():
            return build_error_response(
                "remote_unavailable",
                str(error),
                "Pending changes are kept. Retry with sync_now later.",
            )
        case _:
            return build_error_response(
                "sync_error",
                str(error),
                "Check sync_status and sync_log, then retry.",
            )


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def require_int(args: dict[str, Any], key: str) -> int:
    """Return ``args[key]`` as an int.

    Raises:
        ValueError: If the argument is missing or not a whole number.
    """
    value = args.get(key)
    if value is None:
        raise ValueError(f"{key} is required")
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {value!r}") from None


def require_str(args: dict[str, Any], key: str) -> str:
    """Return ``args[key]`` as a non-empty string.

    Raises:
        ValueError: If the argument is missing or blank.
    """
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} is required")
    return value
