"""MCP tool handlers for the quote sync engine.

This package contains MCP tool implementations that wrap the SyncEngine
with async handlers and structured error responses.
"""

from .errors import build_error_response
from .quotes import QUOTE_SPECS, QUOTE_TOOLS
from .registry import (
    READ_ONLY_PERMISSIONS,
    ToolRegistry,
    ToolSpec,
    load_permissions_file,
)
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = QUOTE_SPECS + SYNC_SPECS

__all__ = [
    "build_error_response",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    "READ_ONLY_PERMISSIONS",
    # Spec lists
    "ALL_SPECS",
    "QUOTE_SPECS",
    "SYNC_SPECS",
    # Tool lists
    "QUOTE_TOOLS",
    "SYNC_TOOLS",
]
