"""Model Context Protocol front end for the quote sync engine.

AI agents reach the local quote collection and the sync engine through the
tools registered in ``quote_sync.mcp.tools``.  The server speaks JSON-RPC
over stdin/stdout, so everything meant for a human goes to stderr or the
log file.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..logger import DEFAULT_LOG_FILE, setup_logging
from ..sync.engine import SyncEngine
from ..sync.models import ConflictStrategy
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    READ_ONLY_PERMISSIONS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)

logger = logging.getLogger(__name__)

server = Server("quote-sync")

# Front-end session handles, set by main() for one stdio session so the
# module-level protocol handlers can reach them.  Sync state lives in the
# engine's SyncContext, not here.
_engine: SyncEngine | None = None
_registry: ToolRegistry | None = None


def get_engine() -> SyncEngine:
    """The engine serving the current session.

    Raises:
        RuntimeError: Outside a running session.
    """
    if _engine is None:
        raise RuntimeError(
            "SyncEngine not initialized. Server lifespan not started."
        )
    return _engine


def set_engine(engine: SyncEngine | None) -> None:
    global _engine
    _engine = engine


def get_registry() -> ToolRegistry:
    """The tool registry of the current session.

    Raises:
        RuntimeError: Outside a running session.
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


def build_registry(
    read_only: bool = False, permissions_file: str | None = None
) -> ToolRegistry:
    """Build the tool registry for the requested access level.

    A permissions file takes precedence over ``read_only``.
    """
    allowed: frozenset[str] | None = None
    if permissions_file:
        allowed = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s", len(allowed), permissions_file
        )
    elif read_only:
        allowed = READ_ONLY_PERMISSIONS
    registry = ToolRegistry(ALL_SPECS, allowed)
    logger.info("%d of %d tools exposed", registry.tool_count(), len(ALL_SPECS))
    return registry


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Dispatch one ``tools/call`` request through the registry.

    Names the registry does not know (never defined, or hidden by
    permissions) produce an ``unknown_tool`` error result.
    """
    engine = get_engine()
    try:
        return await get_registry().call_tool(name, arguments, engine)
    except ValueError as e:
        return build_error_response(
            "unknown_tool",
            str(e),
            "Call list_tools for the tools this server exposes.",
        )


async def main(config_overrides: dict | None = None):
    """Serve one MCP session over stdio until the client disconnects.

    Args:
        config_overrides: Values from the command line.  ``log_file``,
            ``read_only`` and ``permissions_file`` configure the server
            itself; the rest (remote_url, data_dir, strategy, interval_ms,
            auto_sync) are passed on to the config loader.
    """
    overrides = dict(config_overrides or {})
    log_file = overrides.pop("log_file", None)
    read_only = overrides.pop("read_only", False)
    permissions_file = overrides.pop("permissions_file", None)

    # stdout belongs to JSON-RPC from here on
    setup_logging(mode="mcp", log_file=log_file)

    registry = build_registry(read_only, permissions_file)
    if read_only or permissions_file:
        print(
            f"Tool access restricted: {registry.tool_count()} of {len(ALL_SPECS)} tools enabled",
            file=sys.stderr,
        )
    set_registry(registry)

    # Set here, not in the lifespan, so `python -m quote_sync.mcp.server`
    # fills in this module's globals rather than a second imported copy.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_engine(ctx["engine"])
        try:
            async with mcp.server.stdio.stdio_server() as (reader, writer):
                await server.run(
                    reader,
                    writer,
                    InitializationOptions(
                        server_name="quote-sync",
                        server_version=__version__,
                        capabilities=server.get_capabilities(
                            notification_options=NotificationOptions(),
                            experimental_capabilities={},
                        ),
                    ),
                )
        finally:
            set_engine(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quote-sync-mcp",
        description="Quote Sync MCP Server - manage and synchronise a local quote collection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Defaults, .env and .quote_sync/config.yml
  quote-sync-mcp

  # Sync against a JSON endpoint
  quote-sync-mcp --remote-url https://quotes.example.com/api/quotes

  # Resolve conflicts by hand through the sync_resolve tool
  quote-sync-mcp --strategy manual

  # Expose only the read tools
  quote-sync-mcp --read-only

The server is meant to be launched by an MCP client, which owns stdin and
stdout.  Status messages are printed to stderr.
        """,
    )
    parser.add_argument(
        "--remote-url",
        help="Remote endpoint (takes precedence over QUOTE_SYNC_REMOTE_URL and config files)",
    )
    parser.add_argument(
        "--data-dir",
        help="Directory for persisted data (takes precedence over QUOTE_SYNC_DATA_DIR)",
    )
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in ConflictStrategy],
        help="Conflict resolution strategy",
    )
    parser.add_argument(
        "--interval-ms",
        type=int,
        help="Period between automatic syncs in milliseconds",
    )
    parser.add_argument(
        "--no-auto-sync",
        action="store_true",
        help="Disable the periodic sync timer (sync only via sync_now)",
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Expose only read tools (quote_list, sync_status, sync_log, sync_conflicts)",
    )
    parser.add_argument(
        "--permissions-file",
        help="File listing the permissions granted to this server, one per "
        "line (QUOTE_VIEW, QUOTE_MODIFY, SYNC_VIEW, "
        "SYNC_RUN, SYNC_RESOLVE); # starts a comment",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"quote-sync version {__version__}",
    )

    return parser


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Translate parsed flags into the ``main()`` overrides dict."""
    overrides: dict = {
        "remote_url": args.remote_url,
        "data_dir": args.data_dir,
        "strategy": args.strategy,
        "interval_ms": args.interval_ms,
        "log_file": args.log_file,
        "permissions_file": args.permissions_file,
    }
    if args.no_auto_sync:
        overrides["auto_sync"] = False
    if args.read_only:
        overrides["read_only"] = True
    return {k: v for k, v in overrides.items() if v is not None and v != ""}


def run() -> None:
    """Console entry point for ``quote-sync-mcp``."""
    args = build_parser().parse_args()
    try:
        asyncio.run(main(config_overrides=overrides_from_args(args)))
    except RuntimeError:
        # lifespan has already reported the cause on stderr
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
