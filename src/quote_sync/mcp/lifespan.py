"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from ..config import load_config_from_sources
from ..sync.engine import SyncEngine, build_engine

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env, YAML config and env vars: CLI > env vars > .env > YAML > defaults
    - Build the SyncEngine (local state is loaded from the data directory)
    - Seed the starter quotes into a brand-new collection
    - Start the periodic sync timer when auto sync is enabled

    On shutdown:
    - Fail any conflict batch still awaiting resolution
    - Stop the periodic timer (a running cycle is allowed to finish)

    Args:
        config_overrides: Optional dict with config values from CLI
            (remote_url, data_dir, strategy, interval_ms, auto_sync)

    Yields:
        Dict with 'engine' key containing the initialized SyncEngine

    Raises:
        RuntimeError: If configuration is invalid or local data cannot be loaded.
    """
    logger.info("MCP server starting...")
    _stderr_print("Quote Sync MCP Server starting...")

    try:
        config, sources = load_config_from_sources(config_overrides)
        source_desc = ", ".join(sources)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        remote = config.remote_url or "simulated (in-memory)"
        logger.info("Remote: %s", remote)
        _stderr_print(f"  Remote: {remote}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(f"Configuration error: {e}") from e

    try:
        engine: SyncEngine = build_engine(config)
        seeded = engine.seed_defaults()
        if seeded:
            _stderr_print(f"  Seeded {seeded} starter quotes")
    except Exception as e:
        logger.error("Failed to load local data: %s", e)
        _stderr_print(f"ERROR: Failed to load local data from {config.data_dir}")
        _stderr_print(f"  {e}")
        raise RuntimeError(
            f"Failed to load local data: {e}. Check QUOTE_SYNC_DATA_DIR."
        ) from e

    _stderr_print(f"  Data directory: {config.data_dir}")
    _stderr_print(f"  Conflict strategy: {config.conflict_strategy}")
    if engine.start():
        _stderr_print(
            f"  Auto sync every {config.sync_interval_ms // 1000}s"
        )
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"engine": engine}
    finally:
        logger.info("MCP server shutting down")
        engine.inbox.cancel("Server shutting down")
        await engine.stop()
        _stderr_print("Quote Sync MCP Server shutting down.")
