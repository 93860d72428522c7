"""Command line front end for the quote sync engine.

Each invocation loads the configuration, builds a ``SyncEngine`` over the
persisted local state, performs one command, and exits.  Local edits made
with ``add``/``update``/``delete`` stay pending until the next ``sync``.

With the ``manual`` strategy, ``sync`` prompts for a choice per conflict on
stdin, or applies ``--resolve`` to every conflict without asking.
"""

import argparse
import asyncio
import json
import logging
import sys

from . import __version__
from .config import load_config_from_sources
from .config_loader import ensure_config
from .core.async_utils import run_sync
from .logger import setup_logging
from .sync.engine import ALL_CATEGORIES, SyncEngine, build_engine
from .sync.errors import ConflictResolutionError, RecordNotFoundError
from .sync.models import Conflict, ConflictStrategy, Resolution
from .sync.reporter import (
    format_conflict_diff,
    format_cycle_report,
    format_record,
    format_sync_log,
    format_timestamp,
    report_to_json,
)

logger = logging.getLogger(__name__)

_CHOICE_KEYS = {
    "r": Resolution.REMOTE,
    "l": Resolution.LOCAL,
    "k": Resolution.KEEP_BOTH,
}


# ---------------------------------------------------------------------------
# Manual resolution
# ---------------------------------------------------------------------------


def _prompt_choice(conflict: Conflict) -> Resolution:
    """Ask on stdin until a valid choice is entered."""
    print(format_conflict_diff(conflict))
    while True:
        answer = input("Keep [r]emote, [l]ocal or [k]eep both? ").strip().lower()
        if answer[:1] in _CHOICE_KEYS:
            return _CHOICE_KEYS[answer[:1]]
        print("Please answer r, l or k.")


def make_prompt_resolver(fixed: str | None = None):
    """Build the ``on_conflicts_detected`` callback used by ``sync``.

    Args:
        fixed: Apply this resolution to every conflict instead of prompting.
    """

    async def _resolve(conflicts: list[Conflict]) -> list[Resolution]:
        if fixed is not None:
            return [Resolution(fixed)] * len(conflicts)
        if not sys.stdin.isatty():
            raise ConflictResolutionError(
                "Conflicts need manual resolution but stdin is not a terminal. "
                "Re-run with --resolve remote|local|keep-both."
            )
        print(f"{len(conflicts)} conflicts need a decision:\n")
        choices = []
        for conflict in conflicts:
            choices.append(await run_sync(_prompt_choice, conflict))
        return choices

    return _resolve


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_list(engine: SyncEngine, args) -> int:
    category = args.category or ALL_CATEGORIES
    if args.random:
        record = engine.random_quote(category)
        records = [record] if record is not None else []
    else:
        records = engine.filter_by_category(category)

    if not records:
        print("No quotes found.")
        return 0
    for record in records:
        print(format_record(record))
    if not args.random:
        print(f"\n{len(records)} quotes; categories: {', '.join(engine.categories())}")
    return 0


def cmd_add(engine: SyncEngine, args) -> int:
    record = engine.add_quote(args.text, args.category)
    print(f"Added {format_record(record)}")
    return 0


def cmd_update(engine: SyncEngine, args) -> int:
    if args.text is None and args.category is None:
        print("Error: give --text and/or --category", file=sys.stderr)
        return 2
    record = engine.update_quote(args.id, text=args.text, category=args.category)
    print(f"Updated {format_record(record)}")
    return 0


def cmd_delete(engine: SyncEngine, args) -> int:
    record = engine.delete_quote(args.id)
    print(f"Deleted {format_record(record)}")
    return 0


def cmd_sync(engine: SyncEngine, args) -> int:
    report = asyncio.run(engine.trigger_sync())
    if report is None:
        print("A sync is already in progress.", file=sys.stderr)
        return 1
    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    else:
        print(format_cycle_report(report))
    return 1 if report.error else 0


def cmd_status(engine: SyncEngine, args) -> int:
    status = engine.status()
    if args.json:
        print(json.dumps(status, indent=2))
        return 0
    print(f"Strategy:        {status['strategy']}")
    print(f"Quotes:          {status['records']}")
    print(f"Pending changes: {status['pending_changes']}")
    print(f"Last sync:       {format_timestamp(status['last_sync_at'])}")
    if status["consecutive_failures"]:
        print(
            f"Failures:        {status['consecutive_failures']} "
            f"(backing off until {format_timestamp(status['backoff_until'])})"
        )
    return 0


def cmd_log(engine: SyncEngine, args) -> int:
    print(format_sync_log(engine.sync_log(args.limit)))
    return 0


COMMANDS = {
    "list": cmd_list,
    "add": cmd_add,
    "update": cmd_update,
    "delete": cmd_delete,
    "sync": cmd_sync,
    "status": cmd_status,
    "log": cmd_log,
}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quote-sync",
        description="Manage a local quote collection and sync it with a remote",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  quote-sync list --category Life
  quote-sync add "Simplicity is the soul of efficiency." --category Wisdom
  quote-sync sync --strategy manual
  quote-sync sync --strategy manual --resolve keep-both
        """,
    )
    parser.add_argument("--remote-url", help="Remote endpoint URL")
    parser.add_argument("--data-dir", help="Directory for persisted data")
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in ConflictStrategy],
        help="Conflict resolution strategy",
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"quote-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List local quotes")
    p_list.add_argument("--category", help="Only show this category")
    p_list.add_argument(
        "--random", action="store_true", help="Show one random quote"
    )

    p_add = sub.add_parser("add", help="Add a quote")
    p_add.add_argument("text", help="Quote text")
    p_add.add_argument("--category", required=True, help="Category label")

    p_update = sub.add_parser("update", help="Edit a quote")
    p_update.add_argument("id", type=int, help="Quote id")
    p_update.add_argument("--text", help="New text")
    p_update.add_argument("--category", help="New category")

    p_delete = sub.add_parser("delete", help="Delete a quote")
    p_delete.add_argument("id", type=int, help="Quote id")

    p_sync = sub.add_parser("sync", help="Run one sync cycle now")
    p_sync.add_argument(
        "--resolve",
        choices=[r.value for r in Resolution],
        help="Answer every manual conflict with this choice instead of prompting",
    )
    p_sync.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )

    p_status = sub.add_parser("status", help="Show sync status")
    p_status.add_argument(
        "--json", action="store_true", help="Print the status as JSON"
    )

    p_log = sub.add_parser("log", help="Show the sync log")
    p_log.add_argument(
        "--limit", type=int, default=20, help="Number of entries (default: 20)"
    )

    sub.add_parser("init-config", help="Write a starter config file")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "init-config":
        setup_logging(mode="cli", debug=args.debug, log_file=args.log_file)
        print(f"Config file: {ensure_config()}")
        return 0

    overrides = {
        "remote_url": args.remote_url,
        "data_dir": args.data_dir,
        "strategy": args.strategy,
        "debug": args.debug or None,
        # one-shot commands never run the periodic timer
        "auto_sync": False,
    }
    try:
        config, _ = load_config_from_sources(
            {k: v for k, v in overrides.items() if v is not None}
        )
    except ValueError as e:
        setup_logging(mode="cli", debug=args.debug, log_file=args.log_file)
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(
        mode="cli",
        debug=config.debug,
        log_file=args.log_file or config.log_file,
        level=config.log_level,
    )

    engine = build_engine(
        config,
        on_conflicts_detected=make_prompt_resolver(getattr(args, "resolve", None)),
    )
    engine.seed_defaults()

    try:
        return COMMANDS[args.command](engine, args)
    except RecordNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run()
