"""Sync engine facade: one object wiring every sync component together.

The ``SyncEngine`` owns one ``SyncContext`` and builds the change tracker,
resolver, cycle runner and scheduler around it.  Front ends (CLI, MCP
server) talk only to this facade:

1. Local writes go through ``add_quote`` / ``update_quote`` /
   ``delete_quote`` and are tracked as pending changes.
2. ``trigger_sync()`` runs one cycle now; ``start()`` / ``stop()`` control
   the periodic timer.
3. ``on_sync_event()`` subscribes to progress events; ``status()`` and
   ``sync_log()`` expose state for display.

With the ``manual`` strategy and no explicit callback, conflicts are
delivered to the engine's ``ConflictInbox`` and answered with
``resolve_conflicts()``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from .context import Clock, SyncContext, SystemClock
from .cycle import SyncCycle
from .errors import ConflictResolutionError, SyncError
from .gateway import HttpGateway, InMemoryGateway, RemoteGateway
from .models import (
    ConflictStrategy,
    CycleReport,
    Quote,
    Record,
    SyncLogEntry,
)
from .persistence import JsonFileStore, KeyValueStore
from .resolver import ConflictCallback, ConflictInbox, create_resolver
from .scheduler import EventListener, SleepFn, SyncScheduler
from .tracker import ChangeTracker

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "all"

DEFAULT_QUOTES: tuple[Quote, ...] = (
    Quote(
        text="The only way to do great work is to love what you do.",
        category="Inspiration",
    ),
    Quote(
        text="Life is what happens to you while you're busy making other plans.",
        category="Life",
    ),
    Quote(
        text="The future belongs to those who believe in the beauty of their dreams.",
        category="Motivation",
    ),
    Quote(
        text="It is during our darkest moments that we must focus to see the light.",
        category="Wisdom",
    ),
    Quote(
        text="Whoever is happy will make others happy too.",
        category="Happiness",
    ),
    Quote(
        text="You only live once, but if you do it right, once is enough.",
        category="Life",
    ),
    Quote(
        text="Be the change that you wish to see in the world.",
        category="Inspiration",
    ),
)


class SyncEngine:
    """Local-first quote collection kept in sync with one remote.

    Args:
        config: Engine configuration.
        gateway: Remote snapshot gateway.
        store: Persistence collaborator.  Defaults to a ``JsonFileStore``
            under ``config.data_dir``.
        clock: Timestamp source.  Defaults to the system clock.
        sleep: Awaitable sleep for the periodic timer.
        on_conflicts_detected: Decision maker for the ``manual`` strategy.
            Defaults to the engine's ``ConflictInbox``.
    """

    def __init__(
        self,
        config: Config,
        gateway: RemoteGateway,
        store: KeyValueStore | None = None,
        clock: Clock | None = None,
        sleep: SleepFn | None = None,
        on_conflicts_detected: ConflictCallback | None = None,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.clock = clock or SystemClock()
        persistence = (
            store if store is not None else JsonFileStore(Path(config.data_dir))
        )

        self.context = SyncContext(
            persistence=persistence,
            clock=self.clock,
            strategy=config.strategy,
            log_limit=config.sync_log_limit,
        )
        self.context.load()

        self.inbox = ConflictInbox()
        self._on_conflicts_detected = on_conflicts_detected or self.inbox

        self.tracker = ChangeTracker(self.context)
        self.cycle = SyncCycle(
            self.context,
            self.tracker,
            gateway,
            create_resolver(config.strategy, self._on_conflicts_detected),
        )
        self.scheduler = SyncScheduler(
            self.context,
            self.cycle,
            interval_ms=config.sync_interval_ms,
            auto_sync_enabled=config.auto_sync_enabled,
            max_backoff_ms=config.max_backoff_ms,
            sleep=sleep or asyncio.sleep,
        )

    # ------------------------------------------------------------------
    # Local write API
    # ------------------------------------------------------------------

    def add_quote(self, text: str, category: str) -> Record:
        return self.tracker.add(text, category)

    def update_quote(
        self,
        record_id: int,
        text: str | None = None,
        category: str | None = None,
    ) -> Record:
        return self.tracker.update(record_id, text=text, category=category)

    def delete_quote(self, record_id: int) -> Record:
        return self.tracker.delete(record_id)

    def seed_defaults(self) -> int:
        """Add the starter quotes to a brand-new, never-synced collection.

        Returns:
            Number of quotes added (0 if the store already had data or a
            sync has happened before).
        """
        ctx = self.context
        if len(ctx.store) or ctx.last_sync_at is not None or ctx.pending:
            return 0
        for record_id, quote in enumerate(DEFAULT_QUOTES, start=1):
            self.tracker.add(quote.text, quote.category, record_id=record_id)
        logger.info("Seeded %d starter quotes", len(DEFAULT_QUOTES))
        return len(DEFAULT_QUOTES)

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def quotes(self) -> list[Record]:
        """Return every local record in store order."""
        return self.context.store.all()

    def get_quote(self, record_id: int) -> Record | None:
        return self.context.store.get(record_id)

    def categories(self) -> list[str]:
        """Return the distinct categories, sorted."""
        return sorted({r.payload.category for r in self.context.store.all()})

    def filter_by_category(self, category: str = ALL_CATEGORIES) -> list[Record]:
        """Return records in *category* (``"all"`` returns everything)."""
        records = self.context.store.all()
        if category == ALL_CATEGORIES:
            return records
        return [r for r in records if r.payload.category == category]

    def random_quote(
        self,
        category: str = ALL_CATEGORIES,
        rng: random.Random | None = None,
    ) -> Record | None:
        """Pick a random record, optionally within *category*."""
        candidates = self.filter_by_category(category)
        if not candidates:
            return None
        return (rng or random).choice(candidates)

    # ------------------------------------------------------------------
    # Sync control
    # ------------------------------------------------------------------

    async def trigger_sync(self) -> CycleReport | None:
        """Run one sync cycle now.  Never raises for sync failures.

        Returns:
            The cycle report, or ``None`` if a cycle was already running.
        """
        return await self.scheduler.trigger_now()

    def start(self) -> bool:
        """Start periodic sync (when enabled).  Requires a running loop."""
        self.context.append_log("info", "Sync system initialised")
        return self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()

    def on_sync_event(self, listener: EventListener) -> Callable[[], None]:
        return self.scheduler.on_sync_event(listener)

    def set_strategy(self, strategy: ConflictStrategy | str) -> ConflictStrategy:
        """Switch the conflict strategy for subsequent cycles.

        Raises:
            ValueError: If *strategy* is unknown.
            SyncError: If a cycle is in flight.
        """
        if self.context.in_flight:
            raise SyncError("Cannot change strategy while a sync is running")
        resolver = create_resolver(strategy, self._on_conflicts_detected)
        self.cycle.resolver = resolver
        self.context.strategy = resolver.strategy
        self.context.save_state()
        logger.info("Conflict strategy set to %s", resolver.strategy.value)
        return resolver.strategy

    def resolve_conflicts(self, choices: Any) -> list:
        """Answer the conflict batch awaiting manual resolution.

        Args:
            choices: One resolution per conflict (list) or a mapping from
                record id to resolution.

        Raises:
            ConflictResolutionError: If no batch is waiting in the engine's
                inbox or the choices are invalid.
        """
        if self._on_conflicts_detected is not self.inbox:
            raise ConflictResolutionError(
                "Conflicts are resolved by a custom callback, not the inbox"
            )
        return self.inbox.submit(choices)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return a JSON-friendly summary of the engine state."""
        ctx = self.context
        last = self.scheduler.last_report
        return {
            "state": ctx.state.value,
            "in_flight": ctx.in_flight,
            "strategy": ctx.strategy.value,
            "records": len(ctx.store),
            "pending_changes": len(ctx.pending),
            "last_sync_at": ctx.last_sync_at,
            "consecutive_failures": ctx.consecutive_failures,
            "backoff_until": ctx.backoff_until,
            "awaiting_resolution": len(ctx.conflicts),
            "auto_sync_enabled": self.scheduler.auto_sync_enabled,
            "timer_running": self.scheduler.running,
            "sync_interval_ms": self.scheduler.interval_ms,
            "last_result": last.summary() if last else None,
        }

    def sync_log(self, limit: int | None = None) -> list[SyncLogEntry]:
        """Return sync log entries, oldest first (the newest *limit*)."""
        entries = list(self.context.sync_log)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_gateway(
    config: Config, clock: Clock, persistence: KeyValueStore | None = None
) -> RemoteGateway:
    """Create the gateway described by *config*.

    Without ``remote_url`` the simulated remote is used, persisted next to
    the local data (or in *persistence* when given).
    ``simulate_server_updates`` only applies to the simulated remote.
    """
    if not config.remote_url:
        logger.info("No remote URL configured; using simulated remote")
        if persistence is None:
            persistence = JsonFileStore(Path(config.data_dir))
        return InMemoryGateway(
            clock,
            persistence=persistence,
            simulate_updates=config.simulate_server_updates,
        )
    if config.simulate_server_updates:
        logger.warning(
            "simulate_server_updates is ignored with a remote URL (%s)",
            config.remote_url,
        )
    return HttpGateway(
        config.remote_url,
        clock,
        payload_format=config.remote_format,
        timeout=config.remote_timeout,
    )


def build_engine(
    config: Config,
    store: KeyValueStore | None = None,
    clock: Clock | None = None,
    on_conflicts_detected: ConflictCallback | None = None,
) -> SyncEngine:
    """Construct a ``SyncEngine`` with the gateway selected by *config*."""
    clock = clock or SystemClock()
    return SyncEngine(
        config,
        build_gateway(config, clock, store),
        store=store,
        clock=clock,
        on_conflicts_detected=on_conflicts_detected,
    )
