"""Sync scheduler: periodic and on-demand reconciliation cycles.

State machine::

    idle -> syncing -> idle                  (success)
                    -> awaiting-resolution   (manual strategy, conflicts)
                    -> backoff               (failure)

Rules:

* **At most one cycle in flight.**  ``in_flight`` is checked and set with
  no suspension point in between; a trigger that finds a cycle running is
  logged and ignored (not queued).
* **Failures back off.**  After a failed cycle periodic ticks are skipped
  until ``backoff_until`` (interval doubled per consecutive failure, capped
  at ``max_backoff_ms``), unless pending local changes exist, which
  promote the tick into a real cycle.  Manual triggers ignore backoff.
* **Awaiting resolution suppresses ticks**, so the same conflicts are not
  re-detected while a decision is outstanding.
* **Nothing escapes.**  Gateway, resolution, storage and unexpected errors
  are caught here.  Cycle failures become ``SyncEvent`` instances while
  failed writes of the sync log or state are only logged.  ``in_flight``
  is cleared on every path.

Timer and clock are injected, so the scheduler runs without wall-clock
time in tests.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from .context import SyncContext
from .cycle import SyncCycle
from .errors import ConflictResolutionError, GatewayError
from .models import (
    Conflict,
    ConflictStrategy,
    CycleReport,
    SchedulerState,
    SyncEvent,
    SyncStatus,
)

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]
EventListener = Callable[[SyncEvent], Any]

DEFAULT_INTERVAL_MS = 30_000
DEFAULT_MAX_BACKOFF_MS = 300_000

_LOG_LEVELS = {
    SyncStatus.SYNCING: "info",
    SyncStatus.SUCCESS: "success",
    SyncStatus.CONFLICT: "warning",
    SyncStatus.ERROR: "error",
}


class SyncScheduler:
    """Drive sync cycles and publish their outcome.

    Args:
        context: Shared sync context.
        cycle: The cycle runner.
        interval_ms: Period between automatic cycles.
        auto_sync_enabled: Whether ``start()`` runs the periodic timer.
        max_backoff_ms: Upper bound for the failure backoff window.
        sleep: Awaitable sleep used by the periodic timer.
    """

    def __init__(
        self,
        context: SyncContext,
        cycle: SyncCycle,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        auto_sync_enabled: bool = True,
        max_backoff_ms: int = DEFAULT_MAX_BACKOFF_MS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError(f"Sync interval must be positive, got {interval_ms}")
        self.context = context
        self.cycle = cycle
        self.interval_ms = interval_ms
        self.auto_sync_enabled = auto_sync_enabled
        self.max_backoff_ms = max_backoff_ms
        self._sleep = sleep
        self._listeners: list[EventListener] = []
        self._listener_tasks: set[asyncio.Future] = set()
        self._task: asyncio.Task | None = None
        self._stopping = False
        self._sleeping = False
        self.last_report: CycleReport | None = None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_sync_event(self, listener: EventListener) -> Callable[[], None]:
        """Register *listener* for every sync event.

        Returns:
            A callable that unregisters the listener.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(
        self, status: SyncStatus, message: str, **details: Any
    ) -> SyncEvent:
        event = SyncEvent(
            status=status,
            message=message,
            timestamp=self.context.clock.now_ms(),
            details=details,
        )
        try:
            self.context.append_log(_LOG_LEVELS[status], message)
        except Exception:
            logger.exception("Could not persist sync log entry")
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._listener_tasks.add(task)
                    task.add_done_callback(self._listener_done)
            except Exception:
                logger.exception("Sync event listener failed")
        return event

    def _listener_done(self, task: asyncio.Future) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Sync event listener failed", exc_info=exc)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self.context.state

    @property
    def running(self) -> bool:
        """Whether the periodic timer task is active."""
        return self._task is not None and not self._task.done()

    async def trigger_now(self) -> CycleReport | None:
        """Run a cycle now, ignoring backoff.

        Returns:
            The cycle report, or ``None`` if a cycle was already in flight.
        """
        return await self._run_cycle("manual")

    trigger_sync = trigger_now

    async def tick(self) -> CycleReport | None:
        """Handle one periodic timer tick.

        Returns:
            The cycle report, or ``None`` if the tick was skipped.
        """
        ctx = self.context
        if ctx.state == SchedulerState.AWAITING_RESOLUTION:
            logger.debug("Periodic sync suppressed: awaiting resolution")
            return None
        if ctx.in_flight:
            logger.info("Sync already in progress; periodic tick skipped")
            return None
        if (
            ctx.backoff_until is not None
            and ctx.clock.now_ms() < ctx.backoff_until
        ):
            if not self.cycle.tracker.has_pending():
                logger.debug(
                    "Periodic sync skipped: backing off until %d",
                    ctx.backoff_until,
                )
                return None
            logger.info("Pending changes promote periodic sync during backoff")
        return await self._run_cycle("periodic")

    # ------------------------------------------------------------------
    # Periodic timer
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Start the periodic timer.  Must be called from a running loop.

        Returns:
            ``True`` if a timer task was started.
        """
        if not self.auto_sync_enabled:
            logger.info("Automatic sync disabled; timer not started")
            return False
        if self.running:
            return False
        self._stopping = False
        self._task = asyncio.create_task(self._periodic())
        logger.info("Periodic sync started (every %d ms)", self.interval_ms)
        return True

    async def stop(self, wait: bool = True) -> None:
        """Stop the periodic timer.

        A cycle that is already running is never cancelled: with
        ``wait=True`` this waits for it to finish, otherwise the timer task
        exits on its own once the cycle completes.
        """
        self._stopping = True
        task, self._task = self._task, None
        if task is None:
            return
        if self._sleeping:
            task.cancel()
        if not wait:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Periodic sync stopped")

    async def _periodic(self) -> None:
        while not self._stopping:
            self._sleeping = True
            try:
                await self._sleep(self.interval_ms / 1000)
            finally:
                self._sleeping = False
            if self._stopping:
                break
            await self.tick()

    # ------------------------------------------------------------------
    # Cycle boundary
    # ------------------------------------------------------------------

    async def _run_cycle(self, trigger: str) -> CycleReport | None:
        ctx = self.context
        if ctx.in_flight:
            logger.info("Sync already in progress; %s trigger ignored", trigger)
            return None
        ctx.in_flight = True
        started_at = ctx.clock.now_ms()

        report: CycleReport | None = None
        failure: Exception | None = None
        try:
            ctx.state = SchedulerState.SYNCING
            self._emit(
                SyncStatus.SYNCING, "Starting synchronization", trigger=trigger
            )
            report = await self.cycle.run(on_conflicts=self._on_conflicts)
        except (GatewayError, ConflictResolutionError) as exc:
            failure = exc
        except Exception as exc:
            logger.exception("Unexpected error during sync cycle")
            failure = exc
        finally:
            ctx.in_flight = False
            ctx.conflicts = []

        if failure is not None or report is None:
            report = self._handle_failure(started_at, failure)
        else:
            self._handle_success(report)
        self.last_report = report
        return report

    def _on_conflicts(self, conflicts: list[Conflict]) -> None:
        ctx = self.context
        kinds = sorted({c.kind.value for c in conflicts})
        if ctx.strategy == ConflictStrategy.MANUAL:
            ctx.state = SchedulerState.AWAITING_RESOLUTION
            ctx.conflicts = list(conflicts)
            message = f"Found {len(conflicts)} conflicts, awaiting resolution"
        else:
            message = (
                f"Found {len(conflicts)} conflicts, applying {ctx.strategy.value}"
            )
        logger.warning(message)
        self._emit(
            SyncStatus.CONFLICT,
            message,
            count=len(conflicts),
            kinds=kinds,
            record_ids=[c.record_id for c in conflicts],
        )

    def _handle_success(self, report: CycleReport) -> None:
        ctx = self.context
        ctx.state = SchedulerState.IDLE
        ctx.consecutive_failures = 0
        ctx.backoff_until = None
        self._save_state()
        logger.info(report.summary())
        self._emit(
            SyncStatus.SUCCESS,
            report.summary(),
            pushed=report.pushed,
            pulled=report.pulled,
            conflicts=len(report.conflicts),
            added=report.added_ids,
            updated=report.updated_ids,
            removed=report.removed_ids,
            skipped=report.skipped,
        )

    def _handle_failure(
        self, started_at: int, failure: Exception | None
    ) -> CycleReport:
        ctx = self.context
        now = ctx.clock.now_ms()
        ctx.consecutive_failures += 1
        delay = min(
            self.interval_ms * 2 ** (ctx.consecutive_failures - 1),
            self.max_backoff_ms,
        )
        ctx.backoff_until = now + delay
        ctx.state = SchedulerState.BACKOFF
        self._save_state()

        reason = str(failure) if failure is not None else "no report produced"
        logger.error(
            "Sync failed (%d consecutive): %s", ctx.consecutive_failures, reason
        )
        self._emit(
            SyncStatus.ERROR,
            f"Sync failed: {reason}",
            error_type=type(failure).__name__ if failure else None,
            consecutive_failures=ctx.consecutive_failures,
            backoff_until=ctx.backoff_until,
            pending=len(ctx.pending),
        )
        return CycleReport(
            started_at=started_at,
            status=SyncStatus.ERROR,
            error=reason,
        )

    def _save_state(self) -> None:
        # The in-memory state stays authoritative; the next save retries.
        try:
            self.context.save_state()
        except Exception:
            logger.exception("Could not persist sync state")
