"""One reconciliation cycle: push, pull, detect, resolve or merge, apply.

``SyncCycle.run()`` performs the whole sequence and returns a
``CycleReport``.  It does not catch gateway or resolution errors: those
propagate to the scheduler, and because nothing is written before the
resolved record set is ready, a failed cycle leaves the store and the
pending-changes log untouched.

Crash safety: the resolved record set is written in one ``replace_all``
before satisfied pending changes are cleared.  An interruption in between
re-pushes those changes on the next cycle (at-least-once).
"""

from __future__ import annotations

import itertools
import logging
from typing import Callable, Sequence

from .context import SyncContext
from .detector import detect_conflicts
from .errors import InvariantViolation
from .gateway import RemoteGateway
from .merger import merge_snapshots
from .models import ChangeKind, Conflict, CycleReport, Record, SyncStatus
from .resolver import ConflictResolver, ResolutionOutcome, apply_resolutions
from .tracker import ChangeTracker

logger = logging.getLogger(__name__)


class SyncCycle:
    """Run reconciliation cycles against one gateway.

    Args:
        context: Shared sync context.
        tracker: Change tracker owning the pending log.
        gateway: Remote snapshot gateway.
        resolver: Resolver for the active strategy.
    """

    def __init__(
        self,
        context: SyncContext,
        tracker: ChangeTracker,
        gateway: RemoteGateway,
        resolver: ConflictResolver,
    ) -> None:
        self.context = context
        self.tracker = tracker
        self.gateway = gateway
        self.resolver = resolver

    async def run(
        self,
        on_conflicts: Callable[[list[Conflict]], None] | None = None,
    ) -> CycleReport:
        """Execute one full cycle.

        Args:
            on_conflicts: Called with the detected conflicts before they
                are resolved (the scheduler uses it to emit the conflict
                event and enter ``awaiting-resolution``).

        Returns:
            The cycle report.

        Raises:
            GatewayError: If push or pull fails.
            ConflictResolutionError: If manual resolution fails.
        """
        ctx = self.context
        started_at = ctx.clock.now_ms()

        # Step a: push pending changes in creation order
        pushed = self.tracker.pending_changes()
        cutoff = pushed[-1].seq if pushed else 0
        if pushed:
            logger.info("Pushing %d pending changes", len(pushed))
            await self.gateway.push(pushed)

        # Step b: pull and validate the remote snapshot
        snapshot = await self.gateway.pull()
        remote, skipped = validate_snapshot(snapshot.records)
        logger.info(
            "Pulled %d remote records (%d skipped)", len(remote), len(skipped)
        )

        # Step c: detect
        local = ctx.store.all()
        tombstones = {c.record_id for c in pushed if c.kind == ChangeKind.DELETE}
        now = ctx.clock.now_ms()
        conflicts = detect_conflicts(
            local, remote, ctx.known_remote_ids, now, tombstones
        )

        # Step d: resolve or merge
        resolutions = []
        if conflicts:
            logger.info(
                "Detected %d conflicts (strategy=%s)",
                len(conflicts),
                self.resolver.strategy.value,
            )
            if on_conflicts is not None:
                on_conflicts(conflicts)
            resolutions = await self.resolver.choose(conflicts)
            outcome = apply_resolutions(
                local,
                remote,
                conflicts,
                resolutions,
                self._id_minter(local, remote),
                ctx.clock.now_ms(),
            )
        else:
            outcome = ResolutionOutcome(records=merge_snapshots(local, remote))

        # Step e: apply as one unit, then settle pending changes
        fresh_ids = self.tracker.pending_ids(after_seq=cutoff)
        final = self._preserve_concurrent_edits(outcome.records, fresh_ids)
        ctx.store.replace_all(final)

        satisfied = {c.record_id for c in pushed} - outcome.skipped_ids
        self.tracker.clear(satisfied, up_to_seq=cutoff)
        for kind, record in outcome.requeue:
            # a newer local edit is already queued for this id
            if record.id not in fresh_ids:
                self.tracker.record_change(kind, record)

        ctx.known_remote_ids = {r.id for r in remote} - set(outcome.removed_ids)
        completed_at = ctx.clock.now_ms()
        ctx.last_sync_at = completed_at
        ctx.save_state()

        before = {r.id: r for r in local}
        after = {r.id: r for r in final}
        return CycleReport(
            started_at=started_at,
            completed_at=completed_at,
            status=SyncStatus.SUCCESS,
            pushed=len(pushed),
            pulled=len(remote),
            conflicts=conflicts,
            resolutions=resolutions,
            added_ids=[i for i in after if i not in before],
            updated_ids=[
                i for i in after if i in before and after[i] != before[i]
            ],
            removed_ids=[i for i in before if i not in after],
            requeued_ids=[record.id for _, record in outcome.requeue],
            skipped=skipped + outcome.skipped,
        )

    def _id_minter(
        self, local: Sequence[Record], remote: Sequence[Record]
    ) -> Callable[[], int]:
        # Same scheme as RecordStore.next_id: time-based, above every known id.
        ctx = self.context
        highest = max(
            [
                0,
                *(r.id for r in local),
                *(r.id for r in remote),
                *ctx.known_remote_ids,
                *ctx.store.ids(),
            ]
        )
        counter = itertools.count(max(ctx.clock.now_ms(), highest + 1))
        return lambda: next(counter)

    def _preserve_concurrent_edits(
        self, resolved: list[Record], fresh_ids: set[int]
    ) -> list[Record]:
        """Keep the current local state of records edited mid-cycle.

        Local writes can land while the cycle is suspended (gateway calls,
        manual resolution).  Their pending changes are newer than the
        pushed batch and go out next cycle, so the resolved set must not
        overwrite them.
        """
        if not fresh_ids:
            return resolved

        store = self.context.store
        final: list[Record] = []
        for record in resolved:
            if record.id not in fresh_ids:
                final.append(record)
                continue
            current = store.get(record.id)
            if current is not None:
                final.append(current)
        present = {r.id for r in final}
        for record_id in sorted(fresh_ids - present):
            current = store.get(record_id)
            if current is not None:
                final.append(current)
        logger.debug(
            "Kept %d records edited during the cycle", len(fresh_ids)
        )
        return final


def validate_snapshot(records: Sequence[Record]) -> tuple[list[Record], list[str]]:
    """Drop remote records that break data invariants.

    Later duplicates of an id, negative versions and negative timestamps
    are skipped and logged; the rest of the snapshot is kept.

    Returns:
        ``(valid_records, skipped_messages)``
    """
    valid: list[Record] = []
    skipped: list[str] = []
    seen: set[int] = set()
    for record in records:
        try:
            if record.id in seen:
                raise InvariantViolation(record.id, "duplicate id in remote snapshot")
            if record.version < 0:
                raise InvariantViolation(record.id, f"negative version {record.version}")
            if record.last_modified < 0:
                raise InvariantViolation(
                    record.id, f"negative timestamp {record.last_modified}"
                )
        except InvariantViolation as exc:
            logger.warning("Skipping remote record: %s", exc)
            skipped.append(str(exc))
            continue
        seen.add(record.id)
        valid.append(record)
    return valid, skipped
