"""Conflict resolution strategies for the sync engine.

Provides one resolver per configured strategy, all behind the same
``ConflictResolver`` protocol:

- ``RemoteWinsResolver``: the remote decision stands for every conflict.
- ``LocalWinsResolver``: local edits and local records are kept and
  re-pushed; remote additions are adopted.
- ``KeepBothResolver``: divergent updates are duplicated, keeping the local
  copy (conflict-marked) under its id and the remote copy under a new id.
- ``ManualResolver``: hands the whole batch to an external decision maker
  and awaits one choice per conflict.

Resolvers only *choose*; ``apply_resolutions()`` turns the choices into a
resolved record set the same way for every strategy.  The
``create_resolver()`` factory maps ``ConflictStrategy`` values to resolver
instances.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Mapping,
    Protocol,
    Sequence,
)

from .errors import ConflictResolutionError, InvariantViolation
from .merger import merge_snapshots
from .models import (
    ChangeKind,
    Conflict,
    ConflictKind,
    ConflictStrategy,
    Origin,
    Record,
    Resolution,
)

logger = logging.getLogger(__name__)

ConflictCallback = Callable[[list[Conflict]], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    strategy: ConflictStrategy

    async def choose(self, conflicts: list[Conflict]) -> list[Resolution]:
        """Return one resolution per conflict, in the same order.

        Raises:
            ConflictResolutionError: If no valid choice can be obtained.
        """
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Automatic resolvers
# ---------------------------------------------------------------------------


class _AutomaticResolver:
    """Base for resolvers that decide each conflict without outside input."""

    strategy: ClassVar[ConflictStrategy]

    def choose_one(self, conflict: Conflict) -> Resolution:
        raise NotImplementedError

    async def choose(self, conflicts: list[Conflict]) -> list[Resolution]:
        return [self.choose_one(c) for c in conflicts]


class RemoteWinsResolver(_AutomaticResolver):
    """Always resolve in favour of the remote state."""

    strategy = ConflictStrategy.REMOTE_WINS

    def choose_one(self, conflict: Conflict) -> Resolution:
        return Resolution.REMOTE


class LocalWinsResolver(_AutomaticResolver):
    """Keep local state; adopt remote additions, which contradict nothing."""

    strategy = ConflictStrategy.LOCAL_WINS

    def choose_one(self, conflict: Conflict) -> Resolution:
        if conflict.kind == ConflictKind.ADDITION:
            return Resolution.REMOTE
        return Resolution.LOCAL


class KeepBothResolver(_AutomaticResolver):
    """Duplicate divergent updates so neither side's content is lost."""

    strategy = ConflictStrategy.MERGE_KEEP_BOTH

    def choose_one(self, conflict: Conflict) -> Resolution:
        if conflict.kind == ConflictKind.UPDATE:
            return Resolution.KEEP_BOTH
        if conflict.kind == ConflictKind.ADDITION:
            return Resolution.REMOTE
        return Resolution.LOCAL


# ---------------------------------------------------------------------------
# Manual resolver
# ---------------------------------------------------------------------------


class ManualResolver:
    """Delegate the batch of conflicts to an external decision maker.

    The callback receives every conflict of the cycle at once and must
    return (or resolve to) either a sequence with one choice per conflict or
    a mapping from record id to choice.  Choices may be ``Resolution``
    members or their string values.

    Args:
        on_conflicts_detected: Async callback supplying the choices.
    """

    strategy = ConflictStrategy.MANUAL

    def __init__(self, on_conflicts_detected: ConflictCallback) -> None:
        self._callback = on_conflicts_detected

    async def choose(self, conflicts: list[Conflict]) -> list[Resolution]:
        logger.info(
            "Awaiting manual resolution of %d conflicts", len(conflicts)
        )
        try:
            raw = await self._callback(list(conflicts))
        except ConflictResolutionError:
            raise
        except Exception as exc:
            raise ConflictResolutionError(
                f"Conflict resolution callback failed: {exc}"
            ) from exc
        return coerce_resolutions(conflicts, raw)


def coerce_resolutions(
    conflicts: Sequence[Conflict], raw: Any
) -> list[Resolution]:
    """Normalise externally supplied choices to a list of ``Resolution``.

    Raises:
        ConflictResolutionError: On a count mismatch, a missing id, or an
            unknown choice.
    """
    if isinstance(raw, Mapping):
        try:
            keyed = {int(k): v for k, v in raw.items()}
        except (TypeError, ValueError):
            raise ConflictResolutionError(
                "Resolution keys must be record ids"
            ) from None
        missing = [c.record_id for c in conflicts if c.record_id not in keyed]
        if missing:
            raise ConflictResolutionError(
                f"No resolution supplied for records {missing}"
            )
        values = [keyed[c.record_id] for c in conflicts]
    elif isinstance(raw, Sequence) and not isinstance(raw, str):
        if len(raw) != len(conflicts):
            raise ConflictResolutionError(
                f"Expected {len(conflicts)} resolutions, got {len(raw)}"
            )
        values = list(raw)
    else:
        raise ConflictResolutionError(
            f"Unsupported resolution payload: {type(raw).__name__}"
        )

    try:
        return [Resolution(v) for v in values]
    except ValueError as exc:
        raise ConflictResolutionError(
            f"{exc}. Valid resolutions: {[r.value for r in Resolution]}"
        ) from None


class ConflictInbox:
    """Awaitable ``on_conflicts_detected`` for interactive front ends.

    The sync cycle awaits the inbox; a front end (MCP tool, CLI prompt)
    reads ``pending`` and calls ``submit()`` with its choices.  Only one
    batch can be outstanding at a time.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[list[Resolution]] | None = None
        self._conflicts: list[Conflict] = []

    @property
    def pending(self) -> list[Conflict]:
        """Conflicts currently awaiting a decision."""
        return list(self._conflicts)

    @property
    def waiting(self) -> bool:
        return self._future is not None and not self._future.done()

    async def __call__(self, conflicts: list[Conflict]) -> list[Resolution]:
        if self.waiting:
            raise ConflictResolutionError(
                "A conflict batch is already awaiting resolution"
            )
        self._future = asyncio.get_running_loop().create_future()
        self._conflicts = list(conflicts)
        try:
            return await self._future
        finally:
            self._future = None
            self._conflicts = []

    def submit(self, choices: Any) -> list[Resolution]:
        """Complete the outstanding batch.

        Invalid choices raise without completing the batch, so the caller
        can correct and resubmit.

        Raises:
            ConflictResolutionError: If nothing is awaiting resolution or
                the choices are invalid.
        """
        if self._future is None or self._future.done():
            raise ConflictResolutionError(
                "No conflicts are awaiting resolution"
            )
        resolutions = coerce_resolutions(self._conflicts, choices)
        self._future.set_result(resolutions)
        return resolutions

    def cancel(self, reason: str = "Resolution cancelled") -> None:
        """Fail the outstanding batch; the cycle reports an error."""
        if self._future is not None and not self._future.done():
            self._future.set_exception(ConflictResolutionError(reason))


# ---------------------------------------------------------------------------
# Applying resolutions
# ---------------------------------------------------------------------------


@dataclass
class ResolutionOutcome:
    """Resolved record set plus the bookkeeping the cycle needs.

    Attributes:
        records: Resolved records in store order.
        requeue: Changes to push again next cycle, in order.
        added_ids: Ids newly present locally (adopted or duplicated).
        removed_ids: Ids removed locally.
        skipped: Invariant violations, one message per skipped conflict.
        skipped_ids: Ids whose conflict was skipped.
    """

    records: list[Record]
    requeue: list[tuple[ChangeKind, Record]] = field(default_factory=list)
    added_ids: list[int] = field(default_factory=list)
    removed_ids: list[int] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    skipped_ids: set[int] = field(default_factory=set)


def apply_resolutions(
    local: Sequence[Record],
    remote: Sequence[Record],
    conflicts: Sequence[Conflict],
    resolutions: Sequence[Resolution],
    mint_id: Callable[[], int],
    now: int,
) -> ResolutionOutcome:
    """Produce the resolved record set for one cycle.

    Non-conflicting records are merged as by ``merge_snapshots``; each
    conflict is then settled according to its resolution.  A conflict that
    violates a data invariant is skipped (local state kept) without
    affecting the others.

    Args:
        local: Local store snapshot.
        remote: Validated remote snapshot.
        conflicts: Conflicts from the detector.
        resolutions: One resolution per conflict.
        mint_id: Returns a fresh, unused record id on each call.
        now: Timestamp for records created or marked during resolution.
    """
    if len(resolutions) != len(conflicts):
        raise ConflictResolutionError(
            f"Expected {len(conflicts)} resolutions, got {len(resolutions)}"
        )

    addition_ids = {
        c.record_id for c in conflicts if c.kind == ConflictKind.ADDITION
    }
    resolved = {
        r.id: r
        for r in merge_snapshots(local, remote, exclude_ids=addition_ids)
    }
    local_by_id = {r.id: r for r in local}
    outcome = ResolutionOutcome(records=[])

    for conflict, resolution in zip(conflicts, resolutions):
        try:
            _apply_one(conflict, resolution, resolved, outcome, mint_id, now)
        except InvariantViolation as exc:
            logger.warning("Skipping conflict resolution: %s", exc)
            outcome.skipped.append(str(exc))
            outcome.skipped_ids.add(conflict.record_id)
            kept = local_by_id.get(conflict.record_id)
            if kept is not None:
                resolved[conflict.record_id] = kept
            else:
                resolved.pop(conflict.record_id, None)

    outcome.records = list(resolved.values())
    return outcome


def _apply_one(
    conflict: Conflict,
    resolution: Resolution,
    resolved: dict[int, Record],
    outcome: ResolutionOutcome,
    mint_id: Callable[[], int],
    now: int,
) -> None:
    record_id = conflict.record_id

    if conflict.kind == ConflictKind.ADDITION:
        if conflict.remote is None:
            raise InvariantViolation(record_id, "addition without remote record")
        resolved[record_id] = conflict.remote
        outcome.added_ids.append(record_id)
        return

    if conflict.local is None:
        raise InvariantViolation(
            record_id, f"{conflict.kind.value} conflict without local record"
        )

    if conflict.kind == ConflictKind.DELETION:
        if resolution == Resolution.REMOTE:
            resolved.pop(record_id, None)
            outcome.removed_ids.append(record_id)
        else:
            resolved[record_id] = conflict.local
            outcome.requeue.append((ChangeKind.ADD, conflict.local))
        return

    if conflict.remote is None:
        raise InvariantViolation(record_id, "update conflict without remote record")

    if resolution == Resolution.REMOTE:
        resolved[record_id] = conflict.remote
    elif resolution == Resolution.LOCAL:
        resolved[record_id] = conflict.local
        outcome.requeue.append((ChangeKind.UPDATE, conflict.local))
    else:
        new_id = mint_id()
        if new_id in resolved:
            raise InvariantViolation(new_id, "minted id already in use")
        marked = conflict.local.model_copy(
            update={
                "payload": conflict.local.payload.model_copy(
                    update={"conflict_marked": True}
                ),
                "version": conflict.local.version + 1,
                "last_modified": max(now, conflict.local.last_modified + 1),
                "origin": Origin.MERGED,
            }
        )
        duplicate = Record(
            id=new_id,
            payload=conflict.remote.payload,
            version=1,
            last_modified=now,
            origin=Origin.MERGED,
        )
        resolved[record_id] = marked
        resolved[new_id] = duplicate
        outcome.added_ids.append(new_id)
        outcome.requeue.append((ChangeKind.UPDATE, marked))
        outcome.requeue.append((ChangeKind.ADD, duplicate))


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[ConflictStrategy, type[_AutomaticResolver]] = {
    ConflictStrategy.REMOTE_WINS: RemoteWinsResolver,
    ConflictStrategy.LOCAL_WINS: LocalWinsResolver,
    ConflictStrategy.MERGE_KEEP_BOTH: KeepBothResolver,
}


def create_resolver(
    strategy: ConflictStrategy | str,
    on_conflicts_detected: ConflictCallback | None = None,
) -> ConflictResolver:
    """Create a conflict resolver for the given strategy.

    Args:
        strategy: A ``ConflictStrategy`` or its string value.
        on_conflicts_detected: Required for ``manual``; ignored otherwise.

    Returns:
        A ``ConflictResolver`` implementation instance.

    Raises:
        ValueError: If the strategy is not recognised, or ``manual`` is
            requested without a callback.
    """
    try:
        strategy = ConflictStrategy(strategy)
    except ValueError:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(s.value for s in ConflictStrategy)}"
        ) from None

    if strategy == ConflictStrategy.MANUAL:
        if on_conflicts_detected is None:
            raise ValueError(
                "The manual strategy requires an on_conflicts_detected callback"
            )
        return ManualResolver(on_conflicts_detected)
    return _STRATEGY_MAP[strategy]()
