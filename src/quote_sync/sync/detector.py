"""Conflict detection between the local store and a remote snapshot.

Detection is pure and total: it never fails and never mutates its inputs.

Classification rules, per record id:

* **update** -- present on both sides, payloads differ, and the remote
  copy is strictly newer (``last_modified``).  A local copy that is newer
  is the settled result of a local edit and is *not* flagged; a genuinely
  concurrent but older remote edit is therefore accepted silently.
* **addition** -- present only remotely.
* **deletion** -- present only locally, and the id was part of the last
  accepted remote snapshot (data that never reached the remote is
  local-only and not a conflict).

Output order is local iteration order, with remote-only ids appended in
remote order.
"""

from __future__ import annotations

from typing import Collection, Sequence

from .models import Conflict, ConflictKind, Record


def detect_conflicts(
    local: Sequence[Record],
    remote: Sequence[Record],
    known_remote_ids: Collection[int],
    now: int,
    tombstones: Collection[int] = (),
) -> list[Conflict]:
    """Classify divergences between *local* and *remote*.

    Args:
        local: Local store snapshot in iteration order.
        remote: Remote snapshot (ids assumed unique).
        known_remote_ids: Ids seen in the previous accepted remote snapshot.
        now: Detection timestamp stamped on every conflict.
        tombstones: Ids deleted locally and pushed during this cycle;
            their remote copies are not reported as additions.

    Returns:
        Ordered list of conflicts (possibly empty).
    """
    remote_by_id = {r.id: r for r in remote}
    local_ids = {r.id for r in local}
    conflicts: list[Conflict] = []

    for local_record in local:
        remote_record = remote_by_id.get(local_record.id)
        if remote_record is None:
            if local_record.id in known_remote_ids:
                conflicts.append(
                    Conflict(
                        kind=ConflictKind.DELETION,
                        record_id=local_record.id,
                        local=local_record,
                        detected_at=now,
                    )
                )
            continue

        if (
            local_record.payload != remote_record.payload
            and remote_record.last_modified > local_record.last_modified
        ):
            conflicts.append(
                Conflict(
                    kind=ConflictKind.UPDATE,
                    record_id=local_record.id,
                    local=local_record,
                    remote=remote_record,
                    detected_at=now,
                )
            )

    for remote_record in remote:
        if remote_record.id in local_ids or remote_record.id in tombstones:
            continue
        conflicts.append(
            Conflict(
                kind=ConflictKind.ADDITION,
                record_id=remote_record.id,
                remote=remote_record,
                detected_at=now,
            )
        )

    return conflicts
