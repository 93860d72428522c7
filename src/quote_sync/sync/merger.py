"""Merge of non-conflicting local and remote snapshots.

Used when the detector reports no conflicts, and as the base on which the
resolver applies conflict decisions.

Key design choices:

* The result is the union of both sides by id.
* For an id present on both sides the remote copy is taken (at this point
  it is expected to be payload-identical), except when the local copy is
  strictly newer: that is the settled local-edit state the detector
  deliberately leaves alone.
* Local-only records, including pending additions, are kept as is.
* Order is local order with remote-only records appended, so merging two
  identical snapshots returns the input unchanged.
"""

from __future__ import annotations

from typing import Collection, Sequence

from .models import Record


def merge_snapshots(
    local: Sequence[Record],
    remote: Sequence[Record],
    exclude_ids: Collection[int] = (),
) -> list[Record]:
    """Fold *local* and *remote* into one consistent record list.

    Args:
        local: Local records in store order.
        remote: Remote snapshot records.
        exclude_ids: Ids left out of the result entirely (conflicting ids
            the resolver will decide on).

    Returns:
        Merged record list.
    """
    remote_by_id = {r.id: r for r in remote}
    merged: list[Record] = []
    seen: set[int] = set()

    for local_record in local:
        seen.add(local_record.id)
        if local_record.id in exclude_ids:
            continue
        remote_record = remote_by_id.get(local_record.id)
        if remote_record is None:
            merged.append(local_record)
        elif local_record.last_modified > remote_record.last_modified:
            merged.append(local_record)
        else:
            merged.append(remote_record)

    for remote_record in remote:
        if remote_record.id in seen or remote_record.id in exclude_ids:
            continue
        merged.append(remote_record)

    return merged
