"""
Diff engine for collection mirrors.

Given the last backend-confirmed collection and the collection a local
mutation produced, decide which records need a remote write. Records are
matched by identity through a hash index, then compared by structural
equality of their payload. Order of records is never content.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .equality import deep_equal
from .records import Record
from .references import DocumentReference


@dataclass
class WritePlan:
    """Outcome of diffing a local mutation against the remote baseline.

    Attributes:
        writes: (reference, record) pairs to overwrite remotely
        created: Records with no remote counterpart yet; written by add()
        omitted: Remote records missing from the new collection; not deleted
        unchanged: Number of matched records that need no write
    """

    writes: list[tuple[DocumentReference, Record]] = field(default_factory=list)
    created: list[Record] = field(default_factory=list)
    omitted: list[Record] = field(default_factory=list)
    unchanged: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.writes


def plan_writes(remote: list[Record], updated: list[Record]) -> WritePlan:
    """Compute the minimal set of remote writes for a collection update.

    Args:
        remote: Last backend-confirmed records (the diff baseline)
        updated: Records after the local mutation

    Returns:
        WritePlan listing dirty records and bookkeeping
    """
    plan = WritePlan()
    by_id = {record.id: record for record in remote if record.id is not None}
    seen: set[str] = set()

    for record in updated:
        prior = by_id.get(record.id) if record.id is not None else None
        if prior is None:
            plan.created.append(record)
            continue

        seen.add(prior.id)  # type: ignore[arg-type]
        if deep_equal(record.data, prior.data):
            plan.unchanged += 1
            continue

        ref = record.ref or prior.ref
        if ref is None:
            plan.created.append(record)
            continue
        plan.writes.append((ref, record))

    plan.omitted = [r for r in remote if r.id is not None and r.id not in seen]
    return plan
