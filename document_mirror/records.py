"""
Record type for collection members.

A record is a field mapping plus two reserved attributes kept outside
the payload: its identity within the collection and, once it exists
remotely, its DocumentReference.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .references import DocumentReference

RESERVED_FIELDS = frozenset({"id", "ref"})


@dataclass
class Record:
    """A collection member.

    Attributes:
        id: Identity, unique within the collection (None before creation)
        data: Field mapping written to and read from the backend
        ref: Remote reference (None means not yet created remotely)
    """

    id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    ref: DocumentReference | None = None

    def __post_init__(self) -> None:
        if self.id is None and self.ref is not None:
            self.id = self.ref.id

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def copy(self) -> Record:
        """Deep copy of the payload; the reference is shared (it is immutable)."""
        return Record(id=self.id, data=copy.deepcopy(self.data), ref=self.ref)

    def to_dict(self) -> dict[str, Any]:
        """Flatten to a plain mapping with the identity under ``"id"``."""
        result: dict[str, Any] = {"id": self.id}
        result.update(self.data)
        return result

    @classmethod
    def from_value(cls, value: Record | Mapping[str, Any]) -> Record:
        """Normalize a Record or a plain mapping into a Record.

        The reserved keys ``"id"`` and ``"ref"`` of a mapping are lifted
        out of the payload.
        """
        if isinstance(value, Record):
            return value
        if not isinstance(value, Mapping):
            raise TypeError(f"Expected a Record or mapping, got {type(value).__name__}")

        data = {k: v for k, v in value.items() if k not in RESERVED_FIELDS}
        ref = value.get("ref")
        if ref is not None and not isinstance(ref, DocumentReference):
            ref = DocumentReference(str(ref))
        record_id = value.get("id")
        return cls(id=str(record_id) if record_id is not None else None, data=data, ref=ref)


def copy_records(records: list[Record]) -> list[Record]:
    """Deep copy a list of records."""
    return [record.copy() for record in records]
