"""roster_sync.diff

Field-by-field comparison of a matched incoming record with its roster
entry.  Comparison is exact on canonical values; an entry that is
currently soft-deleted always yields an "undelete" change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from roster_sync.shared import MUTABLE_FIELDS, CanonicalRecord, ExistingRosterEntry


@dataclass(frozen=True)
class FieldChange:
    field: str
    old: Any
    new: Any

    def describe(self) -> str:
        return f"{self.field}: {self.old!r} -> {self.new!r}"


@dataclass(frozen=True)
class ChangeSet:
    changes: tuple[FieldChange, ...] = field(default_factory=tuple)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    @property
    def undelete(self) -> bool:
        return any(c.field == "deleted" for c in self.changes)

    def fields(self) -> list[str]:
        return [c.field for c in self.changes]

    def change_log(self) -> list[str]:
        return [c.describe() for c in self.changes]


def incoming_values(record: CanonicalRecord, year_level_id: int) -> dict[str, Any]:
    """Mutable-field values of an incoming record, keyed like the roster."""
    values = {name: getattr(record, name) for name in MUTABLE_FIELDS if name != "year_level_id"}
    values["year_level_id"] = year_level_id
    return values


def diff_record(
    entry: ExistingRosterEntry,
    record: CanonicalRecord,
    year_level_id: int,
) -> ChangeSet:
    new_values = incoming_values(record, year_level_id)
    changes = [
        FieldChange(name, getattr(entry, name), new_values[name])
        for name in MUTABLE_FIELDS
        if getattr(entry, name) != new_values[name]
    ]
    if entry.deleted:
        changes.append(FieldChange("deleted", True, False))
    return ChangeSet(tuple(changes))
