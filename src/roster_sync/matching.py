"""roster_sync.matching

Identity resolution of a canonical incoming record against the pre-run
roster snapshot.

Resolution:
  1. Exact student_code lookup, deleted entries included.
  2. With extended checking on, corroborate the hit using first name,
     surname and birth date; at least `min_agreements` of the three must
     agree (case-insensitive for names) or the result is ambiguous.
  3. No student_code hit → NoMatch (insert candidate).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from roster_sync.shared import CanonicalRecord, ExistingRosterEntry

DEFAULT_MIN_AGREEMENTS = 2


@dataclass(frozen=True)
class NoMatch:
    pass


@dataclass(frozen=True)
class Match:
    entry: ExistingRosterEntry


@dataclass(frozen=True)
class AmbiguousMatch:
    entry: ExistingRosterEntry
    reason: str


MatchResult = Union[NoMatch, Match, AmbiguousMatch]


class RosterIndex:
    """Read-only student_code index over a roster snapshot.

    Built once per run; mutations made during the run are not reflected.
    When a code appears more than once the non-deleted entry wins, then the
    lowest roster_id.
    """

    def __init__(self, entries: Iterable[ExistingRosterEntry]) -> None:
        ranked = sorted(entries, key=lambda e: (e.deleted, e.roster_id))
        self._by_code: dict[str, ExistingRosterEntry] = {}
        for entry in ranked:
            self._by_code.setdefault(entry.student_code, entry)

    def get(self, student_code: str) -> ExistingRosterEntry | None:
        return self._by_code.get(student_code)

    def __len__(self) -> int:
        return len(self._by_code)


def _same_name(a: str, b: str) -> bool:
    return a.strip().casefold() == b.strip().casefold()


def count_agreements(record: CanonicalRecord, entry: ExistingRosterEntry) -> int:
    return sum((
        _same_name(record.first_name, entry.first_name),
        _same_name(record.surname, entry.surname),
        record.birth_date == entry.birth_date,
    ))


def match_record(
    record: CanonicalRecord,
    index: RosterIndex,
    extended_check: bool = True,
    min_agreements: int = DEFAULT_MIN_AGREEMENTS,
) -> MatchResult:
    entry = index.get(record.student_code)
    if entry is None:
        return NoMatch()
    if not extended_check:
        return Match(entry)

    agreements = count_agreements(record, entry)
    if agreements < min_agreements:
        return AmbiguousMatch(
            entry,
            f"identity_mismatch: {agreements} of 3 identity fields agree "
            f"(need {min_agreements})",
        )
    return Match(entry)
