"""roster_sync.reconcile

Batch reconciliation of incoming student rows against the roster.

Processing order per row:
  1. Validate raw fields            → RecordValidationError
  2. Normalize to canonical form
  3. In-batch duplicate check       → DuplicateRecordError
  4. Resolve year level label       → YearLevelResolutionError
  5. Match against the snapshot     → IdentityAmbiguityError
  6. Match:   diff → update (or no-op when unchanged)
     NoMatch: allocate roster_id → insert

After the batch, when soft delete is on, every active student of the school
whose code did not appear in the validated batch is marked deleted.

Matching always uses the roster as read at the start of the run; rows
written earlier in the same run are invisible to later rows.  Per-row
failures are rejected and counted, never raised.  Only bootstrap failures
(reference data, roster read) raise, and they do so before any row is
touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable

from roster_sync.allocator import RosterIdAllocator
from roster_sync.config import SyncConfig
from roster_sync.diff import diff_record
from roster_sync.matching import AmbiguousMatch, Match, RosterIndex, match_record
from roster_sync.normalize import normalize_record, sanitize_text
from roster_sync.shared import (
    DuplicateRecordError,
    ExistingRosterEntry,
    FatalBootstrapError,
    IdentityAmbiguityError,
    RecordValidationError,
    RejectWriter,
    RunCounters,
    School,
    StoreOperationError,
    YearLevelResolutionError,
)
from roster_sync.store import RosterStore
from roster_sync.validation import validate_row

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class RecordOutcome:
    row_number: int
    student_code: str
    action: str  # inserted | updated | unchanged | errored
    roster_id: int | None = None
    reason: str | None = None
    changes: list[str] = field(default_factory=list)


@dataclass
class ReconcileResult:
    counters: RunCounters
    outcomes: list[RecordOutcome] = field(default_factory=list)
    deleted_ids: list[int] = field(default_factory=list)


@dataclass
class RosterSnapshot:
    """Reference data and roster state read once before processing."""

    school_id: int
    year_levels: dict[str, int]
    students: list[ExistingRosterEntry]

    @property
    def school_students(self) -> list[ExistingRosterEntry]:
        return [s for s in self.students if s.school_id == self.school_id]


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

def select_school(store: RosterStore, school_id: int | None) -> School:
    """Return the school to sync.

    Auto-selects when exactly one school exists and none was requested.
    """
    try:
        schools = store.list_schools()
    except Exception as exc:
        raise FatalBootstrapError(f"cannot list schools: {exc}") from exc

    if school_id is not None:
        for school in schools:
            if school.id == school_id:
                return school
        raise FatalBootstrapError(f"school id {school_id} not found")

    if not schools:
        raise FatalBootstrapError("no schools defined in the roster store")
    if len(schools) > 1:
        listing = ", ".join(f"{s.id}={s.name}" for s in schools)
        raise FatalBootstrapError(
            f"{len(schools)} schools found ({listing}); a school id is required"
        )
    return schools[0]


def load_snapshot(store: RosterStore, school_id: int) -> RosterSnapshot:
    try:
        year_levels = {yl.label: yl.id for yl in store.list_year_levels()}
        students = store.list_students()
    except Exception as exc:
        raise FatalBootstrapError(f"cannot read roster reference data: {exc}") from exc
    if not year_levels:
        raise FatalBootstrapError("year level reference table is empty")
    return RosterSnapshot(school_id=school_id, year_levels=year_levels, students=students)


# ---------------------------------------------------------------------------
# Per-row processing
# ---------------------------------------------------------------------------

@dataclass
class _RunState:
    store: RosterStore
    snapshot: RosterSnapshot
    index: RosterIndex
    allocator: RosterIdAllocator
    config: SyncConfig
    counters: RunCounters
    now: datetime
    processed_codes: set[str] = field(default_factory=set)
    present_codes: set[str] = field(default_factory=set)


def _process_row(state: _RunState, row: dict[str, str], row_number: int) -> RecordOutcome:
    """Process one row.  Raises one of the per-record errors on rejection."""
    violations = validate_row(row)
    if violations:
        raise RecordValidationError(violations)

    record = normalize_record(row)
    state.present_codes.add(record.student_code)

    if state.config.reject_duplicate_codes and record.student_code in state.processed_codes:
        raise DuplicateRecordError(
            f"student_code {record.student_code!r} already appeared earlier in this batch"
        )
    state.processed_codes.add(record.student_code)

    year_level_id = state.snapshot.year_levels.get(record.year_level)
    if year_level_id is None:
        raise YearLevelResolutionError(record.year_level)

    result = match_record(
        record,
        state.index,
        extended_check=state.config.extended_check,
        min_agreements=state.config.min_agreements,
    )

    if isinstance(result, AmbiguousMatch):
        raise IdentityAmbiguityError(
            result.reason, result.entry.identity(), record.identity()
        )

    if isinstance(result, Match):
        entry = result.entry
        changes = diff_record(entry, record, year_level_id)
        if not changes.has_changes:
            state.counters.unchanged += 1
            return RecordOutcome(row_number, record.student_code, "unchanged", entry.roster_id)
        state.store.update_student(
            entry.roster_id,
            year_level_id,
            record,
            entry.update_sequence + 1,
            state.now,
        )
        state.counters.updated += 1
        change_log = changes.change_log()
        log.info(
            "Updated student %s (id=%s): %s",
            record.student_code, entry.roster_id, "; ".join(change_log),
        )
        return RecordOutcome(
            row_number, record.student_code, "updated", entry.roster_id, changes=change_log
        )

    roster_id = state.allocator.allocate()
    try:
        state.store.insert_student(
            roster_id, state.snapshot.school_id, year_level_id, record, state.now
        )
    except StoreOperationError:
        state.allocator.release(roster_id)
        raise
    state.counters.inserted += 1
    log.info("Inserted student %s (id=%s)", record.student_code, roster_id)
    return RecordOutcome(row_number, record.student_code, "inserted", roster_id)


def _reject_reason(exc: Exception) -> tuple[str, str]:
    """Return (counter suffix, reject reason) for a per-record error."""
    if isinstance(exc, RecordValidationError):
        return "validation", f"invalid_record: {exc}"
    if isinstance(exc, DuplicateRecordError):
        return "duplicate", f"duplicate_student_code: {exc}"
    if isinstance(exc, YearLevelResolutionError):
        return "year_level", f"year_level_unresolved: {exc}"
    if isinstance(exc, IdentityAmbiguityError):
        return "ambiguous", f"ambiguous_identity: {exc}"
    return "store", f"db_error: {exc}"


_REJECT_COUNTERS = {
    "validation": "rejected_validation",
    "duplicate": "rejected_duplicate",
    "year_level": "rejected_year_level",
    "ambiguous": "rejected_ambiguous",
    "store": "store_errors",
}


# ---------------------------------------------------------------------------
# Soft-delete sweep
# ---------------------------------------------------------------------------

def _sweep_deleted(state: _RunState, result: ReconcileResult) -> None:
    for entry in state.snapshot.school_students:
        if entry.deleted or entry.student_code in state.present_codes:
            continue
        try:
            state.store.mark_deleted(entry.roster_id, state.now)
        except StoreOperationError as exc:
            state.counters.errored += 1
            state.counters.store_errors += 1
            state.counters.warnings.append(
                f"soft delete failed for student {entry.student_code!r} (id={entry.roster_id}): {exc}"
            )
            log.error("Soft delete failed for id=%s: %s", entry.roster_id, exc)
            continue
        state.counters.deleted += 1
        result.deleted_ids.append(entry.roster_id)
        log.info("Marked student %s (id=%s) deleted", entry.student_code, entry.roster_id)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run_reconcile(
    store: RosterStore,
    raw_rows: Iterable[dict[str, str]],
    school_id: int,
    config: SyncConfig | None = None,
    counters: RunCounters | None = None,
    rejects: RejectWriter | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> ReconcileResult:
    """Reconcile one batch of raw rows for a school and return the outcome.

    Raises FatalBootstrapError if reference data cannot be read; nothing is
    written in that case.
    """
    config = config or SyncConfig()
    counters = counters or RunCounters()
    snapshot = load_snapshot(store, school_id)

    state = _RunState(
        store=store,
        snapshot=snapshot,
        index=RosterIndex(snapshot.school_students),
        allocator=RosterIdAllocator(
            (s.roster_id for s in snapshot.students),
            config.base_for_school(school_id),
        ),
        config=config,
        counters=counters,
        now=clock(),
    )
    result = ReconcileResult(counters=counters)

    for row_number, row in enumerate(raw_rows, start=1):
        try:
            outcome = _process_row(state, row, row_number)
        except (
            RecordValidationError,
            DuplicateRecordError,
            YearLevelResolutionError,
            IdentityAmbiguityError,
            StoreOperationError,
        ) as exc:
            kind, reason = _reject_reason(exc)
            counters.errored += 1
            setattr(counters, _REJECT_COUNTERS[kind], getattr(counters, _REJECT_COUNTERS[kind]) + 1)
            if kind == "store":
                log.error("Row %d rejected: %s", row_number, reason)
            else:
                log.warning("Row %d rejected: %s", row_number, reason)
            if rejects is not None:
                rejects.write(row, reason)
            outcome = RecordOutcome(
                row_number,
                sanitize_text(row.get("student_code")),
                "errored",
                reason=reason,
            )
        result.outcomes.append(outcome)

    if config.soft_delete:
        _sweep_deleted(state, result)

    return result
