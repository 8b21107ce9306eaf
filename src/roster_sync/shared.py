"""roster_sync.shared

Shared types used across the reconciliation pipeline: record dataclasses,
the error taxonomy, RejectWriter, RunCounters, header normalization and
report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RecordValidationError(Exception):
    """Raised when a raw record violates one or more field rules."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = list(violations)
        super().__init__("; ".join(self.violations))


class IdentityAmbiguityError(Exception):
    """Raised when a student_code matches but the identity fields disagree."""

    def __init__(self, reason: str, existing: dict[str, Any], incoming: dict[str, Any]) -> None:
        self.reason = reason
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"{reason}: existing={existing!r} incoming={incoming!r}"
        )


class YearLevelResolutionError(Exception):
    """Raised when a canonical year label has no reference year level."""

    def __init__(self, label: str) -> None:
        self.label = label
        super().__init__(f"not a valid year level: {label!r}")


class DuplicateRecordError(Exception):
    """Raised for a student_code already seen earlier in the same batch."""


class StoreOperationError(Exception):
    """Raised when a single roster store mutation fails."""


class FatalBootstrapError(Exception):
    """Raised when the run cannot start (store, reference data, school, input)."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

# Fields compared by the matcher and diff engine, in change-log order.
MUTABLE_FIELDS = (
    "year_level_id",
    "first_name",
    "middle_name",
    "surname",
    "gender",
    "birth_date",
    "lbote",
    "atsi",
    "disability",
    "ema",
    "esl",
    "home_group",
)


@dataclass(frozen=True)
class CanonicalRecord:
    """One incoming row after normalization.

    Optional strings are "" when absent; flags are "0"/"1".
    """

    student_code: str
    first_name: str
    middle_name: str
    surname: str
    gender: str
    birth_date: date
    lbote: str
    atsi: str
    disability: str
    ema: str
    esl: str
    home_group: str
    year_level: str

    def identity(self) -> dict[str, Any]:
        return {
            "student_code": self.student_code,
            "first_name": self.first_name,
            "surname": self.surname,
            "birth_date": self.birth_date,
        }


@dataclass(frozen=True)
class ExistingRosterEntry:
    """A persisted student row as read from the roster store."""

    roster_id: int
    school_id: int
    student_code: str
    year_level_id: int
    first_name: str
    middle_name: str
    surname: str
    gender: str
    birth_date: date
    lbote: str
    atsi: str
    disability: str
    ema: str
    esl: str
    home_group: str
    deleted: bool = False
    update_sequence: int = 0

    def identity(self) -> dict[str, Any]:
        return {
            "student_code": self.student_code,
            "first_name": self.first_name,
            "surname": self.surname,
            "birth_date": self.birth_date,
        }


@dataclass(frozen=True)
class School:
    id: int
    name: str
    location: str | None = None


@dataclass(frozen=True)
class YearLevel:
    id: int
    label: str


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, str], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    rows_read: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    errored: int = 0
    # Breakdown of errored
    rejected_validation: int = 0
    rejected_year_level: int = 0
    rejected_ambiguous: int = 0
    rejected_duplicate: int = 0
    store_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "deleted": self.deleted,
            "errored": self.errored,
            "rejected_validation": self.rejected_validation,
            "rejected_year_level": self.rejected_year_level,
            "rejected_ambiguous": self.rejected_ambiguous,
            "rejected_duplicate": self.rejected_duplicate,
            "store_errors": self.store_errors,
            "warnings": self.warnings[:50],
        }


# ---------------------------------------------------------------------------
# Header normalization
# ---------------------------------------------------------------------------

def normalize_headers(raw: dict[str, str]) -> dict[str, str]:
    """Return a new dict with header keys whitespace-stripped."""
    return {k.strip(): v for k, v in raw.items() if k is not None}


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: RunCounters,
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path


def build_run_summary(counters: RunCounters, dry_run: bool) -> str:
    lines = [
        "=== Student Roster Sync Report ===",
        f"dry_run    : {dry_run}",
        f"rows_read  : {counters.rows_read}",
        "",
        f"inserted   : {counters.inserted}",
        f"updated    : {counters.updated}",
        f"unchanged  : {counters.unchanged}",
        f"deleted    : {counters.deleted}",
        f"errored    : {counters.errored}",
        "",
        "--- Errors ---",
        f"validation : {counters.rejected_validation}",
        f"year_level : {counters.rejected_year_level}",
        f"ambiguous  : {counters.rejected_ambiguous}",
        f"duplicate  : {counters.rejected_duplicate}",
        f"store      : {counters.store_errors}",
    ]
    if counters.warnings:
        lines.append("")
        lines.append(f"--- Warnings ({len(counters.warnings)}) ---")
        lines.extend(counters.warnings[:20])
    return "\n".join(lines)
