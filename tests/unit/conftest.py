"""Unit test fixtures: raw row / roster entry factories and an in-memory store."""

from __future__ import annotations

import dataclasses
from datetime import date, datetime

import pytest

from roster_sync.shared import (
    CanonicalRecord,
    ExistingRosterEntry,
    School,
    StoreOperationError,
    YearLevel,
)

YEAR_LEVEL_LABELS = ["F", "01", "02", "03", "04", "05", "06", "07", "08", "09", "10", "11", "12", "UG"]


def base_row(**overrides: str) -> dict[str, str]:
    row = {
        "student_code": "S001",
        "first_name": "Alice",
        "middle_name": "",
        "surname": "Nguyen",
        "gender": "F",
        "date_of_birth": "1/01/2010",
        "LBOTE": "0",
        "ATSI": "N",
        "disability_status": "No",
        "EMA": "1",
        "ESL": "Yes",
        "home_group": "7A",
        "year_level": "7",
    }
    row.update(overrides)
    return row


def base_entry(**overrides) -> ExistingRosterEntry:
    """Roster entry equal to the canonical form of base_row()."""
    values = {
        "roster_id": 500,
        "school_id": 1,
        "student_code": "S001",
        "year_level_id": 8,  # '07'
        "first_name": "Alice",
        "middle_name": "",
        "surname": "Nguyen",
        "gender": "FEMAL",
        "birth_date": date(2010, 1, 1),
        "lbote": "0",
        "atsi": "0",
        "disability": "0",
        "ema": "1",
        "esl": "1",
        "home_group": "7A",
        "deleted": False,
        "update_sequence": 3,
    }
    values.update(overrides)
    return ExistingRosterEntry(**values)


class FakeRosterStore:
    """In-memory RosterStore that applies mutations and records every call."""

    def __init__(
        self,
        students: list[ExistingRosterEntry] | None = None,
        schools: list[School] | None = None,
        year_level_labels: list[str] | None = None,
        fail_codes: set[str] | None = None,
    ) -> None:
        self.students = list(students or [])
        self.schools = schools if schools is not None else [School(1, "Harbour Primary", "North")]
        labels = YEAR_LEVEL_LABELS if year_level_labels is None else year_level_labels
        self.year_levels = [YearLevel(i + 1, label) for i, label in enumerate(labels)]
        self.fail_codes = fail_codes or set()
        self.calls: list[tuple] = []

    def list_schools(self) -> list[School]:
        return list(self.schools)

    def list_year_levels(self) -> list[YearLevel]:
        return list(self.year_levels)

    def list_students(self) -> list[ExistingRosterEntry]:
        return list(self.students)

    @property
    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in ("insert", "update", "delete")]

    def insert_student(
        self,
        roster_id: int,
        school_id: int,
        year_level_id: int,
        record: CanonicalRecord,
        now: datetime,
    ) -> None:
        if record.student_code in self.fail_codes:
            raise StoreOperationError(f"insert_student id={roster_id}: simulated failure")
        self.calls.append(("insert", roster_id, record.student_code))
        self.students.append(
            ExistingRosterEntry(
                roster_id=roster_id,
                school_id=school_id,
                student_code=record.student_code,
                year_level_id=year_level_id,
                first_name=record.first_name,
                middle_name=record.middle_name,
                surname=record.surname,
                gender=record.gender,
                birth_date=record.birth_date,
                lbote=record.lbote,
                atsi=record.atsi,
                disability=record.disability,
                ema=record.ema,
                esl=record.esl,
                home_group=record.home_group,
            )
        )

    def update_student(
        self,
        roster_id: int,
        year_level_id: int,
        record: CanonicalRecord,
        update_sequence: int,
        now: datetime,
    ) -> None:
        if record.student_code in self.fail_codes:
            raise StoreOperationError(f"update_student id={roster_id}: simulated failure")
        self.calls.append(("update", roster_id, update_sequence))
        for idx, entry in enumerate(self.students):
            if entry.roster_id == roster_id:
                self.students[idx] = dataclasses.replace(
                    entry,
                    year_level_id=year_level_id,
                    first_name=record.first_name,
                    middle_name=record.middle_name,
                    surname=record.surname,
                    gender=record.gender,
                    birth_date=record.birth_date,
                    lbote=record.lbote,
                    atsi=record.atsi,
                    disability=record.disability,
                    ema=record.ema,
                    esl=record.esl,
                    home_group=record.home_group,
                    deleted=False,
                    update_sequence=update_sequence,
                )

    def mark_deleted(self, roster_id: int, now: datetime) -> None:
        self.calls.append(("delete", roster_id))
        for idx, entry in enumerate(self.students):
            if entry.roster_id == roster_id:
                if entry.student_code in self.fail_codes:
                    raise StoreOperationError(f"mark_deleted id={roster_id}: simulated failure")
                self.students[idx] = dataclasses.replace(
                    entry, deleted=True, update_sequence=entry.update_sequence + 1
                )


@pytest.fixture
def make_row():
    return base_row


@pytest.fixture
def make_entry():
    return base_entry


@pytest.fixture
def make_store():
    return FakeRosterStore
