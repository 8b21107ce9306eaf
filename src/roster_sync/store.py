"""roster_sync.store

Roster store interface and its PostgreSQL implementation.

Every statement is parameterized.  Each mutation runs in its own
`conn.transaction()` block: on an autocommit connection that is a full
BEGIN/COMMIT per student, on a non-autocommit (dry-run) connection it is a
savepoint inside the run transaction, which the caller rolls back.
Empty optional strings are written as NULL and read back as "".
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

import psycopg

from roster_sync.shared import (
    CanonicalRecord,
    ExistingRosterEntry,
    School,
    StoreOperationError,
    YearLevel,
)


class RosterStore(Protocol):
    def list_schools(self) -> list[School]:
        ...

    def list_year_levels(self) -> list[YearLevel]:
        ...

    def list_students(self) -> list[ExistingRosterEntry]:
        ...

    def insert_student(
        self,
        roster_id: int,
        school_id: int,
        year_level_id: int,
        record: CanonicalRecord,
        now: datetime,
    ) -> None:
        ...

    def update_student(
        self,
        roster_id: int,
        year_level_id: int,
        record: CanonicalRecord,
        update_sequence: int,
        now: datetime,
    ) -> None:
        ...

    def mark_deleted(self, roster_id: int, now: datetime) -> None:
        ...


def _null_if_empty(value: str) -> str | None:
    return value if value else None


_STUDENT_COLUMNS = """
    id, school_id, student_code, year_level_id, first_name, middle_name,
    surname, gender, birth_date, lbote, atsi, disability, ema, esl,
    home_group, deleted, update_sequence
"""


class PostgresRosterStore:
    """RosterStore over a psycopg 3 connection.  Caller owns the connection."""

    def __init__(self, conn: psycopg.Connection, audit_user: str = "roster_sync") -> None:
        self._conn = conn
        self._audit_user = audit_user

    # -- reads --------------------------------------------------------------

    def list_schools(self) -> list[School]:
        rows = self._conn.execute(
            "SELECT id, name, location FROM school ORDER BY id ASC"
        ).fetchall()
        return [School(id=r[0], name=r[1], location=r[2]) for r in rows]

    def list_year_levels(self) -> list[YearLevel]:
        rows = self._conn.execute(
            "SELECT id, label FROM year_level ORDER BY id ASC"
        ).fetchall()
        return [YearLevel(id=r[0], label=r[1].strip()) for r in rows]

    def list_students(self) -> list[ExistingRosterEntry]:
        rows = self._conn.execute(
            f"SELECT {_STUDENT_COLUMNS} FROM student ORDER BY id ASC"
        ).fetchall()
        return [
            ExistingRosterEntry(
                roster_id=r[0],
                school_id=r[1],
                student_code=r[2],
                year_level_id=r[3],
                first_name=r[4],
                middle_name=r[5] or "",
                surname=r[6],
                gender=r[7],
                birth_date=r[8],
                lbote=r[9],
                atsi=r[10],
                disability=r[11],
                ema=r[12],
                esl=r[13],
                home_group=r[14] or "",
                deleted=r[15],
                update_sequence=r[16],
            )
            for r in rows
        ]

    # -- mutations ----------------------------------------------------------

    def insert_student(
        self,
        roster_id: int,
        school_id: int,
        year_level_id: int,
        record: CanonicalRecord,
        now: datetime,
    ) -> None:
        try:
            with self._conn.transaction():
                self._conn.execute(
                    """
                    INSERT INTO student
                      (id, year_level_id, school_id, student_code, external_code,
                       first_name, middle_name, surname, gender, birth_date,
                       lbote, atsi, disability, ema, esl, home_group,
                       deleted, update_sequence,
                       created_at, created_by, updated_at, updated_by)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                            %s, %s, %s, %s, %s, %s,
                            false, 0,
                            %s, %s, %s, %s)
                    """,
                    (
                        roster_id, year_level_id, school_id,
                        record.student_code, record.student_code,
                        record.first_name, _null_if_empty(record.middle_name),
                        record.surname, record.gender, record.birth_date,
                        record.lbote, record.atsi, record.disability,
                        record.ema, record.esl, _null_if_empty(record.home_group),
                        now, self._audit_user, now, self._audit_user,
                    ),
                )
        except psycopg.Error as exc:
            raise StoreOperationError(f"insert_student id={roster_id}: {exc}") from exc

    def update_student(
        self,
        roster_id: int,
        year_level_id: int,
        record: CanonicalRecord,
        update_sequence: int,
        now: datetime,
    ) -> None:
        try:
            with self._conn.transaction():
                cur = self._conn.execute(
                    """
                    UPDATE student SET
                      year_level_id = %s,
                      first_name = %s,
                      middle_name = %s,
                      surname = %s,
                      gender = %s,
                      birth_date = %s,
                      lbote = %s,
                      atsi = %s,
                      disability = %s,
                      ema = %s,
                      esl = %s,
                      home_group = %s,
                      update_sequence = %s,
                      deleted = false,
                      updated_at = %s,
                      updated_by = %s
                    WHERE id = %s
                    """,
                    (
                        year_level_id,
                        record.first_name, _null_if_empty(record.middle_name),
                        record.surname, record.gender, record.birth_date,
                        record.lbote, record.atsi, record.disability,
                        record.ema, record.esl, _null_if_empty(record.home_group),
                        update_sequence, now, self._audit_user,
                        roster_id,
                    ),
                )
                if cur.rowcount != 1:
                    raise StoreOperationError(f"update_student id={roster_id}: no such student")
        except psycopg.Error as exc:
            raise StoreOperationError(f"update_student id={roster_id}: {exc}") from exc

    def mark_deleted(self, roster_id: int, now: datetime) -> None:
        try:
            with self._conn.transaction():
                cur = self._conn.execute(
                    """
                    UPDATE student SET
                      deleted = true,
                      update_sequence = update_sequence + 1,
                      updated_at = %s,
                      updated_by = %s
                    WHERE id = %s AND NOT deleted
                    """,
                    (now, self._audit_user, roster_id),
                )
                if cur.rowcount != 1:
                    raise StoreOperationError(f"mark_deleted id={roster_id}: no active student")
        except psycopg.Error as exc:
            raise StoreOperationError(f"mark_deleted id={roster_id}: {exc}") from exc
