"""roster_sync.validation

Field-level validation of raw student rows.

validate_row() collects every violated rule rather than stopping at the
first; an empty list means the row is valid.  Rows are never modified.
"""

from __future__ import annotations

from roster_sync.normalize import (
    ACCEPTED_YEAR_LEVELS,
    BOOLEAN_FIELDS,
    BOOLEAN_TOKENS,
    GENDER_TOKENS,
    parse_birth_date,
    sanitize_text,
    trim,
)

# (field, max length)
REQUIRED_TEXT_FIELDS = (
    ("student_code", 20),
    ("first_name", 40),
    ("surname", 40),
)

OPTIONAL_TEXT_FIELDS = (
    ("middle_name", 40),
    ("home_group", 40),
)

REQUIRED_HEADERS = frozenset({
    "student_code",
    "first_name",
    "middle_name",
    "surname",
    "gender",
    "date_of_birth",
    "LBOTE",
    "ATSI",
    "disability_status",
    "EMA",
    "ESL",
    "home_group",
    "year_level",
})


def validate_row(row: dict[str, str]) -> list[str]:
    """Return descriptions of every rule the row violates."""
    violations: list[str] = []

    for name, max_len in REQUIRED_TEXT_FIELDS:
        value = trim(row.get(name))
        if value is None:
            violations.append(f"{name}: required")
        elif len(value) > max_len:
            violations.append(f"{name}: longer than {max_len} characters")
        elif not sanitize_text(value):
            violations.append(f"{name}: no allowed characters")

    for name, max_len in OPTIONAL_TEXT_FIELDS:
        value = trim(row.get(name))
        if value is not None and len(value) > max_len:
            violations.append(f"{name}: longer than {max_len} characters")

    gender = (trim(row.get("gender")) or "").upper()
    if gender not in GENDER_TOKENS:
        violations.append(f"gender: {row.get('gender')!r} not one of M, MALE, F, FEMAL, FEMALE")

    for name in BOOLEAN_FIELDS:
        token = (trim(row.get(name)) or "").upper()
        if token not in BOOLEAN_TOKENS:
            violations.append(f"{name}: {row.get(name)!r} is not a boolean token")

    year_level = (trim(row.get("year_level")) or "").upper()
    if year_level not in ACCEPTED_YEAR_LEVELS:
        violations.append(f"year_level: {row.get('year_level')!r} is not a year level code")

    if parse_birth_date(row.get("date_of_birth")) is None:
        violations.append(
            f"date_of_birth: {row.get('date_of_birth')!r} matches neither D/MM/YYYY nor MMM D YYYY"
        )

    return violations
