"""Normalization functions for student CSV ingestion.

Maps the heterogeneous encodings found in upstream extracts (boolean
tokens, gender codes, year-level codes, two date layouts) onto the
canonical encodings stored in the roster.  The token tables here are
shared with roster_sync.validation so the two can never disagree about
which raw forms are acceptable.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from types import MappingProxyType

from roster_sync.shared import CanonicalRecord

# ---------------------------------------------------------------------------
# Token tables
# ---------------------------------------------------------------------------

BOOLEAN_TOKENS = MappingProxyType({
    "0": "0",
    "N": "0",
    "NO": "0",
    "F": "0",
    "FALSE": "0",
    "1": "1",
    "Y": "1",
    "YES": "1",
    "T": "1",
    "TRUE": "1",
})

GENDER_TOKENS = MappingProxyType({
    "M": "MALE",
    "MALE": "MALE",
    "F": "FEMAL",
    "FEMAL": "FEMAL",
    "FEMALE": "FEMAL",
})

# Tokens not listed here pass through unchanged once validated.
YEAR_LEVEL_TOKENS = MappingProxyType({
    "P": "F",
    "0": "F",
    "00": "F",
    **{str(n): f"{n:02d}" for n in range(1, 10)},
})

YEAR_LEVEL_LABELS = frozenset(
    {"F", "UG", "10", "11", "12"} | {f"{n:02d}" for n in range(1, 10)}
)

ACCEPTED_YEAR_LEVELS = YEAR_LEVEL_LABELS | frozenset(YEAR_LEVEL_TOKENS)

# Day/month/year is tried before the month-name layout.
DATE_FORMATS = ("%d/%m/%Y", "%b %d %Y")

BOOLEAN_FIELDS = ("LBOTE", "ATSI", "disability_status", "EMA", "ESL")

_DISALLOWED_CHARS = re.compile(r"[^\w\-. ]")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: sanitize_text
# ---------------------------------------------------------------------------

def sanitize_text(value: str | None) -> str:
    """Drop every character outside letters, digits, '-', '.', '_' and space.

    Whitespace is collapsed afterwards.  Always returns a string; an absent
    or fully-stripped value becomes "".
    """
    v = normalize_space(value)
    if v is None:
        return ""
    return normalize_space(_DISALLOWED_CHARS.sub("", v)) or ""


# ---------------------------------------------------------------------------
# Rule 4: token mappings
# ---------------------------------------------------------------------------

def _token(value: str | None) -> str:
    return (trim(value) or "").upper()


def normalize_boolean(value: str | None) -> str:
    """Map Y/Yes/T/True → "1" and N/No/F/False → "0"; "0"/"1" unchanged."""
    tok = _token(value)
    return BOOLEAN_TOKENS.get(tok, tok)


def normalize_gender(value: str | None) -> str:
    """Map M → MALE and F/FEMALE → FEMAL."""
    tok = _token(value)
    return GENDER_TOKENS.get(tok, tok)


def normalize_year_level(value: str | None) -> str:
    """Return the canonical year-level label.

    "1".."9" are zero-padded; "P", "0" and "00" become "F"; "10".."12",
    "F" and "UG" pass through.
    """
    tok = _token(value)
    return YEAR_LEVEL_TOKENS.get(tok, tok)


# ---------------------------------------------------------------------------
# Rule 5: parse_birth_date
# ---------------------------------------------------------------------------

def parse_birth_date(value: str | None) -> date | None:
    """Parse 'D/MM/YYYY' or 'MMM D YYYY', first matching layout wins.

    e.g. '1/01/2017' and 'Jan 1 2017' both → date(2017, 1, 1).
    """
    v = normalize_space(value)
    if v is None:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    return None


# ---------------------------------------------------------------------------
# Record-level normalization
# ---------------------------------------------------------------------------

def normalize_record(row: dict[str, str]) -> CanonicalRecord:
    """Return the canonical form of a row that passed validation.

    Pure: the input mapping is never modified.  Year-level resolution
    against the reference table happens later, in the reconciler.
    """
    birth_date = parse_birth_date(row.get("date_of_birth"))
    if birth_date is None:
        raise ValueError(f"unparseable date_of_birth after validation: {row.get('date_of_birth')!r}")
    return CanonicalRecord(
        student_code=sanitize_text(row.get("student_code")),
        first_name=sanitize_text(row.get("first_name")),
        middle_name=sanitize_text(row.get("middle_name")),
        surname=sanitize_text(row.get("surname")),
        gender=normalize_gender(row.get("gender")),
        birth_date=birth_date,
        lbote=normalize_boolean(row.get("LBOTE")),
        atsi=normalize_boolean(row.get("ATSI")),
        disability=normalize_boolean(row.get("disability_status")),
        ema=normalize_boolean(row.get("EMA")),
        esl=normalize_boolean(row.get("ESL")),
        home_group=sanitize_text(row.get("home_group")),
        year_level=normalize_year_level(row.get("year_level")),
    )
