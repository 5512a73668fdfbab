"""Normalization functions for event/attendee CSV ingestion.

All functions accept str | None and return the appropriate type or None.
Validation (rejecting values) lives in events_etl.values; these rules only
clean up raw text.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime

_DAY_FORMAT = "%d/%m/%Y"


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
# Rule 3: capitalize_words  (attendee display names)
# ---------------------------------------------------------------------------

def capitalize_words(value: str | None) -> str | None:
    """Upper-case each token's first letter and lower-case the rest.

    " john  will " → "John Will".  Whitespace runs collapse to one space.
    """
    v = normalize_space(value)
    if v is None:
        return None
    return " ".join(word[:1].upper() + word[1:].lower() for word in v.split(" "))


# ---------------------------------------------------------------------------
# Rule 4: parse_day
# ---------------------------------------------------------------------------

def parse_day(value: str | None) -> date | None:
    """Parse 'DD/MM/YYYY'. e.g. '04/05/2023' → date(2023, 5, 4)."""
    v = trim(value)
    if v is None:
        return None
    try:
        return datetime.strptime(v, _DAY_FORMAT).date()
    except ValueError:
        return None


def format_day(value: date) -> str:
    """Inverse of parse_day; always zero-padded."""
    return f"{value.day:02d}/{value.month:02d}/{value.year:04d}"


# ---------------------------------------------------------------------------
# Rule 5: parse_number
# ---------------------------------------------------------------------------

def parse_number(value: str | int | float | None) -> float | None:
    """Parse a finite number from a CSV cell, returning None on failure.

    Accepts a comma as decimal separator ('1,5' → 1.5) since spreadsheets
    exported with a pt-BR locale write hour counts that way.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        v = trim(value)
        if v is None:
            return None
        try:
            number = float(v.replace(",", "."))
        except ValueError:
            return None
    return number if math.isfinite(number) else None
