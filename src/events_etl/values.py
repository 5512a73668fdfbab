"""events_etl.values

Validated domain values parsed from raw CSV fields.

Every parser either returns a fully validated value or raises
ValidationError carrying the expected shape and the rejected raw value.
Nothing is coerced: a malformed CPF is rejected, never padded or truncated.

Usage:
    from events_etl.values import parse_cpf, parse_event_date

    cpf = parse_cpf(" 089.116.843-50 ")
    when = parse_event_date("01/01/2023 - 04/04/2023")
    str(when)  # "período de 01/01/2023 a 04/04/2023"
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Union

from events_etl.normalize import (
    capitalize_words,
    format_day,
    parse_day,
    parse_number,
    trim,
)

_CPF_RE = re.compile(r"[0-9]{3}\.[0-9]{3}\.[0-9]{3}-[0-9]{2}")
_UINT_RE = re.compile(r"[0-9]+")
_U32_MAX = 2**32 - 1


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ValidationError(ValueError):
    """Raised when a raw field does not satisfy its domain rule."""

    def __init__(self, field: str, expected: str, found: Any) -> None:
        self.field = field
        self.expected = expected
        self.found = found
        super().__init__(f"{field}: expected '{expected}' found '{found}'")


# ---------------------------------------------------------------------------
# Event date
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Day:
    day: date

    def __str__(self) -> str:
        return render_event_date(self)


@dataclass(frozen=True)
class Period:
    start: date
    end: date

    def __post_init__(self) -> None:
        if not self.start < self.end:
            raise ValidationError(
                "DATA",
                "period start strictly before end",
                f"{format_day(self.start)} - {format_day(self.end)}",
            )

    def __str__(self) -> str:
        return render_event_date(self)


EventDate = Union[Day, Period]


def render_event_date(value: EventDate) -> str:
    """Canonical rendering of an event date.

    The rendered text is stored in evento.data and is also the lookup key
    used to bind the event id, so display and key must stay identical.
    """
    if isinstance(value, Day):
        return f"dia {format_day(value.day)}"
    if isinstance(value, Period):
        return f"período de {format_day(value.start)} a {format_day(value.end)}"
    raise TypeError(f"not an event date: {value!r}")


def parse_event_date(raw: str | None) -> EventDate:
    """Parse 'DD/MM/YYYY' or 'DD/MM/YYYY - DD/MM/YYYY'."""
    v = trim(raw)
    if v is None:
        raise ValidationError("DATA", "DD/MM/YYYY or DD/MM/YYYY - DD/MM/YYYY", raw)
    if "-" in v:
        left, right = v.split("-", 1)
        start, end = parse_day(left), parse_day(right)
        if start is None or end is None:
            raise ValidationError("DATA", "DD/MM/YYYY - DD/MM/YYYY", raw)
        return Period(start, end)
    day = parse_day(v)
    if day is None:
        raise ValidationError("DATA", "DD/MM/YYYY", raw)
    return Day(day)


# ---------------------------------------------------------------------------
# Event description
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DescriptionId:
    """Reference to a description row that already exists in texto."""

    id: int


@dataclass(frozen=True)
class DescriptionText:
    """A new description to insert into texto."""

    text: str


EventDescription = Union[DescriptionId, DescriptionText]


def parse_event_description(raw: str | None) -> EventDescription:
    v = trim(raw)
    if v is None:
        raise ValidationError("TEXTO", "Non-empty description Text or Id", raw)
    if _UINT_RE.fullmatch(v) and int(v) <= _U32_MAX:
        return DescriptionId(int(v))
    return DescriptionText(v)


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------

def parse_event_name(raw: str | None) -> str:
    v = trim(raw)
    if v is None:
        raise ValidationError("NOME", "Non-empty event name", raw)
    return v


def parse_attendee_name(raw: str | None) -> str:
    name = capitalize_words(raw)
    if name is None:
        raise ValidationError("NOME", "Non-empty attendee name", raw)
    return name


# ---------------------------------------------------------------------------
# CPF (national id)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Cpf:
    """National id of the form 000.000.000-00.

    Only the shape is checked; check digits are not verified.
    """

    value: str

    def __post_init__(self) -> None:
        if not _CPF_RE.fullmatch(self.value):
            raise ValidationError(
                "CPF", "Valid CPF of the form 000.000.000-00", self.value
            )

    def __str__(self) -> str:
        return self.value


def parse_cpf(raw: str | None) -> Cpf:
    v = trim(raw)
    if v is None:
        raise ValidationError("CPF", "Valid CPF of the form 000.000.000-00", raw)
    return Cpf(v)


# ---------------------------------------------------------------------------
# Workload (CH)
# ---------------------------------------------------------------------------

def parse_workload(raw: str | int | float | None) -> int:
    """Return contact hours rounded up: 1.3 → 2, 5.0 → 5.

    Zero and negative values are rejected.
    """
    hours = parse_number(raw)
    if hours is None or hours <= 0.0:
        raise ValidationError("CH", "Workload greater than 0.0", raw)
    return math.ceil(hours)

