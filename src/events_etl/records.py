"""events_etl.records

Record assemblers and the event aggregate.

A CSV row becomes an EventRecord or AttendeeRecord. One EventRecord plus
its attendees folds into an Event, and an Event plus an image reference
becomes a Certificate. Every object here is immutable; cross-field policy
(e.g. requiring at least one attendee) is left to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from events_etl.shared import normalize_headers
from events_etl.values import (
    Cpf,
    EventDate,
    EventDescription,
    parse_attendee_name,
    parse_cpf,
    parse_event_date,
    parse_event_description,
    parse_event_name,
    parse_workload,
)

EVENT_HEADERS = {"NOME", "DATA", "TEXTO"}
ATTENDEE_HEADERS = {"NOME", "CPF", "CH"}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class MissingRecordError(LookupError):
    """Raised when a required record is absent from the input sequence."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AttendeeRecord:
    name: str
    cpf: Cpf
    workload: int


@dataclass(frozen=True)
class EventRecord:
    name: str
    date: EventDate
    description: EventDescription

    def into_event(self, attendees: Iterable[AttendeeRecord]) -> Event:
        return Event(data=self, attendees=tuple(attendees))


@dataclass(frozen=True)
class Event:
    """An event and its attendees, in input order.

    Attendee order is significant: it fixes the positional binding
    variables (uid0, uid1, ...) used when the event is rendered to SQL.
    """

    data: EventRecord
    attendees: tuple[AttendeeRecord, ...] = ()

    def into_certificate(self, image_reference: str) -> Certificate:
        return Certificate(event=self, image_reference=image_reference)


@dataclass(frozen=True)
class Certificate:
    event: Event
    image_reference: str


# ---------------------------------------------------------------------------
# Row assemblers
# ---------------------------------------------------------------------------

def parse_event_record(row: dict[str, str]) -> EventRecord:
    """Build an EventRecord from a row with NOME, DATA and TEXTO columns."""
    r = normalize_headers(row)
    return EventRecord(
        name=parse_event_name(r.get("NOME")),
        date=parse_event_date(r.get("DATA")),
        description=parse_event_description(r.get("TEXTO")),
    )


def parse_attendee_record(row: dict[str, str]) -> AttendeeRecord:
    """Build an AttendeeRecord from a row with NOME, CPF and CH columns."""
    r = normalize_headers(row)
    return AttendeeRecord(
        name=parse_attendee_name(r.get("NOME")),
        cpf=parse_cpf(r.get("CPF")),
        workload=parse_workload(r.get("CH")),
    )


def first_record(rows: Iterable[dict[str, str]], what: str) -> dict[str, str]:
    """Return the first row or raise MissingRecordError."""
    it: Iterator[dict[str, str]] = iter(rows)
    try:
        return next(it)
    except StopIteration:
        raise MissingRecordError(f"no {what} record found") from None

