"""events_etl.sql

SQL batch synthesis for an Event / Certificate aggregate.

The batch registers the event, deduplicates attendee identities, creates the
description row when needed and inserts one participacao row per attendee.
Foreign keys are resolved server-side through session variables, so the
caller never reads a generated id back between statements.

Statement order (fixed; later statements read variables set by earlier ones):
  1.  INSERT evento                         (certificates only)
  2.  insert-ignore usuario, one multi-row VALUES for all attendees
  3.  insert-ignore texto                   (DescriptionText only)
  4.  evid  := event id looked up by name + rendered date
      txtid := literal id, or looked up by description text
  5.  uid{i} := usuario id looked up by CPF, one per attendee in input order
  6.  INSERT participacao, one VALUES row per attendee

Every literal travels as a %s parameter. StatementBatch.render() produces the
text script (literals quoted per dialect); execute_batch() runs the same
statements parameterized on one connection.

Caller obligation: the batch must run inside ONE database session. Running it
across connections, or interleaving another batch that reuses the same
variable names, silently corrupts the foreign-key bindings.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Sequence

from events_etl.records import AttendeeRecord, Certificate, Event
from events_etl.values import DescriptionId, DescriptionText, render_event_date

log = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

EVENT_VAR = "evid"
DESCRIPTION_VAR = "txtid"


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionVar:
    """A session-scoped binding variable (deferred reference to a row id)."""

    name: str

    def __post_init__(self) -> None:
        if not _IDENT_RE.fullmatch(self.name):
            raise ValueError(f"invalid session variable name: {self.name!r}")


def attendee_var(index: int) -> SessionVar:
    return SessionVar(f"uid{index}")


@dataclass(frozen=True)
class Statement:
    sql: str
    params: tuple[Any, ...] = ()


@dataclass
class StatementBatch:
    statements: list[Statement] = field(default_factory=list)

    def add(self, statement: Statement) -> None:
        self.statements.append(statement)

    def extend(self, statements: Iterable[Statement]) -> None:
        self.statements.extend(statements)

    def __iter__(self) -> Iterator[Statement]:
        return iter(self.statements)

    def __len__(self) -> int:
        return len(self.statements)

    def render(self, dialect: Dialect, database: str | None = None) -> str:
        """Return the batch as one ';'-terminated script with inlined literals."""
        lines = []
        if database is not None:
            lines.append(dialect.select_database(database) + ";")
        for stmt in self.statements:
            lines.append(dialect.inline(stmt) + ";")
        return "\n".join(lines) + "\n" if lines else ""


# ---------------------------------------------------------------------------
# Dialects
# ---------------------------------------------------------------------------

def _check_identifier(name: str, what: str) -> str:
    if not _IDENT_RE.fullmatch(name):
        raise ValueError(f"invalid {what}: {name!r}")
    return name


class Dialect(ABC):
    """Dialect-specific spelling of insert-ignore and session variables."""

    name = ""

    @abstractmethod
    def insert_ignore(
        self, table: str, columns: Sequence[str], conflict_column: str, rows: int
    ) -> str: ...

    @abstractmethod
    def assign_query(self, var: SessionVar, subquery: str, params: tuple[Any, ...]) -> Statement: ...

    @abstractmethod
    def assign_value(self, var: SessionVar, value: int) -> Statement: ...

    @abstractmethod
    def ref(self, var: SessionVar) -> str: ...

    @abstractmethod
    def select_database(self, database: str) -> str: ...

    @abstractmethod
    def quote_string(self, value: str) -> str: ...

    def quote(self, value: Any) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        if isinstance(value, int):
            return str(value)
        return self.quote_string(str(value))

    def inline(self, stmt: Statement) -> str:
        if not stmt.params:
            return stmt.sql
        return stmt.sql % tuple(self.quote(p) for p in stmt.params)


def _values_rows(width: int, rows: int) -> str:
    row = "(" + ", ".join(["%s"] * width) + ")"
    return ", ".join([row] * rows)


class MySqlDialect(Dialect):
    """MySQL / MariaDB: INSERT IGNORE and @user variables."""

    name = "mysql"

    def insert_ignore(
        self, table: str, columns: Sequence[str], conflict_column: str, rows: int
    ) -> str:
        return (
            f"INSERT IGNORE INTO {table} ({', '.join(columns)}) "
            f"VALUES {_values_rows(len(columns), rows)}"
        )

    def assign_query(self, var: SessionVar, subquery: str, params: tuple[Any, ...]) -> Statement:
        return Statement(f"SET @{var.name} := ({subquery})", params)

    def assign_value(self, var: SessionVar, value: int) -> Statement:
        return Statement(f"SET @{var.name} := %s", (value,))

    def ref(self, var: SessionVar) -> str:
        return f"@{var.name}"

    def select_database(self, database: str) -> str:
        return f"USE {_check_identifier(database, 'database name')}"

    def quote_string(self, value: str) -> str:
        return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"


class PostgresDialect(Dialect):
    """PostgreSQL: ON CONFLICT DO NOTHING and custom settings as variables.

    Variables live in the session as '<prefix>.<name>' settings (set_config
    with is_local=false) and are read back with current_setting().
    """

    name = "postgresql"

    def __init__(self, variable_prefix: str = "events_etl") -> None:
        self.variable_prefix = _check_identifier(variable_prefix, "variable prefix")

    def _setting(self, var: SessionVar) -> str:
        return f"{self.variable_prefix}.{var.name}"

    def insert_ignore(
        self, table: str, columns: Sequence[str], conflict_column: str, rows: int
    ) -> str:
        return (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES {_values_rows(len(columns), rows)} "
            f"ON CONFLICT ({conflict_column}) DO NOTHING"
        )

    def assign_query(self, var: SessionVar, subquery: str, params: tuple[Any, ...]) -> Statement:
        return Statement(
            f"SELECT set_config('{self._setting(var)}', ({subquery})::text, false)",
            params,
        )

    def assign_value(self, var: SessionVar, value: int) -> Statement:
        return Statement(
            f"SELECT set_config('{self._setting(var)}', %s, false)", (str(value),)
        )

    def ref(self, var: SessionVar) -> str:
        return f"current_setting('{self._setting(var)}')::integer"

    def select_database(self, database: str) -> str:
        return f"SET search_path TO {_check_identifier(database, 'schema name')}"

    def quote_string(self, value: str) -> str:
        return "'" + value.replace("'", "''") + "'"


DIALECTS = ("mysql", "postgresql")


def get_dialect(name: str, variable_prefix: str = "events_etl") -> Dialect:
    if name == "mysql":
        return MySqlDialect()
    if name == "postgresql":
        return PostgresDialect(variable_prefix)
    raise ValueError(f"unknown SQL dialect: {name!r} (expected one of {DIALECTS})")


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------

def attendee_statements(
    attendees: Sequence[AttendeeRecord], dialect: Dialect
) -> StatementBatch:
    """One insert-ignore covering every attendee; conflicting CPFs keep the first row."""
    batch = StatementBatch()
    if not attendees:
        return batch
    params: list[Any] = []
    for att in attendees:
        params.extend((att.name, str(att.cpf)))
    sql = dialect.insert_ignore(
        "usuario", ("nome", "identificacao"), "identificacao", len(attendees)
    )
    batch.add(Statement(sql, tuple(params)))
    return batch


def event_statements(event: Event, dialect: Dialect) -> StatementBatch:
    """Statements for an event whose evento row is inserted elsewhere."""
    data = event.data
    rendered_date = render_event_date(data.date)
    evid = SessionVar(EVENT_VAR)
    txtid = SessionVar(DESCRIPTION_VAR)

    batch = attendee_statements(event.attendees, dialect)

    desc = data.description
    if isinstance(desc, DescriptionText):
        batch.add(Statement(dialect.insert_ignore("texto", ("texto",), "texto", 1), (desc.text,)))

    batch.add(dialect.assign_query(
        evid,
        "SELECT id FROM evento WHERE nome = %s AND data = %s ORDER BY id DESC LIMIT 1",
        (data.name, rendered_date),
    ))

    if isinstance(desc, DescriptionId):
        batch.add(dialect.assign_value(txtid, desc.id))
    elif isinstance(desc, DescriptionText):
        batch.add(dialect.assign_query(
            txtid,
            "SELECT id FROM texto WHERE texto = %s ORDER BY id ASC LIMIT 1",
            (desc.text,),
        ))
    else:
        raise TypeError(f"not an event description: {desc!r}")

    if not event.attendees:
        return batch

    rows: list[str] = []
    workloads: list[Any] = []
    for i, att in enumerate(event.attendees):
        uid = attendee_var(i)
        batch.add(dialect.assign_query(
            uid,
            "SELECT id FROM usuario WHERE identificacao = %s",
            (str(att.cpf),),
        ))
        rows.append(f"({dialect.ref(uid)}, {dialect.ref(evid)}, {dialect.ref(txtid)}, %s)")
        workloads.append(att.workload)

    batch.add(Statement(
        f"INSERT INTO participacao (usuario, evento, texto, ch) VALUES {', '.join(rows)}",
        tuple(workloads),
    ))
    return batch


def certificate_statements(cert: Certificate, dialect: Dialect) -> StatementBatch:
    """Event row first, then everything event_statements() emits."""
    data = cert.event.data
    batch = StatementBatch()
    batch.add(Statement(
        "INSERT INTO evento (nome, data, img) VALUES (%s, %s, %s)",
        (data.name, render_event_date(data.date), cert.image_reference),
    ))
    batch.extend(event_statements(cert.event, dialect))
    return batch


# ---------------------------------------------------------------------------
# Executor helper
# ---------------------------------------------------------------------------

def execute_batch(conn: Any, batch: StatementBatch) -> int:
    """Run every statement, in order, on one connection.

    conn is anything with a psycopg-style execute(sql, params). Transaction
    control (commit / rollback) stays with the caller.
    """
    count = 0
    for stmt in batch:
        conn.execute(stmt.sql, stmt.params or None)
        count += 1
    log.debug("executed %d statement(s) in one session", count)
    return count
