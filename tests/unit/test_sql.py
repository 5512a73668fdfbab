"""Unit tests for events_etl.sql (statement synthesis and rendering)."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock, call

import pytest

from events_etl.records import AttendeeRecord, EventRecord
from events_etl.sql import (
    Dialect,
    MySqlDialect,
    PostgresDialect,
    SessionVar,
    Statement,
    StatementBatch,
    attendee_statements,
    certificate_statements,
    event_statements,
    execute_batch,
    get_dialect,
)
from events_etl.values import Cpf, Day, DescriptionId, DescriptionText, Period

MYSQL = MySqlDialect()
PG = PostgresDialect()


def _attendees() -> list[AttendeeRecord]:
    return [
        AttendeeRecord("A", Cpf("754.751.875-33"), 1),
        AttendeeRecord("B", Cpf("647.748.630-09"), 2),
    ]


def _event(description=DescriptionText("Some description"), attendees=None):
    record = EventRecord("Event", Day(date(2023, 5, 4)), description)
    return record.into_event(_attendees() if attendees is None else attendees)


def _lines(batch: StatementBatch, dialect) -> list[str]:
    return batch.render(dialect).splitlines()


# ---------------------------------------------------------------------------
# Attendee identity dedup
# ---------------------------------------------------------------------------

class TestAttendeeStatements:
    def test_single_multi_row_insert_ignore(self):
        batch = attendee_statements(_attendees(), MYSQL)
        assert _lines(batch, MYSQL) == [
            "INSERT IGNORE INTO usuario (nome, identificacao) "
            "VALUES ('A', '754.751.875-33'), ('B', '647.748.630-09');"
        ]

    def test_parameters_not_interpolated(self):
        (stmt,) = attendee_statements(_attendees(), MYSQL)
        assert stmt.sql == (
            "INSERT IGNORE INTO usuario (nome, identificacao) VALUES (%s, %s), (%s, %s)"
        )
        assert stmt.params == ("A", "754.751.875-33", "B", "647.748.630-09")

    def test_postgres_uses_on_conflict_do_nothing(self):
        (stmt,) = attendee_statements(_attendees(), PG)
        assert stmt.sql == (
            "INSERT INTO usuario (nome, identificacao) VALUES (%s, %s), (%s, %s) "
            "ON CONFLICT (identificacao) DO NOTHING"
        )

    @pytest.mark.parametrize("dialect", [MYSQL, PG])
    def test_dedup_always_ignores_conflicts(self, dialect):
        # Re-running the same attendee list must never fail on the unique CPF.
        first = attendee_statements(_attendees(), dialect).render(dialect)
        second = attendee_statements(_attendees(), dialect).render(dialect)
        assert first == second
        assert "IGNORE" in first or "DO NOTHING" in first

    def test_no_attendees_no_statement(self):
        assert len(attendee_statements([], MYSQL)) == 0


# ---------------------------------------------------------------------------
# Event synthesis
# ---------------------------------------------------------------------------

class TestEventStatements:
    def test_event_to_sql(self):
        batch = event_statements(_event(), MYSQL)
        assert _lines(batch, MYSQL) == [
            "INSERT IGNORE INTO usuario (nome, identificacao) "
            "VALUES ('A', '754.751.875-33'), ('B', '647.748.630-09');",
            "INSERT IGNORE INTO texto (texto) VALUES ('Some description');",
            "SET @evid := (SELECT id FROM evento WHERE nome = 'Event' "
            "AND data = 'dia 04/05/2023' ORDER BY id DESC LIMIT 1);",
            "SET @txtid := (SELECT id FROM texto WHERE texto = 'Some description' "
            "ORDER BY id ASC LIMIT 1);",
            "SET @uid0 := (SELECT id FROM usuario WHERE identificacao = '754.751.875-33');",
            "SET @uid1 := (SELECT id FROM usuario WHERE identificacao = '647.748.630-09');",
            "INSERT INTO participacao (usuario, evento, texto, ch) "
            "VALUES (@uid0, @evid, @txtid, 1), (@uid1, @evid, @txtid, 2);",
        ]

    def test_description_id_binds_literal(self):
        lines = _lines(event_statements(_event(DescriptionId(42)), MYSQL), MYSQL)
        assert "SET @txtid := 42;" in lines
        assert not any("INTO texto" in line for line in lines)
        assert len(lines) == 6

    def test_period_lookup_key(self):
        record = EventRecord(
            "Event", Period(date(2023, 1, 1), date(2023, 4, 4)), DescriptionId(1)
        )
        lines = _lines(event_statements(record.into_event(_attendees()), MYSQL), MYSQL)
        assert (
            "SET @evid := (SELECT id FROM evento WHERE nome = 'Event' AND "
            "data = 'período de 01/01/2023 a 04/04/2023' ORDER BY id DESC LIMIT 1);"
        ) in lines

    def test_positional_variables_follow_input_order(self):
        attendees = list(reversed(_attendees()))
        batch = event_statements(_event(attendees=attendees), MYSQL)
        uid_stmts = [s for s in batch if s.sql.startswith("SET @uid")]
        assert [s.params for s in uid_stmts] == [("647.748.630-09",), ("754.751.875-33",)]
        assert [s.sql.split()[1] for s in uid_stmts] == ["@uid0", "@uid1"]
        assert list(batch)[-1].params == (2, 1)

    def test_no_attendees(self):
        batch = event_statements(_event(attendees=[]), MYSQL)
        sqls = [s.sql for s in batch]
        assert not any("usuario" in s or "participacao" in s for s in sqls)
        assert len(sqls) == 3

    def test_postgres_event(self):
        stmts = list(event_statements(_event(DescriptionId(7)), PG))
        assert stmts[1] == Statement(
            "SELECT set_config('events_etl.evid', (SELECT id FROM evento WHERE nome = %s "
            "AND data = %s ORDER BY id DESC LIMIT 1)::text, false)",
            ("Event", "dia 04/05/2023"),
        )
        assert stmts[2] == Statement(
            "SELECT set_config('events_etl.txtid', %s, false)", ("7",)
        )
        assert stmts[-1].sql == (
            "INSERT INTO participacao (usuario, evento, texto, ch) VALUES "
            "(current_setting('events_etl.uid0')::integer, "
            "current_setting('events_etl.evid')::integer, "
            "current_setting('events_etl.txtid')::integer, %s), "
            "(current_setting('events_etl.uid1')::integer, "
            "current_setting('events_etl.evid')::integer, "
            "current_setting('events_etl.txtid')::integer, %s)"
        )

    def test_postgres_variable_prefix(self):
        dialect = PostgresDialect("cert_run")
        stmts = list(event_statements(_event(DescriptionId(7)), dialect))
        assert stmts[1].sql.startswith("SELECT set_config('cert_run.evid'")


# ---------------------------------------------------------------------------
# Certificate synthesis
# ---------------------------------------------------------------------------

class TestCertificateStatements:
    def test_cert_to_sql(self):
        event = _event()
        cert = event.into_certificate("cert.png")
        lines = _lines(certificate_statements(cert, MYSQL), MYSQL)
        assert lines[0] == (
            "INSERT INTO evento (nome, data, img) VALUES ('Event', 'dia 04/05/2023', 'cert.png');"
        )
        assert lines[1:] == _lines(event_statements(event, MYSQL), MYSQL)

    def test_statement_order(self):
        cert = _event().into_certificate("img/cert.png")
        kinds = []
        for stmt in certificate_statements(cert, MYSQL):
            if stmt.sql.startswith("INSERT INTO evento"):
                kinds.append("event")
            elif "INTO usuario" in stmt.sql:
                kinds.append("dedup")
            elif "INTO texto" in stmt.sql:
                kinds.append("text")
            elif stmt.sql.startswith("SET @evid"):
                kinds.append("evid")
            elif stmt.sql.startswith("SET @txtid"):
                kinds.append("txtid")
            elif stmt.sql.startswith("SET @uid"):
                kinds.append("uid")
            elif "INTO participacao" in stmt.sql:
                kinds.append("participation")
        assert kinds == [
            "event", "dedup", "text", "evid", "txtid", "uid", "uid", "participation",
        ]


# ---------------------------------------------------------------------------
# Rendering / quoting
# ---------------------------------------------------------------------------

class TestRender:
    def test_database_prefix(self):
        text = event_statements(_event(), MYSQL).render(MYSQL, database="certificados")
        assert text.startswith("USE certificados;\n")
        assert text.endswith(";\n")

    def test_postgres_schema_prefix(self):
        text = event_statements(_event(), PG).render(PG, database="certificados")
        assert text.startswith("SET search_path TO certificados;\n")

    def test_invalid_database_name(self):
        with pytest.raises(ValueError):
            StatementBatch().render(MYSQL, database="x; DROP TABLE evento")

    def test_empty_batch(self):
        assert StatementBatch().render(MYSQL) == ""

    def test_quotes_are_escaped(self):
        attendees = [AttendeeRecord("D'Ávila", Cpf("754.751.875-33"), 1)]
        (stmt,) = attendee_statements(attendees, MYSQL)
        assert MYSQL.inline(stmt) == (
            "INSERT IGNORE INTO usuario (nome, identificacao) "
            "VALUES ('D''Ávila', '754.751.875-33')"
        )

    def test_mysql_escapes_backslash(self):
        assert MYSQL.quote("a\\' OR 1=1 --") == "'a\\\\'' OR 1=1 --'"

    def test_postgres_keeps_backslash(self):
        assert PG.quote("a\\b") == "'a\\b'"

    def test_percent_in_value(self):
        stmt = Statement("INSERT INTO texto (texto) VALUES (%s)", ("100% online",))
        assert MYSQL.inline(stmt) == "INSERT INTO texto (texto) VALUES ('100% online')"

    def test_quote_scalars(self):
        assert MYSQL.quote(None) == "NULL"
        assert MYSQL.quote(3) == "3"


# ---------------------------------------------------------------------------
# Dialect / variables
# ---------------------------------------------------------------------------

def test_get_dialect():
    assert isinstance(get_dialect("mysql"), MySqlDialect)
    dialect = get_dialect("postgresql", "custom")
    assert isinstance(dialect, PostgresDialect)
    assert dialect.variable_prefix == "custom"


def test_get_dialect_unknown():
    with pytest.raises(ValueError, match="unknown SQL dialect"):
        get_dialect("oracle")


def test_session_var_name_validated():
    with pytest.raises(ValueError):
        SessionVar("uid0; DROP")


def test_postgres_prefix_validated():
    with pytest.raises(ValueError):
        PostgresDialect("bad prefix")


# ---------------------------------------------------------------------------
# Executor helper
# ---------------------------------------------------------------------------

def test_execute_batch_runs_in_order_on_one_connection():
    conn = MagicMock()
    batch = certificate_statements(_event().into_certificate("cert.png"), PG)
    count = execute_batch(conn, batch)
    assert count == len(batch) == 8
    assert conn.execute.call_args_list == [call(s.sql, s.params) for s in batch]
    conn.commit.assert_not_called()


def test_execute_batch_passes_none_for_parameterless_statement():
    conn = MagicMock()
    batch = StatementBatch([Statement("SELECT 1")])
    execute_batch(conn, batch)
    conn.execute.assert_called_once_with("SELECT 1", None)


def test_dialect_is_abstract():
    with pytest.raises(TypeError):
        Dialect()
