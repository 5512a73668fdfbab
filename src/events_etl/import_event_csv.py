"""events_etl.import_event_csv

CLI entrypoint: event CSV + attendees CSV → SQL batch.

The event CSV holds one record (NOME, DATA, TEXTO); the attendees CSV holds
one row per attendee (NOME, CPF, CH). When --img is given the batch also
inserts the evento row (a certificate) and the image is published to the
configured store.

Usage:
    python -m events_etl.import_event_csv \\
        --event "rawEvidence/evento.csv" \\
        --atts "rawEvidence/participantes.csv" \\
        --img "rawEvidence/cert.png" \\
        --output "artifacts/sql/evento.sql" \\
        --database certificados \\
        --image-dir /mnt/certificados

Apply directly to PostgreSQL (one connection, one transaction):
    python -m events_etl.import_event_csv \\
        --event evento.csv --atts participantes.csv --output evento.sql \\
        --dialect postgresql --db-dsn "$DB_DSN"
"""

from __future__ import annotations

import csv
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import NoReturn

import click
import psycopg

from events_etl.image_store import (
    GcsImageStore,
    ImageStore,
    LocalImageStore,
    NullImageStore,
    image_reference,
)
from events_etl.records import (
    ATTENDEE_HEADERS,
    EVENT_HEADERS,
    AttendeeRecord,
    EventRecord,
    MissingRecordError,
    first_record,
    parse_attendee_record,
    parse_event_record,
)
from events_etl.settings import Settings, SettingsValidationError, load_settings
from events_etl.shared import (
    RejectWriter,
    RunCounters,
    missing_headers,
    normalize_headers,
    write_run_report,
)
from events_etl.sql import (
    DIALECTS,
    StatementBatch,
    certificate_statements,
    event_statements,
    execute_batch,
    get_dialect,
)
from events_etl.values import ValidationError


def _fatal(run_id: str, message: str) -> NoReturn:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# Pre-scan
# ---------------------------------------------------------------------------

def read_event_record(path: Path, run_id: str) -> EventRecord:
    with path.open(encoding="utf-8-sig", newline="") as fh:
        reader = csv.DictReader(fh)
        missing = missing_headers(reader.fieldnames, EVENT_HEADERS)
        if missing:
            _fatal(run_id, f"event file missing headers: {sorted(missing)}")
        try:
            row = normalize_headers(first_record(reader, "event"))
            return parse_event_record(row)
        except (MissingRecordError, ValidationError) as e:
            _fatal(run_id, f"invalid event file {path.name}: {e}")


def read_attendee_records(
    path: Path,
    run_id: str,
    counters: RunCounters,
    rejects: RejectWriter,
) -> list[AttendeeRecord]:
    """Parse every attendee row; invalid rows go to the rejects file."""
    attendees: list[AttendeeRecord] = []
    seen: set[str] = set()
    with path.open(encoding="utf-8-sig", newline="") as fh:
        reader = csv.DictReader(fh)
        missing = missing_headers(reader.fieldnames, ATTENDEE_HEADERS)
        if missing:
            _fatal(run_id, f"attendees file missing headers: {sorted(missing)}")
        for raw_row in reader:
            row = normalize_headers(raw_row)
            counters.rows_read += 1
            try:
                att = parse_attendee_record(row)
            except ValidationError as e:
                rejects.write(row, str(e))
                counters.rows_rejected += 1
                continue
            if str(att.cpf) in seen:
                counters.warnings.append(
                    f"duplicate CPF {att.cpf} at row {counters.rows_read}; "
                    "a second participacao row will be inserted"
                )
            seen.add(str(att.cpf))
            attendees.append(att)
    counters.attendees_accepted = len(attendees)
    return attendees


def select_image_store(image_dir: str | None, gcs_bucket: str | None, gcs_prefix: str | None) -> ImageStore:
    if image_dir:
        return LocalImageStore(base_dir=Path(image_dir))
    if gcs_bucket:
        return GcsImageStore(bucket_name=gcs_bucket, prefix=gcs_prefix or "")
    return NullImageStore()


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def _apply_batch(
    db_dsn: str,
    batch: StatementBatch,
    settings: Settings,
    run_id: str,
    counters: RunCounters,
    dry_run: bool,
) -> None:
    dialect = get_dialect(settings.dialect, settings.variable_prefix)
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        if settings.database:
            conn.execute(dialect.select_database(settings.database))
        counters.statements_executed = execute_batch(conn, batch)
        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        else:
            conn.commit()
            click.echo(f"[{run_id}] Committed {counters.statements_executed} statement(s).")
    except Exception as e:
        conn.rollback()
        counters.db_phase_errors += 1
        _fatal(run_id, f"run failed with DB error: {e}")
    finally:
        conn.close()


def _run_import(
    run_id: str,
    counters: RunCounters,
    rejects: RejectWriter,
    settings: Settings,
    event_path: Path,
    attendees_path: Path,
    output_path: Path,
    img_path: Path | None,
    image_store: ImageStore,
    max_reject_rate: float,
    db_dsn: str | None,
    dry_run: bool,
) -> StatementBatch:
    try:
        record = read_event_record(event_path, run_id)
        attendees = read_attendee_records(attendees_path, run_id, counters, rejects)
    finally:
        rejects.close()

    click.echo(
        f"[{run_id}] Pre-scan: {counters.rows_read} attendee rows read, "
        f"{counters.rows_rejected} rejected"
    )
    if counters.rows_rejected and counters.reject_rate > max_reject_rate:
        _fatal(
            run_id,
            f"reject rate ({counters.reject_rate:.2%}) exceeds threshold of "
            f"{max_reject_rate:.2%}; see {rejects.path}",
        )
    for warning in counters.warnings:
        click.echo(f"[{run_id}] WARNING: {warning}", err=True)

    dialect = get_dialect(settings.dialect, settings.variable_prefix)
    event = record.into_event(attendees)
    reference = None
    if img_path is not None:
        reference = image_reference(img_path, settings.image_prefix)
        batch = certificate_statements(event.into_certificate(reference), dialect)
    else:
        click.echo(f"[{run_id}] No --img given; evento row must already exist.")
        batch = event_statements(event, dialect)
    counters.statements_generated = len(batch)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(batch.render(dialect, settings.database), encoding="utf-8")
    click.echo(f"[{run_id}] Wrote {len(batch)} statement(s) to {output_path}")

    if img_path is not None and reference is not None:
        if dry_run:
            click.echo(f"[{run_id}] [dry-run] Skipping image publish of {img_path.name}.")
        else:
            click.echo(f"[{run_id}] Publishing event image...")
            try:
                location = image_store.publish(img_path, reference)
            except Exception as e:
                _fatal(run_id, f"image publish failed: {e}")
            counters.images_published += 1
            click.echo(f"[{run_id}] Image published: {location}")

    # Image first: the batch is only applied once evento.img is reachable.
    if db_dsn:
        _apply_batch(db_dsn, batch, settings, run_id, counters, dry_run)

    return batch


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

_existing_file = click.Path(exists=True, dir_okay=False, path_type=Path)


@click.command()
@click.option("--event", "event_path", required=True, type=_existing_file, help="Event data CSV file")
@click.option("--atts", "attendees_path", required=True, type=_existing_file, help="Attendees info CSV file")
@click.option("--img", "img_path", default=None, type=_existing_file, help="Event certificate image")
@click.option("--output", "output_path", required=True, type=click.Path(dir_okay=False, path_type=Path), help="SQL queries output file")
@click.option("--config", "config_path", default=None, type=_existing_file, help="YAML settings file")
@click.option("--dialect", default=None, type=click.Choice(DIALECTS), help="SQL dialect [default: mysql]")
@click.option("--database", default=None, help="Prefix the batch with a database (mysql) or schema (postgresql) selection")
@click.option("--image-prefix", default=None, help="Path prefix of the image reference stored in evento.img [default: img]")
@click.option("--db-dsn", default=None, help="PostgreSQL DSN; when set the batch is applied in one session")
@click.option("--image-dir", default=None, type=click.Path(file_okay=False), help="Publish the image under this local directory")
@click.option("--gcs-bucket", default=None, help="Publish the image to this GCS bucket")
@click.option("--gcs-prefix", default=None, help="Object prefix inside --gcs-bucket")
@click.option(
    "--max-reject-rate",
    default=0.0,
    type=float,
    show_default=True,
    help="Fraction of attendee rows that may be rejected before the run fails",
)
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/attendee_rejects.csv",
    show_default=True,
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
def main(
    event_path: Path,
    attendees_path: Path,
    img_path: Path | None,
    output_path: Path,
    config_path: Path | None,
    dialect: str | None,
    database: str | None,
    image_prefix: str | None,
    db_dsn: str | None,
    image_dir: str | None,
    gcs_bucket: str | None,
    gcs_prefix: str | None,
    max_reject_rate: float,
    dry_run: bool,
    rejects_path: str,
    run_id: str | None,
) -> None:
    """Build the SQL batch registering an event and its attendees."""
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    counters = RunCounters()
    rejects = RejectWriter(Path(rejects_path))

    try:
        settings = load_settings(config_path).override(
            dialect=dialect, database=database, image_prefix=image_prefix
        )
    except SettingsValidationError as e:
        _fatal(run_id, f"invalid settings file: {e}")

    if db_dsn and settings.dialect != "postgresql":
        _fatal(run_id, "--db-dsn requires --dialect postgresql")

    click.echo(f"[{run_id}] Starting event import (dialect={settings.dialect}, dry_run={dry_run})")

    _run_import(
        run_id,
        counters,
        rejects,
        settings,
        event_path=event_path,
        attendees_path=attendees_path,
        output_path=output_path,
        img_path=img_path,
        image_store=select_image_store(image_dir, gcs_bucket, gcs_prefix),
        max_reject_rate=max_reject_rate,
        db_dsn=db_dsn,
        dry_run=dry_run,
    )

    report_path = write_run_report(
        run_id, started_at, "event_import", dry_run,
        {
            "event_path": str(event_path),
            "attendees_path": str(attendees_path),
            "img_path": str(img_path) if img_path else "",
            "output_path": str(output_path),
        },
        counters,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


if __name__ == "__main__":
    main()
