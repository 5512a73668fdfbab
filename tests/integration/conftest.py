"""Integration test fixtures.

Applies schema.sql against an ephemeral PostgreSQL database provided by
pytest-postgresql. The whole directory is skipped when no PostgreSQL server
binaries are installed, or when running as root (initdb refuses root).
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

import psycopg
import pytest

SCHEMA = Path(__file__).parent / "schema.sql"


def _pg_ctl_available() -> bool:
    if shutil.which("pg_ctl"):
        return True
    pg_config = shutil.which("pg_config")
    if not pg_config:
        return False
    bindir = subprocess.run(
        [pg_config, "--bindir"], capture_output=True, text=True, check=False
    ).stdout.strip()
    return bool(bindir) and (Path(bindir) / "pg_ctl").exists()


if not _pg_ctl_available() or (hasattr(os, "geteuid") and os.geteuid() == 0):
    collect_ignore_glob = ["test_*.py"]
else:
    from pytest_postgresql import factories

    postgresql_proc = factories.postgresql_proc()
    postgresql = factories.postgresql("postgresql_proc")

    @pytest.fixture(scope="function")
    def db_conn(postgresql):
        """Return (psycopg connection, dsn) with the schema applied."""
        dsn = (
            f"host={postgresql.info.host} "
            f"port={postgresql.info.port} "
            f"dbname={postgresql.info.dbname} "
            f"user={postgresql.info.user} "
            f"password={postgresql.info.password or ''}"
        )
        conn = psycopg.connect(dsn, autocommit=True)
        try:
            conn.execute(SCHEMA.read_text(encoding="utf-8"))
            conn.autocommit = False
            yield conn, dsn
        finally:
            conn.close()
