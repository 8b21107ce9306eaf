"""roster_sync.import_student_csv

CLI entrypoint for syncing a student CSV extract into the roster.

Usage:
    python -m roster_sync.import_student_csv \\
        --db-dsn "$ROSTER_DB_DSN" \\
        --csv-path "extracts/students.csv" \\
        --school-id 3 \\
        --soft-delete

    python -m roster_sync.import_student_csv --db-dsn "$ROSTER_DB_DSN" --list-schools
"""

from __future__ import annotations

import csv
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path

import click
import psycopg

from roster_sync.config import ConfigValidationError, SyncConfig, load_config
from roster_sync.reconcile import ReconcileResult, run_reconcile, select_school
from roster_sync.shared import (
    FatalBootstrapError,
    RejectWriter,
    RunCounters,
    build_run_summary,
    normalize_headers,
    write_run_report,
)
from roster_sync.store import PostgresRosterStore
from roster_sync.validation import REQUIRED_HEADERS


# ---------------------------------------------------------------------------
# Record source
# ---------------------------------------------------------------------------

def read_student_csv(csv_path: Path, counters: RunCounters) -> list[dict[str, str]]:
    """Read every row of the extract, failing fast on missing headers."""
    if not csv_path.is_file():
        raise FatalBootstrapError(f"CSV not found: {csv_path}")

    rows: list[dict[str, str]] = []
    with csv_path.open(encoding="utf-8-sig", newline="") as fh:
        reader = csv.DictReader(fh)
        headers = {h.strip() for h in (reader.fieldnames or []) if h}
        missing = REQUIRED_HEADERS - headers
        if missing:
            raise FatalBootstrapError(f"missing headers: {sorted(missing)}")
        for raw_row in reader:
            row = normalize_headers(raw_row)
            counters.rows_read += 1
            rows.append({k: (v if v is not None else "") for k, v in row.items()})
    return rows


def _load_run_config(
    config_path: str | None,
    no_extended_check: bool,
    soft_delete: bool,
) -> SyncConfig:
    try:
        config = load_config(Path(config_path) if config_path else None)
    except (ConfigValidationError, FileNotFoundError) as exc:
        raise FatalBootstrapError(f"bad config: {exc}") from exc
    if no_extended_check:
        config.extended_check = False
    if soft_delete:
        config.soft_delete = True
    return config


def _connect(db_dsn: str, autocommit: bool) -> psycopg.Connection:
    try:
        return psycopg.connect(db_dsn, autocommit=autocommit)
    except psycopg.Error as exc:
        raise FatalBootstrapError(f"cannot connect to roster database: {exc}") from exc


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def _run_student_sync(
    run_id: str,
    db_dsn: str,
    counters: RunCounters,
    rejects: RejectWriter,
    csv_path: str,
    school_id: int | None,
    config: SyncConfig,
    dry_run: bool,
) -> tuple[ReconcileResult, int]:
    """Read the extract and reconcile it.  Returns (result, school id)."""
    raw_rows = read_student_csv(Path(csv_path), counters)
    click.echo(f"[{run_id}] Pre-scan: {counters.rows_read} rows read")

    # Dry runs keep one open transaction and roll it back at the end.
    conn = _connect(db_dsn, autocommit=not dry_run)
    try:
        store = PostgresRosterStore(conn, audit_user=config.audit_user)
        school = select_school(store, school_id)
        click.echo(f"[{run_id}] School: {school.id} ({school.name})")

        result = run_reconcile(
            store, raw_rows, school.id,
            config=config, counters=counters, rejects=rejects,
        )

        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        return result, school.id
    finally:
        conn.close()
        rejects.close()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option("--db-dsn", required=True, envvar="ROSTER_DB_DSN", help="PostgreSQL DSN (or $ROSTER_DB_DSN)")
@click.option("--csv-path", default=None, type=click.Path(), help="Student CSV extract")
@click.option("--school-id", default=None, type=int, help="School to sync; optional when only one school exists")
@click.option(
    "--no-extended-check",
    is_flag=True,
    default=False,
    help="Accept any student_code match without first name / surname / DOB corroboration",
)
@click.option("--soft-delete", is_flag=True, default=False, help="Mark students absent from the extract as deleted")
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML run configuration")
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/student_rejects.csv",
    show_default=True,
)
@click.option(
    "--reports-dir",
    default="./artifacts/reports",
    show_default=True,
    type=click.Path(),
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
@click.option("--list-schools", is_flag=True, default=False, help="Print schools and exit")
def main(
    db_dsn: str,
    csv_path: str | None,
    school_id: int | None,
    no_extended_check: bool,
    soft_delete: bool,
    config_path: str | None,
    dry_run: bool,
    rejects_path: str,
    reports_dir: str,
    run_id: str | None,
    log_level: str,
    list_schools: bool,
) -> None:
    """Sync a student CSV extract into the roster."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()

    if list_schools:
        try:
            conn = _connect(db_dsn, autocommit=True)
        except FatalBootstrapError as exc:
            click.echo(f"[{run_id}] FATAL: {exc}", err=True)
            sys.exit(1)
        try:
            for school in PostgresRosterStore(conn).list_schools():
                click.echo(f"{school.id}\t{school.name}\t{school.location or ''}")
        finally:
            conn.close()
        return

    if not csv_path:
        click.echo(f"[{run_id}] ERROR: --csv-path is required", err=True)
        sys.exit(1)

    counters = RunCounters()
    rejects = RejectWriter(Path(rejects_path))
    click.echo(f"[{run_id}] Starting student sync (dry_run={dry_run})")

    try:
        config = _load_run_config(config_path, no_extended_check, soft_delete)
        click.echo(
            f"[{run_id}] extended_check={config.extended_check} "
            f"soft_delete={config.soft_delete}"
        )
        _, resolved_school_id = _run_student_sync(
            run_id, db_dsn, counters, rejects,
            csv_path=csv_path,
            school_id=school_id,
            config=config,
            dry_run=dry_run,
        )
    except FatalBootstrapError as exc:
        rejects.close()
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)

    click.echo(build_run_summary(counters, dry_run=dry_run))
    report_path = write_run_report(
        run_id, started_at, dry_run,
        {"csv_path": csv_path, "school_id": str(resolved_school_id)},
        counters,
        reports_dir=Path(reports_dir),
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    if counters.errored:
        click.echo(f"[{run_id}] {counters.errored} record(s) rejected; see {rejects_path}", err=True)


if __name__ == "__main__":
    main()
