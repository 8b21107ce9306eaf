"""Unit tests for the CSV record source and CLI flag handling (no database)."""

from __future__ import annotations

import csv
from pathlib import Path

import pytest
from click.testing import CliRunner

from roster_sync.import_student_csv import _load_run_config, main, read_student_csv
from roster_sync.shared import FatalBootstrapError, RunCounters
from roster_sync.validation import REQUIRED_HEADERS


def _write_csv(path: Path, rows: list[dict], fieldnames: list[str]) -> Path:
    with path.open("w", newline="", encoding="utf-8") as fh:
        w = csv.DictWriter(fh, fieldnames=fieldnames)
        w.writeheader()
        for row in rows:
            w.writerow(row)
    return path


class TestReadStudentCsv:
    def test_reads_rows(self, tmp_path, make_row):
        row = make_row()
        path = _write_csv(tmp_path / "s.csv", [row, make_row(student_code="S002")], list(row))
        counters = RunCounters()
        rows = read_student_csv(path, counters)
        assert counters.rows_read == 2
        assert rows[0] == row
        assert rows[1]["student_code"] == "S002"

    def test_header_whitespace_stripped(self, tmp_path, make_row):
        row = make_row()
        padded = {f" {k} ": v for k, v in row.items()}
        path = _write_csv(tmp_path / "s.csv", [padded], list(padded))
        rows = read_student_csv(path, RunCounters())
        assert rows[0]["student_code"] == "S001"

    def test_missing_headers_fatal(self, tmp_path, make_row):
        row = make_row()
        del row["ESL"]
        path = _write_csv(tmp_path / "s.csv", [row], list(row))
        with pytest.raises(FatalBootstrapError, match="ESL"):
            read_student_csv(path, RunCounters())

    def test_missing_file_fatal(self, tmp_path):
        with pytest.raises(FatalBootstrapError, match="not found"):
            read_student_csv(tmp_path / "absent.csv", RunCounters())

    def test_short_row_fills_blank(self, tmp_path):
        path = tmp_path / "s.csv"
        path.write_text(",".join(sorted(REQUIRED_HEADERS)) + "\nS001\n", encoding="utf-8")
        rows = read_student_csv(path, RunCounters())
        assert all(v == "" for k, v in rows[0].items() if k != sorted(REQUIRED_HEADERS)[0])


class TestLoadRunConfig:
    def test_flags_override_file(self, tmp_path):
        path = tmp_path / "c.yml"
        path.write_text("identity:\n  extended_check: true\nsoft_delete: false\n", encoding="utf-8")
        config = _load_run_config(str(path), no_extended_check=True, soft_delete=True)
        assert config.extended_check is False
        assert config.soft_delete is True

    def test_flags_absent_keep_file_values(self, tmp_path):
        path = tmp_path / "c.yml"
        path.write_text("soft_delete: true\n", encoding="utf-8")
        config = _load_run_config(str(path), no_extended_check=False, soft_delete=False)
        assert config.extended_check is True
        assert config.soft_delete is True

    def test_invalid_config_is_fatal(self, tmp_path):
        path = tmp_path / "c.yml"
        path.write_text("identity:\n  min_agreements: 9\n", encoding="utf-8")
        with pytest.raises(FatalBootstrapError, match="min_agreements"):
            _load_run_config(str(path), False, False)


class TestCli:
    def test_csv_path_required(self, tmp_path):
        result = CliRunner().invoke(main, ["--db-dsn", "dbname=unused"])
        assert result.exit_code == 1
        assert "--csv-path is required" in result.output

    def test_bad_config_aborts_before_db(self, tmp_path, make_row):
        row = make_row()
        csv_path = _write_csv(tmp_path / "s.csv", [row], list(row))
        cfg = tmp_path / "c.yml"
        cfg.write_text("bogus: 1\n", encoding="utf-8")
        result = CliRunner().invoke(main, [
            "--db-dsn", "dbname=unused",
            "--csv-path", str(csv_path),
            "--config", str(cfg),
            "--rejects-path", str(tmp_path / "rejects.csv"),
        ])
        assert result.exit_code == 1
        assert "FATAL" in result.output
        assert not (tmp_path / "rejects.csv").exists()
