"""Tests for the incident-dedup command line."""

import json
import logging
from datetime import datetime, timezone

import pytest

from incidentcore.deduplication.cli.main import (
    EXIT_ERROR,
    EXIT_OK,
    EXIT_SAFETY_GATE,
    main,
    parse_datetime,
    parse_end_datetime,
)
from incidentcore.models import IncidentRecord
from incidentcore.repositories import SQLiteIncidentRepository

from conftest import record_data


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    """Run each command in a scratch directory and restore logging afterwards."""
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield tmp_path
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def db_path(tmp_path):
    """Database holding one duplicate pair and an unrelated record."""
    path = str(tmp_path / "incidents.db")
    repo = SQLiteIncidentRepository(path)
    repo.create(IncidentRecord.model_validate(record_data(verified=True)))
    repo.create(IncidentRecord.model_validate(record_data(casualties=5)))
    repo.create(IncidentRecord.model_validate(record_data(
        type="SHELLING",
        description={"en": "Artillery shelling damaged the water station overnight"},
    )))
    repo.close()
    return path


def count_records(path):
    repo = SQLiteIncidentRepository(path)
    try:
        return repo.count()
    finally:
        repo.close()


class TestConsolidateCommand:
    """Test the consolidate command."""

    def test_dry_run_json(self, db_path, capsys):
        code = main(["--db", db_path, "consolidate", "--min-corpus-size", "0", "--json"])

        assert code == EXIT_OK
        report = json.loads(capsys.readouterr().out)
        assert report["dry_run"] is True
        assert report["planned_deletions"] == 1
        assert count_records(db_path) == 3

    def test_apply(self, db_path, workdir):
        code = main(["--db", db_path, "consolidate", "--apply", "--min-corpus-size", "0"])

        assert code == EXIT_OK
        assert count_records(db_path) == 2
        assert (workdir / "deduplication_audit.db").exists()

    def test_safety_gate_exit_code(self, db_path, capsys):
        code = main(["--db", db_path, "consolidate", "--apply", "--json"])

        assert code == EXIT_SAFETY_GATE
        assert json.loads(capsys.readouterr().out)["gate"] == "min_corpus_size"
        assert count_records(db_path) == 3

    def test_type_filter(self, db_path, capsys):
        code = main(["--db", db_path, "consolidate", "--type", "shelling", "--min-corpus-size", "0", "--json"])

        assert code == EXIT_OK
        assert json.loads(capsys.readouterr().out)["corpus_size"] == 1

    @pytest.mark.parametrize("until, corpus_size", [("2024-03-10", 3), ("2024-03-09", 0), ("2024-03-10T11:00:00", 0)])
    def test_until_includes_whole_day(self, db_path, capsys, until, corpus_size):
        code = main(["--db", db_path, "consolidate", "--until", until, "--min-corpus-size", "0", "--json"])

        assert code == EXIT_OK
        assert json.loads(capsys.readouterr().out)["corpus_size"] == corpus_size

    def test_rich_report(self, db_path, capsys):
        code = main(["--db", db_path, "consolidate", "--min-corpus-size", "0"])

        assert code == EXIT_OK
        assert "DRY RUN" in capsys.readouterr().out

    def test_unknown_type_rejected(self, db_path):
        with pytest.raises(SystemExit):
            main(["--db", db_path, "consolidate", "--type", "PARADE"])

    def test_missing_config_file(self, db_path):
        assert main(["-c", "missing.json", "--db", db_path, "consolidate"]) == EXIT_ERROR


class TestOtherCommands:
    """Test ingest, backfill and config generation."""

    def test_no_command(self, capsys):
        assert main([]) == EXIT_ERROR

    def test_ingest(self, workdir, capsys):
        items = [record_data(), record_data(casualties=4), record_data(description={"en": "bad"})]
        items = json.loads(json.dumps(items, default=str))
        (workdir / "reports.json").write_text(json.dumps(items), encoding="utf-8")
        db = str(workdir / "ingest.db")

        code = main(["--db", db, "ingest", "reports.json", "--user", "analyst-7", "--json"])

        result = json.loads(capsys.readouterr().out)
        assert code == EXIT_ERROR
        assert len(result["created"]) == 1
        assert len(result["merged"]) == 1
        assert result["errors"][0]["index"] == 2
        assert count_records(db) == 1

    def test_ingest_missing_file(self, workdir):
        assert main(["--db", str(workdir / "x.db"), "ingest", "nope.json"]) == EXIT_ERROR

    def test_backfill_hashes(self, db_path, capsys):
        code = main(["--db", db_path, "backfill-hashes", "--apply", "--json"])

        assert code == EXIT_OK
        result = json.loads(capsys.readouterr().out)
        assert result["dry_run"] is False
        assert len(result["hashed"]) == 2
        assert len(result["race_merged"]) == 1
        assert count_records(db_path) == 2

    def test_generate_config_file(self, workdir):
        assert main(["generate-config", "-o", "dedup.json"]) == EXIT_OK

        data = json.loads((workdir / "dedup.json").read_text())
        assert data["consolidation"]["dry_run"] is True

    def test_generate_config_stdout(self, capsys):
        assert main(["generate-config"]) == EXIT_OK
        assert "duplicate_threshold" in json.loads(capsys.readouterr().out)["classifier"]


class TestDateArguments:
    """Test --since/--until parsing."""

    def test_bare_date_starts_at_midnight(self):
        assert parse_datetime("2024-03-10") == datetime(2024, 3, 10, tzinfo=timezone.utc)

    def test_bare_end_date_covers_whole_day(self):
        assert parse_end_datetime("2024-03-10") == datetime(2024, 3, 10, 23, 59, 59, 999999, tzinfo=timezone.utc)

    def test_end_timestamp_kept(self):
        assert parse_end_datetime("2024-03-10T06:30:00Z") == datetime(2024, 3, 10, 6, 30, tzinfo=timezone.utc)
