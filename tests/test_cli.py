"""Tests for the roadwatch-sync command line.

Each test drives ``main()`` end to end against in-memory stores with the
state directory under tmp_path, so every invocation builds a fresh
service over the same persisted state.
"""

from __future__ import annotations

import json

import pytest
from conftest import make_payload

from roadwatch_sync.cli import build_parser, main
from roadwatch_sync.sync.ledger import ConflictLedger
from roadwatch_sync.sync.models import Conflict, ConflictType
from roadwatch_sync.sync.state import SyncStateStore

_ENV_VARS = (
    "ROADWATCH_PRIMARY_URL",
    "ROADWATCH_PRIMARY_TOKEN",
    "ROADWATCH_SECONDARY_URL",
    "ROADWATCH_SECONDARY_TOKEN",
    "ROADWATCH_STATE_DIR",
    "ROADWATCH_INSECURE",
    "ROADWATCH_DEBUG",
    "ROADWATCH_RUN_TIMEOUT",
    "ROADWATCH_SYNC_CONFIG",
)


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run from an empty directory with no config files or env overrides."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def cli(state_dir, capsys):
    """Invoke the CLI; return (exit code, stdout, stderr)."""

    def _run(*argv: str):
        code = main(["--state-dir", str(state_dir), *argv])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return _run


@pytest.fixture
def seeded_conflict(state_dir) -> int:
    """Record one pending modification conflict in the state directory."""
    ledger = ConflictLedger(SyncStateStore(state_dir))
    return ledger.append(
        Conflict(
            record_id="pg-17",
            secondary_id="fb-17",
            conflict_type=ConflictType.MODIFICATION,
            left_payload=make_payload(level=2),
            right_payload=make_payload(level=9),
            left_revision=3,
            right_revision=3,
        )
    )


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args([])
        assert exc.value.code == 2

    def test_run_scope_choices(self):
        args = build_parser().parse_args(["run", "--scope", "changed"])
        assert args.scope == "changed"
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "--scope", "everything"])

    def test_window_and_no_window_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(
                ["auto-sync", "--window", "06:00", "22:00", "--no-window"]
            )


class TestRunAndStatus:
    def test_status(self, cli):
        code, out, _ = cli("status")
        assert code == 0
        assert "Auto-sync: disabled" in out
        assert "Primary: connected" in out

    def test_status_json(self, cli):
        code, out, _ = cli("--json", "status")
        data = json.loads(out)
        assert code == 0
        assert data["secondary_status"] == "connected"
        assert data["pending_conflicts"] == 0

    def test_run(self, cli):
        code, out, _ = cli("run")
        assert code == 0
        assert "Sync run #1 (full): SUCCESS" in out

        code, out, _ = cli("--json", "status")
        assert json.loads(out)["last_sync"] is not None

    def test_stats_after_runs(self, cli):
        cli("run")
        cli("run", "--scope", "changed")

        code, out, _ = cli("--json", "stats", "--days", "1")

        data = json.loads(out)
        assert code == 0
        assert data["total_syncs"] == 2
        assert data["successful_syncs"] == 2

    def test_health(self, cli):
        code, out, _ = cli("health")
        assert code == 0
        assert "Health: OK" in out


class TestConflicts:
    def test_list_empty(self, cli):
        code, out, _ = cli("conflicts")
        assert code == 0
        assert "No conflicts." in out

    def test_list_and_show(self, cli, seeded_conflict):
        code, out, _ = cli("conflicts", "--resolution", "pending")
        assert code == 0
        assert f"#{seeded_conflict} [pending] modification on pg-17" in out

        code, out, _ = cli("--json", "conflict", str(seeded_conflict))
        data = json.loads(out)
        assert data["record_id"] == "pg-17"
        assert data["suggested_merge"]["contested"] == ["level"]

    def test_show_unknown(self, cli):
        code, _, err = cli("conflict", "42")
        assert code == 1
        assert "Error: Conflict #42 not found" in err

    def test_resolve(self, cli, seeded_conflict):
        code, out, _ = cli(
            "resolve", str(seeded_conflict), "--choice", "postgres", "--by", "alice"
        )
        assert code == 0
        assert "resolved with 'left'" in out

        code, out, _ = cli("--json", "conflicts", "--resolution", "resolved")
        [entry] = json.loads(out)
        assert entry["resolved_by"] == "alice"

        code, _, err = cli("resolve", str(seeded_conflict), "--choice", "right")
        assert code == 1
        assert "already resolved" in err

    def test_resolve_custom_from_file(self, cli, seeded_conflict, tmp_path):
        merged = make_payload(level=5).model_dump(mode="json")
        path = tmp_path / "merged.json"
        path.write_text(json.dumps(merged))

        code, out, _ = cli(
            "--json",
            "resolve",
            str(seeded_conflict),
            "--choice",
            "custom",
            "--custom-json",
            f"@{path}",
        )

        assert code == 0
        assert json.loads(out)["resolved_payload"]["level"] == 5

    def test_resolve_custom_bad_json(self, cli, seeded_conflict):
        code, _, err = cli(
            "resolve",
            str(seeded_conflict),
            "--choice",
            "custom",
            "--custom-json",
            "{not json",
        )
        assert code == 1
        assert "not valid JSON" in err


class TestAutoSync:
    def test_show_defaults(self, cli):
        code, out, _ = cli("auto-sync")
        assert code == 0
        assert "Auto-sync: disabled" in out
        assert "Interval: 15 min" in out

    def test_change_is_persisted(self, cli):
        code, _, _ = cli(
            "auto-sync", "--enable", "--interval", "30", "--window", "06:00", "22:00"
        )
        assert code == 0

        code, out, _ = cli("--json", "auto-sync")
        assert json.loads(out) == {
            "enabled": True,
            "interval_minutes": 30,
            "start_time": "06:00",
            "end_time": "22:00",
        }

        cli("auto-sync", "--disable", "--no-window")
        code, out, _ = cli("--json", "auto-sync")
        data = json.loads(out)
        assert data["enabled"] is False
        assert data["start_time"] is None
        assert data["interval_minutes"] == 30

    def test_invalid_interval(self, cli):
        code, _, err = cli("auto-sync", "--interval", "5000")
        assert code == 1
        assert err.startswith("Error:")


class TestLogs:
    def test_logs_after_run(self, cli):
        cli("run")
        code, out, _ = cli("--json", "logs", "--limit", "2")
        entries = json.loads(out)
        assert code == 0
        assert 0 < len(entries) <= 2

    def test_export_to_file(self, cli, tmp_path):
        cli("run")
        target = tmp_path / "logs.csv"

        code, _, err = cli("export", "--format", "csv", "-o", str(target))

        assert code == 0
        assert f"to {target}" in err
        assert target.read_text().startswith("id,timestamp,level,event")

    def test_export_to_stdout(self, cli):
        cli("run")
        code, out, _ = cli("export")
        assert code == 0
        assert isinstance(json.loads(out), list)

    def test_cleanup(self, cli):
        cli("run")
        code, out, _ = cli("cleanup", "--days", "7")
        assert code == 0
        assert "Deleted 0 history entries." in out

    def test_reset_needs_confirmation(self, cli):
        cli("run")

        code, _, err = cli("reset")
        assert code == 1
        assert "--yes" in err

        code, out, _ = cli("reset", "--yes")
        assert code == 0
        code, out, _ = cli("--json", "logs")
        assert json.loads(out) == []

    def test_reset_keeps_conflicts(self, cli, seeded_conflict):
        cli("reset", "--yes")
        code, out, _ = cli("--json", "conflicts")
        assert len(json.loads(out)) == 1


class TestConfigErrors:
    def test_invalid_config_file(self, cli, tmp_path):
        config_dir = tmp_path / ".roadwatch_sync"
        config_dir.mkdir()
        (config_dir / "config.yml").write_text("primary: [unclosed\n")

        code, _, err = cli("status")

        assert code == 1
        assert "configuration error" in err

    def test_init_config_writes_starter(self, cli, tmp_path):
        code, out, _ = cli("init-config")

        assert code == 0
        path = tmp_path / ".roadwatch_sync" / "config.yml"
        assert path.exists()
        assert str(path) in out
