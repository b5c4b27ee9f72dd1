"""Tests for the ledger command-line interface."""
from __future__ import annotations

import json

import pytest

from engagement_ledger.cli import build_parser, main


@pytest.fixture
def cli(store, seeded, monkeypatch, capsys):
    """Run the CLI against the seeded store and return its stdout."""
    monkeypatch.delenv("LEDGER_CONFIG", raising=False)
    monkeypatch.setenv("LEDGER_DATA_DIR", str(store.data_dir))

    def run(*argv):
        main(list(argv))
        return capsys.readouterr().out

    return run


class TestParser:
    def test_global_flags_before_command(self):
        args = build_parser().parse_args(["--json", "clients", "list", "--sort", "revenue", "--asc"])
        assert args.json
        assert args.sort == "revenue"
        assert args.asc

    def test_no_command_exits(self, cli):
        with pytest.raises(SystemExit) as exc:
            cli()
        assert exc.value.code == 1


class TestReadCommands:
    def test_clients_list_json(self, cli):
        data = json.loads(cli("--json", "clients", "list", "--country", "france"))
        assert [row["id"] for row in data["page"]["items"]] == ["cli-carol"]
        assert data["page"]["items"][0]["revenue"] == 1250.0

    def test_clients_list_table(self, cli):
        out = cli("clients", "list")
        assert "Page 1 of 1" in out

    def test_clients_mine_json(self, cli):
        data = json.loads(cli("--json", "clients", "mine", "--expert", "exp-alice"))
        assert [(r["id"], r["progress"]) for r in data["rows"]] == [("cli-carol", 60), ("cli-dan", 0)]

    def test_experts_show(self, cli):
        data = json.loads(cli("--json", "experts", "show", "exp-alice"))
        assert data["completed_tasks"] == 3
        assert len(data["active_assignments"]) == 2

    def test_unknown_expert_is_an_error(self, cli, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["experts", "show", "exp-nobody"])
        assert exc.value.code == 1
        assert "Error:" in capsys.readouterr().out

    def test_pipeline_json(self, cli):
        data = json.loads(cli("--json", "pipeline"))
        assert [b["percentage"] for b in data["buckets"]] == [50, 0, 0, 50, 0, 0]
        assert data["unstaged"] == 0

    def test_overview_json(self, cli):
        data = json.loads(cli("--json", "overview"))
        assert data["totals"] == {"clients": 2, "experts": 3, "active_cases": 3}
        assert data["revenue"]["all_time"]["amount"] == 1250.0

    def test_check_clean(self, cli):
        assert "No inconsistencies found." in cli("check")

    def test_check_reports_drift(self, cli, store, seeded, capsys):
        seeded.carol_uk.earnings = 10.0
        store.update("assignments", seeded.carol_uk)
        with pytest.raises(SystemExit) as exc:
            main(["check"])
        assert exc.value.code == 1
        assert "[earnings_drift]" in capsys.readouterr().out

    def test_bracketed_names_print_literally(self, cli, store, seeded):
        seeded.dan.full_name = "Dan [VIP]"
        store.update("clients", seeded.dan)
        assert "Dan [VIP] is now at Delivery" in cli("clients", "stage", "cli-dan", "Delivery")

    @pytest.mark.parametrize("settings", ["page_size: 0\n", "page_size: [1\n"])
    def test_bad_settings_file_is_an_error(self, cli, tmp_path, capsys, settings):
        path = tmp_path / "ledger.yaml"
        path.write_text(settings)
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(path), "overview"])
        assert exc.value.code == 1
        assert "Error: invalid settings" in capsys.readouterr().out


class TestWriteCommands:
    def test_record_payment(self, cli, store):
        out = cli(
            "payments", "record", "--expert", "exp-alice", "--client", "cli-dan",
            "--amount", "50", "--date", "2026-05-14",
        )
        assert "Payment recorded" in out
        assert store.get("assignments", "asg-dan-uk").earnings == 50.0

    def test_add_client(self, cli, store):
        out = cli(
            "clients", "add", "--expert", "exp-bruno", "--name", "Eve Adams",
            "--email", "eve@example.com", "--countries", "France, UK",
        )
        assert "Client created!" in out
        assert store.count("clients") == 3

    def test_stage(self, cli, store):
        cli("clients", "stage", "cli-dan", "Delivery")
        assert store.get("clients", "cli-dan").pipeline_stage.value == "Delivery"

    def test_duplicate_assignment_is_an_error(self, cli, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["assign", "--client", "cli-carol", "--expert", "exp-alice", "--jurisdiction", "UK"])
        assert exc.value.code == 1
        assert "Error:" in capsys.readouterr().out
