from __future__ import annotations

import json
from datetime import UTC, date, datetime

from typer.testing import CliRunner

from activity_digest.cli.main import app


def invoke(cli_runner: CliRunner, args: list[str]):
    return cli_runner.invoke(app, args)


def test_sources_list_reports_configuration(cli_runner, config_file):
    result = invoke(cli_runner, ["--config", str(config_file), "sources", "list"])

    assert result.exit_code == 0
    line = next(line for line in result.stdout.splitlines() if line.startswith("gitlab"))
    assert line.split()[1:] == ["yes", "yes"]


def test_sources_list_without_credentials(cli_runner):
    result = invoke(cli_runner, ["sources", "list"])

    assert result.exit_code == 0
    line = next(line for line in result.stdout.splitlines() if line.startswith("gitlab"))
    assert line.split()[1] == "no"


def test_summarize_dry_run_prints_plan(cli_runner, config_file):
    result = invoke(
        cli_runner,
        ["--config", str(config_file), "--dry-run", "summarize", "--start-date", "2024-01-01", "--end-date", "2024-01-03"],
    )

    assert result.exit_code == 0
    plan = json.loads(result.stdout)
    assert plan["days"] == 3
    assert plan["sources"] == [{"id": "gitlab", "configured": True}]


def test_summarize_prints_json(cli_runner, config_file, monkeypatch, adapter_factory, activity_factory):
    adapter = adapter_factory("gitlab", {date(2024, 1, 1): [activity_factory("gitlab-commit-1")]})
    monkeypatch.setattr("activity_digest.cli.main.build_adapters", lambda context: [adapter])

    result = invoke(
        cli_runner,
        ["--config", str(config_file), "summarize", "--start-date", "2024-01-01", "--end-date", "2024-01-02"],
    )

    assert result.exit_code == 0
    assert '"total_activities": 1' in result.stdout
    assert [call[0] for call in adapter.calls].count("fetch") == 2


def test_summarize_writes_output_file(cli_runner, config_file, monkeypatch, adapter_factory, activity_factory, tmp_path):
    adapter = adapter_factory("gitlab", {date(2024, 1, 1): [activity_factory("gitlab-commit-1", author="jane")]})
    monkeypatch.setattr("activity_digest.cli.main.build_adapters", lambda context: [adapter])
    output = tmp_path / "digest.csv"

    result = invoke(
        cli_runner,
        ["--config", str(config_file), "summarize", "--start-date", "2024-01-01", "--end-date", "2024-01-02", "--output", str(output)],
    )

    assert result.exit_code == 0
    assert "Wrote 2 daily summaries" in result.stdout
    assert output.read_text(encoding="utf-8").splitlines()[1].startswith("2024-01-01,gitlab,jane")


def test_summarize_period_uses_today(cli_runner, config_file, monkeypatch, adapter_factory):
    adapter = adapter_factory("gitlab")
    monkeypatch.setattr("activity_digest.cli.main.build_adapters", lambda context: [adapter])

    result = invoke(cli_runner, ["--config", str(config_file), "summarize", "--period", "week"])

    assert result.exit_code == 0
    fetched = [call[1] for call in adapter.calls if call[0] == "fetch"]
    assert len(fetched) == 8
    assert fetched[-1] == datetime.now(UTC).date()


def test_inverted_range_exits_with_suggestions(cli_runner, config_file):
    result = invoke(
        cli_runner,
        ["--config", str(config_file), "summarize", "--start-date", "2024-01-05", "--end-date", "2024-01-01"],
    )

    assert result.exit_code == 1
    assert "Invalid input" in result.output
    assert "Verify date formats (YYYY-MM-DD)" in result.output


def test_conflicting_range_options_are_rejected(cli_runner, config_file):
    result = invoke(
        cli_runner,
        ["--config", str(config_file), "summarize", "--period", "today", "--start-date", "2024-01-01"],
    )
    assert result.exit_code == 2


def test_unknown_source_is_rejected(cli_runner, config_file):
    result = invoke(cli_runner, ["--config", str(config_file), "summarize", "--source", "myspace"])
    assert result.exit_code == 2


def test_missing_config_file_reports_configuration_error(cli_runner, tmp_path):
    result = invoke(cli_runner, ["--config", str(tmp_path / "missing.toml"), "sources", "list"])

    assert result.exit_code == 1
    assert "Configuration error" in result.output
