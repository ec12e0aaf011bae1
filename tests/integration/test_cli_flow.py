import pytest
from typer.testing import CliRunner
from unittest.mock import MagicMock
from pathlib import Path

# Import the app instance from main
from callguard.main import app
from callguard.infrastructure.config import settings


@pytest.fixture
def mock_console_display(mocker) -> MagicMock:
    """Patches ConsoleDisplay in main so the flow can be asserted through UI calls."""
    display_class = mocker.patch("callguard.main.ConsoleDisplay")
    return display_class.return_value


@pytest.fixture(autouse=True)
def cli_environment(tmp_path: Path, monkeypatch, mocker):
    """Runs every command from an empty directory with no spacing delay and untouched logging."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(settings, "_config", {})
    monkeypatch.setattr(settings, "_loaded", False)
    monkeypatch.setenv("CALLGUARD_RATE_GATE_MIN_DELAY_MS", "0")
    mocker.patch("callguard.main.setup_logging")
    return tmp_path


def invoke(runner: CliRunner, tmp_path: Path, *args: str):
    return runner.invoke(app, ["--config", str(tmp_path / "none.yaml"), *args])


def test_simulate_command_flow(runner: CliRunner, cli_environment: Path, mock_console_display: MagicMock):
    """Repeated keys are served from the cache; only distinct keys are dispatched."""
    result = invoke(runner, cli_environment, "simulate", "-n", "6", "--distinct-keys", "3", "--latency-ms", "0")

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    mock_console_display.display_info.assert_called_once_with("6 reads issued, 3 dispatched, 0 failed.")

    status = mock_console_display.display_status.call_args.args[0]
    assert status["api"]["total"] == 3
    assert status["cache"]["hits"] == 3
    report = mock_console_display.display_health_report.call_args.args[0]
    assert report.healthy is True
    mock_console_display.display_warning.assert_not_called()
    mock_console_display.display_error.assert_not_called()


def test_simulate_retries_rate_limited_dispatches(runner: CliRunner, cli_environment: Path, mock_console_display: MagicMock):
    result = invoke(runner, cli_environment, "simulate", "-n", "1", "--rate-limited", "2", "--latency-ms", "0")

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    mock_console_display.display_info.assert_called_once_with("1 reads issued, 3 dispatched, 0 failed.")
    status = mock_console_display.display_status.call_args.args[0]
    assert status["rate_gate"]["request_count"] == 1
    assert status["quota"]["total"] == 2


def test_simulate_warns_about_failed_reads(runner: CliRunner, cli_environment: Path, mock_console_display: MagicMock):
    result = invoke(runner, cli_environment, "simulate", "-n", "4", "--distinct-keys", "4", "--failures", "2", "--latency-ms", "0")

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    mock_console_display.display_info.assert_called_once_with("4 reads issued, 4 dispatched, 2 failed.")
    mock_console_display.display_warning.assert_called_once_with(
        "2 of 4 reads failed after the guard gave up; see the error summary."
    )
    status = mock_console_display.display_status.call_args.args[0]
    assert status["errors"]["total_errors"] == 2


def test_health_command_healthy(runner: CliRunner, cli_environment: Path, mock_console_display: MagicMock):
    result = invoke(runner, cli_environment, "health", "-n", "5", "--latency-ms", "0")

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    report = mock_console_display.display_health_report.call_args.args[0]
    assert report.healthy is True
    mock_console_display.display_status.assert_not_called()
    mock_console_display.display_error.assert_not_called()


def test_health_command_exits_nonzero_when_unhealthy(runner: CliRunner, cli_environment: Path, mock_console_display: MagicMock):
    result = invoke(runner, cli_environment, "health", "-n", "5", "--distinct-keys", "5", "--failures", "5", "--latency-ms", "0")

    assert result.exit_code == 1
    report = mock_console_display.display_health_report.call_args.args[0]
    assert report.healthy is False
    assert "Low API success rate" in report.issues
    mock_console_display.display_error.assert_called_once()
    assert "Low API success rate" in mock_console_display.display_error.call_args.args[0]


def test_show_config_reads_environment(runner: CliRunner, cli_environment: Path, mock_console_display: MagicMock, monkeypatch):
    monkeypatch.setenv("CALLGUARD_CACHE_MAX_ENTRIES", "42")

    result = invoke(runner, cli_environment, "show-config")

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    tables = [call.args for call in mock_console_display.build_table.call_args_list]
    assert [title for title, _ in tables] == ["Rate Gate", "Cache", "Monitor"]
    cache_rows = dict(tables[1][1])
    assert cache_rows["max_entries"] == 42
    rate_rows = dict(tables[0][1])
    assert rate_rows["min_delay_ms"] == 0.0


def test_show_config_reads_yaml(runner: CliRunner, cli_environment: Path, mock_console_display: MagicMock):
    config_file = cli_environment / "config.yaml"
    config_file.write_text("monitor:\n  call_log_capacity: 50\n")

    result = runner.invoke(app, ["--config", str(config_file), "show-config"])

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    tables = [call.args for call in mock_console_display.build_table.call_args_list]
    assert dict(tables[2][1])["call_log_capacity"] == 50
