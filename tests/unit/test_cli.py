"""Unit tests for CLI interface."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from resumable_importer.models.data_models import (
    CircuitState,
    FetchResult,
    ImportPhase,
    ImportProgress,
    ItemError,
    QueueStatus,
)
from resumable_importer.monitoring.performance import PerformanceSummary
from resumable_importer.pipeline.main import main
from resumable_importer.pipeline.orchestrator import ImportRunResult


@pytest.fixture
def mock_result():
    """Create a finished import result."""
    return ImportRunResult(
        fetch=FetchResult(items=[], cursor="", has_more=False, was_cancelled=False, pages_fetched=2),
        progress=ImportProgress(
            phase=ImportPhase.COMPLETED,
            fetched_count=150,
            processed_count=150,
            imported_count=148,
            skipped_count=2,
            failed_count=0,
            elapsed_seconds=12.34,
            items_per_second=12.1,
        ),
        queue_status=QueueStatus(
            queue_length=0,
            active_requests=0,
            circuit_state=CircuitState.CLOSED,
            available_tokens=58.0,
            is_paused=False,
            is_online=True,
            offline_queue_size=0,
        ),
        performance=PerformanceSummary(
            duration_seconds=12.34,
            items_per_second=12.1,
            avg_request_latency=0.2,
            request_success_rate=1.0,
            rate_limit_percentage=0.0,
            effective_throughput=12.1,
        ),
    )


def mock_pipeline(result, resumable=False) -> MagicMock:
    pipeline = MagicMock()
    pipeline.run = AsyncMock(return_value=result)
    pipeline.has_resumable_session = AsyncMock(return_value=resumable)
    return pipeline


def test_cli_help():
    """Test that CLI help message works."""
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])

    assert result.exit_code == 0
    assert "Resumable Importer" in result.output
    assert "--config" in result.output
    assert "--resume / --fresh" in result.output
    assert "--fetch-limit" in result.output


def test_cli_version():
    """Test that version flag works."""
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])

    assert result.exit_code == 0
    assert "1.0.0" in result.output


@patch("resumable_importer.pipeline.main.ImportPipeline")
def test_cli_runs_and_writes_summary(mock_pipeline_class, mock_result):
    """Test CLI runs an import and saves the summary."""
    pipeline = mock_pipeline(mock_result)
    mock_pipeline_class.return_value = pipeline
    runner = CliRunner()

    with runner.isolated_filesystem():
        result = runner.invoke(main, ["-u", "alice", "-o", "out", "--no-progress"])

        assert result.exit_code == 0, result.output
        summary = json.loads(Path("out/summary.json").read_text())
        assert summary["progress"]["imported"] == 148
        assert "Import completed: 148 imported" in result.output

    config = mock_pipeline_class.call_args.args[0]
    assert config.username == "alice"
    assert config.output_directory == "out"
    pipeline.run.assert_awaited_once_with(resume=True)


@patch("resumable_importer.pipeline.main.ImportPipeline")
def test_cli_fresh_flag_and_progress_display(mock_pipeline_class, mock_result):
    """Test --fresh disables resumption and the rich summary is shown."""
    pipeline = mock_pipeline(mock_result)
    mock_pipeline_class.return_value = pipeline
    runner = CliRunner()

    with runner.isolated_filesystem():
        result = runner.invoke(main, ["--fresh", "-n", "200"])

    assert result.exit_code == 0, result.output
    assert "Import Summary" in result.output
    assert "Mode: fresh" in result.output
    assert mock_pipeline_class.call_args.args[0].fetch_limit == 200
    assert pipeline.run.await_args.kwargs["resume"] is False


@patch("resumable_importer.pipeline.main.ImportPipeline")
def test_cli_reports_resumption(mock_pipeline_class, mock_result):
    mock_pipeline_class.return_value = mock_pipeline(mock_result, resumable=True)
    runner = CliRunner()

    with runner.isolated_filesystem():
        result = runner.invoke(main, ["--no-progress"])

    assert result.exit_code == 0
    assert "Resuming interrupted import" in result.output


@patch("resumable_importer.pipeline.main.ImportPipeline")
def test_cli_exits_nonzero_when_import_stopped(mock_pipeline_class, mock_result):
    mock_result.error = "HTTP 404 for GET /user/alice/saved"
    mock_pipeline_class.return_value = mock_pipeline(mock_result)
    runner = CliRunner()

    with runner.isolated_filesystem():
        result = runner.invoke(main, ["--no-progress"])

    assert result.exit_code == 1
    assert "Stopped: HTTP 404" in result.output


@patch("resumable_importer.pipeline.main.ImportPipeline")
def test_cli_error_table_keeps_bracketed_text(mock_pipeline_class, mock_result):
    mock_result.recent_errors = [
        ItemError(item_id="p1", error="[Errno 13] Permission denied", timestamp=1.0, retryable=True),
    ]
    mock_pipeline_class.return_value = mock_pipeline(mock_result)
    runner = CliRunner()

    with runner.isolated_filesystem():
        result = runner.invoke(main, [])

    assert result.exit_code == 0, result.output
    assert "Recent Errors" in result.output
    assert "[Errno 13]" in result.output


@patch("resumable_importer.pipeline.main.ImportPipeline")
def test_cli_unsave_flag(mock_pipeline_class, mock_result):
    mock_pipeline_class.return_value = mock_pipeline(mock_result)
    runner = CliRunner()

    with runner.isolated_filesystem():
        result = runner.invoke(main, ["--unsave", "--no-progress"])

    assert result.exit_code == 0, result.output
    assert mock_pipeline_class.call_args.args[0].unsave_after_import is True


def test_cli_rejects_invalid_config():
    runner = CliRunner()

    with runner.isolated_filesystem():
        Path("bad.yaml").write_text("page_size: 0\n")
        result = runner.invoke(main, ["-c", "bad.yaml"])

    assert result.exit_code == 1
    assert "page_size must be positive" in result.output


@patch("resumable_importer.pipeline.main._run_import_with_progress")
def test_cli_interrupt_exits_130(mock_run):
    mock_run.side_effect = KeyboardInterrupt
    runner = CliRunner()

    with runner.isolated_filesystem():
        result = runner.invoke(main, ["--no-progress"])

    assert result.exit_code == 130
    assert "run again to resume" in result.output
