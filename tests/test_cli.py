"""
Tests for CLI module.

Tests command-line interface commands and output. Every test runs
against a fresh database in a temporary directory.
"""

from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from review_crawler import __version__
from review_crawler.cli import app
from review_crawler.crawler.sources import GENERIC

LISTING_URL = "https://shop.example.com/items/42/reviews"


@pytest.fixture
def runner(temp_dir: Path, monkeypatch) -> CliRunner:
    """Provide a CLI test runner with isolated storage."""
    monkeypatch.chdir(temp_dir)
    monkeypatch.delenv("REVIEW_CRAWLER_CONFIG", raising=False)
    monkeypatch.setenv("REVIEW_CRAWLER__STORAGE__DATABASE_PATH", str(temp_dir / "cli.db"))
    monkeypatch.setenv("REVIEW_CRAWLER__LOGGING__LOG_TO_CONSOLE", "false")
    return CliRunner()


class TestCLI:
    """Tests for CLI commands."""

    def test_cli_help(self, runner: CliRunner):
        """CLI should show help."""
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "Usage" in result.output

    def test_version(self, runner: CliRunner):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_start_help(self, runner: CliRunner):
        """Start command should show help."""
        result = runner.invoke(app, ["start", "--help"])

        assert result.exit_code == 0
        assert "--incremental" in result.output

    def test_status_empty(self, runner: CliRunner):
        """Status command should run on an empty database."""
        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "No sessions yet" in result.output
        assert "0 waiting" in result.output

    def test_stop_without_session(self, runner: CliRunner):
        result = runner.invoke(app, ["stop"])

        assert result.exit_code == 0
        assert "No running session" in result.output

    def test_resume_without_session(self, runner: CliRunner):
        result = runner.invoke(app, ["resume"])

        assert result.exit_code == 0
        assert "No session to resume" in result.output


class TestSessionCommands:
    """Tests for start, status and stop working on persisted state."""

    def test_start_without_running(self, runner: CliRunner):
        result = runner.invoke(app, ["start", LISTING_URL, "--no-run"])

        assert result.exit_code == 0
        assert "collecting" in result.output

    def test_second_start_rejected(self, runner: CliRunner):
        """Only one session may be live at a time."""
        runner.invoke(app, ["start", LISTING_URL, "--no-run"])

        result = runner.invoke(app, ["start", "https://shop.example.com/items/7/reviews", "--no-run"])

        assert result.exit_code == 1
        assert "Not started" in result.output

    def test_invalid_watermark_rejected(self, runner: CliRunner):
        result = runner.invoke(app, ["start", LISTING_URL, "--watermark", "someday", "--no-run"])

        assert result.exit_code == 1
        assert "invalid watermark" in result.output

    def test_status_then_stop(self, runner: CliRunner):
        """A started session shows up in status and can be stopped."""
        target_id = GENERIC.target_id(LISTING_URL)
        runner.invoke(app, ["start", LISTING_URL, "--no-run"])

        listing = runner.invoke(app, ["status"])
        assert listing.exit_code == 0
        assert "No sessions yet" not in listing.output

        stopped = runner.invoke(app, ["stop"])
        assert "Session stopped" in stopped.output

        detail = runner.invoke(app, ["status", target_id])
        assert detail.exit_code == 0
        assert "stopped" in detail.output

    def test_status_unknown_target(self, runner: CliRunner):
        result = runner.invoke(app, ["status", "nothing-here"])

        assert result.exit_code == 1


class TestQueueCommands:
    """Tests for queue management."""

    def test_add_and_list(self, runner: CliRunner):
        added = runner.invoke(app, ["queue", "add", LISTING_URL, "--title", "Kettle"])
        assert added.exit_code == 0
        assert "Queued Kettle" in added.output

        listing = runner.invoke(app, ["queue", "list"])
        assert "Kettle" in listing.output

    def test_duplicate_add(self, runner: CliRunner):
        runner.invoke(app, ["queue", "add", LISTING_URL])

        result = runner.invoke(app, ["queue", "add", LISTING_URL])

        assert result.exit_code == 0
        assert "Already queued" in result.output

    def test_remove_and_clear(self, runner: CliRunner):
        runner.invoke(app, ["queue", "add", LISTING_URL])
        runner.invoke(app, ["queue", "add", "https://shop.example.com/items/7/reviews"])

        removed = runner.invoke(app, ["queue", "remove", LISTING_URL])
        assert "Removed" in removed.output

        cleared = runner.invoke(app, ["queue", "clear"])
        assert "Removed 1 targets" in cleared.output

        assert "Queue is empty" in runner.invoke(app, ["queue", "list"]).output

    def test_batch_on_empty_queue(self, runner: CliRunner):
        result = runner.invoke(app, ["batch"])

        assert result.exit_code == 1
        assert "empty queue" in result.output


class TestConfigCommands:
    """Tests for configuration commands."""

    def test_config_show(self, runner: CliRunner):
        """Config show command should display settings."""
        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0
        assert "crawler" in result.output

    def test_config_init(self, runner: CliRunner, temp_dir: Path):
        output = temp_dir / "generated.yaml"

        result = runner.invoke(app, ["config", "init", "--output", str(output)])

        assert result.exit_code == 0
        data = yaml.safe_load(output.read_text())
        assert data["crawler"]["sources"]["amazon"]["mode"] == "navigation"

    def test_config_file_option(self, runner: CliRunner, temp_dir: Path):
        config_path = temp_dir / "custom.yaml"
        config_path.write_text("crawler:\n  max_consecutive_skip_pages: 7\n")

        result = runner.invoke(app, ["--config", str(config_path), "config", "show"])

        assert result.exit_code == 0
        assert "max_consecutive_skip_pages: 7" in result.output
