"""Tests for the itemize command-line interface."""

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest
from typer.testing import CliRunner

from itemize_sync import __version__
from itemize_sync.cli import app
from itemize_sync.cli_commands.status import _format_time_ago
from itemize_sync.config import get_settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point the CLI at a temporary data directory and an unreachable API."""
    monkeypatch.setenv("ITEMIZE_DATA_DIR", str(tmp_path / "data"))
    # Nothing listens on the discard port, so the probe reports offline
    monkeypatch.setenv("ITEMIZE_API_URL", "http://127.0.0.1:9")
    monkeypatch.setenv("ITEMIZE_ACCESS_TOKEN", "cli-token")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)


class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestQueueCommands:
    """capture / pending / delete against an offline API."""

    def test_pending_empty(self):
        result = runner.invoke(app, ["pending"])

        assert result.exit_code == 0
        assert "No pending uploads" in result.output

    def test_offline_capture_then_pending(self, sample_image):
        result = runner.invoke(app, ["capture", str(sample_image), "--json"])

        assert result.exit_code == 0
        captured = json.loads(result.output.strip().splitlines()[-1])
        assert captured["queued"] is True
        assert captured["local_id"]

        result = runner.invoke(app, ["pending", "--json"])

        assert result.exit_code == 0
        (item,) = json.loads(result.output.strip().splitlines()[-1])["items"]
        assert item["local_id"] == captured["local_id"]
        assert item["status"] == "pending"

    def test_delete_queued_capture(self, sample_image):
        runner.invoke(app, ["capture", str(sample_image)])
        pending = runner.invoke(app, ["pending", "--json"])
        (item,) = json.loads(pending.output.strip().splitlines()[-1])["items"]

        result = runner.invoke(app, ["delete", item["id"]])

        assert result.exit_code == 0
        assert "No pending uploads" in runner.invoke(app, ["pending"]).output

    def test_delete_unknown_id(self):
        result = runner.invoke(app, ["delete", "does-not-exist"])

        assert result.exit_code == 1
        assert "No queued upload" in result.output

    def test_sync_offline_exits_nonzero(self):
        result = runner.invoke(app, ["sync"])

        assert result.exit_code == 1
        assert "Offline" in result.output

    def test_status_json(self, sample_image):
        runner.invoke(app, ["capture", str(sample_image)])

        result = runner.invoke(app, ["status", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output.strip().splitlines()[-1])
        assert data["online"] is False
        assert data["pending"] == 1
        assert data["last_sync_at"] is None
        assert data["offline_bytes"] == sample_image.stat().st_size


class TestFormatTimeAgo:
    def test_never(self):
        assert _format_time_ago(None) == "Never"

    def test_minutes(self):
        assert _format_time_ago(datetime.now(timezone.utc) - timedelta(minutes=5)) == "5 minutes ago"
