"""Tests for the miser CLI commands."""

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from src.alerts.channels import WebhookChannel
from src.alerts.errors import DeliveryError, StoreError
from src.alerts.store import AlertStore
from src.cli import main
from src.services.sync_service import SyncService
from factories import make_threshold

CONFIG_YAML = """
es_host: http://es:9200
alerts_index: alerts
sync_interval: 10s
environment: development
notifiers:
  - type: webhook
    name: ops
    retries: 2
    endpoint: https://hooks.example.com/ops
"""


# ── Fixtures ──────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("src.cli.setup_logging"):
        yield


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "miser.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")
    return str(path)


@pytest.fixture
def batch():
    return [
        make_threshold("a1", status="active", minutes=0),
        make_threshold("r1", status="resolved", minutes=5),
        make_threshold("a2", status="active", minutes=1, grouping_key="host-b"),
    ]


# ── check-config ──────────────────────────────────────────


class TestCheckConfig:

    def test_lists_channels(self, runner, config_path):
        result = runner.invoke(main, ["--config", config_path, "check-config"])

        assert result.exit_code == 0, result.output
        assert "webhook/ops" in result.output
        assert "retries=2" in result.output
        assert "Configuration OK" in result.output

    def test_unsupported_channel(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("notifiers:\n  - type: sms\n    name: phone\n", encoding="utf-8")

        result = runner.invoke(main, ["--config", str(path), "check-config"])

        assert result.exit_code == 1
        assert "unsupported notifier of type: sms" in result.output

    def test_missing_config(self, runner, tmp_path):
        result = runner.invoke(main, ["--config", str(tmp_path / "nope.yaml"), "check-config"])

        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_invalid_value(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("notifiers:\n  - type: webhook\n    name: ops\n    retries: 0\n    endpoint: https://x\n", encoding="utf-8")

        result = runner.invoke(main, ["--config", str(path), "check-config"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


# ── run ───────────────────────────────────────────────────


class TestRun:

    def _config(self, tmp_path, extra: str = "") -> str:
        path = tmp_path / "run.yaml"
        path.write_text(CONFIG_YAML + extra, encoding="utf-8")
        return str(path)

    def test_metrics_server_binds_configured_address(self, runner, tmp_path):
        config = self._config(tmp_path, "metrics_host: 127.0.0.1\nmetrics_port: 9123\n")
        with patch("src.observability.metrics.start_http_server") as mock_start, \
             patch.object(SyncService, "start", new=AsyncMock()) as mock_loop:
            result = runner.invoke(main, ["--config", config, "run"])

        assert result.exit_code == 0, result.output
        mock_loop.assert_awaited_once()
        args, kwargs = mock_start.call_args
        assert args == (9123,)
        assert kwargs["addr"] == "127.0.0.1"

    def test_metrics_port_option_overrides_config(self, runner, tmp_path):
        config = self._config(tmp_path, "metrics_host: 127.0.0.1\n")
        with patch("src.observability.metrics.start_http_server") as mock_start, \
             patch.object(SyncService, "start", new=AsyncMock()):
            result = runner.invoke(main, ["--config", config, "run", "--metrics-port", "9200"])

        assert result.exit_code == 0, result.output
        assert mock_start.call_args.args == (9200,)
        assert mock_start.call_args.kwargs["addr"] == "127.0.0.1"

    def test_no_metrics(self, runner, config_path):
        with patch("src.observability.metrics.start_http_server") as mock_start, \
             patch.object(SyncService, "start", new=AsyncMock()):
            result = runner.invoke(main, ["--config", config_path, "run", "--no-metrics"])

        assert result.exit_code == 0, result.output
        mock_start.assert_not_called()


# ── run-once ──────────────────────────────────────────────


class TestRunOnce:

    def test_dry_run_changes_nothing(self, runner, config_path, batch):
        with patch.object(AlertStore, "fetch", new=AsyncMock(return_value=batch)), \
             patch.object(AlertStore, "delete", new=AsyncMock()) as mock_delete, \
             patch.object(WebhookChannel, "notify", new=AsyncMock()) as mock_notify:
            result = runner.invoke(main, ["--config", config_path, "run-once", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Fetched 3 records" in result.output
        assert "Would notify (1)" in result.output
        assert "Would delete (2)" in result.output
        assert "Pending active alerts: 1" in result.output
        mock_delete.assert_not_called()
        mock_notify.assert_not_called()

    def test_single_pass(self, runner, config_path, batch):
        with patch.object(AlertStore, "fetch", new=AsyncMock(return_value=batch)), \
             patch.object(AlertStore, "delete", new=AsyncMock()) as mock_delete, \
             patch.object(WebhookChannel, "notify", new=AsyncMock()) as mock_notify:
            result = runner.invoke(main, ["--config", config_path, "run-once"])

        assert result.exit_code == 0, result.output
        assert "Fetched 3, notified 1, deleted 2, pending 1" in result.output
        assert "webhook/ops: delivered" in result.output
        mock_notify.assert_awaited_once()
        assert set(mock_delete.call_args.args[0]) == {"a1", "r1"}

    def test_failed_delivery_exits_non_zero(self, runner, config_path, batch):
        failure = DeliveryError("ops", "https://hooks.example.com/ops")
        with patch.object(AlertStore, "fetch", new=AsyncMock(return_value=batch)), \
             patch.object(AlertStore, "delete", new=AsyncMock()), \
             patch.object(WebhookChannel, "notify", new=AsyncMock(side_effect=failure)):
            result = runner.invoke(main, ["--config", config_path, "run-once"])

        assert result.exit_code == 1
        assert "webhook/ops: failed" in result.output

    def test_store_error(self, runner, config_path):
        error = StoreError("503 Service Unavailable", "search")
        with patch.object(AlertStore, "fetch", new=AsyncMock(side_effect=error)):
            result = runner.invoke(main, ["--config", config_path, "run-once"])

        assert result.exit_code == 1
        assert "503 Service Unavailable" in result.output


# ── health ────────────────────────────────────────────────


class TestHealth:

    @pytest.mark.parametrize("healthy, code", [(True, 0), (False, 1)])
    def test_reports_store_status(self, runner, config_path, healthy, code):
        with patch.object(AlertStore, "health_check", new=AsyncMock(return_value=healthy)):
            result = runner.invoke(main, ["--config", config_path, "health"])

        assert result.exit_code == code
        assert "alert store (http://es:9200)" in result.output
