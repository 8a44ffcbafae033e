"""Tests for the Prometheus metrics collector."""

from unittest.mock import patch

from src.config.settings import Settings
from src.observability.metrics import MetricsCollector


class TestNotifyFail:

    def test_gauge_per_channel(self, metrics, registry):
        metrics.set_notify_failure("webhook", "ops", failed=True)
        metrics.set_notify_failure("webhook", "audit", failed=False)

        assert registry.get_sample_value("notify_fail", {"type": "webhook", "name": "ops"}) == 1.0
        assert registry.get_sample_value("notify_fail", {"type": "webhook", "name": "audit"}) == 0.0

    def test_last_value_wins(self, metrics, registry):
        metrics.set_notify_failure("webhook", "ops", failed=True)
        metrics.set_notify_failure("webhook", "ops", failed=False)

        assert registry.get_sample_value("notify_fail", {"type": "webhook", "name": "ops"}) == 0.0


class TestPassMetrics:

    def test_record_pass(self, metrics, registry):
        metrics.record_pass(success=True, latency=0.2)
        metrics.record_pass(success=False, latency=1.5)
        metrics.record_pass(success=True, latency=0.1)

        assert registry.get_sample_value("miser_sync_passes_total", {"outcome": "success"}) == 2
        assert registry.get_sample_value("miser_sync_passes_total", {"outcome": "error"}) == 1
        assert registry.get_sample_value("miser_sync_pass_latency_seconds_count") == 3

    def test_record_reconciliation(self, metrics, registry):
        metrics.record_reconciliation(fetched=10, notified=4, pending=2)
        metrics.record_reconciliation(fetched=5, notified=1, pending=0)
        metrics.record_deleted(7)

        assert registry.get_sample_value("miser_alerts_fetched_total") == 15
        assert registry.get_sample_value("miser_alerts_notified_total") == 5
        assert registry.get_sample_value("miser_pending_alerts") == 0
        assert registry.get_sample_value("miser_records_deleted_total") == 7


class TestServer:

    def test_start_server_uses_own_registry(self, registry):
        metrics = MetricsCollector(registry=registry)
        with patch("src.observability.metrics.start_http_server") as mock_start:
            metrics.start_server(port=9999, addr="127.0.0.1")

        mock_start.assert_called_once_with(9999, addr="127.0.0.1", registry=registry)

    def test_start_server_defaults_from_given_settings(self, registry):
        metrics = MetricsCollector(registry=registry)
        settings = Settings(metrics_host="127.0.0.1", metrics_port=9123)
        with patch("src.observability.metrics.start_http_server") as mock_start:
            metrics.start_server(settings=settings)

        mock_start.assert_called_once_with(9123, addr="127.0.0.1", registry=registry)
