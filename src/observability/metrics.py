"""
Prometheus metrics for monitoring the sync agent.

Defines and exposes metrics for:
- Per-channel delivery outcome (notify_fail)
- Sync pass outcomes and latency
- Alerts fetched, notified and purged

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# Buckets for pass latency (in seconds); a pass is bounded by the fetch timeout
PASS_LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the sync agent.

    Usage:
        metrics = MetricsCollector()
        metrics.start_server()

        metrics.set_notify_failure("webhook", "ops", failed=True)
        metrics.record_pass(success=True, latency=0.4)
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize Prometheus metrics.

        Args:
            registry: Registry to register on (default: the global REGISTRY)
        """
        self.registry = registry if registry is not None else REGISTRY

        # Delivery outcome per channel, last attempt wins
        self.notify_fail = Gauge(
            "notify_fail",
            "Most recent delivery outcome per channel (1=failed, 0=delivered)",
            ["type", "name"],
            registry=self.registry,
        )

        # Sync passes
        self.sync_passes = Counter(
            "miser_sync_passes_total",
            "Total sync passes",
            ["outcome"],  # success, error
            registry=self.registry,
        )

        self.sync_pass_latency = Histogram(
            "miser_sync_pass_latency_seconds",
            "Time to run one fetch-reconcile-dispatch-delete pass",
            buckets=PASS_LATENCY_BUCKETS,
            registry=self.registry,
        )

        # Alert flow
        self.alerts_fetched = Counter(
            "miser_alerts_fetched_total",
            "Total alert records fetched from the store",
            registry=self.registry,
        )

        self.alerts_notified = Counter(
            "miser_alerts_notified_total",
            "Total alerts handed to the dispatcher",
            registry=self.registry,
        )

        self.records_deleted = Counter(
            "miser_records_deleted_total",
            "Total alert records purged from the store",
            registry=self.registry,
        )

        self.pending_alerts = Gauge(
            "miser_pending_alerts",
            "Active alerts left in the store awaiting resolution after the last pass",
            registry=self.registry,
        )

        logger.debug("Prometheus metrics initialized")

    def start_server(
        self,
        port: int | None = None,
        addr: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
            addr: Address to bind (default from settings)
            settings: Loaded settings to take defaults from (default get_settings())
        """
        settings = settings or get_settings()
        port = port or settings.metrics_port
        addr = addr or settings.metrics_host

        start_http_server(port, addr=addr, registry=self.registry)
        logger.info(f"Prometheus metrics server started on {addr}:{port}")

    # Convenience methods

    def set_notify_failure(self, channel_type: str, name: str, failed: bool) -> None:
        """
        Record the latest delivery outcome for a channel.

        Args:
            channel_type: Channel implementation (e.g. webhook)
            name: Configured channel name
            failed: Whether the delivery failed
        """
        self.notify_fail.labels(type=channel_type, name=name).set(1 if failed else 0)

    def record_pass(self, success: bool, latency: float) -> None:
        """
        Record a finished sync pass.

        Args:
            success: Whether the pass completed without error
            latency: Pass duration in seconds
        """
        self.sync_passes.labels(outcome="success" if success else "error").inc()
        self.sync_pass_latency.observe(latency)

    def record_reconciliation(
        self,
        fetched: int,
        notified: int,
        pending: int,
    ) -> None:
        """
        Record the sizes of one reconciliation.

        Args:
            fetched: Records fetched from the store
            notified: Alerts selected for delivery
            pending: Active alerts left in place
        """
        self.alerts_fetched.inc(fetched)
        self.alerts_notified.inc(notified)
        self.pending_alerts.set(pending)

    def record_deleted(self, count: int) -> None:
        """Record records purged from the store."""
        self.records_deleted.inc(count)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
