"""Pytest fixtures for miser tests."""

import pytest
from prometheus_client import CollectorRegistry

from src.config.settings import get_settings
from src.observability.metrics import MetricsCollector


@pytest.fixture(autouse=True)
def _clear_settings_cache(monkeypatch, tmp_path):
    """Keep tests independent of any local config.yaml or MISER_* variables."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("MISER_CONFIG", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def registry() -> CollectorRegistry:
    """Private Prometheus registry so collectors never clash across tests."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry) -> MetricsCollector:
    return MetricsCollector(registry=registry)


@pytest.fixture
def sample_hit() -> dict:
    """One raw search hit as returned by the store."""
    return {
        "_index": "alerts",
        "_id": "doc-001",
        "_source": {
            "rule_id": "rule-cpu",
            "rule_type": "threshold",
            "alert_id": "a-1",
            "status": "resolved",
            "context_message": "CPU above 90% on host-a",
            "triggered": "2026-03-01T12:05:00.123456789Z",
            "rule_name": "High CPU",
            "grouping_key": "host-a",
            "matching_docs": "17",
            "custom_data": {"team": "infra", "severity": 2},
        },
    }
