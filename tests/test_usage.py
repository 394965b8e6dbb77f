"""Tests for the usage report."""

from conftest import FakeProvider
from previewctl.exceptions import ProviderError
from previewctl.services.environment import LifecycleManager


def test_counts_and_cost(manager: LifecycleManager, provider: FakeProvider) -> None:
    manager.create(1, "a")
    manager.create(2, "b")
    provider.request_counts = {"app-pr-1-a": 1200, "app-pr-2-b": 300}

    report = manager.usage_report()

    assert report.active_previews == 2
    assert report.max_previews == 10
    assert report.kv_namespaces == 6
    assert report.database_branches == 2
    assert report.estimated_monthly_cost_usd == 1.0
    assert report.total_requests_24h == 1500
    assert not report.high_usage
    assert not report.suggest_cleanup


def test_thresholds(manager: LifecycleManager, provider: FakeProvider) -> None:
    manager.config.usage.warning_threshold = 1
    manager.create(1, "a")
    manager.create(2, "b")
    provider.request_counts = {"app-pr-1-a": 1_000_001}

    report = manager.usage_report()

    assert report.suggest_cleanup
    assert report.high_usage


def test_analytics_failure_keeps_the_rest_of_the_report(manager: LifecycleManager, provider: FakeProvider) -> None:
    manager.create(1, "a")
    provider.fail["worker_request_counts"] = ProviderError("cloudflare", "query worker analytics", "forbidden")

    report = manager.usage_report()

    assert report.active_previews == 1
    assert report.requests_24h == {}
    assert report.total_requests_24h == 0
