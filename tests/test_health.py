"""Tests for health probes."""

import httpx

from conftest import FakeProvider
from previewctl.services.environment import LifecycleManager


def test_healthy_and_unhealthy_previews(manager: LifecycleManager, provider: FakeProvider) -> None:
    manager.create(1, "up")
    manager.create(2, "down")
    provider.health_status["https://pr-2-down.preview.example.com/api/health"] = 500

    report = manager.check_health()

    assert report.checked == 2
    assert report.unhealthy_count == 1
    probe = report.unhealthy[0]
    assert probe.preview_name == "pr-2-down"
    assert probe.status == 500
    assert probe.error == "HTTP 500"


def test_timeout_is_reported_not_raised(manager: LifecycleManager, provider: FakeProvider) -> None:
    manager.create(1, "slow")

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    provider.health_transport = httpx.MockTransport(handler)

    report = manager.check_health()

    assert report.unhealthy_count == 1
    assert report.probes[0].error is not None
    assert report.probes[0].error.startswith("timeout after")


def test_connection_error_is_reported(manager: LifecycleManager, provider: FakeProvider) -> None:
    manager.create(1, "refused")

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider.health_transport = httpx.MockTransport(handler)

    report = manager.check_health()

    assert not report.probes[0].healthy
    assert report.probes[0].error == "connection refused"


def test_only_active_previews_are_probed(manager: LifecycleManager) -> None:
    manager.create(1, "up")
    manager.store.set_status("pr-1-up", "deleting")

    report = manager.check_health()

    assert report.checked == 0


def test_health_probe_uses_configured_path(manager: LifecycleManager, provider: FakeProvider) -> None:
    manager.config.naming.health_path = "/healthz"
    manager.create(1, "custom")
    provider.health_status["https://pr-1-custom.preview.example.com/healthz"] = 404

    report = manager.check_health()

    assert report.probes[0].url == "https://pr-1-custom.preview.example.com/healthz"
    assert not report.probes[0].healthy
