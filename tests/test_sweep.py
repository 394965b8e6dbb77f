"""Tests for the scheduled reconciliation job."""

from collections.abc import Callable
from datetime import timedelta
from typing import NoReturn

import httpx
import pytest

from conftest import FakeProvider
from previewctl.models.config import AppConfig
from previewctl.models.environment import CleanupSummary, EnvironmentRecord, SweepReport, UsageReport, utcnow
from previewctl.services.environment import LifecycleManager, ScheduledSweep
from previewctl.services.notify import Notifier


def _notifier(config: AppConfig, sent: list[str]) -> Notifier:
    config.notifications.webhook_url = "https://hooks.example.com/x"

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request.content.decode())
        return httpx.Response(200)

    return Notifier(config.notifications, httpx.MockTransport(handler))


def test_sweep_runs_every_stage_and_notifies(
    manager: LifecycleManager,
    provider: FakeProvider,
    config: AppConfig,
    age_record: Callable[..., EnvironmentRecord],
) -> None:
    manager.create(1, "old")
    manager.create(2, "down")
    age_record("pr-1-old", 9)
    provider.kv["kv-orphan"] = "pr-77-lost-session"
    provider.health_status["https://pr-2-down.preview.example.com/api/health"] = 502
    sent: list[str] = []

    report = ScheduledSweep(manager, _notifier(config, sent), config).run()

    assert report.cleanup is not None and report.cleanup.line() == "1 deleted, 1 kept, 0 errors"
    assert report.orphans is not None and report.orphans.deleted == ["pr-77-lost"]
    assert report.usage is not None and report.usage.active_previews == 1
    assert report.health is not None and report.health.unhealthy_count == 1
    assert report.stage_errors == {}
    assert report.notifications_sent == 3
    assert len(sent) == 3


def test_failing_stage_does_not_stop_the_rest(
    manager: LifecycleManager, config: AppConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken() -> NoReturn:
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(manager, "detect_orphans", broken)
    sent: list[str] = []

    report = ScheduledSweep(manager, _notifier(config, sent), config).run()

    assert report.orphans is None
    assert report.stage_errors == {"orphans": "store unavailable"}
    assert report.cleanup is not None
    assert report.usage is not None
    assert report.health is not None
    assert any("orphans" in body for body in sent)


def test_messages_for_capacity_errors_and_usage(manager: LifecycleManager, config: AppConfig) -> None:
    config.lifecycle.max_environments = 2
    sweep = ScheduledSweep(manager, Notifier(config.notifications), config)
    report = SweepReport(
        cleanup=CleanupSummary(deleted=0, kept=2, errors=1),
        usage=UsageReport(high_usage=True, total_requests_24h=2_000_000),
    )

    messages = sweep.messages(report)

    levels = [level for _, level in messages]
    assert levels == ["error", "warning", "warning"]
    assert "capacity" in messages[1][0]
    assert "2000000" in messages[2][0]


def test_sweep_without_webhook_sends_nothing(manager: LifecycleManager, config: AppConfig) -> None:
    manager.create(1, "x")
    manager.create(2, "y")

    report = ScheduledSweep(manager, Notifier(config.notifications), config).run(now=utcnow() + timedelta(days=8))

    assert report.cleanup is not None and report.cleanup.deleted == 2
    assert report.notifications_sent == 0
