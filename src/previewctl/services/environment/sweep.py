"""The unattended reconciliation job."""

from collections.abc import Callable
from datetime import datetime

from previewctl.logger import get_logger
from previewctl.models.config import AppConfig
from previewctl.models.environment import SweepReport
from previewctl.services.notify import Level, Notifier

from .manager import LifecycleManager

logger = get_logger(__name__)


class ScheduledSweep:
    """
    Expiry cleanup, orphan detection, usage report and health checks, in that
    order, followed by notifications about anything worth a human's attention.

    Every stage is isolated: a stage that raises is recorded in
    ``stage_errors`` and the next one still runs.
    """

    def __init__(self, manager: LifecycleManager, notifier: Notifier, config: AppConfig) -> None:
        self.manager = manager
        self.notifier = notifier
        self.config = config

    def _stage(self, report: SweepReport, name: str, fn: Callable[[], object]) -> object | None:
        logger.info("Sweep stage started", stage=name)
        try:
            return fn()
        except Exception as e:
            logger.error("Sweep stage failed", stage=name, error=str(e))
            report.stage_errors[name] = str(e)
            return None

    def run(self, now: datetime | None = None) -> SweepReport:
        report = SweepReport()
        report.cleanup = self._stage(report, "cleanup", lambda: self.manager.cleanup(now))  # type: ignore[assignment]
        report.orphans = self._stage(report, "orphans", self.manager.detect_orphans)  # type: ignore[assignment]
        report.usage = self._stage(report, "usage", self.manager.usage_report)  # type: ignore[assignment]
        report.health = self._stage(report, "health", self.manager.check_health)  # type: ignore[assignment]

        for message, level in self.messages(report):
            if self.notifier.send(message, level):
                report.notifications_sent += 1
        logger.info("Sweep finished", stage_errors=len(report.stage_errors), notifications=report.notifications_sent)
        return report

    def messages(self, report: SweepReport) -> list[tuple[str, Level]]:
        """Notifications warranted by a sweep report."""
        threshold = self.config.notifications.error_threshold
        limit = self.config.lifecycle.max_environments
        messages: list[tuple[str, Level]] = []

        cleanup = report.cleanup
        if cleanup is not None:
            if cleanup.deleted > 0:
                messages.append((f"Cleaned up {cleanup.deleted} expired preview environments", "success"))
            if cleanup.errors >= threshold:
                messages.append((f"Encountered {cleanup.errors} errors during preview cleanup", "error"))
            if cleanup.kept >= limit:
                messages.append((f"Preview environment capacity reached ({cleanup.kept}/{limit})", "warning"))

        orphans = report.orphans
        if orphans is not None:
            if orphans.deleted:
                messages.append((f"Cleaned up {len(orphans.deleted)} orphaned preview resources", "success"))
            if orphans.errors >= threshold:
                messages.append((f"Encountered {orphans.errors} errors during orphan cleanup", "error"))

        usage = report.usage
        if usage is not None and usage.high_usage:
            messages.append(
                (f"High preview traffic: {usage.total_requests_24h} requests in the last 24 hours", "warning")
            )

        health = report.health
        if health is not None and health.unhealthy_count > 0:
            names = ", ".join(p.preview_name for p in health.unhealthy)
            messages.append((f"{health.unhealthy_count} unhealthy preview environments: {names}", "warning"))

        for stage, error in report.stage_errors.items():
            messages.append((f"Preview sweep stage '{stage}' failed: {error}", "error"))
        return messages
