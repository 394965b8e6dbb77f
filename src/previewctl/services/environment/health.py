"""Health probes for active preview environments."""

from previewctl.logger import get_logger
from previewctl.models.config import AppConfig
from previewctl.models.environment import EnvironmentRecord, HealthProbe, HealthReport
from previewctl.services.providers import ResourceProvider
from previewctl.utils.pool import run_bounded

from .store import MetadataStore

logger = get_logger(__name__)


class HealthMonitor:
    """Purely observational: never changes records or resources."""

    def __init__(self, provider: ResourceProvider, store: MetadataStore, config: AppConfig) -> None:
        self.provider = provider
        self.store = store
        self.config = config

    def health_url(self, record: EnvironmentRecord) -> str:
        return record.url.rstrip("/") + self.config.naming.health_path

    def probe(self, record: EnvironmentRecord) -> HealthProbe:
        """Probe one environment with the configured timeout."""
        probe = self.provider.health_check(
            record.preview_name, self.health_url(record), self.config.reconcile.health_timeout_seconds
        )
        if probe.healthy:
            logger.debug("Preview healthy", preview_name=record.preview_name, latency_ms=probe.latency_ms)
        else:
            logger.warning("Preview unhealthy", preview_name=record.preview_name, error=probe.error)
        return probe

    def run(self, records: list[EnvironmentRecord] | None = None) -> HealthReport:
        """
        Probe every active environment.

        Args:
            records: Records to probe; defaults to all active ones in the store
        """
        if records is None:
            records = [r for r in self.store.list_all() if r.status == "active"]

        outcomes = run_bounded(
            records,
            self.probe,
            key=lambda r: r.preview_name,
            max_workers=self.config.reconcile.max_workers,
            # Each probe is already bounded; allow a margin for the pool
            timeout=self.config.reconcile.health_timeout_seconds * (len(records) + 1),
            name="health",
        )
        report = HealthReport()
        for outcome in outcomes:
            if outcome.value is not None:
                report.probes.append(outcome.value)
            else:
                record = outcome.item
                error = "timed out" if outcome.timed_out else str(outcome.error)
                probe = HealthProbe(
                    preview_name=record.preview_name, url=self.health_url(record), healthy=False, error=error
                )
                report.probes.append(probe)
        logger.info("Health check finished", checked=report.checked, unhealthy=report.unhealthy_count)
        return report
