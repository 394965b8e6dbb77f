"""Lifecycle manager: the entry point for preview operations."""

from datetime import datetime

from previewctl.exceptions import ResourceNotFoundError
from previewctl.logger import get_logger
from previewctl.models.config import AppConfig
from previewctl.models.environment import (
    CleanupSummary,
    DeletionResult,
    EnvironmentListItem,
    EnvironmentRecord,
    HealthReport,
    OrphanReport,
    UsageReport,
)
from previewctl.services.providers import ResourceProvider

from .expiry import ExpiryReconciler
from .health import HealthMonitor
from .orphans import OrphanDetector
from .provisioner import ResourceProvisioner
from .store import MetadataStore
from .usage import UsageMonitor

logger = get_logger(__name__)


class LifecycleManager:
    """Manages preview lifecycle: creation, deletion, listing and reconciliation."""

    def __init__(self, provider: ResourceProvider, store: MetadataStore, config: AppConfig) -> None:
        """
        Initialize the manager and wire its components.

        Args:
            provider: Provider API facade
            store: Metadata store
            config: Application configuration
        """
        self.provider = provider
        self.store = store
        self.config = config
        self.provisioner = ResourceProvisioner(provider, store, config, make_room=self._make_room)
        self.expiry = ExpiryReconciler(self.provisioner, store, config)
        self.orphans = OrphanDetector(self.provisioner, store, config)
        self.health = HealthMonitor(provider, store, config)
        self.usage = UsageMonitor(provider, store, config)

    def _make_room(self) -> CleanupSummary:
        return self.expiry.run()

    def verify_credentials(self) -> str:
        identity = self.provider.verify_credentials()
        logger.info("Provider credentials verified", provider=self.provider.name, identity=identity)
        return identity

    def create(self, pr_number: int | str, branch_name: str | None = None) -> EnvironmentRecord:
        return self.provisioner.create(pr_number, branch_name)

    def delete(self, preview_name: str) -> DeletionResult:
        return self.provisioner.delete(preview_name)

    def get(self, preview_name: str) -> EnvironmentRecord:
        """
        Get one environment.

        Raises:
            ResourceNotFoundError: If no record exists
            MetadataCorruption: If the record is unreadable
        """
        record = self.store.get(preview_name)
        if record is None:
            raise ResourceNotFoundError("preview.not_found", preview_name=preview_name)
        return record

    def list_environments(self, detailed: bool = False) -> list[EnvironmentListItem]:
        """
        List all tracked environments, oldest first.

        Args:
            detailed: Also probe the health endpoint of each active environment
        """
        records = sorted(self.store.list_all(), key=lambda r: r.created_at)
        probes = {}
        if detailed:
            active = [r for r in records if r.status == "active"]
            probes = {p.preview_name: p for p in self.health.run(active).probes}
        return [EnvironmentListItem(record=r, health=probes.get(r.preview_name)) for r in records]

    def cleanup(self, now: datetime | None = None) -> CleanupSummary:
        return self.expiry.run(now)

    def detect_orphans(self) -> OrphanReport:
        return self.orphans.run()

    def check_health(self) -> HealthReport:
        return self.health.run()

    def usage_report(self) -> UsageReport:
        return self.usage.run()

    def close(self) -> None:
        self.provider.close()
