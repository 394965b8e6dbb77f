"""Resource usage and cost estimate for preview infrastructure."""

from previewctl.logger import get_logger
from previewctl.models.config import AppConfig
from previewctl.models.environment import UsageReport
from previewctl.services.providers import ResourceProvider
from previewctl.utils import naming

from .store import MetadataStore

logger = get_logger(__name__)


class UsageMonitor:
    """Counts preview resources and estimates what they cost."""

    def __init__(self, provider: ResourceProvider, store: MetadataStore, config: AppConfig) -> None:
        self.provider = provider
        self.store = store
        self.config = config

    def run(self) -> UsageReport:
        usage = self.config.usage
        records = self.store.list_all()
        active = [r for r in records if r.status == "active"]

        report = UsageReport(
            active_previews=len(active),
            max_previews=self.config.lifecycle.max_environments,
            kv_namespaces=len(active) * len(naming.KV_SUFFIXES),
            database_branches=sum(1 for r in active if r.database_mode == "isolated"),
            estimated_monthly_cost_usd=round(len(active) * usage.cost_per_preview_usd, 2),
        )
        report.suggest_cleanup = report.active_previews > usage.warning_threshold

        try:
            report.requests_24h = self.provider.worker_request_counts()
        except Exception as e:
            # Analytics are optional; the rest of the report stands
            logger.warning("Could not fetch request analytics", error=str(e))
        report.total_requests_24h = sum(report.requests_24h.values())
        report.high_usage = report.total_requests_24h > usage.high_usage_requests

        logger.info(
            "Usage report",
            active_previews=report.active_previews,
            kv_namespaces=report.kv_namespaces,
            database_branches=report.database_branches,
            estimated_monthly_cost_usd=report.estimated_monthly_cost_usd,
            total_requests_24h=report.total_requests_24h,
        )
        if report.suggest_cleanup:
            logger.warning("High number of active previews", count=report.active_previews)
        if report.high_usage:
            logger.warning("High preview traffic", total_requests_24h=report.total_requests_24h)
        return report
