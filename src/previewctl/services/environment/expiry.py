"""TTL sweep over tracked preview environments."""

from datetime import datetime, timedelta

from previewctl.logger import get_logger
from previewctl.models.config import AppConfig
from previewctl.models.environment import (
    CleanupOutcome,
    CleanupSummary,
    DeletionResult,
    EnvironmentRecord,
    utcnow,
)
from previewctl.utils.pool import run_bounded

from .provisioner import ResourceProvisioner
from .store import MetadataStore

logger = get_logger(__name__)

# Statuses left behind by an interrupted delete or a failed run
_RETRY_STATUSES = ("expired", "deleting", "error")


class ExpiryReconciler:
    """Deletes every environment whose age reached the TTL."""

    def __init__(self, provisioner: ResourceProvisioner, store: MetadataStore, config: AppConfig) -> None:
        self.provisioner = provisioner
        self.store = store
        self.config = config

    @property
    def ttl(self) -> timedelta:
        return timedelta(days=self.config.lifecycle.ttl_days)

    def _reason(self, record: EnvironmentRecord, now: datetime) -> str | None:
        """Why ``record`` should be deleted now, or None to keep it."""
        if record.is_expired(self.ttl, now):
            return "expired"
        if record.status in _RETRY_STATUSES:
            return f"stuck in {record.status}"
        if record.status == "provisioning" and record.age(now) >= self.provisioner.provisioning_timeout:
            return "abandoned provisioning"
        return None

    def _delete(self, record: EnvironmentRecord) -> DeletionResult:
        if record.status in ("active", "provisioning"):
            self.store.set_status(record.preview_name, "expired")
        result = self.provisioner.delete(record.preview_name)
        result.raise_for_failures()
        return result

    def run(self, now: datetime | None = None) -> CleanupSummary:
        """
        Run one sweep.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Counts of deleted, kept and errored environments
        """
        now = now or utcnow()
        summary = CleanupSummary(dry_run=self.store.dry_run)
        records, corrupt = self.store.scan()
        if corrupt:
            logger.warning("Skipping unreadable records", count=len(corrupt))

        logger.info("Starting expiry sweep", records=len(records), ttl_days=self.config.lifecycle.ttl_days)

        doomed: list[tuple[EnvironmentRecord, str]] = []
        for record in records:
            age_days = record.age(now).total_seconds() / 86400
            reason = self._reason(record, now)
            if reason is None:
                logger.debug("Keeping preview", preview_name=record.preview_name, age_days=round(age_days, 1))
                summary.add(CleanupOutcome(preview_name=record.preview_name, action="kept", age_days=age_days))
            else:
                doomed.append((record, reason))

        outcomes = run_bounded(
            doomed,
            lambda item: self._delete(item[0]),
            key=lambda item: item[0].preview_name,
            max_workers=self.config.reconcile.max_workers,
            timeout=self.config.reconcile.task_timeout_seconds,
            name="expiry",
        )
        for outcome in outcomes:
            record, reason = outcome.item
            age_days = record.age(now).total_seconds() / 86400
            if outcome.timed_out:
                action, detail = "error", "timed out"
            elif outcome.error is not None:
                action, detail = "error", str(outcome.error)
            else:
                action, detail = "deleted", reason
            logger.info(
                "Expired preview processed",
                preview_name=record.preview_name,
                action=action,
                reason=detail,
                age_days=round(age_days, 1),
            )
            summary.add(
                CleanupOutcome(preview_name=record.preview_name, action=action, reason=detail, age_days=age_days)
            )

        logger.info("Expiry sweep finished", summary=summary.line(), dry_run=summary.dry_run)
        return summary
