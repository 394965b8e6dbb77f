"""Orphan detection: live provider resources versus tracked records."""

from collections import defaultdict
from dataclasses import dataclass, field

from previewctl.logger import get_logger
from previewctl.models.config import AppConfig
from previewctl.models.environment import EnvironmentRecord, LiveResource, OrphanReport
from previewctl.services.providers import ResourceProvider
from previewctl.utils import naming
from previewctl.utils.pool import run_bounded

from .provisioner import ResourceProvisioner
from .store import MetadataStore

logger = get_logger(__name__)


@dataclass
class _Cleanup:
    """One unit of orphan work for a single preview name."""

    preview_name: str
    # orphaned: delete resources only; dangling: delete through the provisioner;
    # corrupt: delete resources, then drop the unreadable row
    kind: str
    resources: list[LiveResource] = field(default_factory=list)


class OrphanDetector:
    """
    Finds provider resources that follow the preview naming convention but
    have no live environment behind them, and deletes them.

    A group of resources sharing a preview name is protected when it has a
    live worker and a readable record, or when its record is still being
    provisioned. Everything else is deleted on the spot.
    """

    def __init__(self, provisioner: ResourceProvisioner, store: MetadataStore, config: AppConfig) -> None:
        self.provisioner = provisioner
        self.store = store
        self.config = config

    @property
    def provider(self) -> ResourceProvider:
        return self.provisioner.provider

    def _live_groups(self) -> dict[str, list[LiveResource]]:
        """Group live resources by the preview name encoded in their names."""
        project = self.config.naming.project_name
        groups: dict[str, list[LiveResource]] = defaultdict(list)

        for worker in self.provider.list_workers():
            name = naming.preview_name_from_worker(project, worker.name)
            if name:
                groups[name].append(worker)
        for namespace in self.provider.list_kv_namespaces():
            parsed = naming.preview_name_from_kv_title(namespace.name)
            if parsed:
                groups[parsed[0]].append(namespace)
        if self.provider.supports_database_branches:
            for database in self.provider.list_database_branches():
                name = naming.preview_name_from_database(project, database.name)
                if name:
                    groups[name].append(database)
        return groups

    def _in_flight(self, record: EnvironmentRecord) -> bool:
        return record.status == "provisioning" and record.age() < self.provisioner.provisioning_timeout

    def _delete_resource(self, resource: LiveResource) -> bool:
        if resource.kind == "worker":
            return self.provider.delete_worker(resource.name)
        if resource.kind == "kv_namespace":
            return self.provider.delete_kv_namespace(resource.id)
        return self.provider.delete_database_branch(resource.name)

    def _clean(self, job: _Cleanup) -> dict[str, str]:
        """Run one job; returns resource label -> error for failed deletions."""
        if job.kind == "dangling":
            result = self.provisioner.delete(job.preview_name)
            return {f"{job.preview_name}:{label}": error for label, error in result.failed.items()}

        failed: dict[str, str] = {}
        for resource in job.resources:
            label = f"{job.preview_name}:{resource.kind}:{resource.name}"
            try:
                self._delete_resource(resource)
                logger.info("Deleted orphaned resource", resource=label)
            except Exception as e:
                logger.warning("Failed to delete orphaned resource", resource=label, error=str(e))
                failed[label] = str(e)
        if job.kind == "corrupt" and not failed:
            self.store.remove(job.preview_name)
        return failed

    def run(self) -> OrphanReport:
        """
        Run one detection pass.

        A failed provider listing aborts the pass; it is never read as an
        empty listing.
        """
        report = OrphanReport(dry_run=self.store.dry_run)
        records, corrupt = self.store.scan()

        try:
            groups = self._live_groups()
        except Exception as e:
            logger.error("Provider listing failed, orphan pass aborted", error=str(e))
            report.aborted = str(e)
            return report

        # A create can claim and finish while the provider is being listed;
        # the second read keeps its resources out of the orphan set
        before = {record.preview_name: record for record in records}
        after = {record.preview_name: record for record in self.store.scan()[0]}

        report.scanned = sum(len(resources) for resources in groups.values())
        live_workers = {name for name, resources in groups.items() if any(r.kind == "worker" for r in resources)}
        jobs: list[_Cleanup] = []

        for corruption in corrupt:
            name = corruption.preview_name
            if name in after:
                continue
            report.corrupt_records.append(name)
            jobs.append(_Cleanup(name, "corrupt", groups.pop(name, [])))

        for name in sorted(before.keys() | after.keys()):
            seen = [r for r in (before.get(name), after.get(name)) if r is not None]
            if name not in before or any(self._in_flight(r) for r in seen):
                if name in groups:
                    report.skipped_in_flight.append(name)
                    groups.pop(name)
                continue
            if all(r.status == "active" for r in seen) and name in after and name not in live_workers:
                report.dangling_records.append(name)
                groups.pop(name, None)
                jobs.append(_Cleanup(name, "dangling"))

        for name, resources in sorted(groups.items()):
            if name in before and name in live_workers:
                continue
            report.orphaned.append(name)
            jobs.append(_Cleanup(name, "orphaned", resources))

        logger.info(
            "Orphan scan complete",
            scanned=report.scanned,
            orphaned=len(report.orphaned),
            dangling=len(report.dangling_records),
            corrupt=len(report.corrupt_records),
        )

        outcomes = run_bounded(
            jobs,
            self._clean,
            key=lambda job: job.preview_name,
            max_workers=self.config.reconcile.max_workers,
            timeout=self.config.reconcile.task_timeout_seconds,
            name="orphans",
        )
        for outcome in outcomes:
            job = outcome.item
            if outcome.timed_out:
                report.failed[job.preview_name] = "timed out"
            elif outcome.error is not None:
                report.failed[job.preview_name] = str(outcome.error)
            elif outcome.value:
                report.failed.update(outcome.value)
            else:
                report.deleted.append(job.preview_name)

        logger.info("Orphan cleanup finished", deleted=len(report.deleted), errors=report.errors)
        return report
