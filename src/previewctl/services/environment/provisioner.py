"""Resource provisioner: create and delete everything one preview owns."""

from collections.abc import Callable
from datetime import timedelta
from functools import partial

from previewctl.exceptions import (
    CapacityExceeded,
    MetadataCorruption,
    ProvisioningError,
    ResourceConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from previewctl.logger import get_logger
from previewctl.models.config import AppConfig
from previewctl.models.environment import (
    CAPACITY_STATUSES,
    DeletionResult,
    EnvironmentRecord,
    EnvironmentStatus,
)
from previewctl.services.providers import ResourceProvider
from previewctl.utils import naming

from .store import MetadataStore
from .worker_config import build_deployment

logger = get_logger(__name__)

# (description, inverse action) pushed by each completed provisioning step
Compensation = tuple[str, Callable[[], object]]


class ResourceProvisioner:
    """
    Performs create/delete of each resource type against the provider.

    Creation runs as ordered steps; every completed step pushes its own
    delete onto a rollback stack local to that call, which is unwound in
    reverse when a critical step fails.
    """

    def __init__(
        self,
        provider: ResourceProvider,
        store: MetadataStore,
        config: AppConfig,
        make_room: Callable[[], object] | None = None,
    ) -> None:
        """
        Initialize the provisioner.

        Args:
            provider: Provider API facade
            store: Metadata store
            config: Application configuration
            make_room: Called once when the capacity cap is reached, before re-checking
        """
        self.provider = provider
        self.store = store
        self.config = config
        self.make_room = make_room

    # Naming helpers

    def preview_name(self, pr_number: int | str, branch_name: str) -> str:
        return naming.preview_name(pr_number, branch_name, self.config.lifecycle.branch_slug_max_length)

    def worker_name(self, preview_name: str) -> str:
        return naming.worker_name(self.config.naming.project_name, preview_name)

    def database_branch_name(self, preview_name: str) -> str:
        return naming.database_branch_name(self.config.naming.project_name, preview_name)

    def _host(self, preview_name: str) -> str:
        return naming.preview_host(preview_name, self.config.naming.preview_subdomain, self.config.naming.zone_name)

    @property
    def provisioning_timeout(self) -> timedelta:
        return timedelta(minutes=self.config.lifecycle.provisioning_timeout_minutes)

    # Create

    def create(self, pr_number: int | str, branch_name: str | None = None) -> EnvironmentRecord:
        """
        Create (or return) the preview environment for a pull request.

        Args:
            pr_number: Pull request number
            branch_name: Source branch; defaults to ``lifecycle.default_branch_name``

        Returns:
            The active environment record

        Raises:
            CapacityExceeded: Cap still reached after the make-room callback
            ProvisioningError: A critical step failed; the call's own work was rolled back
            ResourceConflictError: Another invocation is provisioning the same preview
        """
        branch = branch_name or self.config.lifecycle.default_branch_name
        name = self.preview_name(pr_number, branch)
        log = logger.bind(preview_name=name)

        existing = self._existing(name)
        if existing is not None:
            if existing.status == "active":
                log.info("Preview environment already active")
                return existing
            if existing.status == "provisioning" and existing.age() < self.provisioning_timeout:
                raise ResourceConflictError("preview.busy", preview_name=name)
            log.warning("Clearing leftover record before re-creating", status=existing.status)
            self.delete(name)

        self._ensure_capacity()

        url = naming.preview_url(name, self.config.naming.preview_subdomain, self.config.naming.zone_name)
        record = EnvironmentRecord(
            preview_name=name,
            pr_number=int(pr_number),
            branch_name=branch,
            url=url,
            status="provisioning",
        )
        record.resources.worker_name = self.worker_name(name)
        if not self.store.claim(record):
            raise ResourceConflictError("preview.busy", preview_name=name)
        self._recheck_capacity(name)

        log.info("Creating preview environment", pr_number=record.pr_number, branch=branch)
        rollback: list[Compensation] = []
        step = "kv_namespaces"
        try:
            self._create_kv_namespaces(record, rollback)
            self._create_database_branch(record, rollback)
            step = "worker_deployment"
            self._deploy_worker(record, rollback)
        except Exception as e:
            failures = self._unwind(name, rollback)
            self.store.remove(name)
            log.error("Provisioning failed, rolled back", step=step, error=str(e), rollback_failures=failures)
            raise ProvisioningError(name, step, str(e), failures) from e

        self._verify_route(record)
        active = self._persist(record, status="active")
        log.info("Preview environment created", url=active.url, database_mode=active.database_mode)
        return active

    def _existing(self, name: str) -> EnvironmentRecord | None:
        try:
            return self.store.get(name)
        except MetadataCorruption as e:
            logger.warning("Replacing unreadable record", preview_name=name, reason=e.reason)
            self.delete(name)
            return None

    def _ensure_capacity(self) -> None:
        limit = self.config.lifecycle.max_environments
        active = self.store.count(CAPACITY_STATUSES)
        if active < limit:
            return
        logger.warning("Maximum preview environments reached", active=active, limit=limit)
        if self.make_room is not None:
            logger.info("Cleaning up expired previews first")
            self.make_room()
            active = self.store.count(CAPACITY_STATUSES)
        if active >= limit:
            raise CapacityExceeded(limit, active)

    def _recheck_capacity(self, name: str) -> None:
        """Back out a claim that pushed the count over the cap (concurrent creates)."""
        if self.store.dry_run:
            return
        limit = self.config.lifecycle.max_environments
        active = self.store.count(CAPACITY_STATUSES)
        if active > limit:
            self.store.remove(name)
            raise CapacityExceeded(limit, active - 1)

    def _persist(self, record: EnvironmentRecord, status: EnvironmentStatus | None = None) -> EnvironmentRecord:
        """Write the record's resources (and optionally status) through to the store."""

        def _apply(stored: EnvironmentRecord) -> None:
            stored.resources = record.resources.model_copy(deep=True)
            stored.database_mode = record.database_mode
            if status is not None:
                stored.status = status

        updated = self.store.update(record.preview_name, _apply)
        if updated is None:
            if self.store.dry_run:
                return record.model_copy(update={"status": status or record.status}, deep=True)
            # A concurrent delete removed the claim
            raise ResourceNotFoundError("preview.not_found", preview_name=record.preview_name)
        return updated

    def _create_kv_namespaces(self, record: EnvironmentRecord, rollback: list[Compensation]) -> None:
        for role in naming.KV_SUFFIXES:
            title = naming.kv_namespace_title(record.preview_name, role)
            namespace_id = self.provider.create_kv_namespace(title)
            rollback.append((f"kv:{role}", partial(self.provider.delete_kv_namespace, namespace_id)))
            record.resources.kv_namespaces[role] = namespace_id
            self._persist(record)

    def _create_database_branch(self, record: EnvironmentRecord, rollback: list[Compensation]) -> None:
        """Best effort: any failure degrades to the shared preview database."""
        if not self.provider.supports_database_branches:
            logger.warning("Database branching not configured, using shared preview database")
            return
        branch_name = self.database_branch_name(record.preview_name)
        try:
            branch = self.provider.create_database_branch(branch_name)
        except Exception as e:
            logger.warning(
                "Could not create database branch, using shared preview database",
                preview_name=record.preview_name,
                error=str(e),
            )
            return
        rollback.append(("database", partial(self.provider.delete_database_branch, branch_name)))
        record.resources.database = branch
        record.database_mode = "isolated"
        self._persist(record)

    def _deploy_worker(self, record: EnvironmentRecord, rollback: list[Compensation]) -> None:
        deployment = build_deployment(record, self.config)
        self.provider.deploy_worker(deployment)
        rollback.append(("worker", partial(self.provider.delete_worker, deployment.name)))

    def _verify_route(self, record: EnvironmentRecord) -> None:
        """Best effort: a missing route is reported, not rolled back."""
        host = self._host(record.preview_name)
        record.resources.route = host
        try:
            routed = self.provider.verify_route(host)
        except Exception as e:
            logger.warning("Route verification failed", hostname=host, error=str(e))
            return
        if not routed:
            logger.warning(
                "No worker route covers preview host",
                hostname=host,
                expected=f"*.{self.config.naming.preview_subdomain}.{self.config.naming.zone_name}/*",
            )

    def _unwind(self, name: str, rollback: list[Compensation]) -> list[str]:
        """Run compensating actions in reverse order. Failures are left to orphan detection."""
        failures: list[str] = []
        while rollback:
            desc, action = rollback.pop()
            try:
                action()
                logger.info("Rolled back", preview_name=name, resource=desc)
            except Exception as e:
                logger.warning("Rollback step failed", preview_name=name, resource=desc, error=str(e))
                failures.append(f"{desc}: {e}")
        return failures

    # Delete

    def delete(self, preview_name: str) -> DeletionResult:
        """
        Delete a preview's worker, KV namespaces and database branch, then its record.

        Each resource is deleted independently and an already missing resource
        counts as success. The record is removed whatever the outcome; residue
        is left for orphan detection.

        Returns:
            Per-resource outcome
        """
        if not naming.is_preview_name(preview_name):
            raise ValidationError("preview.invalid_name", value=preview_name)

        log = logger.bind(preview_name=preview_name)
        result = DeletionResult(preview_name=preview_name, dry_run=self.store.dry_run)

        try:
            record = self.store.get(preview_name)
        except MetadataCorruption:
            record = None
        if record is not None and record.status != "deleting":
            self.store.set_status(preview_name, "deleting")

        log.info("Deleting preview environment", tracked=record is not None)

        worker = (record.resources.worker_name if record else None) or self.worker_name(preview_name)
        self._delete_one(result, "worker", partial(self.provider.delete_worker, worker))

        for role, namespace_id in self._namespace_ids(preview_name, record, result).items():
            self._delete_one(result, f"kv:{role}", partial(self.provider.delete_kv_namespace, namespace_id))

        database = record.resources.database.name if record and record.resources.database else None
        if database is None and self.provider.supports_database_branches:
            database = self.database_branch_name(preview_name)
        if database is not None:
            self._delete_one(result, "database", partial(self.provider.delete_database_branch, database))

        result.record_removed = self.store.remove(preview_name)
        if result.failed:
            log.warning("Preview deleted with residue", failed=sorted(result.failed))
        else:
            log.info("Preview environment deleted", deleted=result.deleted, absent=result.absent)
        return result

    def _namespace_ids(
        self, preview_name: str, record: EnvironmentRecord | None, result: DeletionResult
    ) -> dict[str, str]:
        """Namespace ids from the record, looked up by title for roles the record lacks."""
        ids = dict(record.resources.kv_namespaces) if record else {}
        missing = [role for role in naming.KV_SUFFIXES if role not in ids]
        if not missing:
            return ids
        try:
            live = {ns.name: ns.id for ns in self.provider.list_kv_namespaces()}
        except Exception as e:
            result.failed["kv:lookup"] = str(e)
            return ids
        for role in missing:
            title = naming.kv_namespace_title(preview_name, role)
            if title in live:
                ids[role] = live[title]
            else:
                result.absent.append(f"kv:{role}")
        return ids

    def _delete_one(self, result: DeletionResult, label: str, action: Callable[[], bool]) -> None:
        try:
            existed = action()
        except Exception as e:
            logger.warning("Resource deletion failed", preview_name=result.preview_name, resource=label, error=str(e))
            result.failed[label] = str(e)
            return
        (result.deleted if existed else result.absent).append(label)
