"""Dry-run wrapper: reads pass through, mutations are only planned."""

from pydantic import BaseModel

from previewctl.logger import get_logger
from previewctl.models.environment import DatabaseBranch, HealthProbe, LiveResource

from .base import ResourceProvider, WorkerDeployment

logger = get_logger(__name__)


class PlannedAction(BaseModel):
    """A mutating call that a dry run skipped."""

    operation: str
    target: str


class DryRunProvider(ResourceProvider):
    """
    Wraps a real provider so that every listing, route check and health probe
    hits the provider while creates, deploys and deletes are logged and
    recorded instead of executed.
    """

    def __init__(self, inner: ResourceProvider) -> None:
        self.inner = inner
        self.name = f"dry-run:{inner.name}"
        self.planned: list[PlannedAction] = []

    def _plan(self, operation: str, target: str) -> None:
        logger.info("(plan) provider call skipped", operation=operation, target=target)
        self.planned.append(PlannedAction(operation=operation, target=target))

    def verify_credentials(self) -> str:
        return self.inner.verify_credentials()

    def create_kv_namespace(self, title: str) -> str:
        self._plan("create_kv_namespace", title)
        return f"dry-run-{title}"

    def delete_kv_namespace(self, namespace_id: str) -> bool:
        self._plan("delete_kv_namespace", namespace_id)
        return True

    def list_kv_namespaces(self) -> list[LiveResource]:
        return self.inner.list_kv_namespaces()

    @property
    def supports_database_branches(self) -> bool:
        return self.inner.supports_database_branches

    def create_database_branch(self, name: str) -> DatabaseBranch:
        self._plan("create_database_branch", name)
        return DatabaseBranch(name=name, url=f"libsql://dry-run-{name}")

    def delete_database_branch(self, name: str) -> bool:
        self._plan("delete_database_branch", name)
        return True

    def list_database_branches(self) -> list[LiveResource]:
        return self.inner.list_database_branches()

    def deploy_worker(self, deployment: WorkerDeployment) -> None:
        self._plan("deploy_worker", deployment.name)

    def delete_worker(self, name: str) -> bool:
        self._plan("delete_worker", name)
        return True

    def list_workers(self) -> list[LiveResource]:
        return self.inner.list_workers()

    def verify_route(self, hostname: str) -> bool:
        return self.inner.verify_route(hostname)

    def worker_request_counts(self) -> dict[str, int]:
        return self.inner.worker_request_counts()

    def health_check(self, preview_name: str, url: str, timeout: float) -> HealthProbe:
        return self.inner.health_check(preview_name, url, timeout)

    def close(self) -> None:
        self.inner.close()
