"""Provider interface consumed by the orchestration layer."""

import time
from abc import ABC, abstractmethod

import httpx
from pydantic import BaseModel, Field

from previewctl.exceptions import HealthCheckFailure
from previewctl.models.environment import DatabaseBranch, HealthProbe, LiveResource


class WorkerBinding(BaseModel):
    """One binding in a worker's deployment metadata."""

    type: str
    name: str
    namespace_id: str | None = None
    bucket_name: str | None = None
    text: str | None = Field(default=None, repr=False)


class WorkerDeployment(BaseModel):
    """Everything needed to deploy one preview worker."""

    name: str
    main_module: str
    script: bytes = Field(repr=False)
    compatibility_date: str
    compatibility_flags: list[str] = Field(default_factory=list)
    bindings: list[WorkerBinding] = Field(default_factory=list)


class ResourceProvider(ABC):
    """
    Create/delete/list contracts for every resource type a preview owns.

    Deletion methods return False when the resource was already gone; the
    orchestration layer treats that as success. Every other failure raises
    ``ProviderError``.
    """

    name = "provider"
    # Overridable transport for health probes
    health_transport: httpx.BaseTransport | None = None

    @abstractmethod
    def verify_credentials(self) -> str:
        """
        Check provider authentication before any work starts.

        Returns:
            Human-readable identity of the credentials

        Raises:
            MissingCredentialsError: If credentials are missing or rejected
        """

    # KV namespaces

    @abstractmethod
    def create_kv_namespace(self, title: str) -> str:
        """Create a namespace and return its id; an existing one with the same title is reused."""

    @abstractmethod
    def delete_kv_namespace(self, namespace_id: str) -> bool:
        """Delete a namespace by id."""

    @abstractmethod
    def list_kv_namespaces(self) -> list[LiveResource]:
        """List all namespaces (name = title)."""

    # Database branches

    @property
    def supports_database_branches(self) -> bool:
        return False

    def create_database_branch(self, name: str) -> DatabaseBranch:
        raise NotImplementedError

    def delete_database_branch(self, name: str) -> bool:
        raise NotImplementedError

    def list_database_branches(self) -> list[LiveResource]:
        return []

    # Workers

    @abstractmethod
    def deploy_worker(self, deployment: WorkerDeployment) -> None:
        """Upload (create or replace) a worker script."""

    @abstractmethod
    def delete_worker(self, name: str) -> bool:
        """Delete a worker script by name."""

    @abstractmethod
    def list_workers(self) -> list[LiveResource]:
        """List all worker scripts."""

    # Routing and observability

    def verify_route(self, hostname: str) -> bool:
        """Whether traffic for ``hostname`` reaches a worker."""
        return True

    def worker_request_counts(self) -> dict[str, int]:
        """Requests per worker script over the last 24h; empty when unsupported."""
        return {}

    def health_check(self, preview_name: str, url: str, timeout: float) -> HealthProbe:
        """
        GET a preview's health endpoint.

        Args:
            preview_name: Preview the URL belongs to
            url: Full health URL
            timeout: Seconds before the probe counts as failed

        Returns:
            Probe result; failures are reported in the probe, never raised
        """
        started = time.monotonic()
        try:
            status = self._get_status(preview_name, url, timeout)
            if status != 200:
                raise HealthCheckFailure(preview_name, f"HTTP {status}", status=status)
        except HealthCheckFailure as e:
            return HealthProbe(
                preview_name=preview_name,
                url=url,
                healthy=False,
                status=e.status,
                error=e.reason,
                latency_ms=(time.monotonic() - started) * 1000,
            )
        return HealthProbe(
            preview_name=preview_name,
            url=url,
            healthy=True,
            status=status,
            latency_ms=(time.monotonic() - started) * 1000,
        )

    def _get_status(self, preview_name: str, url: str, timeout: float) -> int:
        try:
            with httpx.Client(timeout=timeout, follow_redirects=True, transport=self.health_transport) as client:
                return client.get(url).status_code
        except httpx.TimeoutException as e:
            raise HealthCheckFailure(preview_name, f"timeout after {timeout}s") from e
        except httpx.HTTPError as e:
            raise HealthCheckFailure(preview_name, str(e) or type(e).__name__) from e

    def close(self) -> None:
        """Release HTTP connections."""
