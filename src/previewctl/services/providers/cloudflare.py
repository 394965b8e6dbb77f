"""Cloudflare API v4 provider: worker scripts, KV namespaces, routes, analytics."""

import json
from datetime import datetime, timedelta, timezone
from fnmatch import fnmatch
from typing import Any

import httpx

from previewctl.exceptions import MissingCredentialsError, ProviderError
from previewctl.logger import get_logger
from previewctl.models.config import CloudflareConfig, NamingConfig
from previewctl.models.environment import DatabaseBranch, LiveResource

from .base import ResourceProvider, WorkerDeployment
from .turso import TursoClient

logger = get_logger(__name__)

KV_PAGE_SIZE = 100

# Returned by _request for a tolerated 404
NOT_FOUND = object()

_ANALYTICS_QUERY = """
query PreviewRequests($accountTag: string!, $since: Time!, $until: Time!) {
  viewer {
    accounts(filter: {accountTag: $accountTag}) {
      workersInvocationsAdaptive(limit: 1000, filter: {datetime_geq: $since, datetime_leq: $until}) {
        sum { requests }
        dimensions { scriptName }
      }
    }
  }
}
"""


def _error_text(payload: Any, fallback: str) -> str:  # noqa: ANN401
    if isinstance(payload, dict):
        errors = payload.get("errors") or []
        messages = [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors]
        if messages:
            return "; ".join(messages)
    return fallback


class CloudflareProvider(ResourceProvider):
    """
    Provider backed by the Cloudflare REST API.

    Database branches are delegated to an optional Turso client; without one
    every preview runs against the shared database.
    """

    name = "cloudflare"

    def __init__(
        self,
        config: CloudflareConfig,
        naming: NamingConfig,
        turso: TursoClient | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            config: Account id, token and API endpoint
            naming: Project and zone naming
            turso: Client for database branches, if configured
            transport: Custom httpx transport (tests)
        """
        self.config = config
        self.naming = naming
        self.turso = turso
        self._client = httpx.Client(
            base_url=config.api_base_url,
            headers={"Authorization": f"Bearer {config.api_token}"},
            timeout=config.request_timeout,
            transport=transport,
        )
        self._zone_id: str | None = None

    @property
    def _account_path(self) -> str:
        return f"/accounts/{self.config.account_id}"

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        allow_not_found: bool = False,
        **kwargs: Any,  # noqa: ANN401
    ) -> Any:  # noqa: ANN401
        """
        Issue one API call and unwrap the ``result`` envelope.

        Returns:
            The ``result`` field, or NOT_FOUND for a tolerated 404

        Raises:
            ProviderError: On transport errors, timeouts and unsuccessful responses
        """
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(self.name, operation, f"timeout after {self.config.request_timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, operation, str(e) or type(e).__name__) from e

        if response.status_code == 404 and allow_not_found:
            return NOT_FOUND

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 400 or (isinstance(payload, dict) and payload.get("success") is False):
            reason = _error_text(payload, f"HTTP {response.status_code}")
            raise ProviderError(self.name, operation, reason, status=response.status_code)

        if isinstance(payload, dict) and "result" in payload:
            return payload["result"]
        return payload

    # Credentials

    def verify_credentials(self) -> str:
        missing = [
            env_name
            for env_name, value in (
                ("CLOUDFLARE_API_TOKEN", self.config.api_token),
                ("CLOUDFLARE_ACCOUNT_ID", self.config.account_id),
            )
            if not value
        ]
        if missing:
            raise MissingCredentialsError(", ".join(missing))

        try:
            result = self._request("GET", "/user/tokens/verify", "verify token")
        except ProviderError as e:
            if e.status in (401, 403):
                raise MissingCredentialsError("valid CLOUDFLARE_API_TOKEN") from e
            raise
        status = (result or {}).get("status", "unknown")
        if status != "active":
            raise MissingCredentialsError(f"active CLOUDFLARE_API_TOKEN (token status: {status})")

        identity = f"cloudflare token {(result or {}).get('id', '?')} account {self.config.account_id}"
        if self.turso is not None:
            identity += f", {self.turso.verify_credentials()}"
        return identity

    # KV namespaces

    def create_kv_namespace(self, title: str) -> str:
        """Create a namespace, adopting an existing one with the same title."""
        try:
            result = self._request(
                "POST",
                f"{self._account_path}/storage/kv/namespaces",
                f"create KV namespace {title}",
                json={"title": title},
            )
        except ProviderError as e:
            if e.status != 400 or "already exists" not in str(e):
                raise
            existing = next((ns.id for ns in self.list_kv_namespaces() if ns.name == title), None)
            if existing is None:
                raise
            logger.info("Reusing existing KV namespace", title=title, namespace_id=existing)
            return existing
        namespace_id = str(result["id"])
        logger.info("Created KV namespace", title=title, namespace_id=namespace_id)
        return namespace_id

    def delete_kv_namespace(self, namespace_id: str) -> bool:
        result = self._request(
            "DELETE",
            f"{self._account_path}/storage/kv/namespaces/{namespace_id}",
            f"delete KV namespace {namespace_id}",
            allow_not_found=True,
        )
        if result is NOT_FOUND:
            logger.info("KV namespace already gone", namespace_id=namespace_id)
            return False
        logger.info("Deleted KV namespace", namespace_id=namespace_id)
        return True

    def list_kv_namespaces(self) -> list[LiveResource]:
        namespaces: list[LiveResource] = []
        page = 1
        while True:
            result = self._request(
                "GET",
                f"{self._account_path}/storage/kv/namespaces",
                "list KV namespaces",
                params={"page": page, "per_page": KV_PAGE_SIZE},
            )
            items = result or []
            namespaces.extend(LiveResource(kind="kv_namespace", name=ns["title"], id=ns["id"]) for ns in items)
            if len(items) < KV_PAGE_SIZE:
                break
            page += 1
        return namespaces

    # Database branches

    @property
    def supports_database_branches(self) -> bool:
        return self.turso is not None

    def create_database_branch(self, name: str) -> DatabaseBranch:
        if self.turso is None:
            raise NotImplementedError("database branches require Turso credentials")
        return self.turso.create_branch(name)

    def delete_database_branch(self, name: str) -> bool:
        if self.turso is None:
            return False
        return self.turso.destroy_branch(name)

    def list_database_branches(self) -> list[LiveResource]:
        if self.turso is None:
            return []
        return self.turso.list_databases()

    # Workers

    def deploy_worker(self, deployment: WorkerDeployment) -> None:
        metadata = {
            "main_module": deployment.main_module,
            "compatibility_date": deployment.compatibility_date,
            "compatibility_flags": deployment.compatibility_flags,
            "bindings": [b.model_dump(exclude_none=True) for b in deployment.bindings],
        }
        files = {
            "metadata": (None, json.dumps(metadata), "application/json"),
            deployment.main_module: (deployment.main_module, deployment.script, "application/javascript+module"),
        }
        self._request(
            "PUT",
            f"{self._account_path}/workers/scripts/{deployment.name}",
            f"deploy worker {deployment.name}",
            files=files,
        )
        logger.info("Deployed worker", worker=deployment.name, bindings=len(deployment.bindings))

    def delete_worker(self, name: str) -> bool:
        result = self._request(
            "DELETE",
            f"{self._account_path}/workers/scripts/{name}",
            f"delete worker {name}",
            allow_not_found=True,
            params={"force": "true"},
        )
        if result is NOT_FOUND:
            logger.info("Worker already gone", worker=name)
            return False
        logger.info("Deleted worker", worker=name)
        return True

    def list_workers(self) -> list[LiveResource]:
        result = self._request("GET", f"{self._account_path}/workers/scripts", "list workers")
        return [LiveResource(kind="worker", name=s["id"], id=s["id"]) for s in result or []]

    # Routing and observability

    def _get_zone_id(self) -> str | None:
        if self._zone_id is None:
            zone = self.naming.zone_name
            result = self._request("GET", "/zones", f"find zone {zone}", params={"name": zone})
            if result:
                self._zone_id = str(result[0]["id"])
        return self._zone_id

    def verify_route(self, hostname: str) -> bool:
        zone_id = self._get_zone_id()
        if zone_id is None:
            logger.warning("Zone not found, cannot verify route", zone=self.naming.zone_name)
            return False
        routes = self._request("GET", f"/zones/{zone_id}/workers/routes", "list routes") or []
        for route in routes:
            host_pattern = str(route.get("pattern", "")).split("/", 1)[0]
            if fnmatch(hostname, host_pattern):
                logger.debug("Route matched", hostname=hostname, pattern=route.get("pattern"))
                return True
        return False

    def worker_request_counts(self) -> dict[str, int]:
        until = datetime.now(timezone.utc)
        since = until - timedelta(hours=24)
        result = self._request(
            "POST",
            "/graphql",
            "query worker analytics",
            json={
                "query": _ANALYTICS_QUERY,
                "variables": {
                    "accountTag": self.config.account_id,
                    "since": since.isoformat(),
                    "until": until.isoformat(),
                },
            },
        )
        # GraphQL answers with {"data": ..., "errors": ...} instead of the REST envelope
        if (result or {}).get("errors"):
            raise ProviderError(self.name, "query worker analytics", _error_text(result, "GraphQL error"))
        data = (result or {}).get("data") or {}
        accounts = (data.get("viewer") or {}).get("accounts") or []
        counts: dict[str, int] = {}
        prefix = f"{self.naming.project_name}-pr-"
        for account in accounts:
            for row in account.get("workersInvocationsAdaptive") or []:
                script = (row.get("dimensions") or {}).get("scriptName", "")
                if script.startswith(prefix):
                    counts[script] = counts.get(script, 0) + int((row.get("sum") or {}).get("requests", 0))
        return counts

    def close(self) -> None:
        self._client.close()
        if self.turso is not None:
            self.turso.close()
