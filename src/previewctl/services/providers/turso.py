"""Turso platform API client for per-preview database branches."""

from typing import Any

import httpx

from previewctl.exceptions import MissingCredentialsError, ProviderError
from previewctl.logger import get_logger
from previewctl.models.config import TursoConfig
from previewctl.models.environment import DatabaseBranch, LiveResource

logger = get_logger(__name__)


class TursoClient:
    """Creates, lists and destroys databases seeded from the development database."""

    name = "turso"

    def __init__(self, config: TursoConfig, transport: httpx.BaseTransport | None = None) -> None:
        self.config = config
        self._client = httpx.Client(
            base_url=config.api_base_url,
            headers={"Authorization": f"Bearer {config.api_token}"},
            timeout=config.request_timeout,
            transport=transport,
        )

    @property
    def _org_path(self) -> str:
        return f"/organizations/{self.config.organization}"

    def _request(self, method: str, path: str, operation: str, **kwargs: Any) -> httpx.Response:  # noqa: ANN401
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(self.name, operation, f"timeout after {self.config.request_timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, operation, str(e) or type(e).__name__) from e

    def _raise_for(self, response: httpx.Response, operation: str) -> None:
        if response.status_code < 400:
            return
        reason = f"HTTP {response.status_code}"
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("error"):
            reason = str(payload["error"])
        raise ProviderError(self.name, operation, reason, status=response.status_code)

    def verify_credentials(self) -> str:
        if not (self.config.api_token and self.config.organization):
            raise MissingCredentialsError("TURSO_API_TOKEN, TURSO_ORGANIZATION")
        response = self._request("GET", f"{self._org_path}/databases", "verify token")
        if response.status_code in (401, 403):
            raise MissingCredentialsError("valid TURSO_API_TOKEN")
        self._raise_for(response, "verify token")
        return f"turso organization {self.config.organization}"

    def _hostname(self, name: str) -> str:
        operation = f"show database {name}"
        response = self._request("GET", f"{self._org_path}/databases/{name}", operation)
        self._raise_for(response, operation)
        return str(response.json()["database"]["Hostname"])

    def create_branch(self, name: str) -> DatabaseBranch:
        """
        Create a database seeded from the source database, plus an auth token.

        An already existing database of the same name is reused, so a retried
        create converges instead of failing.
        """
        operation = f"create database {name}"
        response = self._request(
            "POST",
            f"{self._org_path}/databases",
            operation,
            json={
                "name": name,
                "group": self.config.group,
                "seed": {"type": "database", "name": self.config.source_database},
            },
        )
        if response.status_code == 409:
            logger.info("Database branch already exists, reusing it", database=name)
            hostname = self._hostname(name)
        else:
            self._raise_for(response, operation)
            hostname = str(response.json()["database"]["Hostname"])

        try:
            token = self._create_token(name)
        except ProviderError:
            # The branch is useless without a token
            self.destroy_branch(name)
            raise

        logger.info("Created database branch", database=name, hostname=hostname)
        return DatabaseBranch(name=name, url=f"libsql://{hostname}", token=token)

    def _create_token(self, name: str) -> str:
        operation = f"create token for {name}"
        response = self._request("POST", f"{self._org_path}/databases/{name}/auth/tokens", operation)
        self._raise_for(response, operation)
        return str(response.json()["jwt"])

    def destroy_branch(self, name: str) -> bool:
        """
        Destroy a database.

        Returns:
            False if it did not exist
        """
        operation = f"destroy database {name}"
        response = self._request("DELETE", f"{self._org_path}/databases/{name}", operation)
        if response.status_code == 404:
            logger.info("Database branch already gone", database=name)
            return False
        self._raise_for(response, operation)
        logger.info("Destroyed database branch", database=name)
        return True

    def list_databases(self) -> list[LiveResource]:
        response = self._request("GET", f"{self._org_path}/databases", "list databases")
        self._raise_for(response, "list databases")
        return [
            LiveResource(kind="database", name=db["Name"], id=str(db.get("DbId") or db["Name"]))
            for db in response.json().get("databases", [])
        ]

    def close(self) -> None:
        self._client.close()
