"""Shared fixtures: an in-memory provider and an isolated store per test."""

import itertools
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

import httpx
import pytest

from previewctl.exceptions import MissingCredentialsError
from previewctl.models.config import AppConfig, NamingConfig, PathsConfig, WorkerConfig
from previewctl.models.environment import DatabaseBranch, EnvironmentRecord, LiveResource, utcnow
from previewctl.services.environment import LifecycleManager, MetadataStore
from previewctl.services.providers import ResourceProvider, WorkerDeployment


class FakeProvider(ResourceProvider):
    """
    Keeps workers, namespaces and database branches in dicts.

    ``fail`` maps a method name to the exception that method raises, and
    ``health_status`` maps a health URL to the status it answers with.
    """

    name = "fake"

    def __init__(self, database_branches: bool = True) -> None:
        self.workers: dict[str, WorkerDeployment] = {}
        self.kv: dict[str, str] = {}
        self.databases: dict[str, DatabaseBranch] = {}
        self.fail: dict[str, Exception] = {}
        self.calls: list[str] = []
        self.authorized = True
        self.route_ok = True
        self.request_counts: dict[str, int] = {}
        self.health_status: dict[str, int] = {}
        self._database_branches = database_branches
        self._ids = itertools.count(1)
        self.health_transport = httpx.MockTransport(self._health_handler)

    def _health_handler(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(self.health_status.get(str(request.url), 200))

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail:
            raise self.fail[operation]

    def verify_credentials(self) -> str:
        if not self.authorized:
            raise MissingCredentialsError("CLOUDFLARE_API_TOKEN")
        return "fake-account"

    def create_kv_namespace(self, title: str) -> str:
        self._call("create_kv_namespace")
        for ns_id, existing in self.kv.items():
            if existing == title:
                return ns_id
        namespace_id = f"kv-{next(self._ids)}"
        self.kv[namespace_id] = title
        return namespace_id

    def delete_kv_namespace(self, namespace_id: str) -> bool:
        self._call("delete_kv_namespace")
        return self.kv.pop(namespace_id, None) is not None

    def list_kv_namespaces(self) -> list[LiveResource]:
        self._call("list_kv_namespaces")
        return [LiveResource(kind="kv_namespace", name=title, id=ns_id) for ns_id, title in self.kv.items()]

    @property
    def supports_database_branches(self) -> bool:
        return self._database_branches

    def create_database_branch(self, name: str) -> DatabaseBranch:
        self._call("create_database_branch")
        branch = DatabaseBranch(name=name, url=f"libsql://{name}-org.turso.io", token="db-token")
        self.databases[name] = branch
        return branch

    def delete_database_branch(self, name: str) -> bool:
        self._call("delete_database_branch")
        return self.databases.pop(name, None) is not None

    def list_database_branches(self) -> list[LiveResource]:
        self._call("list_database_branches")
        return [LiveResource(kind="database", name=name, id=name) for name in self.databases]

    def deploy_worker(self, deployment: WorkerDeployment) -> None:
        self._call("deploy_worker")
        self.workers[deployment.name] = deployment

    def delete_worker(self, name: str) -> bool:
        self._call("delete_worker")
        return self.workers.pop(name, None) is not None

    def list_workers(self) -> list[LiveResource]:
        self._call("list_workers")
        return [LiveResource(kind="worker", name=name, id=name) for name in self.workers]

    def verify_route(self, hostname: str) -> bool:
        self._call("verify_route")
        return self.route_ok

    def worker_request_counts(self) -> dict[str, int]:
        self._call("worker_request_counts")
        return dict(self.request_counts)


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    script = tmp_path / "index.mjs"
    script.write_text("export default { fetch() { return new Response('ok') } }\n", encoding="utf-8")
    return AppConfig(
        naming=NamingConfig(project_name="app", zone_name="example.com"),
        worker=WorkerConfig(script_path=script),
        paths=PathsConfig(data_dir=tmp_path / "data"),
    )


@pytest.fixture
def store(config: AppConfig) -> MetadataStore:
    assert config.paths.database_url is not None
    return MetadataStore(config.paths.database_url)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def manager(provider: FakeProvider, store: MetadataStore, config: AppConfig) -> LifecycleManager:
    return LifecycleManager(provider, store, config)


@pytest.fixture
def age_record(store: MetadataStore) -> Callable[..., EnvironmentRecord]:
    """Rewrite a record so it looks ``days`` old (optionally with another status)."""

    def _age(preview_name: str, days: float, status: str | None = None) -> EnvironmentRecord:
        record = store.get(preview_name)
        assert record is not None
        changes: dict[str, object] = {"created_at": utcnow() - timedelta(days=days)}
        if status is not None:
            changes["status"] = status
        aged = record.model_copy(update=changes)
        store.save(aged)
        return aged

    return _age
