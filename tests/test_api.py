"""Tests for the HTTP API."""

from collections.abc import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from conftest import FakeProvider
from previewctl import __version__
from previewctl.exceptions import ProviderError
from previewctl.main import app
from previewctl.models.environment import EnvironmentRecord
from previewctl.services.environment import LifecycleManager, get_lifecycle_manager


@pytest.fixture
def client(manager: LifecycleManager) -> Iterator[TestClient]:
    app.dependency_overrides[get_lifecycle_manager] = lambda: manager
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_service_health(client: TestClient) -> None:
    resp = client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": __version__}


def test_create_get_list_delete(client: TestClient, provider: FakeProvider) -> None:
    resp = client.post("/api/previews", json={"pr_number": 42, "branch_name": "feature/x"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["preview_name"] == "pr-42-feature-x"
    assert body["status"] == "active"
    assert "token" not in body["resources"]["database"]

    resp = client.get("/api/previews/pr-42-feature-x")
    assert resp.status_code == 200
    assert resp.json()["url"] == "https://pr-42-feature-x.preview.example.com"

    resp = client.get("/api/previews")
    assert [item["record"]["preview_name"] for item in resp.json()] == ["pr-42-feature-x"]

    resp = client.delete("/api/previews/pr-42-feature-x")
    assert resp.status_code == 200
    assert resp.json()["failed"] == {}
    assert provider.workers == {}


def test_unknown_preview_is_404(client: TestClient) -> None:
    resp = client.get("/api/previews/pr-1-missing")

    assert resp.status_code == 404
    assert resp.json()["error"] == "preview.not_found"


def test_capacity_exceeded_is_409(client: TestClient, manager: LifecycleManager) -> None:
    manager.config.lifecycle.max_environments = 1
    client.post("/api/previews", json={"pr_number": 1})

    resp = client.post("/api/previews", json={"pr_number": 2})

    assert resp.status_code == 409
    assert resp.json()["error"] == "preview.capacity_exceeded"


def test_provisioning_failure_is_502(client: TestClient, provider: FakeProvider) -> None:
    provider.fail["deploy_worker"] = ProviderError("cloudflare", "deploy worker", "boom")

    resp = client.post("/api/previews", json={"pr_number": 3, "branch_name": "x"})

    assert resp.status_code == 502
    assert "worker_deployment" in resp.json()["message"]


def test_invalid_request_is_rejected(client: TestClient) -> None:
    assert client.post("/api/previews", json={"pr_number": 0}).status_code == 422
    assert client.delete("/api/previews/production").status_code == 400


def test_cleanup_orphans_and_health_endpoints(
    client: TestClient,
    manager: LifecycleManager,
    provider: FakeProvider,
    age_record: Callable[..., EnvironmentRecord],
) -> None:
    manager.create(1, "old")
    manager.create(2, "new")
    age_record("pr-1-old", 8)
    provider.kv["kv-orphan"] = "pr-9-lost-rate"

    cleanup = client.post("/api/previews/cleanup").json()
    assert (cleanup["deleted"], cleanup["kept"], cleanup["errors"]) == (1, 1, 0)

    orphans = client.post("/api/previews/orphans").json()
    assert orphans["deleted"] == ["pr-9-lost"]

    health = client.get("/api/previews/health").json()
    assert [p["preview_name"] for p in health["probes"]] == ["pr-2-new"]
