"""Tests for the Cloudflare API client against a mocked transport."""

import json
from collections.abc import Callable

import httpx
import pytest

from previewctl.exceptions import MissingCredentialsError, ProviderError
from previewctl.models.config import CloudflareConfig, NamingConfig
from previewctl.services.providers import CloudflareProvider, WorkerBinding, WorkerDeployment

Handler = Callable[[httpx.Request], httpx.Response]


def _ok(result: object) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "errors": [], "result": result})


def _provider(handler: Handler, **config: str) -> CloudflareProvider:
    cf = CloudflareConfig(api_token=config.get("api_token", "token"), account_id=config.get("account_id", "acc"))
    naming = NamingConfig(project_name="app", zone_name="example.com")
    return CloudflareProvider(cf, naming, transport=httpx.MockTransport(handler))


def test_create_kv_namespace() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/client/v4/accounts/acc/storage/kv/namespaces"
        assert request.headers["Authorization"] == "Bearer token"
        assert json.loads(request.content) == {"title": "pr-1-main-session"}
        return _ok({"id": "ns-1", "title": "pr-1-main-session"})

    assert _provider(handler).create_kv_namespace("pr-1-main-session") == "ns-1"


def test_create_kv_namespace_adopts_existing_title() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            error = {"code": 10014, "message": "a namespace with this account ID and title already exists"}
            return httpx.Response(400, json={"success": False, "errors": [error], "result": None})
        return _ok([{"id": "ns-other", "title": "other"}, {"id": "ns-left", "title": "pr-1-main-session"}])

    assert _provider(handler).create_kv_namespace("pr-1-main-session") == "ns-left"


def test_create_kv_namespace_other_bad_request_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        error = {"code": 10019, "message": "title too long"}
        return httpx.Response(400, json={"success": False, "errors": [error], "result": None})

    with pytest.raises(ProviderError) as exc_info:
        _provider(handler).create_kv_namespace("pr-1-main-session")
    assert exc_info.value.status == 400


def test_delete_treats_not_found_as_already_gone() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/ns-gone"):
            return httpx.Response(404, json={"success": False, "errors": [{"code": 10013, "message": "not found"}]})
        return httpx.Response(200, json={"success": True, "errors": [], "result": None})

    provider = _provider(handler)

    assert provider.delete_kv_namespace("ns-live") is True
    assert provider.delete_kv_namespace("ns-gone") is False


def test_list_kv_namespaces_pages_through_results() -> None:
    pages = {
        "1": [{"id": f"id-{i}", "title": f"t-{i}"} for i in range(100)],
        "2": [{"id": "id-100", "title": "pr-1-main-cache"}],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return _ok(pages[request.url.params["page"]])

    namespaces = _provider(handler).list_kv_namespaces()

    assert len(namespaces) == 101
    assert namespaces[-1].name == "pr-1-main-cache"
    assert namespaces[-1].kind == "kv_namespace"


def test_api_error_raises_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"success": False, "errors": [{"code": 10014, "message": "namespace exists"}]})

    with pytest.raises(ProviderError) as exc_info:
        _provider(handler).create_kv_namespace("dup")

    assert exc_info.value.status == 400
    assert "namespace exists" in str(exc_info.value)


def test_timeout_raises_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("slow", request=request)

    with pytest.raises(ProviderError) as exc_info:
        _provider(handler).list_workers()

    assert "timeout" in str(exc_info.value)


def test_deploy_worker_uploads_metadata_and_module() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _ok({"id": "app-pr-1-main"})

    deployment = WorkerDeployment(
        name="app-pr-1-main",
        main_module="index.mjs",
        script=b"export default {}",
        compatibility_date="2024-01-01",
        compatibility_flags=["nodejs_compat"],
        bindings=[WorkerBinding(type="kv_namespace", name="SESSION_STORE", namespace_id="ns-1")],
    )

    _provider(handler).deploy_worker(deployment)

    request = seen[0]
    assert request.method == "PUT"
    assert request.url.path == "/client/v4/accounts/acc/workers/scripts/app-pr-1-main"
    body = request.content.decode()
    assert '"main_module": "index.mjs"' in body
    assert '"namespace_id": "ns-1"' in body
    assert "export default {}" in body


def test_delete_worker_forces_and_tolerates_missing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["force"] == "true"
        return httpx.Response(404, json={"success": False, "errors": [{"message": "script not found"}]})

    assert _provider(handler).delete_worker("app-pr-1-main") is False


def test_verify_route_matches_wildcard_pattern() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/zones"):
            assert request.url.params["name"] == "example.com"
            return _ok([{"id": "zone-1"}])
        return _ok([{"id": "r1", "pattern": "*.preview.example.com/*", "script": "router"}])

    provider = _provider(handler)

    assert provider.verify_route("pr-1-main.preview.example.com") is True
    assert provider.verify_route("api.example.com") is False


def test_verify_credentials() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/client/v4/user/tokens/verify"
        return _ok({"id": "tok-1", "status": "active"})

    assert "tok-1" in _provider(handler).verify_credentials()


def test_missing_credentials_fail_before_any_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(MissingCredentialsError) as exc_info:
        _provider(handler, api_token="", account_id="").verify_credentials()

    assert "CLOUDFLARE_API_TOKEN" in str(exc_info.value)


def test_rejected_token_is_a_credentials_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"success": False, "errors": [{"message": "Invalid API Token"}]})

    with pytest.raises(MissingCredentialsError):
        _provider(handler).verify_credentials()


def test_worker_request_counts_sums_preview_scripts() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/client/v4/graphql"
        rows = [
            {"sum": {"requests": 10}, "dimensions": {"scriptName": "app-pr-1-main"}},
            {"sum": {"requests": 5}, "dimensions": {"scriptName": "app-pr-1-main"}},
            {"sum": {"requests": 999}, "dimensions": {"scriptName": "app-production"}},
        ]
        return httpx.Response(200, json={"data": {"viewer": {"accounts": [{"workersInvocationsAdaptive": rows}]}}})

    assert _provider(handler).worker_request_counts() == {"app-pr-1-main": 15}


def test_graphql_errors_raise() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": None, "errors": [{"message": "not authorized for analytics"}]})

    with pytest.raises(ProviderError):
        _provider(handler).worker_request_counts()
