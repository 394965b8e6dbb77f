"""Per-environment worker configuration."""

from pathlib import Path

from previewctl.models.config import AppConfig
from previewctl.models.environment import EnvironmentRecord
from previewctl.services.providers import WorkerBinding, WorkerDeployment
from previewctl.utils.naming import KV_BINDINGS


def build_bindings(record: EnvironmentRecord, config: AppConfig) -> list[WorkerBinding]:
    """
    Bindings for a preview worker: its three KV namespaces, the optional assets
    bucket, preview identity vars, configured vars and database credentials.
    """
    bindings = [
        WorkerBinding(type="kv_namespace", name=binding, namespace_id=record.resources.kv_namespaces[role])
        for role, binding in KV_BINDINGS.items()
    ]
    if config.worker.assets_bucket:
        bindings.append(WorkerBinding(type="r2_bucket", name="ASSETS", bucket_name=config.worker.assets_bucket))

    plain_vars = {
        "ENVIRONMENT": "preview",
        "PREVIEW_MODE": "true",
        "PREVIEW_PR_NUMBER": str(record.pr_number),
        "PREVIEW_BRANCH_NAME": record.branch_name,
        "PREVIEW_CREATED_AT": record.created_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "NUXT_PUBLIC_SITE_URL": record.url,
        **config.worker.vars,
    }
    bindings.extend(WorkerBinding(type="plain_text", name=k, text=v) for k, v in plain_vars.items())

    database = record.resources.database
    if database is not None:
        bindings.append(WorkerBinding(type="plain_text", name="TURSO_DATABASE_URL", text=database.url))
        if database.token:
            bindings.append(WorkerBinding(type="secret_text", name="TURSO_AUTH_TOKEN", text=database.token))
    return bindings


def build_deployment(record: EnvironmentRecord, config: AppConfig, script: bytes | None = None) -> WorkerDeployment:
    """
    Assemble the worker upload for a preview.

    Args:
        record: Preview whose KV namespaces are already created
        config: Application configuration
        script: Module source; read from ``worker.script_path`` when omitted

    Raises:
        OSError: If the built script cannot be read
    """
    script_path: Path = config.worker.script_path
    if script is None:
        script = script_path.read_bytes()
    assert record.resources.worker_name is not None
    return WorkerDeployment(
        name=record.resources.worker_name,
        main_module=script_path.name,
        script=script,
        compatibility_date=config.worker.compatibility_date,
        compatibility_flags=list(config.worker.compatibility_flags),
        bindings=build_bindings(record, config),
    )
