"""Preview environment services."""

from functools import lru_cache

from previewctl.config import get_config
from previewctl.services.notify import Notifier
from previewctl.services.providers import ResourceProvider, build_provider

from .expiry import ExpiryReconciler
from .health import HealthMonitor
from .manager import LifecycleManager
from .orphans import OrphanDetector
from .provisioner import ResourceProvisioner
from .store import MetadataStore
from .sweep import ScheduledSweep
from .usage import UsageMonitor
from .worker_config import build_bindings, build_deployment


@lru_cache
def get_store() -> MetadataStore:
    """Get or initialize the metadata store (singleton)."""
    config = get_config()
    assert config.paths.database_url is not None
    return MetadataStore(config.paths.database_url, dry_run=config.advanced.dry_run)


@lru_cache
def get_provider() -> ResourceProvider:
    """Get or initialize the resource provider (singleton)."""
    return build_provider(get_config())


@lru_cache
def get_lifecycle_manager() -> LifecycleManager:
    """Get or initialize the lifecycle manager (singleton)."""
    return LifecycleManager(get_provider(), get_store(), get_config())


def get_sweep() -> ScheduledSweep:
    config = get_config()
    return ScheduledSweep(get_lifecycle_manager(), Notifier(config.notifications), config)


__all__ = [
    "ExpiryReconciler",
    "HealthMonitor",
    "LifecycleManager",
    "MetadataStore",
    "OrphanDetector",
    "ResourceProvisioner",
    "ScheduledSweep",
    "UsageMonitor",
    "build_bindings",
    "build_deployment",
    "get_lifecycle_manager",
    "get_provider",
    "get_store",
    "get_sweep",
]
