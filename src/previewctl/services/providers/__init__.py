"""Resource providers."""

from previewctl.models.config import AppConfig

from .base import ResourceProvider, WorkerBinding, WorkerDeployment
from .cloudflare import CloudflareProvider
from .dry_run import DryRunProvider, PlannedAction
from .turso import TursoClient


def build_provider(config: AppConfig) -> ResourceProvider:
    """Build the configured provider, wrapped for dry runs when requested."""
    turso = TursoClient(config.turso) if config.turso.enabled else None
    provider: ResourceProvider = CloudflareProvider(config.cloudflare, config.naming, turso=turso)
    if config.advanced.dry_run:
        provider = DryRunProvider(provider)
    return provider


__all__ = [
    "CloudflareProvider",
    "DryRunProvider",
    "PlannedAction",
    "ResourceProvider",
    "TursoClient",
    "WorkerBinding",
    "WorkerDeployment",
    "build_provider",
]
