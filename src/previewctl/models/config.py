"""Configuration data models for previewctl."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class LifecycleConfig(BaseModel):
    """Capacity and time-to-live policy."""

    ttl_days: int = Field(default=7, ge=0)
    max_environments: int = Field(default=10, ge=1)
    # Branch slug is cut to this many characters in preview names
    branch_slug_max_length: int = Field(default=20, ge=1)
    # A 'provisioning' record older than this is treated as abandoned by a crashed run
    provisioning_timeout_minutes: int = Field(default=30, ge=1)
    default_branch_name: str = "feature"


class NamingConfig(BaseModel):
    """Resource naming and routing."""

    project_name: str = "app"
    zone_name: str = "example.com"
    preview_subdomain: str = "preview"
    health_path: str = "/api/health"


class ReconcileConfig(BaseModel):
    """Bounded parallelism for reconciliation runs."""

    max_workers: int = Field(default=4, ge=1)
    task_timeout_seconds: float = Field(default=600.0, gt=0)
    health_timeout_seconds: float = Field(default=5.0, gt=0)


class CloudflareConfig(BaseModel):
    """Cloudflare account access (workers, KV namespaces, routes)."""

    api_token: str = ""
    account_id: str = ""
    api_base_url: str = "https://api.cloudflare.com/client/v4"
    request_timeout: float = 30.0


class TursoConfig(BaseModel):
    """Turso platform access for isolated database branches. Optional."""

    api_token: str = ""
    organization: str = ""
    # Branches are seeded from this database
    source_database: str = ""
    group: str = "default"
    api_base_url: str = "https://api.turso.tech/v1"
    request_timeout: float = 30.0

    @property
    def enabled(self) -> bool:
        return bool(self.api_token and self.organization and self.source_database)


class WorkerConfig(BaseModel):
    """Per-environment worker deployment settings."""

    script_path: Path = Path(".output/server/index.mjs")
    compatibility_date: str = "2024-01-01"
    compatibility_flags: list[str] = Field(default_factory=lambda: ["nodejs_compat"])
    assets_bucket: str | None = None
    vars: dict[str, str] = Field(
        default_factory=lambda: {
            "LOG_LEVEL": "debug",
            "FEATURE_FLAGS_ENABLED": "true",
            "DEBUG_MODE": "true",
            "MOCK_DATA_ENABLED": "true",
            "ANALYTICS_ENABLED": "false",
            "RATE_LIMIT_ENABLED": "false",
        }
    )

    @field_validator("script_path", mode="before")
    @classmethod
    def expand_script_path(cls, v: str | Path) -> Path:
        """Expand user path for script_path."""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v


class NotificationsConfig(BaseModel):
    """Outbound webhook notifications (Slack-compatible)."""

    webhook_url: str = ""
    username: str = "Preview Bot"
    icon_emoji: str = ":robot_face:"
    timeout: float = 10.0
    # Error count at or above which a run notifies
    error_threshold: int = Field(default=1, ge=1)


class UsageConfig(BaseModel):
    """Usage report thresholds."""

    cost_per_preview_usd: float = 0.5
    warning_threshold: int = 5
    high_usage_requests: int = 1_000_000


class PathsConfig(BaseModel):
    """Paths configuration."""

    data_dir: Path = Field(default_factory=lambda: Path.home() / ".previewctl")
    database_url: str | None = None

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand user path for data_dir."""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    def model_post_init(self, __context: object) -> None:
        """Default the metadata database to a SQLite file inside data_dir."""
        if self.database_url is None:
            self.database_url = f"sqlite:///{self.data_dir / 'previews.db'}"


class AdvancedConfig(BaseModel):
    """Advanced configuration."""

    dry_run: bool = False
    log_level: Literal["ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"
    log_format: Literal["json", "console"] = "json"


class ServerConfig(BaseModel):
    """HTTP API server configuration."""

    port: int = 8000
    host: str = "127.0.0.1"


class AppConfig(BaseModel):
    """Application configuration."""

    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    naming: NamingConfig = Field(default_factory=NamingConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    cloudflare: CloudflareConfig = Field(default_factory=CloudflareConfig)
    turso: TursoConfig = Field(default_factory=TursoConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    usage: UsageConfig = Field(default_factory=UsageConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    advanced: AdvancedConfig = Field(default_factory=AdvancedConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
