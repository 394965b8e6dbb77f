"""Configuration management for previewctl."""

import os
from pathlib import Path
from typing import Any

import yaml

from previewctl.models.config import AppConfig

_TRUTHY = ("true", "1", "yes")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUTHY


class ConfigManager:
    """Manages application configuration with YAML file and environment variable support."""

    def __init__(self, config_path: Path | None = None) -> None:
        """Initialize configuration manager.

        Args:
            config_path: Path to config file. If None, uses PREVIEWCTL_CONFIG_PATH
                        environment variable or defaults to ~/.config/previewctl/config.yaml
        """
        if config_path is None:
            env_path = os.getenv("PREVIEWCTL_CONFIG_PATH")
            if env_path:
                config_path = Path(env_path).expanduser()
            else:
                config_path = Path.home() / ".config" / "previewctl" / "config.yaml"

        self.config_path = config_path
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """Load configuration from file and apply environment variable overrides.

        Returns:
            Loaded configuration
        """
        config_data: dict[str, Any] = {}

        # 1. Load from YAML file if it exists
        if self.config_path.exists():
            with open(self.config_path, encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}

        # 2. Create config object (applies defaults)
        config = AppConfig(**config_data)

        # 3. Apply environment variable overrides
        config = self._apply_env_overrides(config)

        return config

    def _apply_env_overrides(self, config: AppConfig) -> AppConfig:
        """Apply environment variable overrides.

        The variable names follow the ones the preview tooling has always used
        (PREVIEW_TTL_DAYS, MAX_PREVIEW_ENVIRONMENTS, CLOUDFLARE_*, TURSO_*, DRY_RUN)
        plus PREVIEWCTL_* for settings specific to this tool.

        Args:
            config: Base configuration

        Returns:
            Configuration with environment overrides applied
        """
        # Lifecycle policy
        if ttl := os.getenv("PREVIEW_TTL_DAYS"):
            config.lifecycle.ttl_days = int(ttl)
        if cap := os.getenv("MAX_PREVIEW_ENVIRONMENTS"):
            config.lifecycle.max_environments = int(cap)
        if project := os.getenv("PREVIEW_PROJECT_NAME"):
            config.naming.project_name = project

        # Cloudflare credentials
        if token := os.getenv("CLOUDFLARE_API_TOKEN"):
            config.cloudflare.api_token = token
        if account := os.getenv("CLOUDFLARE_ACCOUNT_ID"):
            config.cloudflare.account_id = account
        if zone := os.getenv("CLOUDFLARE_ZONE_NAME"):
            config.naming.zone_name = zone

        # Turso credentials
        if turso_token := os.getenv("TURSO_API_TOKEN"):
            config.turso.api_token = turso_token
        if org := os.getenv("TURSO_ORGANIZATION"):
            config.turso.organization = org
        if source := os.getenv("TURSO_SOURCE_DATABASE"):
            config.turso.source_database = source

        # Notifications
        if webhook := os.getenv("PREVIEW_WEBHOOK_URL") or os.getenv("SLACK_WEBHOOK_URL"):
            config.notifications.webhook_url = webhook

        # Dry run (CLEANUP_DRY_RUN is the name used by the scheduled job)
        dry_run = os.getenv("DRY_RUN") or os.getenv("CLEANUP_DRY_RUN")
        if dry_run:
            config.advanced.dry_run = _env_bool(dry_run)

        if level := os.getenv("PREVIEWCTL_LOG_LEVEL"):
            if level.upper() in ("ERROR", "WARNING", "INFO", "DEBUG"):
                config.advanced.log_level = level.upper()  # type: ignore

        # Path overrides
        if data_dir := os.getenv("PREVIEWCTL_DATA_DIR"):
            derived_url = f"sqlite:///{config.paths.data_dir / 'previews.db'}"
            config.paths.data_dir = Path(data_dir).expanduser()
            if config.paths.database_url == derived_url:
                config.paths.database_url = None
                # Recalculate dependent paths
                config.paths.model_post_init(None)
        if database_url := os.getenv("PREVIEWCTL_DATABASE_URL"):
            config.paths.database_url = database_url

        return config

    def get_config(self) -> AppConfig:
        """Get configuration (singleton pattern).

        Returns:
            Current configuration
        """
        if self._config is None:
            self._config = self.load()
        return self._config


# Global configuration manager instance
_config_manager = ConfigManager()


def get_config() -> AppConfig:
    """Get global application configuration.

    Returns:
        Application configuration
    """
    return _config_manager.get_config()


def use_config_file(config_path: Path) -> AppConfig:
    """Point the global manager at another config file and load it.

    Args:
        config_path: Path to the YAML config file

    Returns:
        Loaded configuration
    """
    global _config_manager
    _config_manager = ConfigManager(config_path)
    return _config_manager.get_config()
