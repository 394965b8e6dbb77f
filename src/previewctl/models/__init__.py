"""Data models for previewctl."""

from previewctl.models.api import CreatePreviewRequest, ErrorResponse, ServiceHealthResponse
from previewctl.models.config import AppConfig
from previewctl.models.environment import (
    CleanupSummary,
    DeletionResult,
    EnvironmentListItem,
    EnvironmentRecord,
    HealthReport,
    OrphanReport,
    SweepReport,
    UsageReport,
)

__all__ = [
    "AppConfig",
    "CleanupSummary",
    "CreatePreviewRequest",
    "DeletionResult",
    "EnvironmentListItem",
    "EnvironmentRecord",
    "ErrorResponse",
    "HealthReport",
    "OrphanReport",
    "ServiceHealthResponse",
    "SweepReport",
    "UsageReport",
]
