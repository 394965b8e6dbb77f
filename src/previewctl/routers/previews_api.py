"""Preview environment API endpoints."""

from fastapi import APIRouter, Depends, Query

from previewctl.logger import get_logger
from previewctl.models.api import CreatePreviewRequest
from previewctl.models.environment import (
    CleanupSummary,
    DeletionResult,
    EnvironmentListItem,
    EnvironmentRecord,
    HealthReport,
    OrphanReport,
)
from previewctl.services.environment import LifecycleManager, get_lifecycle_manager

logger = get_logger(__name__)
router = APIRouter(prefix="/api/previews", tags=["previews"])


@router.get("", response_model=list[EnvironmentListItem])
def list_previews(
    detailed: bool = Query(False, description="Probe each active preview's health endpoint"),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
) -> list[EnvironmentListItem]:
    """
    List all tracked preview environments.

    Returns:
        Records oldest first, with a health probe per active one when detailed
    """
    return manager.list_environments(detailed=detailed)


@router.post("", response_model=EnvironmentRecord, status_code=201)
def create_preview(
    request: CreatePreviewRequest,
    manager: LifecycleManager = Depends(get_lifecycle_manager),
) -> EnvironmentRecord:
    """Create the preview for a pull request, or return the active one."""
    return manager.create(request.pr_number, request.branch_name)


# Fixed paths are registered before /{preview_name}


@router.post("/cleanup", response_model=CleanupSummary)
def cleanup_previews(manager: LifecycleManager = Depends(get_lifecycle_manager)) -> CleanupSummary:
    """Run one expiry sweep."""
    return manager.cleanup()


@router.post("/orphans", response_model=OrphanReport)
def cleanup_orphans(manager: LifecycleManager = Depends(get_lifecycle_manager)) -> OrphanReport:
    """Run one orphan detection pass."""
    return manager.detect_orphans()


@router.get("/health", response_model=HealthReport)
def check_previews_health(manager: LifecycleManager = Depends(get_lifecycle_manager)) -> HealthReport:
    """Probe every active preview."""
    return manager.check_health()


@router.get("/{preview_name}", response_model=EnvironmentRecord)
def get_preview(preview_name: str, manager: LifecycleManager = Depends(get_lifecycle_manager)) -> EnvironmentRecord:
    return manager.get(preview_name)


@router.delete("/{preview_name}", response_model=DeletionResult)
def delete_preview(preview_name: str, manager: LifecycleManager = Depends(get_lifecycle_manager)) -> DeletionResult:
    """
    Delete a preview environment.

    Partial failures are reported in the body's ``failed`` map; the record is
    removed either way.
    """
    result = manager.delete(preview_name)
    if not result.ok:
        logger.warning("Preview deleted with residue via API", preview_name=preview_name, failed=sorted(result.failed))
    return result
