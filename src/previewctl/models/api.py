"""API request/response models."""

from pydantic import BaseModel, Field


class CreatePreviewRequest(BaseModel):
    """Request to create a preview environment."""

    pr_number: int = Field(gt=0)
    branch_name: str | None = None


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str
    message: str


class ServiceHealthResponse(BaseModel):
    """Liveness of the API itself."""

    status: str = "ok"
    version: str
