"""Centralized exception hierarchy for previewctl.

Every error carries a stable dot-path code (e.g. ``preview.capacity_exceeded``)
used by the CLI and the HTTP API, plus English text for logging.
"""

_MESSAGES: dict[str, str] = {
    "preview.capacity_exceeded": "Maximum preview environments ({limit}) reached even after expiry cleanup",
    "preview.provisioning_failed": "Provisioning of {preview_name} failed at step '{step}': {reason}",
    "preview.deletion_partial": "Deletion of {preview_name} left residue: {failed}",
    "preview.health_check_failed": "Health check for {preview_name} failed: {reason}",
    "preview.metadata_corrupt": "Metadata record {preview_name} is unreadable: {reason}",
    "preview.not_found": "Preview environment {preview_name} not found",
    "preview.busy": "Preview environment {preview_name} is being provisioned by another invocation",
    "preview.invalid_pr_number": "PR number must be a positive integer, got {value!r}",
    "preview.invalid_name": "Not a preview environment name: {value!r}",
    "provider.missing_credentials": "Missing provider credentials: {missing}",
    "provider.request_failed": "{provider} request {operation} failed: {reason}",
    "provider.resource_not_found": "{provider} resource {resource} not found",
    "store.conflict": "Concurrent modification of {preview_name}",
}


class PreviewError(Exception):
    """Base exception for all application-specific errors."""

    def __init__(
        self,
        code: str,
        status_code: int = 500,
        retriable: bool = False,
        **params: object,
    ) -> None:
        """
        Initialize the error.

        Args:
            code: Dot-path error code (e.g., 'preview.capacity_exceeded')
            status_code: Recommended HTTP status code
            retriable: Whether the operation can be retried by a later run
            **params: Parameters for message formatting
        """
        super().__init__(code)
        self.code = code
        self.status_code = status_code
        self.retriable = retriable
        self.params = params

    def __str__(self) -> str:
        """Returns the English version of the error message for logging."""
        template = _MESSAGES.get(self.code)
        if template is not None:
            try:
                return template.format(**self.params)
            except (KeyError, IndexError):
                pass
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"[{self.code}] {params_str} (retriable: {self.retriable})"


class CapacityExceeded(PreviewError):
    """Raised when creation is refused because the preview cap is still reached after cleanup."""

    def __init__(self, limit: int, active: int) -> None:
        super().__init__("preview.capacity_exceeded", status_code=409, limit=limit, active=active)
        self.limit = limit
        self.active = active


class ProvisioningError(PreviewError):
    """Raised when a critical provisioning step failed; the call's own work was rolled back."""

    def __init__(self, preview_name: str, step: str, reason: str, rollback_failures: list[str] | None = None) -> None:
        super().__init__(
            "preview.provisioning_failed",
            status_code=502,
            retriable=True,
            preview_name=preview_name,
            step=step,
            reason=reason,
        )
        self.preview_name = preview_name
        self.step = step
        self.reason = reason
        self.rollback_failures = rollback_failures or []


class DeletionPartialFailure(PreviewError):
    """Raised when one or more resource deletions failed. Metadata is already removed."""

    def __init__(self, preview_name: str, failed: dict[str, str]) -> None:
        super().__init__(
            "preview.deletion_partial",
            status_code=207,
            retriable=True,
            preview_name=preview_name,
            failed=", ".join(sorted(failed)),
        )
        self.preview_name = preview_name
        self.failed = failed


class HealthCheckFailure(PreviewError):
    """Non-fatal: a preview's health endpoint did not answer 200 in time."""

    def __init__(self, preview_name: str, reason: str, status: int | None = None) -> None:
        super().__init__(
            "preview.health_check_failed", status_code=503, retriable=True, preview_name=preview_name, reason=reason
        )
        self.preview_name = preview_name
        self.reason = reason
        self.status = status


class MetadataCorruption(PreviewError):
    """Raised for an unreadable metadata row. Treated as an orphan candidate."""

    def __init__(self, preview_name: str, reason: str) -> None:
        super().__init__("preview.metadata_corrupt", status_code=500, preview_name=preview_name, reason=reason)
        self.preview_name = preview_name
        self.reason = reason


class MissingCredentialsError(PreviewError):
    """Raised when provider authentication is missing or rejected. Aborts the whole invocation."""

    def __init__(self, missing: str) -> None:
        super().__init__("provider.missing_credentials", status_code=401, missing=missing)


class ProviderError(PreviewError):
    """Raised when a provider API call fails (HTTP error, timeout, API error payload)."""

    def __init__(self, provider: str, operation: str, reason: str, status: int | None = None) -> None:
        super().__init__(
            "provider.request_failed",
            status_code=502,
            retriable=True,
            provider=provider,
            operation=operation,
            reason=reason,
        )
        self.status = status


class ResourceNotFoundError(PreviewError):
    """Raised when a requested resource (preview, namespace, database) does not exist."""

    def __init__(self, code: str, **params: object) -> None:
        super().__init__(code, status_code=404, **params)


class ResourceConflictError(PreviewError):
    """Raised when an operation conflicts with the current state (e.g., concurrent create)."""

    def __init__(self, code: str, **params: object) -> None:
        super().__init__(code, status_code=409, **params)


class ValidationError(PreviewError):
    """Raised when input validation fails."""

    def __init__(self, code: str, **params: object) -> None:
        super().__init__(code, status_code=400, **params)
