"""Preview environment data models."""

from datetime import datetime, timedelta, timezone
from typing import Literal

from pydantic import BaseModel, Field

from previewctl.exceptions import DeletionPartialFailure

EnvironmentStatus = Literal["provisioning", "active", "expired", "deleting", "error"]

# Statuses that count against the capacity cap
CAPACITY_STATUSES: tuple[str, ...] = ("provisioning", "active")


def utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


class DatabaseBranch(BaseModel):
    """An isolated database branch created for one preview."""

    name: str
    url: str
    # Only handed to the worker at deploy time; never stored or returned
    token: str = Field(default="", repr=False, exclude=True)


class EnvironmentResources(BaseModel):
    """Provider identifiers for everything a preview owns."""

    worker_name: str | None = None
    # role (session, cache, rate_limit) -> namespace id
    kv_namespaces: dict[str, str] = Field(default_factory=dict)
    database: DatabaseBranch | None = None
    route: str | None = None


class EnvironmentRecord(BaseModel):
    """Tracked state of one preview environment."""

    preview_name: str
    pr_number: int
    branch_name: str
    created_at: datetime = Field(default_factory=utcnow)
    url: str
    status: EnvironmentStatus = "provisioning"
    resources: EnvironmentResources = Field(default_factory=EnvironmentResources)
    database_mode: Literal["isolated", "shared"] = "shared"
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def id(self) -> str:
        return self.preview_name

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or utcnow()) - self.created_at

    def is_expired(self, ttl: timedelta, now: datetime | None = None) -> bool:
        return self.age(now) >= ttl


class LiveResource(BaseModel):
    """A resource as reported by a provider listing."""

    kind: Literal["worker", "kv_namespace", "database"]
    name: str
    id: str


class DeletionResult(BaseModel):
    """Outcome of deleting one preview; partial failure is reported, not raised."""

    preview_name: str
    deleted: list[str] = Field(default_factory=list)
    # resources that were already gone
    absent: list[str] = Field(default_factory=list)
    # resource -> error message
    failed: dict[str, str] = Field(default_factory=dict)
    record_removed: bool = False
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            raise DeletionPartialFailure(self.preview_name, dict(self.failed))


class CleanupOutcome(BaseModel):
    """What the expiry sweep did with one record."""

    preview_name: str
    action: Literal["deleted", "kept", "error"]
    reason: str = ""
    age_days: float = 0.0


class CleanupSummary(BaseModel):
    """Result of one expiry sweep."""

    deleted: int = 0
    kept: int = 0
    errors: int = 0
    outcomes: list[CleanupOutcome] = Field(default_factory=list)
    dry_run: bool = False

    def add(self, outcome: CleanupOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.action == "deleted":
            self.deleted += 1
        elif outcome.action == "kept":
            self.kept += 1
        else:
            self.errors += 1

    def line(self) -> str:
        return f"{self.deleted} deleted, {self.kept} kept, {self.errors} errors"


class OrphanReport(BaseModel):
    """Result of one orphan detection pass."""

    scanned: int = 0
    orphaned: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    dangling_records: list[str] = Field(default_factory=list)
    corrupt_records: list[str] = Field(default_factory=list)
    skipped_in_flight: list[str] = Field(default_factory=list)
    aborted: str | None = None
    dry_run: bool = False

    @property
    def errors(self) -> int:
        return len(self.failed) + (1 if self.aborted else 0)


class HealthProbe(BaseModel):
    """One health check of one preview."""

    preview_name: str
    url: str
    healthy: bool
    status: int | None = None
    error: str | None = None
    latency_ms: float | None = None


class HealthReport(BaseModel):
    """Aggregated health of active previews."""

    probes: list[HealthProbe] = Field(default_factory=list)

    @property
    def checked(self) -> int:
        return len(self.probes)

    @property
    def unhealthy(self) -> list[HealthProbe]:
        return [p for p in self.probes if not p.healthy]

    @property
    def unhealthy_count(self) -> int:
        return len(self.unhealthy)


class UsageReport(BaseModel):
    """Resource usage and cost estimate for preview infrastructure."""

    active_previews: int = 0
    max_previews: int = 0
    kv_namespaces: int = 0
    database_branches: int = 0
    estimated_monthly_cost_usd: float = 0.0
    # worker script -> requests in the last 24h
    requests_24h: dict[str, int] = Field(default_factory=dict)
    total_requests_24h: int = 0
    high_usage: bool = False
    suggest_cleanup: bool = False


class EnvironmentListItem(BaseModel):
    """A record plus its liveness as shown by ``list``."""

    record: EnvironmentRecord
    health: HealthProbe | None = None


class SweepReport(BaseModel):
    """Result of the scheduled job."""

    cleanup: CleanupSummary | None = None
    orphans: OrphanReport | None = None
    usage: UsageReport | None = None
    health: HealthReport | None = None
    # stage -> error message for stages that could not run
    stage_errors: dict[str, str] = Field(default_factory=dict)
    notifications_sent: int = 0
