"""Metadata store for preview environments.

One row per preview keyed by preview name, kept in an embedded SQL table
(SQLite by default). Every mutation is scoped to one key: inserts are atomic
claims, updates are version-checked read-modify-write.
"""

import json
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import (
    Column,
    Engine,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError

from previewctl.exceptions import MetadataCorruption, ResourceConflictError
from previewctl.logger import get_logger
from previewctl.models.environment import EnvironmentRecord, EnvironmentResources, utcnow

logger = get_logger(__name__)

metadata_obj = MetaData()

environments_table = Table(
    "preview_environments",
    metadata_obj,
    Column("preview_name", String(128), primary_key=True),
    Column("pr_number", Integer, nullable=False),
    Column("branch_name", String(255), nullable=False),
    Column("status", String(16), nullable=False),
    # ISO-8601 strings
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    Column("url", String(512), nullable=False),
    Column("database_mode", String(16), nullable=False, default="shared"),
    Column("resources", Text, nullable=False, default="{}"),
    Column("version", Integer, nullable=False, default=0),
)

MAX_UPDATE_ATTEMPTS = 5


def _ensure_sqlite_dir(url: str) -> None:
    """Create the parent directory of a file-based SQLite database."""
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return
    database = parsed.database
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def _record_to_row(record: EnvironmentRecord) -> dict[str, object]:
    return {
        "preview_name": record.preview_name,
        "pr_number": record.pr_number,
        "branch_name": record.branch_name,
        "status": record.status,
        "created_at": record.created_at.isoformat(),
        "updated_at": record.updated_at.isoformat(),
        "url": record.url,
        "database_mode": record.database_mode,
        "resources": record.resources.model_dump_json(),
        "version": record.version,
    }


def _row_to_record(row: dict[str, object]) -> EnvironmentRecord:
    name = str(row.get("preview_name"))
    try:
        resources = EnvironmentResources.model_validate(json.loads(str(row["resources"] or "{}")))
        return EnvironmentRecord(
            preview_name=name,
            pr_number=row["pr_number"],  # type: ignore[arg-type]
            branch_name=row["branch_name"],  # type: ignore[arg-type]
            status=row["status"],  # type: ignore[arg-type]
            created_at=datetime.fromisoformat(str(row["created_at"])),
            updated_at=datetime.fromisoformat(str(row["updated_at"])),
            url=row["url"],  # type: ignore[arg-type]
            database_mode=row["database_mode"],  # type: ignore[arg-type]
            resources=resources,
            version=row["version"],  # type: ignore[arg-type]
        )
    except (KeyError, TypeError, ValueError, PydanticValidationError) as e:
        raise MetadataCorruption(name, str(e)) from e


class MetadataStore:
    """
    Durable keyed record of every known preview environment.

    In dry-run mode reads hit the database as usual while mutations are only
    logged, so decision logic runs unchanged without side effects.
    """

    def __init__(self, database_url: str, *, dry_run: bool = False, engine: Engine | None = None) -> None:
        """
        Initialize the store and create the table if needed.

        Args:
            database_url: SQLAlchemy URL, e.g. sqlite:////var/lib/previewctl/previews.db
            dry_run: Skip every mutation
            engine: Pre-built engine (overrides database_url)
        """
        if engine is None:
            _ensure_sqlite_dir(database_url)
            engine = create_engine(database_url)
        self.engine = engine
        self.dry_run = dry_run
        self._write_lock = threading.Lock()
        metadata_obj.create_all(self.engine)

    # Reads

    def get(self, preview_name: str) -> EnvironmentRecord | None:
        """
        Get a record by preview name.

        Raises:
            MetadataCorruption: If the stored row cannot be parsed
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(environments_table).where(environments_table.c.preview_name == preview_name)
            ).mappings().first()
        if row is None:
            return None
        return _row_to_record(dict(row))

    def scan(self) -> tuple[list[EnvironmentRecord], list[MetadataCorruption]]:
        """
        Read every row.

        Returns:
            Parsed records and one MetadataCorruption per unreadable row
        """
        records: list[EnvironmentRecord] = []
        corrupt: list[MetadataCorruption] = []
        with self.engine.connect() as conn:
            rows = conn.execute(select(environments_table).order_by(environments_table.c.preview_name)).mappings().all()
        for row in rows:
            try:
                records.append(_row_to_record(dict(row)))
            except MetadataCorruption as e:
                logger.warning("Unreadable metadata record", preview_name=e.preview_name, reason=e.reason)
                corrupt.append(e)
        return records, corrupt

    def list_all(self) -> list[EnvironmentRecord]:
        """List all readable records."""
        records, _ = self.scan()
        return records

    def count(self, statuses: Iterable[str]) -> int:
        """Count rows whose status is one of ``statuses``."""
        with self.engine.connect() as conn:
            value = conn.execute(
                select(func.count())
                .select_from(environments_table)
                .where(environments_table.c.status.in_(list(statuses)))
            ).scalar_one()
        return int(value)

    # Mutations

    def claim(self, record: EnvironmentRecord) -> bool:
        """
        Atomically insert a new record.

        Returns:
            True if inserted, False if a record with the same name already exists
        """
        if self.dry_run:
            logger.info("(plan) store claim", preview_name=record.preview_name, status=record.status)
            return True
        with self._write_lock:
            try:
                with self.engine.begin() as conn:
                    conn.execute(insert(environments_table).values(**_record_to_row(record)))
            except IntegrityError:
                return False
        logger.debug("Claimed preview record", preview_name=record.preview_name)
        return True

    def save(self, record: EnvironmentRecord) -> None:
        """Insert or overwrite a record unconditionally."""
        if self.dry_run:
            logger.info("(plan) store save", preview_name=record.preview_name, status=record.status)
            return
        row = _record_to_row(record)
        with self._write_lock, self.engine.begin() as conn:
            conn.execute(delete(environments_table).where(environments_table.c.preview_name == record.preview_name))
            conn.execute(insert(environments_table).values(**row))

    def update(
        self,
        preview_name: str,
        mutate: Callable[[EnvironmentRecord], None],
    ) -> EnvironmentRecord | None:
        """
        Read-modify-write one record.

        ``mutate`` edits the record in place; ``created_at`` is restored afterwards
        since TTL is always measured from creation. The write only lands if
        nobody changed the row in between, otherwise it is retried.

        Returns:
            The updated record, or None if the record does not exist

        Raises:
            ResourceConflictError: If the row kept changing underneath
        """
        for _ in range(MAX_UPDATE_ATTEMPTS):
            current = self.get(preview_name)
            if current is None:
                return None

            updated = current.model_copy(deep=True)
            mutate(updated)
            updated.preview_name = current.preview_name
            updated.created_at = current.created_at
            updated.version = current.version + 1
            updated.updated_at = utcnow()

            if self.dry_run:
                logger.info("(plan) store update", preview_name=preview_name, status=updated.status)
                return updated

            row = _record_to_row(updated)
            del row["preview_name"]
            with self._write_lock, self.engine.begin() as conn:
                result = conn.execute(
                    update(environments_table)
                    .where(environments_table.c.preview_name == preview_name)
                    .where(environments_table.c.version == current.version)
                    .values(**row)
                )
            if result.rowcount == 1:
                return updated
            logger.debug("Concurrent modification, retrying update", preview_name=preview_name)

        raise ResourceConflictError("store.conflict", preview_name=preview_name)

    def set_status(self, preview_name: str, status: str) -> EnvironmentRecord | None:
        def _apply(record: EnvironmentRecord) -> None:
            record.status = status  # type: ignore[assignment]

        return self.update(preview_name, _apply)

    def remove(self, preview_name: str) -> bool:
        """
        Remove a record.

        Returns:
            True if a row was removed
        """
        if self.dry_run:
            logger.info("(plan) store remove", preview_name=preview_name)
            return True
        with self._write_lock, self.engine.begin() as conn:
            result = conn.execute(delete(environments_table).where(environments_table.c.preview_name == preview_name))
        removed = result.rowcount > 0
        if removed:
            logger.info("Removed preview record", preview_name=preview_name)
        return removed
