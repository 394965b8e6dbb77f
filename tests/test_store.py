"""Tests for the metadata store."""

from datetime import timedelta
from pathlib import Path

import pytest

from previewctl.exceptions import MetadataCorruption, ResourceConflictError
from previewctl.models.environment import EnvironmentRecord, utcnow
from previewctl.services.environment import MetadataStore


def _record(name: str = "pr-1-main", status: str = "provisioning") -> EnvironmentRecord:
    return EnvironmentRecord(
        preview_name=name,
        pr_number=int(name.split("-")[1]),
        branch_name="main",
        url=f"https://{name}.preview.example.com",
        status=status,  # type: ignore[arg-type]
    )


def test_store_creates_sqlite_directory(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "dir" / "previews.db"

    MetadataStore(f"sqlite:///{db_path}")

    assert db_path.exists()


def test_claim_is_exclusive(store: MetadataStore) -> None:
    assert store.claim(_record()) is True
    assert store.claim(_record()) is False


def test_roundtrip_preserves_fields(store: MetadataStore) -> None:
    record = _record()
    record.resources.kv_namespaces = {"session": "a", "cache": "b", "rate_limit": "c"}
    store.claim(record)

    loaded = store.get("pr-1-main")

    assert loaded is not None
    assert loaded.resources.kv_namespaces == {"session": "a", "cache": "b", "rate_limit": "c"}
    assert loaded.created_at == record.created_at
    assert loaded.created_at.tzinfo is not None


def test_update_bumps_version_and_keeps_created_at(store: MetadataStore) -> None:
    store.claim(_record())
    original = store.get("pr-1-main")
    assert original is not None

    def _mutate(record: EnvironmentRecord) -> None:
        record.status = "active"
        record.created_at = utcnow() + timedelta(days=3)

    updated = store.update("pr-1-main", _mutate)

    assert updated is not None
    assert updated.status == "active"
    assert updated.version == original.version + 1
    assert updated.created_at == original.created_at
    stored = store.get("pr-1-main")
    assert stored is not None
    assert stored.status == "active"


def test_update_missing_record_returns_none(store: MetadataStore) -> None:
    assert store.update("pr-2-missing", lambda r: None) is None


def test_update_gives_up_when_row_keeps_changing(store: MetadataStore, monkeypatch: pytest.MonkeyPatch) -> None:
    store.claim(_record())

    def _interfere(record: EnvironmentRecord) -> None:
        # Another writer bumps the version between read and write
        with store.engine.begin() as conn:
            conn.exec_driver_sql("UPDATE preview_environments SET version = version + 1")

    with pytest.raises(ResourceConflictError):
        store.update("pr-1-main", _interfere)


def test_count_by_status(store: MetadataStore) -> None:
    store.claim(_record("pr-1-a", "active"))
    store.claim(_record("pr-2-b", "provisioning"))
    store.claim(_record("pr-3-c", "deleting"))

    assert store.count(("active", "provisioning")) == 2
    assert store.count(("deleting",)) == 1


def test_scan_reports_corrupt_rows(store: MetadataStore) -> None:
    store.claim(_record("pr-1-good"))
    store.claim(_record("pr-2-bad"))
    with store.engine.begin() as conn:
        conn.exec_driver_sql("UPDATE preview_environments SET status = 'bogus' WHERE preview_name = 'pr-2-bad'")

    records, corrupt = store.scan()

    assert [r.preview_name for r in records] == ["pr-1-good"]
    assert [c.preview_name for c in corrupt] == ["pr-2-bad"]
    with pytest.raises(MetadataCorruption):
        store.get("pr-2-bad")


def test_remove(store: MetadataStore) -> None:
    store.claim(_record())

    assert store.remove("pr-1-main") is True
    assert store.remove("pr-1-main") is False
    assert store.get("pr-1-main") is None


def test_dry_run_store_reads_but_never_writes(store: MetadataStore) -> None:
    store.claim(_record("pr-1-existing"))
    dry = MetadataStore("sqlite://", engine=store.engine, dry_run=True)

    assert dry.claim(_record("pr-2-new")) is True
    assert dry.set_status("pr-1-existing", "deleting") is not None
    assert dry.remove("pr-1-existing") is True

    assert store.get("pr-2-new") is None
    existing = store.get("pr-1-existing")
    assert existing is not None
    assert existing.status == "provisioning"
