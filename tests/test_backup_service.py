"""Tests for backup capture, bulk backup, history reads and storage stats."""
import json
import sqlite3
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import event

from conftest import ORG_ID, OTHER_ORG_ID, make_dashboard
from dashvault.config import settings
from dashvault.exceptions import (
    InvalidStateError,
    NotFoundError,
    StorageUnavailableError,
)
from dashvault.repositories import audit_repository, credential_repository, snapshot_repository
from dashvault.schemas.audit import AuditEventType
from dashvault.schemas.credential import CredentialStatus
from dashvault.services.backup_service import build_storage_key
from dashvault.utils.hashing import canonical_json_bytes, sha256_hex


def test_storage_key_layout():
    key = build_storage_key("org-1", "1001", "MXxWSVp8REFTSEJPQVJEfDE=", "2026-03-01T12:00:00.123456Z")
    assert key == "org-1/1001/MXxWSVp8REFTSEJPQVJEfDE%3D/2026-03-01T12-00-00-123456Z.json"


def test_storage_key_encodes_slashes():
    key = build_storage_key("org-1", "1001", "a/b", "2026-03-01T12:00:00.000001Z")
    assert key.split("/")[2] == "a%2Fb"


class TestBackupDashboard:
    async def test_stores_canonical_bytes_with_checksum(
        self, backup_service, blob_store, fake_newrelic, credential,
    ):
        dashboard = fake_newrelic.add(make_dashboard("GUID-A", "Service Health"))

        result = await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")

        snapshot = await backup_service.get_backup(ORG_ID, result.snapshot_id)
        stored = await blob_store.get("test-bucket", snapshot.content_location.key)
        assert stored == canonical_json_bytes(dashboard)
        assert snapshot.checksum == sha256_hex(stored)
        assert snapshot.size_bytes == len(stored)
        assert snapshot.dashboard_name == "Service Health"
        assert snapshot.account_id == "1001"
        assert snapshot.owner_email == "owner@example.com"
        assert snapshot.dashboard_updated_at == "2026-03-01T12:00:00Z"
        assert snapshot.content_location.key.startswith(f"{ORG_ID}/1001/GUID-A/")

    async def test_repeat_backups_build_history(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Service Health"))

        first = await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")
        second = await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")

        assert first.snapshot_id != second.snapshot_id
        assert first.backup_timestamp < second.backup_timestamp
        history = await backup_service.list_backups_by_dashboard(ORG_ID, "GUID-A")
        assert [s.snapshot_id for s in history.data] == [second.snapshot_id, first.snapshot_id]

    async def test_updates_credential_bookkeeping(self, db, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Service Health"))
        result = await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")

        stored = await credential_repository.find_by_id(db, ORG_ID, credential.credential_id)
        assert stored.dashboard_count == 1
        assert stored.last_backup_run == result.backup_timestamp

    async def test_records_audit_event(self, db, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Service Health"))
        result = await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")

        events = await audit_repository.list_by_event_type(db, ORG_ID, AuditEventType.BACKUP_COMPLETED)
        assert [e.resource_id for e in events] == [result.snapshot_id]

    async def test_missing_dashboard(self, backup_service, credential):
        with pytest.raises(NotFoundError):
            await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-GONE")

    async def test_unknown_credential(self, backup_service):
        with pytest.raises(NotFoundError):
            await backup_service.backup_dashboard(ORG_ID, "no-such-credential", "GUID-A")

    async def test_inactive_credential(self, db, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Service Health"))
        await credential_repository.update(
            db, ORG_ID, credential.credential_id, status=CredentialStatus.INVALID,
        )
        with pytest.raises(InvalidStateError):
            await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")

    async def test_credential_of_other_org_not_usable(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Service Health"))
        with pytest.raises(NotFoundError):
            await backup_service.backup_dashboard(OTHER_ORG_ID, credential.credential_id, "GUID-A")

    async def test_blob_failure_leaves_no_record(
        self, db, backup_service, blob_store, fake_newrelic, credential,
    ):
        fake_newrelic.add(make_dashboard("GUID-A", "Service Health"))
        blob_store.put = AsyncMock(side_effect=StorageUnavailableError("Blob store write failed"))

        with pytest.raises(StorageUnavailableError):
            await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")
        assert await snapshot_repository.list_by_org(db, ORG_ID) == []


class TestBulkBackup:
    async def test_backs_up_every_account(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Prod A", account_id=1001))
        fake_newrelic.add(make_dashboard("GUID-B", "Prod B", account_id=1001))
        fake_newrelic.add(make_dashboard("GUID-C", "Staging C", account_id=1002))

        outcome = await backup_service.backup_all_dashboards(ORG_ID, credential.credential_id)

        assert sorted(r.dashboard_guid for r in outcome.results) == ["GUID-A", "GUID-B", "GUID-C"]
        assert outcome.errors == []

    async def test_single_account(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Prod A", account_id=1001))
        fake_newrelic.add(make_dashboard("GUID-C", "Staging C", account_id=1002))

        outcome = await backup_service.backup_all_dashboards(ORG_ID, credential.credential_id, "1002")

        assert [r.dashboard_guid for r in outcome.results] == ["GUID-C"]

    async def test_failing_dashboard_does_not_stop_batch(
        self, db, backup_service, fake_newrelic, credential,
    ):
        fake_newrelic.add(make_dashboard("GUID-A", "Prod A"))
        fake_newrelic.add(make_dashboard("GUID-B", "Prod B"))
        fake_newrelic.add(make_dashboard("GUID-C", "Prod C"))
        fake_newrelic.failing_fetches.add("GUID-B")

        outcome = await backup_service.backup_all_dashboards(ORG_ID, credential.credential_id, "1001")

        assert sorted(r.dashboard_guid for r in outcome.results) == ["GUID-A", "GUID-C"]
        assert [e.dashboard_guid for e in outcome.errors] == ["GUID-B"]
        assert "Internal entity lookup failure" in outcome.errors[0].message
        failed = await audit_repository.list_by_event_type(db, ORG_ID, AuditEventType.BACKUP_FAILED)
        assert [e.resource_id for e in failed] == ["GUID-B"]
        assert await snapshot_repository.count_by_org(db, ORG_ID) == 2

    async def test_failed_record_write_rolls_back_only_that_dashboard(
        self, db, backup_service, fake_newrelic, credential,
    ):
        for guid in ("GUID-A", "GUID-B", "GUID-C"):
            fake_newrelic.add(make_dashboard(guid, f"Prod {guid}"))
        sync_engine = db.bind.sync_engine
        tripped = []

        def _lock_on_guid_b(conn, cursor, statement, parameters, context, executemany):
            if not tripped and statement.startswith("INSERT INTO items") and "GUID-B" in str(parameters):
                tripped.append(statement)
                raise sqlite3.OperationalError("database is locked")

        event.listen(sync_engine, "before_cursor_execute", _lock_on_guid_b)
        try:
            outcome = await backup_service.backup_all_dashboards(
                ORG_ID, credential.credential_id, "1001",
            )
        finally:
            event.remove(sync_engine, "before_cursor_execute", _lock_on_guid_b)

        assert tripped
        assert [r.dashboard_guid for r in outcome.results] == ["GUID-A", "GUID-C"]
        assert [e.dashboard_guid for e in outcome.errors] == ["GUID-B"]
        await db.commit()
        snapshots = await snapshot_repository.list_by_org(db, ORG_ID)
        assert sorted(s.dashboard_guid for s in snapshots) == ["GUID-A", "GUID-C"]
        stored = await credential_repository.find_by_id(db, ORG_ID, credential.credential_id)
        assert stored.dashboard_count == 2

    async def test_failing_account_is_reported(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Prod A", account_id=1001))
        fake_newrelic.add(make_dashboard("GUID-C", "Staging C", account_id=1002))
        fake_newrelic.failing_accounts.add("1002")

        outcome = await backup_service.backup_all_dashboards(ORG_ID, credential.credential_id)

        assert [r.dashboard_guid for r in outcome.results] == ["GUID-A"]
        assert [e.account_id for e in outcome.errors] == ["1002"]

    async def test_empty_account(self, backup_service, credential):
        outcome = await backup_service.backup_all_dashboards(ORG_ID, credential.credential_id, "1001")
        assert outcome.results == []
        assert outcome.errors == []


class TestReads:
    async def test_get_backup_of_other_org(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Prod A"))
        result = await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")
        with pytest.raises(NotFoundError):
            await backup_service.get_backup(OTHER_ORG_ID, result.snapshot_id)

    async def test_content_round_trips(self, backup_service, fake_newrelic, credential):
        dashboard = fake_newrelic.add(make_dashboard("GUID-A", "Prod A"))
        result = await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")
        content = await backup_service.get_backup_content(ORG_ID, result.snapshot_id)
        assert json.loads(content) == dashboard

    async def test_missing_content(self, tmp_path, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Prod A"))
        result = await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")
        snapshot = await backup_service.get_backup(ORG_ID, result.snapshot_id)
        (tmp_path / "blobs" / "test-bucket" / snapshot.content_location.key).unlink()

        with pytest.raises(NotFoundError, match="Backup content not found in storage"):
            await backup_service.get_backup_content(ORG_ID, result.snapshot_id)

    async def test_search_by_name_is_case_insensitive(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Checkout Latency"))
        fake_newrelic.add(make_dashboard("GUID-B", "Infra Overview"))
        await backup_service.backup_all_dashboards(ORG_ID, credential.credential_id, "1001")

        result = await backup_service.list_backups_by_org(ORG_ID, search="checkout")
        assert [s.dashboard_guid for s in result.data] == ["GUID-A"]
        assert result.pagination.total == 1

    async def test_search_by_guid(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Checkout Latency"))
        fake_newrelic.add(make_dashboard("GUID-B", "Infra Overview"))
        await backup_service.backup_all_dashboards(ORG_ID, credential.credential_id, "1001")

        result = await backup_service.list_backups_by_org(ORG_ID, search="guid-b")
        assert [s.dashboard_guid for s in result.data] == ["GUID-B"]

    async def test_search_only_covers_recent_window(
        self, backup_service, fake_newrelic, credential, monkeypatch,
    ):
        fake_newrelic.add(make_dashboard("GUID-OLD", "Legacy Board"))
        await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-OLD")
        fake_newrelic.add(make_dashboard("GUID-NEW", "Fresh Board"))
        await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-NEW")
        monkeypatch.setattr(settings, "SEARCH_SCAN_LIMIT", 1)

        result = await backup_service.list_backups_by_org(ORG_ID, search="legacy")
        assert result.data == []

    async def test_search_pagination(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Team Board"))
        for _ in range(3):
            await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")

        result = await backup_service.list_backups_by_org(ORG_ID, page=2, limit=2, search="team")
        assert len(result.data) == 1
        assert result.pagination.total == 3
        assert result.pagination.total_pages == 2
        assert result.pagination.has_prev is True
        assert result.pagination.has_next is False

    async def test_blank_search_lists_everything(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Team Board"))
        await backup_service.backup_dashboard(ORG_ID, credential.credential_id, "GUID-A")
        result = await backup_service.list_backups_by_org(ORG_ID, search="   ")
        assert len(result.data) == 1

    async def test_storage_stats(self, backup_service, fake_newrelic, credential):
        fake_newrelic.add(make_dashboard("GUID-A", "Prod A"))
        fake_newrelic.add(make_dashboard("GUID-B", "Prod B"))
        outcome = await backup_service.backup_all_dashboards(ORG_ID, credential.credential_id, "1001")

        stats = await backup_service.get_storage_stats(ORG_ID)
        timestamps = sorted(r.backup_timestamp for r in outcome.results)
        assert stats.total_backups == 2
        assert stats.total_size_bytes == sum(r.size_bytes for r in outcome.results)
        assert stats.oldest_backup == timestamps[0]
        assert stats.newest_backup == timestamps[-1]

    async def test_storage_stats_empty(self, backup_service):
        stats = await backup_service.get_storage_stats(ORG_ID)
        assert stats.total_backups == 0
        assert stats.total_size_bytes == 0
        assert stats.oldest_backup is None
