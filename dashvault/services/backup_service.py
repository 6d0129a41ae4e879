"""Backup orchestration: fetch a dashboard, store its bytes, record the snapshot."""
import logging
import math
from urllib.parse import quote

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.config import settings
from dashvault.exceptions import AppError, InvalidInputError, NotFoundError
from dashvault.integrations.nerdgraph.client import NerdGraphClient
from dashvault.repositories import snapshot_repository
from dashvault.schemas.audit import AuditEventType
from dashvault.schemas.common import PaginationMeta
from dashvault.schemas.snapshot import (
    BackupError,
    BackupResult,
    BulkBackupResult,
    ContentLocation,
    PaginatedSnapshots,
    Snapshot,
    SnapshotCreate,
    StorageStats,
)
from dashvault.services.audit_service import record_event
from dashvault.services.credential_service import CredentialService
from dashvault.storage.blob_store import BlobStore
from dashvault.utils.hashing import canonical_json_bytes, sha256_hex
from dashvault.utils.helpers import sanitize_path_segment, utc_timestamp

logger = logging.getLogger(__name__)


def build_storage_key(org_id: str, account_id: str, dashboard_guid: str, timestamp: str) -> str:
    """``<org>/<account>/<percent-encoded guid>/<sanitized timestamp>.json``"""
    return (
        f"{org_id}/{account_id}/{quote(dashboard_guid, safe='')}/"
        f"{sanitize_path_segment(timestamp)}.json"
    )


class BackupService:
    def __init__(
        self,
        db: AsyncSession,
        blob_store: BlobStore,
        credentials: CredentialService,
        bucket: str | None = None,
    ):
        self.db = db
        self.blob_store = blob_store
        self.credentials = credentials
        self.bucket = bucket or settings.S3_BUCKET_NAME

    # ── Capture ──

    async def backup_dashboard(
        self, org_id: str, credential_id: str, dashboard_guid: str,
    ) -> BackupResult:
        async with await self.credentials.get_api_client(org_id, credential_id) as client:
            result = await self._capture(client, org_id, dashboard_guid)
        await self._record_run(org_id, credential_id, result.backup_timestamp)
        return result

    async def backup_all_dashboards(
        self, org_id: str, credential_id: str, account_id: str | None = None,
    ) -> BulkBackupResult:
        """Back up every dashboard of one account, or of every account the key reaches.

        Dashboards are processed one at a time. A failing dashboard or account
        is logged and reported under ``errors``; it never stops the batch.
        """
        outcome = BulkBackupResult()
        async with await self.credentials.get_api_client(org_id, credential_id) as client:
            accounts = [account_id] if account_id else client.account_ids
            for acc_id in accounts:
                try:
                    dashboards = await client.list_dashboards(acc_id)
                except AppError as exc:
                    logger.error(
                        "Failed to list dashboards for account %s (org %s): %s",
                        acc_id, org_id, exc.message,
                    )
                    outcome.errors.append(BackupError(account_id=acc_id, message=exc.message))
                    continue

                logger.info(
                    "Found %d dashboards to back up in account %s (org %s)",
                    len(dashboards), acc_id, org_id,
                )
                for dashboard in dashboards:
                    guid = dashboard["guid"]
                    try:
                        outcome.results.append(await self._capture(client, org_id, guid))
                    except Exception as exc:
                        message = exc.message if isinstance(exc, AppError) else str(exc)
                        logger.warning(
                            "Failed to back up dashboard %s (org %s): %s", guid, org_id, message,
                        )
                        outcome.errors.append(BackupError(dashboard_guid=guid, message=message))
                        await record_event(
                            self.db, org_id, AuditEventType.BACKUP_FAILED,
                            resource_type="dashboard", resource_id=guid,
                            details={"message": message},
                        )

        if outcome.results:
            await self._record_run(org_id, credential_id, outcome.results[-1].backup_timestamp)
        logger.info(
            "Bulk backup for org %s finished: %d succeeded, %d failed",
            org_id, len(outcome.results), len(outcome.errors),
        )
        return outcome

    async def _capture(self, client: NerdGraphClient, org_id: str, dashboard_guid: str) -> BackupResult:
        detail = await client.get_dashboard(dashboard_guid)
        if detail is None:
            raise NotFoundError("Dashboard not found in New Relic")

        # hash, size and store the very same bytes
        body = canonical_json_bytes(detail)
        checksum = sha256_hex(body)
        timestamp = utc_timestamp()
        account_id = str(detail.get("accountId", ""))
        key = build_storage_key(org_id, account_id, dashboard_guid, timestamp)

        # payload first: a failed write must not leave a record pointing at nothing
        await self.blob_store.put(self.bucket, key, body, "application/json")
        # a failed record write rolls back this capture only, never the batch
        async with self.db.begin_nested():
            snapshot = await snapshot_repository.create(
                self.db,
                SnapshotCreate(
                    org_id=org_id,
                    dashboard_guid=dashboard_guid,
                    dashboard_name=detail.get("name") or "",
                    account_id=account_id,
                    owner_email=(detail.get("owner") or {}).get("email"),
                    content_location=ContentLocation(bucket=self.bucket, key=key),
                    dashboard_updated_at=detail.get("updatedAt"),
                    size_bytes=len(body),
                    checksum=checksum,
                ),
                backup_timestamp=timestamp,
            )

        logger.info(
            "Dashboard %s backed up for org %s as snapshot %s (%d bytes)",
            dashboard_guid, org_id, snapshot.snapshot_id, snapshot.size_bytes,
        )
        await record_event(
            self.db, org_id, AuditEventType.BACKUP_COMPLETED,
            resource_type="snapshot", resource_id=snapshot.snapshot_id,
            details={"dashboard_guid": dashboard_guid, "size_bytes": snapshot.size_bytes},
        )
        return BackupResult(
            snapshot_id=snapshot.snapshot_id,
            dashboard_guid=snapshot.dashboard_guid,
            dashboard_name=snapshot.dashboard_name,
            size_bytes=snapshot.size_bytes,
            backup_timestamp=snapshot.backup_timestamp,
        )

    async def _record_run(self, org_id: str, credential_id: str, timestamp: str) -> None:
        try:
            async with self.db.begin_nested():
                count = await snapshot_repository.count_by_org(self.db, org_id)
                await self.credentials.record_backup_run(org_id, credential_id, count, timestamp)
        except (AppError, SQLAlchemyError) as exc:
            logger.warning(
                "Backup bookkeeping for credential %s (org %s) skipped: %s",
                credential_id, org_id, exc,
            )

    # ── Reads ──

    async def get_backup(self, org_id: str, snapshot_id: str) -> Snapshot:
        snapshot = await snapshot_repository.find_by_id(self.db, org_id, snapshot_id)
        if snapshot is None:
            raise NotFoundError("Backup not found")
        return snapshot

    async def get_backup_content(self, org_id: str, snapshot_id: str) -> bytes:
        snapshot = await self.get_backup(org_id, snapshot_id)
        location = snapshot.content_location
        content = await self.blob_store.get(location.bucket, location.key)
        if content is None:
            logger.error(
                "Content of snapshot %s (org %s) missing at %s/%s",
                snapshot_id, org_id, location.bucket, location.key,
            )
            raise NotFoundError("Backup content not found in storage")
        return content

    async def list_backups_by_dashboard(
        self, org_id: str, dashboard_guid: str, page: int = 1, limit: int = 20,
    ) -> PaginatedSnapshots:
        return await snapshot_repository.list_by_dashboard_paginated(
            self.db, org_id, dashboard_guid, page, limit,
        )

    async def list_backups_by_org(
        self, org_id: str, page: int = 1, limit: int = 20, search: str | None = None,
    ) -> PaginatedSnapshots:
        """Paginated org history, optionally filtered by a name/guid substring.

        Search is a scan-then-filter over the ``SEARCH_SCAN_LIMIT`` most recent
        snapshots; older ones are never matched.
        """
        term = (search or "").strip().lower()
        if not term:
            return await snapshot_repository.list_by_org_paginated(self.db, org_id, page, limit)
        if page < 1 or limit < 1:
            raise InvalidInputError("page and limit must be positive")

        candidates = await snapshot_repository.list_by_org(
            self.db, org_id, max_items=settings.SEARCH_SCAN_LIMIT,
        )
        matches = [
            s for s in candidates
            if term in s.dashboard_name.lower() or term in s.dashboard_guid.lower()
        ]
        start = (page - 1) * limit
        return PaginatedSnapshots(
            data=matches[start:start + limit],
            pagination=PaginationMeta(
                page=page,
                limit=limit,
                total=len(matches),
                total_pages=math.ceil(len(matches) / limit),
                has_next=start + limit < len(matches),
                has_prev=page > 1,
            ),
        )

    async def get_storage_stats(self, org_id: str) -> StorageStats:
        snapshots = await snapshot_repository.list_by_org(
            self.db, org_id, max_items=settings.STATS_SCAN_LIMIT,
        )
        if not snapshots:
            return StorageStats(total_backups=0, total_size_bytes=0)
        timestamps = sorted(s.backup_timestamp for s in snapshots)
        return StorageStats(
            total_backups=len(snapshots),
            total_size_bytes=sum(s.size_bytes for s in snapshots),
            oldest_backup=timestamps[0],
            newest_backup=timestamps[-1],
        )
