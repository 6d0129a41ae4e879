"""Restore orchestration: replay a snapshot into the platform, or diff it against live.

A rejected create/update on the platform side is a business outcome and is
returned as ``RestoreResult(success=False)``. Missing snapshots, missing
content and unusable credentials are raised.
"""
import json
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.exceptions import ExternalServiceError, InvalidStateError
from dashvault.schemas.audit import AuditEventType
from dashvault.schemas.restore import CompareResult, RestoreResult
from dashvault.schemas.snapshot import Snapshot
from dashvault.services.audit_service import record_event
from dashvault.services.backup_service import BackupService
from dashvault.services.credential_service import CredentialService
from dashvault.utils.hashing import sha256_hex, stable_json

logger = logging.getLogger(__name__)

# identity fields a brand-new dashboard cannot carry over
DASHBOARD_IDENTITY_FIELDS = ("guid", "accountId", "createdAt", "updatedAt")
PAGE_IDENTITY_FIELDS = ("guid",)
WIDGET_IDENTITY_FIELDS = ("id",)

MISSING_DASHBOARD_FIELD = "Dashboard no longer exists in New Relic"


def _without(document: dict[str, Any], fields: tuple[str, ...]) -> dict[str, Any]:
    return {k: v for k, v in document.items() if k not in fields}


def clean_dashboard_for_restore(dashboard: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``dashboard`` with dashboard, page and widget identity fields removed."""
    cleaned = _without(dashboard, DASHBOARD_IDENTITY_FIELDS)
    pages = cleaned.get("pages")
    if isinstance(pages, list):
        cleaned["pages"] = [_clean_page(page) if isinstance(page, dict) else page for page in pages]
    return cleaned


def _clean_page(page: dict[str, Any]) -> dict[str, Any]:
    cleaned = _without(page, PAGE_IDENTITY_FIELDS)
    widgets = cleaned.get("widgets")
    if isinstance(widgets, list):
        cleaned["widgets"] = [
            _without(widget, WIDGET_IDENTITY_FIELDS) if isinstance(widget, dict) else widget
            for widget in widgets
        ]
    return cleaned


def diff_dashboards(backup: dict[str, Any], current: dict[str, Any]) -> list[str]:
    """Top-level fields that differ. Scalars compare directly, structures by canonical form."""
    changed = [field for field in ("name", "description") if backup.get(field) != current.get(field)]
    changed += [
        field for field in ("pages", "variables")
        if stable_json(backup.get(field)) != stable_json(current.get(field))
    ]
    return changed


class RestoreService:
    def __init__(
        self,
        db: AsyncSession,
        backups: BackupService,
        credentials: CredentialService,
    ):
        self.db = db
        self.backups = backups
        self.credentials = credentials

    async def _load(self, org_id: str, snapshot_id: str) -> tuple[Snapshot, dict[str, Any]]:
        snapshot = await self.backups.get_backup(org_id, snapshot_id)
        content = await self.backups.get_backup_content(org_id, snapshot_id)
        if sha256_hex(content) != snapshot.checksum:
            logger.error("Checksum mismatch for snapshot %s (org %s)", snapshot_id, org_id)
            raise InvalidStateError("Backup content failed integrity check")
        try:
            document = json.loads(content)
        except ValueError as exc:
            raise InvalidStateError("Backup content is not valid JSON") from exc
        if not isinstance(document, dict):
            raise InvalidStateError("Backup content is not a dashboard document")
        return snapshot, document

    async def restore_dashboard(
        self,
        org_id: str,
        snapshot_id: str,
        credential_id: str,
        target_account_id: str | None = None,
        new_name: str | None = None,
    ) -> RestoreResult:
        """Create a new dashboard from the snapshot, optionally renamed or in another account."""
        snapshot, dashboard = await self._load(org_id, snapshot_id)
        if new_name:
            dashboard["name"] = new_name
        payload = clean_dashboard_for_restore(dashboard)
        target_account = target_account_id or snapshot.account_id

        async with await self.credentials.get_api_client(org_id, credential_id) as client:
            try:
                new_guid = await client.create_dashboard(target_account, payload)
            except ExternalServiceError as exc:
                logger.error(
                    "Restore of snapshot %s (org %s) failed: %s", snapshot_id, org_id, exc.message,
                )
                await self._audit_failure(org_id, snapshot, exc.message)
                return RestoreResult(success=False, message=f"Restore failed: {exc.message}")

        logger.info(
            "Snapshot %s of dashboard %s restored as %s in account %s (org %s)",
            snapshot_id, snapshot.dashboard_guid, new_guid, target_account, org_id,
        )
        await record_event(
            self.db, org_id, AuditEventType.RESTORE_COMPLETED,
            resource_type="snapshot", resource_id=snapshot_id,
            details={
                "mode": "new",
                "source_guid": snapshot.dashboard_guid,
                "new_guid": new_guid,
                "target_account_id": target_account,
            },
        )
        return RestoreResult(
            success=True,
            new_dashboard_guid=new_guid,
            message=f"Dashboard restored successfully. New GUID: {new_guid}",
        )

    async def restore_in_place(self, org_id: str, snapshot_id: str, credential_id: str) -> RestoreResult:
        """Overwrite the dashboard the snapshot was captured from, and only that one."""
        snapshot, dashboard = await self._load(org_id, snapshot_id)
        target_guid = snapshot.dashboard_guid

        async with await self.credentials.get_api_client(org_id, credential_id) as client:
            try:
                await client.update_dashboard(target_guid, dashboard)
            except ExternalServiceError as exc:
                logger.error(
                    "In-place restore of snapshot %s (org %s) failed: %s",
                    snapshot_id, org_id, exc.message,
                )
                await self._audit_failure(org_id, snapshot, exc.message)
                return RestoreResult(success=False, message=f"Restore failed: {exc.message}")

        logger.info("Dashboard %s restored in place from snapshot %s (org %s)", target_guid, snapshot_id, org_id)
        await record_event(
            self.db, org_id, AuditEventType.RESTORE_COMPLETED,
            resource_type="snapshot", resource_id=snapshot_id,
            details={"mode": "in_place", "source_guid": target_guid},
        )
        return RestoreResult(
            success=True,
            new_dashboard_guid=target_guid,
            message="Dashboard restored in place successfully",
        )

    async def compare_with_current(self, org_id: str, snapshot_id: str, credential_id: str) -> CompareResult:
        snapshot, backup = await self._load(org_id, snapshot_id)
        async with await self.credentials.get_api_client(org_id, credential_id) as client:
            current = await client.get_dashboard(snapshot.dashboard_guid)

        if current is None:
            return CompareResult(
                snapshot_id=snapshot_id,
                dashboard_guid=snapshot.dashboard_guid,
                has_changes=True,
                changed_fields=[MISSING_DASHBOARD_FIELD],
                backup_version=backup,
            )

        changed = diff_dashboards(backup, current)
        return CompareResult(
            snapshot_id=snapshot_id,
            dashboard_guid=snapshot.dashboard_guid,
            has_changes=bool(changed),
            changed_fields=changed,
            current_version=current,
            backup_version=backup,
        )

    async def _audit_failure(self, org_id: str, snapshot: Snapshot, message: str) -> None:
        await record_event(
            self.db, org_id, AuditEventType.RESTORE_FAILED,
            resource_type="snapshot", resource_id=snapshot.snapshot_id,
            details={"source_guid": snapshot.dashboard_guid, "message": message},
        )
