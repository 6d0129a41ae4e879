"""Snapshot (backup record) schemas."""
from pydantic import BaseModel, Field

from dashvault.schemas.common import PaginationMeta


class ContentLocation(BaseModel):
    bucket: str
    key: str


class SnapshotCreate(BaseModel):
    org_id: str
    dashboard_guid: str
    dashboard_name: str
    account_id: str
    account_name: str = ""
    owner_email: str | None = None
    content_location: ContentLocation
    dashboard_updated_at: str | None = None
    size_bytes: int = Field(ge=0)
    checksum: str


class Snapshot(SnapshotCreate):
    snapshot_id: str
    backup_timestamp: str

    model_config = {"frozen": True}


class PaginatedSnapshots(BaseModel):
    data: list[Snapshot]
    pagination: PaginationMeta


class BackupResult(BaseModel):
    snapshot_id: str
    dashboard_guid: str
    dashboard_name: str
    size_bytes: int
    backup_timestamp: str


class BackupError(BaseModel):
    dashboard_guid: str | None = None
    account_id: str | None = None
    message: str


class BulkBackupResult(BaseModel):
    results: list[BackupResult] = []
    errors: list[BackupError] = []


class StorageStats(BaseModel):
    total_backups: int
    total_size_bytes: int
    oldest_backup: str | None = None
    newest_backup: str | None = None


class DashboardBackupRequest(BaseModel):
    credential_id: str = Field(min_length=1)


class BackupTriggerRequest(BaseModel):
    credential_id: str = Field(min_length=1)
    account_id: str | None = None

