"""Usage and history report schemas."""
from datetime import date

from pydantic import BaseModel


class ReportPeriod(BaseModel):
    start_date: date
    end_date: date


class BackupUsage(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    total_size_bytes: int = 0


class DashboardUsage(BaseModel):
    unique_count: int = 0
    total_snapshots: int = 0


class CredentialUsage(BaseModel):
    total: int = 0
    active: int = 0


class StorageUsage(BaseModel):
    used_bytes: int = 0
    limit_bytes: int
    percent_used: int = 0


class UsageReport(BaseModel):
    period: ReportPeriod
    backups: BackupUsage
    dashboards: DashboardUsage
    credentials: CredentialUsage
    storage: StorageUsage


class DailyBackupSummary(BaseModel):
    date: date
    success_count: int = 0
    failure_count: int = 0
    total_size_bytes: int = 0


class AuditSummary(BaseModel):
    event_type: str
    count: int
    last_occurrence: str


class DashboardHistoryEntry(BaseModel):
    snapshot_id: str
    backup_timestamp: str
    size_bytes: int
