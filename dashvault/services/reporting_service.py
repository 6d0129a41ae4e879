"""Usage and history reports, aggregated in memory over bounded store scans."""
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.config import settings
from dashvault.exceptions import InvalidInputError
from dashvault.repositories import audit_repository, credential_repository, snapshot_repository
from dashvault.schemas.audit import AuditEventType
from dashvault.schemas.credential import CredentialStatus
from dashvault.schemas.report import (
    AuditSummary,
    BackupUsage,
    CredentialUsage,
    DailyBackupSummary,
    DashboardHistoryEntry,
    DashboardUsage,
    ReportPeriod,
    StorageUsage,
    UsageReport,
)
from dashvault.utils.helpers import utc_now

logger = logging.getLogger(__name__)


def _day(timestamp: str) -> date:
    return date.fromisoformat(timestamp[:10])


def _parse(timestamp: str) -> datetime:
    return datetime.fromisoformat(timestamp.replace("Z", "+00:00"))


def _check_range(start: date | None, end: date | None) -> None:
    if start is not None and end is not None and start > end:
        raise InvalidInputError("start_date must not be after end_date")


def _within(timestamp: str, start: date | None, end: date | None) -> bool:
    day = _day(timestamp)
    return (start is None or day >= start) and (end is None or day <= end)


class ReportingService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_usage_report(self, org_id: str, start: date, end: date) -> UsageReport:
        _check_range(start, end)
        scan_limit = settings.REPORT_SCAN_LIMIT
        snapshots = await snapshot_repository.list_by_org(self.db, org_id, max_items=scan_limit)
        failures = await audit_repository.list_by_event_type(
            self.db, org_id, AuditEventType.BACKUP_FAILED, limit=scan_limit,
        )
        credentials = await credential_repository.list_by_org(self.db, org_id)

        captured = [s for s in snapshots if _within(s.backup_timestamp, start, end)]
        failed = [e for e in failures if _within(e.timestamp, start, end)]
        used = sum(s.size_bytes for s in snapshots)
        quota = settings.STORAGE_QUOTA_BYTES

        logger.debug(
            "Usage report for org %s (%s..%s): %d captured, %d failed",
            org_id, start, end, len(captured), len(failed),
        )
        return UsageReport(
            period=ReportPeriod(start_date=start, end_date=end),
            backups=BackupUsage(
                total=len(captured) + len(failed),
                successful=len(captured),
                failed=len(failed),
                total_size_bytes=sum(s.size_bytes for s in captured),
            ),
            dashboards=DashboardUsage(
                unique_count=len({s.dashboard_guid for s in captured}),
                total_snapshots=len(snapshots),
            ),
            credentials=CredentialUsage(
                total=len(credentials),
                active=sum(1 for c in credentials if c.status == CredentialStatus.ACTIVE),
            ),
            storage=StorageUsage(
                used_bytes=used,
                limit_bytes=quota,
                percent_used=round(used * 100 / quota) if quota else 0,
            ),
        )

    async def get_backup_summary_by_day(self, org_id: str, days: int = 30) -> list[DailyBackupSummary]:
        """Per-day success and failure counts over the trailing ``days``, oldest day first."""
        if days < 1:
            raise InvalidInputError("days must be positive")
        cutoff = utc_now() - timedelta(days=days)
        scan_limit = settings.REPORT_SCAN_LIMIT
        snapshots = await snapshot_repository.list_by_org(self.db, org_id, max_items=scan_limit)
        failures = await audit_repository.list_by_event_type(
            self.db, org_id, AuditEventType.BACKUP_FAILED, limit=scan_limit,
        )

        by_day: dict[date, DailyBackupSummary] = {}

        def _bucket(timestamp: str) -> DailyBackupSummary:
            day = _day(timestamp)
            if day not in by_day:
                by_day[day] = DailyBackupSummary(date=day)
            return by_day[day]

        for snapshot in snapshots:
            if _parse(snapshot.backup_timestamp) >= cutoff:
                summary = _bucket(snapshot.backup_timestamp)
                summary.success_count += 1
                summary.total_size_bytes += snapshot.size_bytes
        for event in failures:
            if _parse(event.timestamp) >= cutoff:
                _bucket(event.timestamp).failure_count += 1

        return [by_day[day] for day in sorted(by_day)]

    async def get_audit_summary(
        self, org_id: str, start: date | None = None, end: date | None = None,
    ) -> list[AuditSummary]:
        """Event counts by type, most frequent first."""
        _check_range(start, end)
        events = await audit_repository.list_by_org(
            self.db, org_id, limit=settings.REPORT_SCAN_LIMIT,
        )
        counts: dict[str, int] = defaultdict(int)
        last_seen: dict[str, str] = {}
        for event in events:
            if not _within(event.timestamp, start, end):
                continue
            event_type = event.event_type.value
            counts[event_type] += 1
            last_seen[event_type] = max(last_seen.get(event_type, ""), event.timestamp)

        return sorted(
            (
                AuditSummary(event_type=t, count=n, last_occurrence=last_seen[t])
                for t, n in counts.items()
            ),
            key=lambda s: (-s.count, s.event_type),
        )

    async def get_dashboard_history(
        self, org_id: str, dashboard_guid: str, limit: int = 50,
    ) -> list[DashboardHistoryEntry]:
        snapshots = await snapshot_repository.list_by_dashboard(self.db, org_id, dashboard_guid, limit=limit)
        return [
            DashboardHistoryEntry(
                snapshot_id=s.snapshot_id,
                backup_timestamp=s.backup_timestamp,
                size_bytes=s.size_bytes,
            )
            for s in snapshots
        ]
