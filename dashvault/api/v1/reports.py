"""Reports API - usage, daily backup outcomes, audit activity, dashboard history."""
from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query

from dashvault.dependencies import Principal, get_reporting_service, require_org
from dashvault.schemas.common import APIResponse
from dashvault.services.reporting_service import ReportingService
from dashvault.utils.helpers import utc_now

router = APIRouter()

DEFAULT_USAGE_DAYS = 30


# GET /organizations/{org_id}/reports/usage
@router.get("/usage", response_model=APIResponse)
async def get_usage(
    org_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
    _principal: Principal = Depends(require_org),
    service: ReportingService = Depends(get_reporting_service),
):
    end = end_date or utc_now().date()
    start = start_date or end - timedelta(days=DEFAULT_USAGE_DAYS)
    report = await service.get_usage_report(org_id, start, end)
    return APIResponse(status="success", data=report.model_dump(mode="json"))


# GET /organizations/{org_id}/reports/backups
@router.get("/backups", response_model=APIResponse)
async def get_backup_summary(
    org_id: str,
    days: int = Query(30, ge=1, le=365),
    _principal: Principal = Depends(require_org),
    service: ReportingService = Depends(get_reporting_service),
):
    summary = await service.get_backup_summary_by_day(org_id, days)
    return APIResponse(status="success", data=[s.model_dump(mode="json") for s in summary])


# GET /organizations/{org_id}/reports/audit
@router.get("/audit", response_model=APIResponse)
async def get_audit_summary(
    org_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
    _principal: Principal = Depends(require_org),
    service: ReportingService = Depends(get_reporting_service),
):
    summary = await service.get_audit_summary(org_id, start_date, end_date)
    return APIResponse(status="success", data=[s.model_dump() for s in summary])


# GET /organizations/{org_id}/reports/dashboards/{dashboard_guid}
@router.get("/dashboards/{dashboard_guid}", response_model=APIResponse)
async def get_dashboard_history(
    org_id: str,
    dashboard_guid: str,
    limit: int = Query(50, ge=1, le=200),
    _principal: Principal = Depends(require_org),
    service: ReportingService = Depends(get_reporting_service),
):
    history = await service.get_dashboard_history(org_id, dashboard_guid, limit)
    return APIResponse(status="success", data=[h.model_dump() for h in history])
