"""Dashboards API - live platform listing and per-dashboard backups."""
from fastapi import APIRouter, Depends, Query, status

from dashvault.dependencies import (
    Principal,
    get_backup_service,
    get_credential_service,
    require_org,
)
from dashvault.schemas.common import APIResponse
from dashvault.schemas.snapshot import DashboardBackupRequest
from dashvault.services.backup_service import BackupService
from dashvault.services.credential_service import CredentialService

router = APIRouter()


# GET /organizations/{org_id}/dashboards?credential_id=&account_id=
@router.get("", response_model=APIResponse)
async def list_live_dashboards(
    org_id: str,
    credential_id: str = Query(..., min_length=1),
    account_id: str = Query(..., min_length=1),
    _principal: Principal = Depends(require_org),
    credentials: CredentialService = Depends(get_credential_service),
):
    async with await credentials.get_api_client(org_id, credential_id) as client:
        dashboards = await client.list_dashboards(account_id)
    return APIResponse(status="success", data=dashboards)


# POST /organizations/{org_id}/dashboards/{guid}/backup
@router.post("/{guid}/backup", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def backup_dashboard(
    org_id: str,
    guid: str,
    body: DashboardBackupRequest,
    _principal: Principal = Depends(require_org),
    service: BackupService = Depends(get_backup_service),
):
    result = await service.backup_dashboard(org_id, body.credential_id, guid)
    return APIResponse(status="success", data=result.model_dump(), message="Dashboard backed up")


# GET /organizations/{org_id}/dashboards/{guid}/versions
@router.get("/{guid}/versions", response_model=APIResponse)
async def list_dashboard_versions(
    org_id: str,
    guid: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _principal: Principal = Depends(require_org),
    service: BackupService = Depends(get_backup_service),
):
    result = await service.list_backups_by_dashboard(org_id, guid, page, limit)
    return APIResponse(
        status="success",
        data=[s.model_dump() for s in result.data],
        pagination=result.pagination,
    )
