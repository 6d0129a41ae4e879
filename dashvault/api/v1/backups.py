"""Backups API - snapshot history, content, bulk trigger and storage stats."""
from fastapi import APIRouter, Depends, Query, Response, status

from dashvault.dependencies import Principal, get_backup_service, require_org
from dashvault.schemas.common import APIResponse
from dashvault.schemas.snapshot import BackupTriggerRequest
from dashvault.services.backup_service import BackupService

router = APIRouter()


# POST /organizations/{org_id}/backup/trigger
@router.post("/backup/trigger", response_model=APIResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_backup(
    org_id: str,
    body: BackupTriggerRequest,
    run_async: bool = Query(False, alias="async"),
    _principal: Principal = Depends(require_org),
    service: BackupService = Depends(get_backup_service),
):
    if run_async:
        from dashvault.tasks.backup_tasks import backup_all

        job = backup_all.delay(org_id, body.credential_id, body.account_id)
        return APIResponse(status="success", data={"job_id": job.id}, message="Backup queued")

    outcome = await service.backup_all_dashboards(org_id, body.credential_id, body.account_id)
    return APIResponse(
        status="success",
        data=outcome.model_dump(),
        message=f"Backed up {len(outcome.results)} dashboards, {len(outcome.errors)} failed",
    )


# GET /organizations/{org_id}/backup/stats
@router.get("/backup/stats", response_model=APIResponse)
async def storage_stats(
    org_id: str,
    _principal: Principal = Depends(require_org),
    service: BackupService = Depends(get_backup_service),
):
    stats = await service.get_storage_stats(org_id)
    return APIResponse(status="success", data=stats.model_dump())


# GET /organizations/{org_id}/backups?page=&limit=&search=
@router.get("/backups", response_model=APIResponse)
async def list_backups(
    org_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str | None = Query(None, max_length=200),
    _principal: Principal = Depends(require_org),
    service: BackupService = Depends(get_backup_service),
):
    result = await service.list_backups_by_org(org_id, page, limit, search)
    return APIResponse(
        status="success",
        data=[s.model_dump() for s in result.data],
        pagination=result.pagination,
    )


# GET /organizations/{org_id}/backups/{snapshot_id}
@router.get("/backups/{snapshot_id}", response_model=APIResponse)
async def get_backup(
    org_id: str,
    snapshot_id: str,
    _principal: Principal = Depends(require_org),
    service: BackupService = Depends(get_backup_service),
):
    snapshot = await service.get_backup(org_id, snapshot_id)
    return APIResponse(status="success", data=snapshot.model_dump())


# GET /organizations/{org_id}/backups/{snapshot_id}/content
@router.get("/backups/{snapshot_id}/content")
async def get_backup_content(
    org_id: str,
    snapshot_id: str,
    _principal: Principal = Depends(require_org),
    service: BackupService = Depends(get_backup_service),
):
    # the stored bytes are returned verbatim so clients can verify the checksum
    content = await service.get_backup_content(org_id, snapshot_id)
    return Response(content=content, media_type="application/json")
