"""Restore API - replay a snapshot, or compare it with the live dashboard.

A restore the platform rejected is still HTTP 200, with ``success: false``.
"""
from fastapi import APIRouter, Depends, Query

from dashvault.dependencies import Principal, get_restore_service, require_org
from dashvault.schemas.common import APIResponse
from dashvault.schemas.restore import RestoreRequest
from dashvault.services.restore_service import RestoreService

router = APIRouter()


# POST /organizations/{org_id}/backups/{snapshot_id}/restore
@router.post("/backups/{snapshot_id}/restore", response_model=APIResponse)
async def restore_backup(
    org_id: str,
    snapshot_id: str,
    body: RestoreRequest,
    _principal: Principal = Depends(require_org),
    service: RestoreService = Depends(get_restore_service),
):
    if body.mode == "in_place":
        result = await service.restore_in_place(org_id, snapshot_id, body.credential_id)
    else:
        result = await service.restore_dashboard(
            org_id, snapshot_id, body.credential_id,
            target_account_id=body.target_account_id, new_name=body.new_name,
        )
    return APIResponse(
        status="success",
        data=result.model_dump(),
        message=result.message,
    )


# GET /organizations/{org_id}/backups/{snapshot_id}/compare?credential_id=
@router.get("/backups/{snapshot_id}/compare", response_model=APIResponse)
async def compare_backup(
    org_id: str,
    snapshot_id: str,
    credential_id: str = Query(..., min_length=1),
    _principal: Principal = Depends(require_org),
    service: RestoreService = Depends(get_restore_service),
):
    result = await service.compare_with_current(org_id, snapshot_id, credential_id)
    return APIResponse(status="success", data=result.model_dump())
