"""Credentials API - platform API keys of an organization."""
from fastapi import APIRouter, Depends, status

from dashvault.dependencies import Principal, get_credential_service, require_org
from dashvault.schemas.common import APIResponse
from dashvault.schemas.credential import (
    Credential,
    CredentialCreate,
    CredentialResponse,
    CredentialUpdate,
    CredentialValidation,
)
from dashvault.services.credential_service import CredentialService

router = APIRouter()


def _public(credential: Credential) -> dict:
    return CredentialResponse.model_validate(credential.model_dump()).model_dump(mode="json")


# POST /organizations/{org_id}/credentials
@router.post("", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def create_credential(
    org_id: str,
    body: CredentialCreate,
    principal: Principal = Depends(require_org),
    service: CredentialService = Depends(get_credential_service),
):
    credential = await service.create(org_id, body, created_by=principal.subject)
    return APIResponse(status="success", data=_public(credential), message="Credential created")


# GET /organizations/{org_id}/credentials
@router.get("", response_model=APIResponse)
async def list_credentials(
    org_id: str,
    _principal: Principal = Depends(require_org),
    service: CredentialService = Depends(get_credential_service),
):
    credentials = await service.list_by_org(org_id)
    return APIResponse(status="success", data=[_public(c) for c in credentials])


# GET /organizations/{org_id}/credentials/{credential_id}
@router.get("/{credential_id}", response_model=APIResponse)
async def get_credential(
    org_id: str,
    credential_id: str,
    _principal: Principal = Depends(require_org),
    service: CredentialService = Depends(get_credential_service),
):
    credential = await service.get(org_id, credential_id)
    return APIResponse(status="success", data=_public(credential))


# PUT /organizations/{org_id}/credentials/{credential_id}
@router.put("/{credential_id}", response_model=APIResponse)
async def update_credential(
    org_id: str,
    credential_id: str,
    body: CredentialUpdate,
    principal: Principal = Depends(require_org),
    service: CredentialService = Depends(get_credential_service),
):
    credential = await service.update(org_id, credential_id, body, updated_by=principal.subject)
    return APIResponse(status="success", data=_public(credential), message="Credential updated")


# POST /organizations/{org_id}/credentials/{credential_id}/validate
@router.post("/{credential_id}/validate", response_model=APIResponse)
async def validate_credential(
    org_id: str,
    credential_id: str,
    _principal: Principal = Depends(require_org),
    service: CredentialService = Depends(get_credential_service),
):
    validation = await service.validate(org_id, credential_id)
    return APIResponse(
        status="success",
        data=CredentialValidation.model_validate(validation).model_dump(),
    )


# DELETE /organizations/{org_id}/credentials/{credential_id}
@router.delete("/{credential_id}", response_model=APIResponse)
async def delete_credential(
    org_id: str,
    credential_id: str,
    _principal: Principal = Depends(require_org),
    service: CredentialService = Depends(get_credential_service),
):
    await service.delete(org_id, credential_id)
    return APIResponse(status="success", message="Credential deleted")
