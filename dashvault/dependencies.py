"""FastAPI dependency injection utilities."""
from dataclasses import dataclass, field
from functools import lru_cache

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.config import settings
from dashvault.database import get_db
from dashvault.exceptions import ForbiddenError, UnauthorizedError
from dashvault.integrations.nerdgraph.client import NerdGraphClient
from dashvault.services.backup_service import BackupService
from dashvault.services.credential_service import ClientFactory, CredentialService
from dashvault.services.reporting_service import ReportingService
from dashvault.services.restore_service import RestoreService
from dashvault.storage.blob_store import BlobStore, create_blob_store
from dashvault.storage.vault import CredentialVault

security = HTTPBearer(auto_error=False)


@dataclass
class Principal:
    subject: str
    orgs: list[str] = field(default_factory=list)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Principal:
    """Identify the caller from the bearer JWT. Signature and expiry are checked here."""
    if credentials is None:
        raise UnauthorizedError("Authentication required")
    try:
        payload = decode_access_token(credentials.credentials)
    except ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except JWTError:
        raise UnauthorizedError("Invalid token")

    subject = payload.get("sub")
    orgs = payload.get("orgs") or []
    if not subject or not isinstance(orgs, list):
        raise UnauthorizedError("Invalid token")
    return Principal(subject=str(subject), orgs=[str(o) for o in orgs])


async def require_org(org_id: str, principal: Principal = Depends(get_principal)) -> Principal:
    """Org membership check for routes under ``/organizations/{org_id}``."""
    if org_id not in principal.orgs:
        raise ForbiddenError("Not a member of this organization")
    return principal


# ── Collaborators ──

@lru_cache
def get_blob_store() -> BlobStore:
    return create_blob_store()


def get_client_factory() -> ClientFactory:
    return NerdGraphClient


async def get_vault(db: AsyncSession = Depends(get_db)) -> CredentialVault:
    return CredentialVault(db)


async def get_credential_service(
    db: AsyncSession = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> CredentialService:
    return CredentialService(db, vault, client_factory)


async def get_backup_service(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    credentials: CredentialService = Depends(get_credential_service),
) -> BackupService:
    return BackupService(db, blob_store, credentials)


async def get_restore_service(
    db: AsyncSession = Depends(get_db),
    backups: BackupService = Depends(get_backup_service),
    credentials: CredentialService = Depends(get_credential_service),
) -> RestoreService:
    return RestoreService(db, backups, credentials)


async def get_reporting_service(db: AsyncSession = Depends(get_db)) -> ReportingService:
    return ReportingService(db)
