"""Credential (platform API key) schemas. The raw key is never part of a response."""
from enum import Enum

from pydantic import BaseModel, Field


class CredentialStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INVALID = "INVALID"
    SUSPENDED = "SUSPENDED"


class Credential(BaseModel):
    credential_id: str
    org_id: str
    name: str
    secret_id: str
    account_ids: list[str] = []
    status: CredentialStatus = CredentialStatus.ACTIVE
    last_validated: str | None = None
    last_backup_run: str | None = None
    dashboard_count: int = 0
    created_at: str
    created_by: str


class CredentialCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    api_key: str = Field(min_length=1)


class CredentialUpdate(BaseModel):
    """Rename, rotate the key, or both. A new key is validated before it is stored."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    api_key: str | None = Field(default=None, min_length=1)


class CredentialResponse(BaseModel):
    credential_id: str
    name: str
    account_ids: list[str]
    status: CredentialStatus
    last_validated: str | None = None
    last_backup_run: str | None = None
    dashboard_count: int
    created_at: str
    created_by: str


class PlatformAccount(BaseModel):
    id: str
    name: str = ""


class CredentialValidation(BaseModel):
    valid: bool
    accounts: list[PlatformAccount] = []
