"""Audit event schemas."""
from enum import Enum
from typing import Any

from pydantic import BaseModel


class AuditEventType(str, Enum):
    BACKUP_COMPLETED = "BACKUP_COMPLETED"
    BACKUP_FAILED = "BACKUP_FAILED"
    RESTORE_COMPLETED = "RESTORE_COMPLETED"
    RESTORE_FAILED = "RESTORE_FAILED"
    CREDENTIAL_CREATED = "CREDENTIAL_CREATED"
    CREDENTIAL_UPDATED = "CREDENTIAL_UPDATED"
    CREDENTIAL_VALIDATED = "CREDENTIAL_VALIDATED"
    CREDENTIAL_DELETED = "CREDENTIAL_DELETED"


class AuditEvent(BaseModel):
    event_id: str
    org_id: str
    event_type: AuditEventType
    actor: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] = {}
    timestamp: str
