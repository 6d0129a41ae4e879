"""Best-effort audit recording: a failed audit write never fails the operation."""
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.exceptions import AppError
from dashvault.repositories import audit_repository
from dashvault.schemas.audit import AuditEventType

logger = logging.getLogger(__name__)


async def record_event(
    db: AsyncSession,
    org_id: str,
    event_type: AuditEventType,
    *,
    actor: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    try:
        async with db.begin_nested():
            await audit_repository.create(
                db, org_id, event_type,
                actor=actor, resource_type=resource_type, resource_id=resource_id, details=details,
            )
    except (AppError, SQLAlchemyError) as exc:
        logger.warning("Audit event %s for org %s not recorded: %s", event_type.value, org_id, exc)
