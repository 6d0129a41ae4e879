"""Append-only audit trail, stored in the org partition."""
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.schemas.audit import AuditEvent, AuditEventType
from dashvault.storage import table
from dashvault.utils.helpers import new_id, utc_timestamp

ENTITY_TYPE = "AUDIT"
SORT_PREFIX = "AUDIT#"


async def create(
    db: AsyncSession,
    org_id: str,
    event_type: AuditEventType,
    *,
    actor: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    event = AuditEvent(
        event_id=new_id(),
        org_id=org_id,
        event_type=event_type,
        actor=actor,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
        timestamp=utc_timestamp(),
    )
    await table.put_item(
        db,
        pk=f"ORG#{org_id}",
        sk=f"{SORT_PREFIX}{event.timestamp}#{event.event_id}",
        entity_type=ENTITY_TYPE,
        data=event.model_dump(mode="json"),
        keys={
            "gsi1pk": f"ORG#{org_id}#AUDIT",
            "gsi1sk": f"{event_type.value}#{event.timestamp}",
        },
    )
    return event


async def list_by_org(db: AsyncSession, org_id: str, limit: int = 100) -> list[AuditEvent]:
    """Most recent events first, paging through the store up to ``limit``."""
    items = await table.query_all(
        db, f"ORG#{org_id}", sort_key_prefix=SORT_PREFIX, descending=True, max_items=limit,
    )
    return [AuditEvent.model_validate(item) for item in items]


async def list_by_event_type(
    db: AsyncSession, org_id: str, event_type: AuditEventType, limit: int = 100,
) -> list[AuditEvent]:
    items = await table.query_all(
        db, f"ORG#{org_id}#AUDIT",
        index="GSI1", sort_key_prefix=f"{event_type.value}#", descending=True, max_items=limit,
    )
    return [AuditEvent.model_validate(item) for item in items]
