"""Credential metadata data access. The secret itself lives in the vault."""
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.exceptions import NotFoundError
from dashvault.schemas.credential import Credential
from dashvault.storage import table

ENTITY_TYPE = "APIKEY"
SORT_PREFIX = "APIKEY#"

_MUTABLE_FIELDS = {
    "name", "status", "account_ids", "last_validated", "last_backup_run", "dashboard_count",
}


def _org_key(org_id: str) -> str:
    return f"ORG#{org_id}"


def _sort_key(credential_id: str) -> str:
    return f"{SORT_PREFIX}{credential_id}"


async def create(db: AsyncSession, credential: Credential) -> Credential:
    await table.put_item(
        db,
        pk=_org_key(credential.org_id),
        sk=_sort_key(credential.credential_id),
        entity_type=ENTITY_TYPE,
        data=credential.model_dump(mode="json"),
        keys={
            "gsi3pk": _sort_key(credential.credential_id),
            "gsi3sk": _org_key(credential.org_id),
        },
        if_not_exists=True,
    )
    return credential


async def find_by_id(db: AsyncSession, org_id: str, credential_id: str) -> Credential | None:
    item = await table.get_item(db, _org_key(org_id), _sort_key(credential_id))
    return Credential.model_validate(item) if item else None


async def list_by_org(db: AsyncSession, org_id: str) -> list[Credential]:
    items = await table.query_all(db, _org_key(org_id), sort_key_prefix=SORT_PREFIX)
    return [Credential.model_validate(item) for item in items]


async def list_all(db: AsyncSession) -> list[Credential]:
    """Every credential across all orgs, for the scheduled backup sweep."""
    credentials: list[Credential] = []
    start_key: dict[str, str] | None = None
    while True:
        page = await table.scan(db, entity_type=ENTITY_TYPE, exclusive_start_key=start_key)
        credentials.extend(Credential.model_validate(item) for item in page.items)
        start_key = page.last_evaluated_key
        if start_key is None:
            return credentials


async def update(
    db: AsyncSession, org_id: str, credential_id: str, /, **changes: Any,
) -> Credential:
    # keys are positional-only so `org_id=` in changes reaches the guard below
    unknown = set(changes) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Credential fields not updatable: {sorted(unknown)}")
    current = await find_by_id(db, org_id, credential_id)
    if current is None:
        raise NotFoundError("Credential not found")
    updated = Credential.model_validate({**current.model_dump(), **changes})
    await table.update_item(
        db, _org_key(org_id), _sort_key(credential_id),
        updated.model_dump(mode="json", include=set(changes)),
    )
    return updated


async def delete(db: AsyncSession, org_id: str, credential_id: str) -> None:
    if not await table.delete_item(db, _org_key(org_id), _sort_key(credential_id)):
        raise NotFoundError("Credential not found")

