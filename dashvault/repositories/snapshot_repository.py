"""Snapshot (backup record) data access.

Snapshots live in the org partition of the ``items`` table and are projected
into four indexes: LSI1 (org history by capture time), GSI1 (per-dashboard
history), GSI2 (per-account history) and GSI3 (lookup by snapshot id). Every
listing is most-recent-first.
"""
import logging
import math
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.exceptions import InvalidInputError
from dashvault.schemas.common import PaginationMeta
from dashvault.schemas.snapshot import PaginatedSnapshots, Snapshot, SnapshotCreate
from dashvault.storage import table
from dashvault.utils.helpers import new_id, utc_timestamp

logger = logging.getLogger(__name__)

ENTITY_TYPE = "BACKUP"
SORT_PREFIX = "BACKUP#"


def org_key(org_id: str) -> str:
    return f"ORG#{org_id}"


def dashboard_key(org_id: str, dashboard_guid: str) -> str:
    return f"ORG#{org_id}#DASHBOARD#{dashboard_guid}"


def account_key(org_id: str, account_id: str) -> str:
    return f"ORG#{org_id}#ACCOUNT#{account_id}"


def snapshot_key(snapshot_id: str) -> str:
    return f"SNAPSHOT#{snapshot_id}"


def _to_snapshots(items: list[dict[str, Any]]) -> list[Snapshot]:
    return [Snapshot.model_validate(item) for item in items]


async def create(
    db: AsyncSession, data: SnapshotCreate, *, backup_timestamp: str | None = None,
) -> Snapshot:
    """Persist a new snapshot record; the id and capture time are assigned here."""
    snapshot = Snapshot(
        **data.model_dump(),
        snapshot_id=new_id(),
        backup_timestamp=backup_timestamp or utc_timestamp(),
    )
    ts = snapshot.backup_timestamp
    await table.put_item(
        db,
        pk=org_key(snapshot.org_id),
        sk=f"{SORT_PREFIX}{snapshot.dashboard_guid}#{ts}",
        entity_type=ENTITY_TYPE,
        data=snapshot.model_dump(mode="json"),
        keys={
            "lsi1sk": f"{SORT_PREFIX}{ts}",
            "gsi1pk": dashboard_key(snapshot.org_id, snapshot.dashboard_guid),
            "gsi1sk": f"{SORT_PREFIX}{ts}",
            "gsi2pk": account_key(snapshot.org_id, snapshot.account_id),
            "gsi2sk": f"{SORT_PREFIX}{ts}",
            "gsi3pk": snapshot_key(snapshot.snapshot_id),
            "gsi3sk": org_key(snapshot.org_id),
        },
        if_not_exists=True,
    )
    logger.debug("Snapshot record %s written for org %s", snapshot.snapshot_id, snapshot.org_id)
    return snapshot


async def find_by_id(db: AsyncSession, org_id: str, snapshot_id: str) -> Snapshot | None:
    # the org is part of the key condition, so another org's id never matches
    page = await table.query(
        db, snapshot_key(snapshot_id), index="GSI3", sort_key=org_key(org_id), limit=1,
    )
    if not page.items:
        return None
    return Snapshot.model_validate(page.items[0])


async def list_by_dashboard(
    db: AsyncSession, org_id: str, dashboard_guid: str, limit: int = 100,
) -> list[Snapshot]:
    items = await table.query_all(
        db, dashboard_key(org_id, dashboard_guid),
        index="GSI1", sort_key_prefix=SORT_PREFIX, descending=True, max_items=limit,
    )
    return _to_snapshots(items)


async def list_by_account(
    db: AsyncSession, org_id: str, account_id: str, limit: int = 100,
) -> list[Snapshot]:
    items = await table.query_all(
        db, account_key(org_id, account_id),
        index="GSI2", sort_key_prefix=SORT_PREFIX, descending=True, max_items=limit,
    )
    return _to_snapshots(items)


async def list_by_org(db: AsyncSession, org_id: str, max_items: int | None = None) -> list[Snapshot]:
    """Every snapshot of the org (up to ``max_items``), paging through the store."""
    items = await table.query_all(
        db, org_key(org_id),
        index="LSI1", sort_key_prefix=SORT_PREFIX, descending=True, max_items=max_items,
    )
    return _to_snapshots(items)


async def _paginate(
    db: AsyncSession, partition_key: str, *, index: str, page: int, limit: int,
) -> PaginatedSnapshots:
    """Materialize one numbered page over a forward-only cursor.

    Replays the partition from the start: the first ``(page-1)*limit`` records
    are skipped in count mode, then ``limit`` records plus one lookahead are
    read. ``total`` is therefore a lower bound: everything seen so far, plus
    one when the lookahead found a further record.
    """
    if page < 1 or limit < 1:
        raise InvalidInputError("page and limit must be positive")

    to_skip = (page - 1) * limit
    skipped = 0
    collected: list[dict[str, Any]] = []
    start_key: dict[str, str] | None = None
    query_kwargs = {"index": index, "sort_key_prefix": SORT_PREFIX, "descending": True}

    while True:
        if skipped < to_skip:
            result = await table.query(
                db, partition_key, limit=to_skip - skipped,
                exclusive_start_key=start_key, select_count=True, **query_kwargs,
            )
            skipped += result.count
        else:
            result = await table.query(
                db, partition_key, limit=limit + 1 - len(collected),
                exclusive_start_key=start_key, **query_kwargs,
            )
            collected.extend(result.items)
        start_key = result.last_evaluated_key
        if start_key is None or len(collected) > limit:
            break

    has_next = len(collected) > limit
    data = collected[:limit]
    total = skipped + len(data) + (1 if has_next else 0)
    return PaginatedSnapshots(
        data=_to_snapshots(data),
        pagination=PaginationMeta(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
            has_next=has_next,
            has_prev=page > 1,
        ),
    )


async def list_by_org_paginated(
    db: AsyncSession, org_id: str, page: int = 1, limit: int = 20,
) -> PaginatedSnapshots:
    return await _paginate(db, org_key(org_id), index="LSI1", page=page, limit=limit)


async def list_by_dashboard_paginated(
    db: AsyncSession, org_id: str, dashboard_guid: str, page: int = 1, limit: int = 20,
) -> PaginatedSnapshots:
    return await _paginate(
        db, dashboard_key(org_id, dashboard_guid), index="GSI1", page=page, limit=limit,
    )


async def count_by_org(db: AsyncSession, org_id: str) -> int:
    """Exact snapshot count. Drains the whole partition, so keep it off hot paths."""
    return await table.count(db, org_key(org_id), sort_key_prefix=SORT_PREFIX)


async def get_latest_by_dashboard(
    db: AsyncSession, org_id: str, dashboard_guid: str,
) -> Snapshot | None:
    snapshots = await list_by_dashboard(db, org_id, dashboard_guid, limit=1)
    return snapshots[0] if snapshots else None
