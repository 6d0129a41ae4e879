"""Forward-cursor key-value access over the single ``items`` table.

The store deliberately exposes the same primitives a wide-column key-value
service would: point get/put/update/delete by (pk, sk), and ``query`` over one
partition of the base table or of a secondary index. A query returns at most
one page (bounded by ``limit`` and ``TABLE_QUERY_PAGE_ITEMS``) together with a
``last_evaluated_key`` continuation token. There is no offset and no total
count: callers that need either must drain pages themselves.
"""
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import String, literal, select, tuple_
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.config import settings
from dashvault.exceptions import ConflictError, NotFoundError, StorageUnavailableError
from dashvault.models.item import Item

logger = logging.getLogger(__name__)

# index name -> (partition column, sort column)
INDEXES: dict[str | None, tuple[str, str]] = {
    None: ("pk", "sk"),
    "LSI1": ("pk", "lsi1sk"),
    "GSI1": ("gsi1pk", "gsi1sk"),
    "GSI2": ("gsi2pk", "gsi2sk"),
    "GSI3": ("gsi3pk", "gsi3sk"),
}

INDEX_KEY_COLUMNS = ("lsi1sk", "gsi1pk", "gsi1sk", "gsi2pk", "gsi2sk", "gsi3pk", "gsi3sk")


@dataclass
class QueryPage:
    items: list[dict[str, Any]] = field(default_factory=list)
    count: int = 0
    last_evaluated_key: dict[str, str] | None = None


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
        logger.error("Table store %s failed: %s", operation, exc)
        raise StorageUnavailableError(f"Table store unavailable during {operation}") from exc


def _order_columns(index: str | None) -> list:
    if index is None:
        return [Item.sk]
    _, sk_name = INDEXES[index]
    return [getattr(Item, sk_name), Item.pk, Item.sk]


def _key_of(item: Item, order_cols: list) -> dict[str, str]:
    return {col.key: getattr(item, col.key) for col in order_cols} | {"pk": item.pk}


# ── Point operations ──

async def put_item(
    db: AsyncSession,
    *,
    pk: str,
    sk: str,
    entity_type: str,
    data: dict[str, Any],
    keys: dict[str, str] | None = None,
    if_not_exists: bool = False,
) -> None:
    """Write an item, replacing any existing item with the same (pk, sk).

    ``keys`` supplies the secondary index columns; columns left out are
    cleared so an overwrite never leaves a stale index entry behind.
    """
    keys = keys or {}
    unknown = set(keys) - set(INDEX_KEY_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown index key columns: {sorted(unknown)}")

    item = Item(
        pk=pk,
        sk=sk,
        entity_type=entity_type,
        data=data,
        **{col: keys.get(col) for col in INDEX_KEY_COLUMNS},
    )
    with _storage_errors("put_item"):
        if if_not_exists and await db.get(Item, (pk, sk)) is not None:
            raise ConflictError(f"Item {pk}/{sk} already exists")
        await db.merge(item)
        await db.flush()


async def get_item(db: AsyncSession, pk: str, sk: str) -> dict[str, Any] | None:
    with _storage_errors("get_item"):
        item = await db.get(Item, (pk, sk))
    return dict(item.data) if item is not None else None


async def update_item(db: AsyncSession, pk: str, sk: str, attrs: dict[str, Any]) -> dict[str, Any]:
    """Merge ``attrs`` into an existing item's attributes. The item must exist."""
    with _storage_errors("update_item"):
        item = await db.get(Item, (pk, sk))
        if item is None:
            raise NotFoundError(f"Item {pk}/{sk} not found")
        # reassign so the JSON column is flagged dirty
        item.data = {**item.data, **attrs}
        await db.flush()
    return dict(item.data)


async def delete_item(db: AsyncSession, pk: str, sk: str) -> bool:
    with _storage_errors("delete_item"):
        item = await db.get(Item, (pk, sk))
        if item is None:
            return False
        await db.delete(item)
        await db.flush()
    return True


# ── Range operations ──

async def query(
    db: AsyncSession,
    partition_key: str,
    *,
    sort_key: str | None = None,
    sort_key_prefix: str | None = None,
    index: str | None = None,
    descending: bool = False,
    limit: int | None = None,
    exclusive_start_key: dict[str, str] | None = None,
    select_count: bool = False,
) -> QueryPage:
    """Read one page of a partition, ordered by the index sort key.

    Ties on the index sort key are broken by the table key so the
    continuation token always identifies a unique position.
    """
    if index not in INDEXES:
        raise ValueError(f"Unknown index: {index}")
    pk_name, sk_name = INDEXES[index]
    pk_col = getattr(Item, pk_name)
    sk_col = getattr(Item, sk_name)

    page_size = settings.TABLE_QUERY_PAGE_ITEMS
    if limit is not None:
        page_size = min(limit, page_size)
    if page_size < 1:
        return QueryPage()

    order_cols = _order_columns(index)
    if select_count:
        # keys only; skipped rows never load their payload
        stmt = select(*order_cols, *([] if index else [Item.pk]))
    else:
        stmt = select(Item)
    stmt = stmt.where(pk_col == partition_key)
    if sort_key is not None:
        stmt = stmt.where(sk_col == sort_key)
    if sort_key_prefix:
        stmt = stmt.where(sk_col.startswith(sort_key_prefix, autoescape=True))
    if exclusive_start_key:
        position = tuple_(*order_cols)
        start = tuple_(*(literal(exclusive_start_key[col.key], String) for col in order_cols))
        stmt = stmt.where(position < start if descending else position > start)

    stmt = stmt.order_by(*(col.desc() if descending else col.asc() for col in order_cols))
    # one extra row tells us whether a continuation token is needed
    stmt = stmt.limit(page_size + 1)

    with _storage_errors("query"):
        result = await db.execute(stmt)
        rows = list(result.all() if select_count else result.scalars().all())

    has_more = len(rows) > page_size
    rows = rows[:page_size]
    last_key = _key_of(rows[-1], order_cols) if has_more else None
    items = [] if select_count else [dict(row.data) for row in rows]
    return QueryPage(items=items, count=len(rows), last_evaluated_key=last_key)


async def query_all(
    db: AsyncSession,
    partition_key: str,
    *,
    max_items: int | None = None,
    **query_kwargs: Any,
) -> list[dict[str, Any]]:
    """Follow continuation tokens until ``max_items`` or the partition is exhausted."""
    collected: list[dict[str, Any]] = []
    start_key: dict[str, str] | None = None
    while True:
        remaining = None if max_items is None else max_items - len(collected)
        if remaining is not None and remaining <= 0:
            break
        page = await query(
            db, partition_key, limit=remaining, exclusive_start_key=start_key, **query_kwargs,
        )
        collected.extend(page.items)
        start_key = page.last_evaluated_key
        if start_key is None:
            break
    return collected


async def count(db: AsyncSession, partition_key: str, **query_kwargs: Any) -> int:
    """Exact item count, draining count-mode pages across the whole partition."""
    total = 0
    start_key: dict[str, str] | None = None
    while True:
        page = await query(
            db, partition_key, exclusive_start_key=start_key, select_count=True, **query_kwargs,
        )
        total += page.count
        start_key = page.last_evaluated_key
        if start_key is None:
            return total


async def scan(
    db: AsyncSession,
    *,
    entity_type: str,
    limit: int | None = None,
    exclusive_start_key: dict[str, str] | None = None,
) -> QueryPage:
    """Read one page of every item of ``entity_type`` across all partitions."""
    page_size = settings.TABLE_QUERY_PAGE_ITEMS
    if limit is not None:
        page_size = min(limit, page_size)

    stmt = select(Item).where(Item.entity_type == entity_type)
    if exclusive_start_key:
        stmt = stmt.where(
            tuple_(Item.pk, Item.sk) > tuple_(
                literal(exclusive_start_key["pk"], String), literal(exclusive_start_key["sk"], String),
            )
        )
    stmt = stmt.order_by(Item.pk, Item.sk).limit(page_size + 1)

    with _storage_errors("scan"):
        rows = list((await db.execute(stmt)).scalars().all())

    has_more = len(rows) > page_size
    rows = rows[:page_size]
    last_key = {"pk": rows[-1].pk, "sk": rows[-1].sk} if has_more else None
    return QueryPage(
        items=[dict(row.data) for row in rows], count=len(rows), last_evaluated_key=last_key,
    )
