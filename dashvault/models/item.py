"""Single-table key-value item.

Every entity (backups, credentials, audit events) lives in one ``items``
table keyed by a composite partition/sort key. Secondary access patterns
are served by the index column pairs below:

- LSI1: (pk, lsi1sk)        org-wide backups ordered by capture time
- GSI1: (gsi1pk, gsi1sk)    per-dashboard history, audit by type
- GSI2: (gsi2pk, gsi2sk)    per-account history
- GSI3: (gsi3pk, gsi3sk)    lookup of a snapshot/credential by its own id
"""
from sqlalchemy import Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from dashvault.models.base import Base


class Item(Base):
    __tablename__ = "items"

    pk: Mapped[str] = mapped_column(String(255), primary_key=True)
    sk: Mapped[str] = mapped_column(String(512), primary_key=True)
    lsi1sk: Mapped[str | None] = mapped_column(String(512), nullable=True)
    gsi1pk: Mapped[str | None] = mapped_column(String(512), nullable=True)
    gsi1sk: Mapped[str | None] = mapped_column(String(512), nullable=True)
    gsi2pk: Mapped[str | None] = mapped_column(String(512), nullable=True)
    gsi2sk: Mapped[str | None] = mapped_column(String(512), nullable=True)
    gsi3pk: Mapped[str | None] = mapped_column(String(512), nullable=True)
    gsi3sk: Mapped[str | None] = mapped_column(String(512), nullable=True)
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    data: Mapped[dict] = mapped_column(JSONB, nullable=False)

    __table_args__ = (
        Index("ix_items_lsi1", "pk", "lsi1sk"),
        Index("ix_items_gsi1", "gsi1pk", "gsi1sk"),
        Index("ix_items_gsi2", "gsi2pk", "gsi2sk"),
        Index("ix_items_gsi3", "gsi3pk", "gsi3sk"),
        Index("ix_items_entity_type", "entity_type"),
    )
