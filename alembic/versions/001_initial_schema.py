"""Initial schema - items table with its four indexes + vault secrets.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- 1. items (single-table store) ---
    op.create_table(
        "items",
        sa.Column("pk", sa.String(255), nullable=False),
        sa.Column("sk", sa.String(512), nullable=False),
        sa.Column("lsi1sk", sa.String(512), nullable=True),
        sa.Column("gsi1pk", sa.String(512), nullable=True),
        sa.Column("gsi1sk", sa.String(512), nullable=True),
        sa.Column("gsi2pk", sa.String(512), nullable=True),
        sa.Column("gsi2sk", sa.String(512), nullable=True),
        sa.Column("gsi3pk", sa.String(512), nullable=True),
        sa.Column("gsi3sk", sa.String(512), nullable=True),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("data", JSONB, nullable=False),
        sa.PrimaryKeyConstraint("pk", "sk", name="pk_items"),
    )

    # --- 2. vault_secrets ---
    op.create_table(
        "vault_secrets",
        sa.Column("secret_id", sa.String(255), nullable=False),
        sa.Column("ciphertext", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("secret_id", name="pk_vault_secrets"),
    )

    # --- Indexes ---
    op.create_index("ix_items_lsi1", "items", ["pk", "lsi1sk"])
    op.create_index("ix_items_gsi1", "items", ["gsi1pk", "gsi1sk"])
    op.create_index("ix_items_gsi2", "items", ["gsi2pk", "gsi2sk"])
    op.create_index("ix_items_gsi3", "items", ["gsi3pk", "gsi3sk"])
    op.create_index("ix_items_entity_type", "items", ["entity_type"])

    # updated_at auto-update trigger
    op.execute("""
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trigger_update_vault_secrets_updated_at
        BEFORE UPDATE ON vault_secrets
        FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trigger_update_vault_secrets_updated_at ON vault_secrets")
    op.execute("DROP FUNCTION IF EXISTS update_updated_at_column()")

    for index in ["ix_items_entity_type", "ix_items_gsi3", "ix_items_gsi2", "ix_items_gsi1", "ix_items_lsi1"]:
        op.drop_index(index, table_name="items")
    op.drop_table("vault_secrets")
    op.drop_table("items")
