"""Create knowledge scope tables.

Revision ID: 2026_10_01_0001
Revises:
Create Date: 2026-10-01

Adds:
- knowledge_items: one row per (agent, name, tier scope) override slot
- knowledge_item_revisions: content history of each slot, for rollback
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "2026_10_01_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "knowledge_items",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("agent", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=500), nullable=False),
        sa.Column("content_type", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.Column("max_revision", sa.Integer(), nullable=False),
        sa.Column("scope_level", sa.String(length=20), nullable=False),
        sa.Column("tenant_id", sa.String(length=255), nullable=True),
        sa.Column("activation_name", sa.String(length=255), nullable=True),
        sa.Column("scope_key", sa.String(length=600), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.CheckConstraint(
            "(scope_level = 'system' AND tenant_id IS NULL AND activation_name IS NULL)"
            " OR (scope_level = 'tenant' AND tenant_id IS NOT NULL AND activation_name IS NULL)"
            " OR (scope_level = 'activation' AND tenant_id IS NOT NULL AND activation_name IS NOT NULL)",
            name="ck_knowledge_items_scope_fields",
        ),
    )
    op.create_index(
        "ux_knowledge_items_agent_name_scope",
        "knowledge_items",
        ["agent", "name", "scope_key"],
        unique=True,
    )
    op.create_index("ix_knowledge_items_agent_tenant", "knowledge_items", ["agent", "tenant_id"], unique=False)
    op.create_index("ix_knowledge_items_tenant_id", "knowledge_items", ["tenant_id"], unique=False)

    op.create_table(
        "knowledge_item_revisions",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column(
            "item_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("knowledge_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_knowledge_item_revisions_item_id", "knowledge_item_revisions", ["item_id"], unique=False)
    op.create_index(
        "ux_knowledge_item_revisions_item_rev",
        "knowledge_item_revisions",
        ["item_id", "revision"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ux_knowledge_item_revisions_item_rev", table_name="knowledge_item_revisions")
    op.drop_index("ix_knowledge_item_revisions_item_id", table_name="knowledge_item_revisions")
    op.drop_table("knowledge_item_revisions")

    op.drop_index("ix_knowledge_items_tenant_id", table_name="knowledge_items")
    op.drop_index("ix_knowledge_items_agent_tenant", table_name="knowledge_items")
    op.drop_index("ux_knowledge_items_agent_name_scope", table_name="knowledge_items")
    op.drop_table("knowledge_items")
